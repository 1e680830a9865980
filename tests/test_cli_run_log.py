from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


class TestRunCommandWritesLog(unittest.TestCase):
    def _run(self, cfg_path: Path, out_dir: Path) -> subprocess.CompletedProcess[str]:
        repo_root = Path(__file__).resolve().parents[1]

        env = dict(os.environ)
        env.pop("APIFY_TOKEN", None)
        existing_pp = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = (
            f"{repo_root}{os.pathsep}{existing_pp}" if existing_pp else str(repo_root)
        )

        return subprocess.run(
            [
                sys.executable,
                "-m",
                "ig_scraper",
                "run",
                "--config",
                str(cfg_path),
                "--out",
                str(out_dir),
            ],
            cwd=repo_root,
            env=env,
            capture_output=True,
            text=True,
        )

    def _events(self, log_path: Path) -> list[str]:
        events: list[str] = []
        for ln in log_path.read_text(encoding="utf-8").splitlines():
            if not ln.strip():
                continue
            ev = json.loads(ln).get("event")
            if isinstance(ev, str):
                events.append(ev)
        return events

    def test_run_creates_run_log_on_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            out_dir = Path(td) / "out"
            proc = self._run(Path(td) / "missing_config.yaml", out_dir)

            self.assertEqual(proc.returncode, 2, msg=proc.stderr)
            events = self._events(out_dir / "run.log")
            self.assertIn("run_command_started", events)
            self.assertIn("run_command_failed", events)

    def test_empty_input_is_a_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text("input:\n  direct_urls: []\n", encoding="utf-8")

            proc = self._run(cfg_path, Path(td) / "out")

            self.assertEqual(proc.returncode, 2)
            self.assertIn("direct_urls or a search query", proc.stderr)

    def test_apify_sink_without_token_is_a_config_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            cfg_path = Path(td) / "config.yaml"
            cfg_path.write_text(
                "input:\n  search: food\nsink:\n  kind: apify\n  dataset_id: ig\n",
                encoding="utf-8",
            )

            proc = self._run(cfg_path, Path(td) / "out")

            self.assertEqual(proc.returncode, 2)
            self.assertIn("APIFY_TOKEN", proc.stderr)


if __name__ == "__main__":
    unittest.main()
