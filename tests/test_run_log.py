from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from ig_scraper.run_log import RunLogger


class TestRunLogger(unittest.TestCase):
    def test_writes_jsonl_records(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "run.log"
            with RunLogger.open(path, run_id="r1", session_id="s1") as log:
                log.info("record_emitted", url="https://www.instagram.com/p/A/", type="post")
                log.warning("fetch_failed", url=" ", cause="timeout")
                try:
                    raise RuntimeError("boom")
                except RuntimeError as e:
                    log.exception("target_failed", exc=e, url="https://www.instagram.com/x/")

            rows = [json.loads(ln) for ln in path.read_text(encoding="utf-8").splitlines()]

        self.assertEqual([r["event"] for r in rows], ["record_emitted", "fetch_failed", "target_failed"])
        self.assertEqual([r["level"] for r in rows], ["INFO", "WARN", "ERROR"])
        self.assertEqual(rows[0]["run_id"], "r1")
        self.assertEqual(rows[0]["session_id"], "s1")
        self.assertEqual(rows[0]["data"], {"type": "post"})
        self.assertNotIn("url", rows[1])
        self.assertEqual(rows[2]["data"]["error"]["type"], "RuntimeError")
        self.assertIn("boom", rows[2]["data"]["error"]["traceback"])

    def test_reopen_appends_after_first_open(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "run.log"
            path.write_text("stale\n", encoding="utf-8")

            log = RunLogger(path)
            log.info("a")
            log.close()
            log.info("b")
            log.close()

            events = [json.loads(ln)["event"] for ln in path.read_text(encoding="utf-8").splitlines()]
        self.assertEqual(events, ["a", "b"])

    def test_counts_lines_per_level(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with RunLogger.open(Path(td) / "run.log") as log:
                log.info("a")
                log.warning("b")
                log.warning("c")
                log.log("error", "d")

        self.assertEqual(log.count("warn"), 2)
        self.assertEqual(log.count("ERROR"), 1)
        self.assertEqual(log.count("INFO"), 1)


if __name__ == "__main__":
    unittest.main()
