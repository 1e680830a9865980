from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from ig_scraper.config import config_from_mapping, config_sha256, load_config, resolve_runtime_secrets
from ig_scraper.errors import ConfigError


_VALID_YAML = """\
input:
  direct_urls:
    - https://www.instagram.com/natgeo/
    - nasa
    - "@nasa"
  results_type: posts
  results_limit: 0

fetch:
  strategy: api
  page_size: 24

field_priority:
  likes:
    - like_count
    - edge_liked_by.count

crawl:
  max_requests_per_crawl: 20
  max_request_retries: 2

sink:
  kind: jsonl
"""


class TestConfig(unittest.TestCase):
    def test_load_config_ok(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "config.yaml"
            path.write_text(_VALID_YAML, encoding="utf-8")

            cfg = load_config(path)
            self.assertEqual(
                cfg.input.direct_urls,
                ["https://www.instagram.com/natgeo/", "https://www.instagram.com/nasa"],
            )
            self.assertEqual(cfg.input.effective_results_limit, 10)
            self.assertEqual(cfg.fetch.strategy, "api")
            self.assertEqual(cfg.fetch.page_size, 24)
            self.assertEqual(cfg.field_priority.likes, ["like_count", "edge_liked_by.count"])
            self.assertEqual(cfg.field_priority.comments[0], "edge_media_to_comment.count")
            self.assertEqual(cfg.crawl.max_request_retries, 2)

    def test_no_targets_and_no_search_is_fatal(self) -> None:
        with self.assertRaises(ConfigError) as cm:
            config_from_mapping({"input": {"direct_urls": [" ", ""]}})
        self.assertIn("direct_urls or a search query", str(cm.exception))

        with self.assertRaises(ConfigError):
            config_from_mapping({})

        cfg = config_from_mapping({"input": {"search": " food "}})
        self.assertEqual(cfg.input.search, "food")

    def test_rejects_unknown_keys_and_bad_values(self) -> None:
        for data in (
            {"input": {"search": "x"}, "extra": 1},
            {"input": {"search": "x", "results_type": "stories"}},
            {"input": {"search": "x"}, "fetch": {"strategy": "curl"}},
            {"input": {"search": "x"}, "field_priority": {"likes": []}},
            {"input": {"search": "x"}, "sink": {"kind": "apify"}},
        ):
            with self.assertRaises(ConfigError, msg=str(data)):
                config_from_mapping(data)

    def test_load_config_file_errors(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(ConfigError):
                load_config(Path(td) / "missing.yaml")

            path = Path(td) / "bad.yaml"
            path.write_text("input: [unclosed", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)

            path.write_text("- a\n- b\n", encoding="utf-8")
            with self.assertRaises(ConfigError):
                load_config(path)

    def test_resolve_runtime_secrets_only_for_apify_sink(self) -> None:
        jsonl = config_from_mapping({"input": {"search": "x"}})
        self.assertIsNone(resolve_runtime_secrets(jsonl, environ={}).apify_token)

        apify = config_from_mapping(
            {"input": {"search": "x"}, "sink": {"kind": "apify", "dataset_id": "ds"}}
        )
        with self.assertRaises(ConfigError):
            resolve_runtime_secrets(apify, environ={})

        secrets = resolve_runtime_secrets(apify, environ={"APIFY_TOKEN": " a "})
        self.assertEqual(secrets.apify_token, "a")

    def test_config_hash_is_stable(self) -> None:
        a = config_from_mapping({"input": {"search": "x"}})
        b = config_from_mapping({"input": {"search": "x"}})
        c = config_from_mapping({"input": {"search": "y"}})
        self.assertEqual(config_sha256(a), config_sha256(b))
        self.assertNotEqual(config_sha256(a), config_sha256(c))


if __name__ == "__main__":
    unittest.main()
