from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path
from typing import Sequence

from .classify import ClassificationMiss, classify
from .config import load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, FetchError, SinkError
from .run_log import RunLogger
from .run_summary import build_run_summary, format_run_summary
from .runner import run_scrape
from .sinks import JsonlSink, RecordSink


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ig_scraper")

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser(
        "run",
        help="Scrape the configured URLs and write normalized records.",
    )
    run.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    run.add_argument(
        "--out",
        required=True,
        help="Output directory for the dataset and logs.",
    )
    run.add_argument(
        "--offline",
        action="store_true",
        help="Run without network calls using deterministic fixture pages.",
    )
    run.set_defaults(_handler=_cmd_run)

    cls = subparsers.add_parser(
        "classify",
        help="Print how each URL would be routed.",
    )
    cls.add_argument("urls", nargs="+", metavar="URL")
    cls.set_defaults(_handler=_cmd_classify)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _cmd_classify(args: argparse.Namespace) -> int:
    misses = 0
    for url in args.urls:
        result = classify(url)
        if isinstance(result, ClassificationMiss):
            misses += 1
            row = {"url": result.url, "skipped": True, "reason": result.reason}
        else:
            row = {"url": result.url, "type": result.type.value, "identifier": result.identifier}
        print(json.dumps(row, ensure_ascii=False, sort_keys=True))
    return 0 if misses == 0 else 1


def _open_sink(
    args: argparse.Namespace, cfg: AppConfig, out_dir: Path, log: RunLogger
) -> RecordSink:
    if bool(getattr(args, "offline", False)) or cfg.sink.kind == "jsonl":
        return JsonlSink(out_dir / "dataset.jsonl", overwrite=True)

    secrets = resolve_runtime_secrets(cfg)

    from .apify_sink import ApifyDatasetSink

    return ApifyDatasetSink(
        secrets.apify_token or "",
        cfg.sink.dataset_id or "",
        batch_size=cfg.sink.batch_size,
        logger=log,
    )


def _cmd_run(args: argparse.Namespace) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    log_path = out_dir / "run.log"
    with RunLogger.open(log_path, overwrite=True) as log:
        log.info(
            "run_command_started",
            config_path=str(args.config),
            out_dir=str(out_dir),
            offline=bool(args.offline),
        )

        try:
            cfg = load_config(args.config)

            log.info(
                "config_loaded",
                config_path=str(args.config),
                strategy=cfg.fetch.strategy,
                sink=cfg.sink.kind,
                direct_urls=len(cfg.input.direct_urls),
                search=cfg.input.search,
            )

            fetcher = None
            if args.offline:
                from .offline import OfflineFetcher

                fetcher = OfflineFetcher(cfg.fetch, search_type=cfg.input.search_type)

            sink = _open_sink(args, cfg, out_dir, log)
            try:
                result = run_scrape(cfg, sink=sink, logger=log, fetcher=fetcher)
            finally:
                sink.close()

            dropped = int(getattr(sink, "dropped", 0) or 0)
            if dropped != result.sink_dropped:
                result = dataclasses.replace(result, sink_dropped=dropped)

            report = build_run_summary(result, config=cfg, log_counts=log.counts)
            log.info("run_summary", **report)

            print(f"status={result.status}")
            print(f"handled={result.handled}")
            print(f"records={result.records}")
            for kind, count in sorted(result.records_by_type.items()):
                print(f"records_{kind}={count}")
            if isinstance(sink, JsonlSink):
                print(f"dataset={sink.path}")
            print(f"run_log={log_path}")
            print(format_run_summary(report))

            return 0 if result.status == "completed" else 4
        except Exception as e:
            log.exception("run_command_failed", exc=e)
            raise


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (SinkError, FetchError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
