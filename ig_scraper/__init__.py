from __future__ import annotations

from .classify import ClassificationMiss, ContentType, ScrapeTarget, classify
from .config import config_sha256, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, FetchError, SinkError
from .records import NormalizedRecord
from .runner import ScrapeResult, run_scrape

__all__ = [
    "AppConfig",
    "ClassificationMiss",
    "ConfigError",
    "ContentType",
    "FetchError",
    "NormalizedRecord",
    "ScrapeResult",
    "ScrapeTarget",
    "SinkError",
    "classify",
    "config_sha256",
    "load_config",
    "resolve_runtime_secrets",
    "run_scrape",
]
