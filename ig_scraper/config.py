from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError

from .config_schema import AppConfig
from .errors import ConfigError


@dataclass(frozen=True)
class RuntimeSecrets:
    apify_token: str | None = None


def _read_yaml_mapping(p: Path) -> dict[str, Any]:
    if not p.is_file():
        raise ConfigError(f"Config file not found: {p}")

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {p}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML in {p}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML in {p} must be a mapping/object")
    return data


def load_config(path: str | Path) -> AppConfig:
    """
    Read a YAML run config and validate it into an AppConfig.

    Every failure (missing file, bad YAML, schema violation, no targets)
    surfaces as ConfigError with a readable message.
    """
    p = Path(path)
    return config_from_mapping(_read_yaml_mapping(p), source=str(p))


def config_from_mapping(data: Mapping[str, Any], *, source: str = "<input>") -> AppConfig:
    try:
        return AppConfig.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigError(_format_pydantic_errors(e, source)) from e


def resolve_runtime_secrets(
    config: AppConfig, *, environ: Mapping[str, str] | None = None
) -> RuntimeSecrets:
    """
    Read the dataset token from the environment.

    The token is mandatory only when records go to an Apify dataset; a JSONL
    run picks it up if present and otherwise runs without it.
    """
    env = os.environ if environ is None else environ
    token_env = config.sink.token_env
    token = (env.get(token_env) or "").strip() or None

    if token is None and config.sink.kind == "apify":
        raise ConfigError(f"Missing required environment variables: {token_env}")
    return RuntimeSecrets(apify_token=token)


def config_sha256(config: AppConfig) -> str:
    """Stable SHA-256 of the validated config, logged at run start."""
    payload = json.dumps(
        config.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _format_pydantic_errors(err: ValidationError, source: str) -> str:
    lines = [f"Invalid configuration in {source}:"]
    for item in err.errors():
        loc = ".".join(str(part) for part in item.get("loc", ())) or "<root>"
        lines.append(f"- {loc}: {item.get('msg', 'invalid value')}")
    return "\n".join(lines)
