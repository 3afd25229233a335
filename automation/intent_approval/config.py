"""Runtime settings: environment variables layered over an optional YAML file.

The merged settings are validated against
automation/schemas/intent-approval.schema.json before use.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml
from jsonschema import Draft202012Validator

from automation.intent_approval.errors import ConfigError

ROOT = Path(__file__).resolve().parents[2]
SCHEMA_PATH = ROOT / "automation" / "schemas" / "intent-approval.schema.json"

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off", ""}

# env var -> settings key
ENV_KEYS = {
    "INTENT_DEBOUNCE_MS": "debounce_ms",
    "INTENT_SYMLINK": "symlink",
    "INTENT_SYMLINK_SOURCE": "symlink_source",
    "INTENT_CHECK_HISTORY": "check_history",
    "INTENT_REVERT_REASON": "revert_reason",
}
BOOL_KEYS = {"symlink", "check_history"}
INT_KEYS = {"debounce_ms"}


@dataclass(frozen=True)
class Settings:
    debounce_ms: int = 1500
    symlink: bool = False
    symlink_source: str = "agents"
    check_history: bool = True
    revert_reason: str = "Reverted via checkbox"


def _coerce(key: str, value: Any) -> Any:
    if not isinstance(value, str):
        return value
    raw = value.strip()
    if key in BOOL_KEYS:
        if raw.lower() in TRUTHY:
            return True
        if raw.lower() in FALSY:
            return False
        return raw
    if key in INT_KEYS:
        try:
            return int(raw)
        except ValueError:
            return raw
    return raw


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file missing: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file is not valid YAML: {path}", [str(exc)]) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    return data


def _load_schema() -> dict[str, Any]:
    with SCHEMA_PATH.open("r", encoding="utf-8") as f:
        return json.load(f)


def validate_settings(data: Mapping[str, Any]) -> None:
    validator = Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(dict(data)), key=lambda e: list(e.absolute_path))
    if errors:
        problems = [f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}" for e in errors]
        raise ConfigError("One or more settings are invalid", problems)


def load_settings(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    defaults: Mapping[str, Any] | None = None,
) -> Settings:
    """Merge ``defaults`` < YAML file < environment into validated Settings."""
    env = os.environ if env is None else env
    config_path = path or env.get("INTENT_APPROVAL_CONFIG")

    data: dict[str, Any] = dict(defaults or {})
    if config_path:
        data.update(_load_yaml(Path(config_path)))

    for var, key in ENV_KEYS.items():
        value = env.get(var)
        if value is not None and value != "":
            data[key] = value

    data = {key: _coerce(key, value) for key, value in data.items()}
    validate_settings(data)
    return Settings(**data)
