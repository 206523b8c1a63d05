from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
import os


DEFAULT_DATABASE_ID = "(default)"
DEFAULT_IDLE_TIMEOUT_SECONDS = 110

# Set by serverless function hosts that terminate idle connections.
FUNCTION_TRIGGER_ENV = "FUNCTION_TRIGGER_TYPE"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class SettingsError(ValueError):
    """Raised when settings values are invalid."""


@dataclass(frozen=True)
class ClientSettings:
    project_id: str
    database_id: str
    prefer_transactions: bool
    idle_timeout_seconds: int


def _read_dotenv(dotenv_path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    if not dotenv_path.exists():
        return values

    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip("'").strip('"')
        if key:
            values[key] = value
    return values


def _get_str(values: Mapping[str, str], key: str, default: str) -> str:
    value = values.get(key, default).strip()
    if not value:
        raise SettingsError(f"{key} must not be empty.")
    return value


def _get_int(values: Mapping[str, str], key: str, default: int) -> int:
    raw_value = values.get(key)
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise SettingsError(f"{key} must be integer: {raw_value}") from exc
    if value <= 0:
        raise SettingsError(f"{key} must be > 0: {value}")
    return value


def _get_bool(values: Mapping[str, str], key: str, default: bool) -> bool:
    raw_value = values.get(key)
    if raw_value is None or raw_value.strip() == "":
        return default
    lowered = raw_value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise SettingsError(f"{key} must be boolean-compatible: {raw_value}")


def load_settings(
    *,
    env: Mapping[str, str] | None = None,
    dotenv_path: str | Path = ".env",
) -> ClientSettings:
    """Load client settings from .env and environment variables.

    Priority: OS environment > .env > default.
    """

    env_values = dict(env) if env is not None else dict(os.environ)
    dotenv_values = _read_dotenv(Path(dotenv_path))
    merged: dict[str, str] = {**dotenv_values, **env_values}

    on_function_host = bool(merged.get(FUNCTION_TRIGGER_ENV, "").strip())

    return ClientSettings(
        project_id=merged.get("DOCBATCH_PROJECT_ID", "").strip(),
        database_id=_get_str(merged, "DOCBATCH_DATABASE_ID", DEFAULT_DATABASE_ID),
        prefer_transactions=_get_bool(merged, "DOCBATCH_PREFER_TRANSACTIONS", on_function_host),
        idle_timeout_seconds=_get_int(merged, "DOCBATCH_IDLE_TIMEOUT_SECONDS", DEFAULT_IDLE_TIMEOUT_SECONDS),
    )
