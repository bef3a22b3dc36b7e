"""
Audit chain runtime settings (``audit_chain.config``).

Responsibility
--------------
Single source of runtime configuration.  Settings are layered:

1. packaged ``settings.yaml`` (defaults)
2. an optional YAML overlay (``path`` argument or ``AUDIT_CHAIN_CONFIG``)
3. environment overrides

and parsed into a frozen ``ChainSettings`` dataclass.

Failure modes
-------------
* Missing overlay file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or non-numeric env values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from audit_chain.utils.hashing import DEFAULT_POW_MAX_ATTEMPTS

_DEFAULT_SETTINGS_FILE = Path(__file__).parent / "settings.yaml"

CONFIG_PATH_ENV = "AUDIT_CHAIN_CONFIG"

# env var -> (field, parser)
_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "DATABASE_URL": ("database_url", str),
    "AUDIT_CHAIN_DATABASE_URL": ("database_url", str),
    "AUDIT_CHAIN_LOG_LEVEL": ("log_level", str),
    "AUDIT_CHAIN_POW_MAX_ATTEMPTS": ("pow_max_attempts", int),
    "AUDIT_CHAIN_LOCK_TIMEOUT": ("lock_timeout_seconds", float),
}


@dataclass(frozen=True)
class ChainSettings:
    """Immutable runtime settings."""

    database_url: str = "sqlite:///audit_chain.db"
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pow_max_attempts: int = DEFAULT_POW_MAX_ATTEMPTS
    pow_default_difficulty: int = 2
    pow_workers: int = 1
    lock_timeout_seconds: float = 30
    verification_history_limit: int = 10
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.pow_max_attempts < 1:
            raise ValueError(f"pow_max_attempts must be positive, got {self.pow_max_attempts}")
        if self.pow_workers < 1:
            raise ValueError(f"pow_workers must be positive, got {self.pow_workers}")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def parse_settings(data: dict[str, Any]) -> ChainSettings:
    """
    Build ``ChainSettings`` from a dict.

    Raises:
        ValueError: if ``data`` contains keys ChainSettings does not define.
    """
    known = {f.name for f in fields(ChainSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    return ChainSettings(**data)


def _env_overrides(environ: dict[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    # AUDIT_CHAIN_DATABASE_URL wins over DATABASE_URL (dict order)
    for env_name, (field_name, parser) in _ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            overrides[field_name] = parser(raw)
        except ValueError as exc:
            raise ValueError(f"{env_name}={raw!r}: {exc}") from exc
    return overrides


def load_settings(
    path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> ChainSettings:
    """
    Load settings: packaged defaults, then YAML overlay, then environment.

    Args:
        path: Optional YAML overlay.  Defaults to ``$AUDIT_CHAIN_CONFIG``.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    env = dict(os.environ if environ is None else environ)

    data = load_yaml_file(_DEFAULT_SETTINGS_FILE)

    overlay = path if path is not None else env.get(CONFIG_PATH_ENV)
    if overlay:
        data.update(load_yaml_file(Path(overlay)))

    data.update(_env_overrides(env))
    return parse_settings(data)


@lru_cache(maxsize=1)
def get_settings() -> ChainSettings:
    """Process-wide settings, loaded once."""
    return load_settings()
