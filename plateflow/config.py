"""
Configuration for plateflow.

Settings come from three layers, later ones winning: the defaults on
:class:`Settings`, an optional YAML file, and environment variables
(optionally read from a ``.env`` file through ``python-dotenv``).  The
API credentials in particular are expected to come from the
environment rather than from a committed YAML file.

Example YAML::

    max_workers: 4
    source_timeout: 60
    priorities:
      owner: [rendered, owner_lookup, api, default]
      fines: [fines]
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml  # type: ignore
from dotenv import load_dotenv

from .errors import ConfigError
from .normalize.schema import GROUPS

logger = logging.getLogger(__name__)

SOURCE_NAMES = ("rendered", "owner_lookup", "direct", "fines", "api", "default")

DEFAULT_PRIORITIES: Dict[str, List[str]] = {
    "owner": ["rendered", "api", "default"],
    "vehicle": ["rendered", "api"],
    "insurance": ["rendered", "api"],
    "technical_inspection": ["rendered", "api"],
    "fines": ["fines"],
    "circulation_permit": ["rendered"],
    "traffic_restriction": ["rendered"],
    "public_transport": ["rendered"],
    "toll": ["api"],
}

ENV_OVERRIDES = {
    "PLATEFLOW_API_URL": "api_url",
    "PLATEFLOW_API_KEY": "api_key",
    "PLATEFLOW_HEADLESS": "headless",
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}

# YAML may hand these over as strings ("60").
_NUMERIC_FIELDS = {
    "max_workers": int,
    "source_timeout": float,
    "request_timeout": float,
    "render_timeout": float,
    "batch_pause": float,
    "api_min_interval": float,
}


def _default_priorities() -> Dict[str, List[str]]:
    return {group: list(chain) for group, chain in DEFAULT_PRIORITIES.items()}


@dataclass
class Settings:
    """Runtime settings for sources, the resolution policy and batches."""

    priorities: Dict[str, List[str]] = field(default_factory=_default_priorities)
    max_workers: int = 4
    source_timeout: float = 60.0
    request_timeout: float = 30.0
    render_timeout: float = 30.0
    batch_pause: float = 2.0
    api_min_interval: float = 1.0
    stop_on_not_found: bool = False
    unknown_owner_label: str = "Propietario no disponible"
    headless: bool = True
    results_url: str = "https://www.patentechile.com/"
    fines_url: str = "https://www.patentechile.com/resultado-multas"
    owner_lookup_url: str = "https://www.volanteomaleta.com/"
    api_url: Optional[str] = None
    api_key: Optional[str] = None

    def __post_init__(self) -> None:
        for name, kind in _NUMERIC_FIELDS.items():
            value = getattr(self, name)
            if isinstance(value, kind) and not isinstance(value, bool):
                continue
            try:
                if isinstance(value, bool):
                    raise TypeError(name)
                setattr(self, name, kind(value))
            except (TypeError, ValueError):
                raise ConfigError(f"{name} must be a number, got {value!r}") from None
        validate_priorities(self.priorities)
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.source_timeout <= 0:
            raise ConfigError("source_timeout must be positive")


def validate_priorities(priorities: Mapping[str, Any]) -> None:
    """Raise :class:`ConfigError` for unknown groups or source names."""
    for group, chain in priorities.items():
        if group not in GROUPS:
            raise ConfigError(f"unknown field group in priorities: {group!r}")
        if not isinstance(chain, (list, tuple)):
            raise ConfigError(f"priorities for {group} must be a list of source names")
        for name in chain:
            if name not in SOURCE_NAMES:
                raise ConfigError(f"unknown source {name!r} in priorities for {group}")


def _coerce(name: str, raw: Any) -> Any:
    if name == "headless" and isinstance(raw, str):
        return raw.strip().lower() in _TRUE_STRINGS
    return raw


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``path`` (YAML) and the environment.

    ``priorities`` in the file are merged group by group over the
    defaults, so a file only needs to list the chains it changes.
    """
    values: Dict[str, Any] = {}
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"config file not found: {path}")
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"{path} must contain a mapping")
        known = {f.name for f in fields(Settings)}
        unknown = set(loaded) - known
        if unknown:
            raise ConfigError(f"unknown settings in {path}: {', '.join(sorted(unknown))}")
        values.update(loaded)
        logger.debug("loaded settings from %s", path)

    if env is None:
        load_dotenv()
        env = os.environ
    for variable, name in ENV_OVERRIDES.items():
        if env.get(variable):
            values[name] = _coerce(name, env[variable])

    if "priorities" in values:
        overrides = values["priorities"] or {}
        if not isinstance(overrides, dict):
            raise ConfigError("priorities must be a mapping of group to source list")
        validate_priorities(overrides)
        merged = _default_priorities()
        merged.update({group: list(chain) for group, chain in overrides.items()})
        values["priorities"] = merged
    return Settings(**values)
