"""
Configuration Loader (``lab_config.loader``).

Responsibility
--------------
Loads a YAML ledger configuration file and parses it into a typed
``LedgerConfig``.  Unknown keys are rejected so that a misspelled
setting fails loudly instead of silently falling back to a default.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or a non-mapping document  -> ``ValueError``.
* Invalid values  -> ``ValueError`` from ``LedgerConfig.__post_init__``.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from lab_config.schema import LedgerConfig
from lab_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"

_SET_FIELDS = ("admin_roles", "standard_roles")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its mapping (empty documents give ``{}``)."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML document must be a mapping")
    return data


def parse_ledger_config(data: dict[str, Any]) -> LedgerConfig:
    """Build a ``LedgerConfig`` from a parsed mapping."""
    known = {f.name for f in dataclasses.fields(LedgerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown ledger config keys: {unknown}")

    kwargs = dict(data)
    for name in _SET_FIELDS:
        if name in kwargs:
            value = kwargs[name]
            if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
                raise ValueError(f"{name} must be a list of role names")
            kwargs[name] = frozenset(str(v) for v in value)
    if "admin_grace_days" in kwargs:
        kwargs["admin_grace_days"] = int(kwargs["admin_grace_days"])
    return LedgerConfig(**kwargs)


def load_ledger_config(path: str | Path | None = None) -> LedgerConfig:
    """
    Load ledger configuration from YAML.

    Args:
        path: Config file; the packaged defaults are used when None.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)
    config = parse_ledger_config(data)
    logger.info(
        "ledger_config_loaded",
        extra={"path": str(config_path), "checksum": compute_checksum(data)},
    )
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a config mapping, for change detection."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
