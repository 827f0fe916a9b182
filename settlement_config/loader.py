"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads a settlement settings YAML file and parses it into the frozen
``SettlementSettings`` dataclass.  Callers use
``settlement_config.get_active_config()``; this module is the internal
step behind it.

Invariants enforced
-------------------
* Unknown top-level keys are rejected so a typo never silently falls back
  to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values or unknown keys  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import SettlementSettings

_KNOWN_KEYS = frozenset({
    "currency",
    "credit_note_search",
    "customer_search",
    "default_first_bank_account",
    "log_level",
})


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
        raise ValueError(f"Settings file must contain a mapping: {path}")
    return data


def parse_settings(data: dict[str, Any]) -> SettlementSettings:
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"Unknown settings keys: {', '.join(unknown)}")
    return SettlementSettings.from_dict(data, checksum=compute_checksum(data))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
