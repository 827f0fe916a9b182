"""
settlement_config -- single public entrypoint for settlement settings.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    YAML loading is internal and never exposed to callers.

Architecture position:
    Configuration.  Imports the kernel for logging only; modules receive a
    ``SettlementSettings`` instance by injection.

Failure modes:
    - ``FileNotFoundError`` -- the requested settings file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.
    - ``yaml.YAMLError`` -- malformed YAML.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``SETTLEMENT_CONFIG_TRACE`` log entry with the checksum of the loaded
    set.
"""

from __future__ import annotations

from pathlib import Path

from settlement_config.loader import load_yaml_file, parse_settings
from settlement_config.schema import SearchSettings, SettlementSettings
from settlement_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> SettlementSettings:
    """The ONLY public configuration entrypoint.

    Args:
        path: Override settings file.  Defaults to
            settlement_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the settings file is missing.
        ValueError: If validation fails.
    """
    settings_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    settings = parse_settings(load_yaml_file(settings_path))

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_path": str(settings_path),
            "checksum": settings.checksum,
            "currency": settings.currency,
        },
    )
    return settings


__all__ = [
    "SearchSettings",
    "SettlementSettings",
    "get_active_config",
]
