"""
SettlementSettings schema.

Typed, frozen view of a settlement configuration set.  YAML is parsed into
these types by the loader; nothing downstream reads YAML or raw dicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class SearchSettings:
    """Debounce and paging for one search box."""

    quiet_period_ms: int
    min_term_length: int
    page_size: int = 20

    def __post_init__(self) -> None:
        if self.quiet_period_ms < 0:
            raise ValueError(f"quiet_period_ms cannot be negative: {self.quiet_period_ms}")
        if self.min_term_length < 1:
            raise ValueError(f"min_term_length must be at least 1: {self.min_term_length}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be at least 1: {self.page_size}")

    @classmethod
    def from_dict(cls, data: dict[str, Any], defaults: SearchSettings) -> SearchSettings:
        return cls(
            quiet_period_ms=int(data.get("quiet_period_ms", defaults.quiet_period_ms)),
            min_term_length=int(data.get("min_term_length", defaults.min_term_length)),
            page_size=int(data.get("page_size", defaults.page_size)),
        )


@dataclass(frozen=True)
class SettlementSettings:
    """Runtime settings for payment sessions."""

    currency: str = "AED"
    credit_note_search: SearchSettings = field(
        default_factory=lambda: SearchSettings(quiet_period_ms=500, min_term_length=1),
    )
    customer_search: SearchSettings = field(
        default_factory=lambda: SearchSettings(quiet_period_ms=300, min_term_length=2),
    )
    default_first_bank_account: bool = True
    log_level: str = "INFO"
    checksum: str = ""

    def __post_init__(self) -> None:
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code: {self.currency!r}")
        object.__setattr__(self, "currency", self.currency.upper())
        level = str(self.log_level).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level!r}")
        object.__setattr__(self, "log_level", level)

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level)

    @classmethod
    def with_defaults(cls) -> SettlementSettings:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any], checksum: str = "") -> SettlementSettings:
        defaults = cls()
        return cls(
            currency=str(data.get("currency", defaults.currency)),
            credit_note_search=SearchSettings.from_dict(
                data.get("credit_note_search") or {}, defaults.credit_note_search,
            ),
            customer_search=SearchSettings.from_dict(
                data.get("customer_search") or {}, defaults.customer_search,
            ),
            default_first_bank_account=bool(
                data.get("default_first_bank_account", defaults.default_first_bank_account)
            ),
            log_level=str(data.get("log_level", defaults.log_level)),
            checksum=checksum,
        )
