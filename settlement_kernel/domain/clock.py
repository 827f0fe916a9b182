"""
Clock -- Injectable time abstraction.

Responsibility:
    Lets the debounced searches measure quiet periods without calling
    ``datetime.now()`` directly, so tests can drive time explicitly.

Architecture position:
    Kernel > Domain.  SystemClock is the one sanctioned I/O boundary for
    time; everything else receives a Clock via constructor injection.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time."""
        ...

    def elapsed_ms(self, since: datetime) -> float:
        """Milliseconds between ``since`` and now."""
        return (self.now() - since).total_seconds() * 1000


class SystemClock(Clock):
    """Production clock that returns actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value on repeated calls until
          ``advance()`` or ``set_time()`` is called.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )
        self._advance_seconds = 0.0

    def now(self) -> datetime:
        return self._fixed_time + timedelta(seconds=self._advance_seconds)

    def set_time(self, time: datetime) -> None:
        """Set the clock to a specific time."""
        self._fixed_time = time
        self._advance_seconds = 0.0

    def advance(self, seconds: float = 1) -> None:
        """Advance the clock by the specified seconds (fractions allowed)."""
        self._advance_seconds += seconds

    def advance_ms(self, milliseconds: float) -> None:
        """Advance the clock by the specified milliseconds."""
        self.advance(milliseconds / 1000)
