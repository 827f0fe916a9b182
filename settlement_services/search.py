"""
Debounced, staleness-aware search (``settlement_services.search``).

Responsibility
--------------
Turns a stream of keystrokes into at most one query per quiet period and
makes sure only the most recently *issued* query can update the visible
results, whatever order the responses come back in.

Architecture position
---------------------
**Services layer** -- owns no I/O of its own; the fetch function is
injected (normally a bound gateway method).  Time comes from the kernel
``Clock`` so tests drive it deterministically.

Invariants enforced
-------------------
* Ticket sequence numbers are strictly increasing per sequencer.
* ``accept`` applies results only for the latest issued ticket; older
  responses are dropped.
* Terms shorter than ``min_term_length`` never reach the fetch function.

Failure modes
-------------
* ``ExternalServiceError`` from the fetch function degrades to an empty
  result list and is logged at WARNING.  Nothing else is caught.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, TypeVar

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import ExternalServiceError
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.search")

T = TypeVar("T")


@dataclass(frozen=True)
class SearchTicket:
    """One issued query."""

    seq: int
    term: str


class SearchSequencer:
    """Monotonic request numbering; the last-fired query wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def issue(self, term: str) -> SearchTicket:
        with self._lock:
            self._latest += 1
            return SearchTicket(seq=self._latest, term=term)

    def is_current(self, ticket: SearchTicket) -> bool:
        return ticket.seq == self._latest

    def accept(self, ticket: SearchTicket, results: Sequence[object]) -> bool:
        """True if ``results`` for ``ticket`` should be applied."""
        if self.is_current(ticket):
            return True
        logger.debug(
            "search_response_discarded",
            extra={"seq": ticket.seq, "latest_seq": self._latest, "result_count": len(results)},
        )
        return False


class DebouncedSearch(Generic[T]):
    """
    Debounced search box state.

    Contract:
        update_term() records input; poll() decides when to fire; run()
        executes a ticket and applies the results if still current.
    """

    def __init__(
        self,
        fetch: Callable[[str], list[T]],
        *,
        quiet_period_ms: int,
        min_term_length: int = 1,
        clock: Clock | None = None,
        name: str = "search",
    ) -> None:
        if quiet_period_ms < 0:
            raise ValueError("quiet_period_ms cannot be negative")
        if min_term_length < 1:
            raise ValueError("min_term_length must be at least 1")
        self._fetch = fetch
        self._quiet_period_ms = quiet_period_ms
        self._min_term_length = min_term_length
        self._clock = clock or SystemClock()
        self._name = name
        self._sequencer = SearchSequencer()
        self._term = ""
        self._last_input_at: datetime | None = None
        self._pending = False
        self._results: list[T] = []

    @property
    def term(self) -> str:
        return self._term

    @property
    def results(self) -> list[T]:
        return list(self._results)

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def sequencer(self) -> SearchSequencer:
        return self._sequencer

    def update_term(self, term: str) -> None:
        self._term = (term or "").strip()
        self._last_input_at = self._clock.now()
        self._pending = True

    def poll(self) -> SearchTicket | None:
        """
        Issue a ticket once the quiet period has passed since the last input.

        Returns None while still inside the window, when nothing is pending,
        or when the term is too short (results are cleared in that case).
        """
        if not self._pending or self._last_input_at is None:
            return None
        if self._clock.elapsed_ms(self._last_input_at) < self._quiet_period_ms:
            return None

        self._pending = False
        if len(self._term) < self._min_term_length:
            # Invalidate anything still in flight for the old term.
            self._sequencer.issue(self._term)
            self._results = []
            return None
        return self._sequencer.issue(self._term)

    def run(self, ticket: SearchTicket) -> bool:
        """Fetch for ``ticket``.  Returns True if the results were applied."""
        try:
            results = list(self._fetch(ticket.term))
        except ExternalServiceError as e:
            logger.warning(
                "search_failed",
                extra={"search": self._name, "seq": ticket.seq, "error_code": e.code, "detail": e.detail},
            )
            results = []

        if not self._sequencer.accept(ticket, results):
            return False
        self._results = results
        logger.debug(
            "search_results_applied",
            extra={"search": self._name, "seq": ticket.seq, "result_count": len(results)},
        )
        return True

    def flush(self) -> bool:
        """poll() and run() in one step; used where no timer loop exists."""
        ticket = self.poll()
        if ticket is None:
            return False
        return self.run(ticket)
