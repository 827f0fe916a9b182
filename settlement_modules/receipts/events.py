"""Change notification shared by the selection set and the credit-note tracker."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class ChangeEvent:
    """Something in the session's editable state changed."""
    source: str  # "selection" | "credit_notes"
    action: str  # "select", "deselect", "edit", "attach", ...
    keys: tuple[str, ...] = ()


ChangeListener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Synchronous fan-out to subscribed listeners, in subscription order."""

    _source: str = "unknown"

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, action: str, *keys: str) -> None:
        event = ChangeEvent(source=self._source, action=action, keys=tuple(keys))
        for listener in list(self._listeners):
            listener(event)
