"""
Single-flight guards -- at most one in-progress operation per kind.

A second call of the same kind while one is running is ignored, not
queued. The check-and-set happens before the first await, so on a
single-threaded event loop it cannot race.
"""

from __future__ import annotations

from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional


class FlightState(str, Enum):
    """Whether an operation kind is currently in flight."""

    IDLE = "idle"
    RUNNING = "running"


class OperationKind(str, Enum):
    """Operation kinds that may not overlap with themselves."""

    LOG = "log"
    REFRESH_USER_TOTAL = "refresh_user_total"
    REFRESH_GLOBAL_TOTAL = "refresh_global_total"
    DECRYPT = "decrypt"


class FlightGuard:
    """Per-kind Idle/Running state with guaranteed release.

    Args:
        on_change: Called after every transition, e.g. to republish state.
    """

    def __init__(self, on_change: Optional[Callable[[], None]] = None) -> None:
        self._on_change = on_change
        self._states: dict[OperationKind, FlightState] = {
            kind: FlightState.IDLE for kind in OperationKind
        }

    def state(self, kind: OperationKind) -> FlightState:
        return self._states[kind]

    def is_running(self, *kinds: OperationKind) -> bool:
        """True if any of ``kinds`` is in flight."""
        return any(self._states[k] is FlightState.RUNNING for k in kinds)

    @contextmanager
    def acquire(self, kind: OperationKind) -> Iterator[bool]:
        """Claim ``kind`` for the duration of the block.

        Yields:
            bool: False if another operation of this kind holds it; the
            caller should return without doing anything.
        """
        if self._states[kind] is FlightState.RUNNING:
            yield False
            return

        self._states[kind] = FlightState.RUNNING
        self._changed()
        try:
            yield True
        finally:
            self._states[kind] = FlightState.IDLE
            self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def reset(self) -> None:
        """Drop every claim. Used when a session is discarded."""
        for kind in self._states:
            self._states[kind] = FlightState.IDLE
