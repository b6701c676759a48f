"""In-memory view-state: the latest snapshot of each backend resource"""

from dataclasses import dataclass, replace
from typing import Callable, List, Tuple

from loguru import logger

from .models import Job, WorkerStats, DLQJob

RESOURCES = ("jobs", "workers", "dlq", "is_leader")


@dataclass(frozen=True)
class ViewState:
    jobs: Tuple[Job, ...] = ()
    workers: Tuple[WorkerStats, ...] = ()
    dlq: Tuple[DLQJob, ...] = ()
    is_leader: bool = False


class ViewStore:
    """Holds the current ViewState.

    Each resource field is overwritten as a whole; elements are never
    merged. Readers get an immutable snapshot, so a render always sees one
    fetch's worth of data per resource.
    """

    def __init__(self, initial: ViewState = None):
        self._state = initial or ViewState()
        self._subscribers: List[Callable[[ViewState], None]] = []

    def snapshot(self) -> ViewState:
        return self._state

    def replace(self, resource: str, value) -> ViewState:
        """Swap in a new value for one resource and notify subscribers"""
        if resource not in RESOURCES:
            raise KeyError(f"Unknown resource '{resource}'")
        if resource != "is_leader":
            value = tuple(value)
        self._state = replace(self._state, **{resource: value})
        for callback in list(self._subscribers):
            try:
                callback(self._state)
            except Exception as e:
                logger.exception(f"View-state subscriber failed: {e}")
        return self._state

    def subscribe(self, callback: Callable[[ViewState], None]) -> Callable[[], None]:
        """Register a change callback; returns a function that unregisters it"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
