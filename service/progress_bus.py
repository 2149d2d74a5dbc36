"""Progress value and bounded status log shared by the pipeline and its observers."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import threading
import time
from typing import Callable, Protocol, Tuple

from service.codec_engine import EngineEventKind

DEFAULT_STATUS_CAPACITY = 7


@dataclass(frozen=True)
class StatusEntry:
    """Timestamped human-readable status line."""

    label: str
    timestamp: float


class EventSource(Protocol):
    def subscribe(
        self, kind: EngineEventKind, handler: Callable[..., None]
    ) -> Callable[[], None]: ...


class ProgressBus:
    """Latest progress percentage plus a newest-first status log.

    Consumers poll ``snapshot`` or block on ``wait_for_change``.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_STATUS_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity <= 0:
            raise ValueError("status capacity must be positive")
        self.capacity = capacity
        self.clock = clock
        self.change_id = 0
        self._progress = 0
        self._entries: deque[StatusEntry] = deque(maxlen=capacity)
        self._condition = threading.Condition(threading.Lock())

    @property
    def progress(self) -> int:
        with self._condition:
            return self._progress

    def entries(self) -> Tuple[StatusEntry, ...]:
        """Return status entries, newest first."""
        with self._condition:
            return tuple(self._entries)

    def append_status(self, label: str) -> StatusEntry:
        entry = StatusEntry(label=label, timestamp=self.clock())
        with self._condition:
            self._entries.appendleft(entry)
            self.change_id += 1
            self._condition.notify_all()
        return entry

    def set_progress(self, percent: int) -> None:
        value = max(0, min(100, int(percent)))
        with self._condition:
            self._progress = value
            self.change_id += 1
            self._condition.notify_all()

    def handle_log(self, message: str) -> None:
        if message.strip():
            self.append_status(message.strip())

    def attach(self, source: EventSource) -> Callable[[], None]:
        """Subscribe to engine log and progress events; returns a detach callable."""
        unsubscribe_log = source.subscribe(EngineEventKind.LOG, self.handle_log)
        unsubscribe_progress = source.subscribe(EngineEventKind.PROGRESS, self.set_progress)

        def detach() -> None:
            unsubscribe_log()
            unsubscribe_progress()

        return detach

    def wait_for_change(self, last_change_id: int, timeout: float) -> int:
        """Wait for any change and return the latest change id."""
        with self._condition:
            self._condition.wait_for(
                lambda: self.change_id != last_change_id, timeout=timeout
            )
            return self.change_id

    def snapshot(self) -> dict[str, object]:
        with self._condition:
            return {
                "change_id": self.change_id,
                "progress": self._progress,
                "status": [
                    {"label": entry.label, "timestamp": entry.timestamp}
                    for entry in self._entries
                ],
            }
