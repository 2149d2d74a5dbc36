"""Revocable in-memory handle for the rendered video."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
import uuid
from typing import Callable

LOGGER = logging.getLogger("short_video.output_asset")

OUTPUT_FILENAME = "short.mp4"
OUTPUT_CONTENT_TYPE = "video/mp4"


@dataclass(frozen=True)
class OutputAsset:
    """Encoded video bytes addressed by a handle."""

    handle: str
    filename: str
    content_type: str
    payload: bytes
    created_at: float

    @property
    def size(self) -> int:
        return len(self.payload)


class OutputSlot:
    """Holds at most one live output asset; publishing revokes the previous one."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.clock = clock
        self.id_factory = id_factory
        self._current: OutputAsset | None = None
        self._lock = threading.Lock()

    @property
    def current(self) -> OutputAsset | None:
        with self._lock:
            return self._current

    def publish(
        self,
        payload: bytes,
        filename: str = OUTPUT_FILENAME,
        content_type: str = OUTPUT_CONTENT_TYPE,
    ) -> OutputAsset:
        asset = OutputAsset(
            handle=self.id_factory(),
            filename=filename,
            content_type=content_type,
            payload=payload,
            created_at=self.clock(),
        )
        with self._lock:
            previous = self._current
            self._current = asset
        if previous is not None:
            LOGGER.info("short_video.output.revoked handle=%s", previous.handle)
        LOGGER.info("short_video.output.published handle=%s bytes=%s", asset.handle, asset.size)
        return asset

    def revoke(self, handle: str | None = None) -> bool:
        """Revoke the live asset (only if it matches ``handle`` when given)."""
        with self._lock:
            current = self._current
            if current is None:
                return False
            if handle is not None and current.handle != handle:
                return False
            self._current = None
        LOGGER.info("short_video.output.revoked handle=%s", current.handle)
        return True

    def resolve(self, handle: str) -> OutputAsset | None:
        """Return the asset for a live handle, or ``None`` once revoked."""
        with self._lock:
            current = self._current
        if current is None or current.handle != handle:
            return None
        return current
