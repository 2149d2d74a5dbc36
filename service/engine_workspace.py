"""Best-effort lifecycle management for the engine's private files."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from domain.render_errors import ShortRenderError
from service.codec_engine import PSEUDO_ENTRIES, EngineEntry

LOGGER = logging.getLogger("short_video.engine_workspace")

CLEANUP_CODE = "short_video.cleanup.skipped"


class WorkspaceEngine(Protocol):
    """The engine file operations the workspace relies on."""

    def list_dir(self, path: str = "/") -> list[EngineEntry]: ...

    def delete_file(self, name: str) -> None: ...


class EngineWorkspace:
    """Keep the engine filesystem limited to what the current stage expects.

    Every operation is best effort: a file that cannot be listed or deleted
    is logged and skipped so one bad entry never aborts a sweep.
    """

    def __init__(self, engine: WorkspaceEngine) -> None:
        self.engine = engine

    def sweep(self) -> int:
        """Delete every regular file in the engine root; return the count."""
        try:
            entries = self.engine.list_dir("/")
        except (ShortRenderError, OSError) as exc:
            LOGGER.warning("%s: listing failed: %s", CLEANUP_CODE, exc)
            return 0
        names = [
            entry.name
            for entry in entries
            if not entry.is_dir and entry.name not in PSEUDO_ENTRIES
        ]
        return self.discard(names)

    def discard(self, names: Iterable[str]) -> int:
        """Delete the named files; missing or locked files are skipped."""
        deleted = 0
        for name in names:
            try:
                self.engine.delete_file(name)
            except (ShortRenderError, OSError) as exc:
                LOGGER.warning("%s: %s not deleted: %s", CLEANUP_CODE, name, exc)
                continue
            deleted += 1
        return deleted
