"""Adapter around the ffmpeg binary and its private working directory."""

from __future__ import annotations

from concurrent import futures
from dataclasses import dataclass
from enum import Enum
import logging
import os
import re
import shutil
import subprocess
import tempfile
import threading
from typing import Callable, Sequence

from domain.render_errors import (
    ENGINE_NOT_LOADED_CODE,
    EncoderLoadError,
    EngineFileError,
)

LOGGER = logging.getLogger("short_video.codec_engine")

REQUIRED_ENCODER = "libx264"
DEFAULT_LOG_LEVEL = "warning"
DEFAULT_INVOKE_TIMEOUT_SECONDS = 600.0
ROOT_PATHS = ("", "/", ".")
PSEUDO_ENTRIES = (".", "..")
TIME_US_PATTERN = re.compile(r"^out_time_us=(\d+)$")
TIME_MS_PATTERN = re.compile(r"^out_time_ms=(\d+)$")
TIME_STR_PATTERN = re.compile(r"^out_time=(\d+):(\d+):(\d+)\.(\d+)$")
PROGRESS_PATTERN = re.compile(r"^progress=(\w+)$")


class EngineEventKind(str, Enum):
    """Event kinds an engine subscriber can listen to."""

    LOG = "log"
    PROGRESS = "progress"


@dataclass(frozen=True)
class EngineHandle:
    """A loaded engine: binary, version line and private root directory."""

    ffmpeg_path: str
    version: str
    root_dir: str


@dataclass(frozen=True)
class EngineEntry:
    """Directory entry inside the engine workspace."""

    name: str
    is_dir: bool


def normalize_progress(
    ratio: float | None = None, percent: float | None = None
) -> int:
    """Normalize a ratio (0-1) or percent (0-100) into a clamped integer percent."""
    if ratio is not None:
        value = ratio * 100.0
    elif percent is not None:
        value = percent
    else:
        value = 0.0
    return max(0, min(100, int(round(value))))


def parse_progress_seconds(line: str) -> float | None:
    """Parse the current output time from an ffmpeg ``-progress`` line."""
    match = TIME_US_PATTERN.match(line)
    if match:
        return int(match.group(1)) / 1_000_000.0
    match = TIME_MS_PATTERN.match(line)
    if match:
        # ffmpeg reports out_time_ms in microseconds as well.
        return int(match.group(1)) / 1_000_000.0
    match = TIME_STR_PATTERN.match(line)
    if match:
        hours, minutes, seconds = (int(part) for part in match.groups()[:3])
        micros = int(match.group(4).ljust(6, "0")[:6])
        return hours * 3600 + minutes * 60 + seconds + micros / 1_000_000.0
    return None


class CodecEngine:
    """Sandboxed ffmpeg engine with a private file area.

    The adapter is not safe for concurrent jobs: callers must serialise
    renders that share an instance.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        log_level: str = DEFAULT_LOG_LEVEL,
        root_parent: str | None = None,
        invoke_timeout_seconds: float = DEFAULT_INVOKE_TIMEOUT_SECONDS,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.log_level = log_level
        self.root_parent = root_parent
        self.invoke_timeout_seconds = invoke_timeout_seconds
        self.load_count = 0
        self._handle: EngineHandle | None = None
        self._loading: futures.Future[EngineHandle] | None = None
        self._lock = threading.Lock()
        self._subscribers: dict[EngineEventKind, list[Callable[..., None]]] = {
            EngineEventKind.LOG: [],
            EngineEventKind.PROGRESS: [],
        }

    def __enter__(self) -> "CodecEngine":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._handle is not None

    def ensure_loaded(self) -> EngineHandle:
        """Load the engine once; concurrent callers share a single load."""
        with self._lock:
            if self._handle is not None:
                return self._handle
            pending = self._loading
            if pending is None:
                pending = futures.Future()
                self._loading = pending
                owner = True
            else:
                owner = False
        if not owner:
            return pending.result()

        try:
            handle = self.probe_engine()
        except EncoderLoadError as exc:
            with self._lock:
                self._loading = None
            pending.set_exception(exc)
            raise
        except Exception as exc:
            error = EncoderLoadError(f"engine load failed: {exc}")
            with self._lock:
                self._loading = None
            pending.set_exception(error)
            raise error from exc
        with self._lock:
            self._handle = handle
            self._loading = None
        pending.set_result(handle)
        LOGGER.info(
            "short_video.engine.loaded path=%s root=%s", handle.ffmpeg_path, handle.root_dir
        )
        return handle

    def probe_engine(self) -> EngineHandle:
        """Resolve ffmpeg, check its encoders and create the private root."""
        self.load_count += 1
        resolved = shutil.which(self.ffmpeg_path)
        if not resolved:
            raise EncoderLoadError(f"ffmpeg not found: {self.ffmpeg_path}")
        try:
            version_result = subprocess.run(
                [resolved, "-version"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=True,
            )
            encoders_result = subprocess.run(
                [resolved, "-hide_banner", "-encoders"],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise EncoderLoadError("ffmpeg exists but could not be executed") from exc

        version_line = version_result.stdout.splitlines()[0] if version_result.stdout else ""
        if "ffmpeg version" not in version_line.lower():
            raise EncoderLoadError("ffmpeg version output is unexpected")
        if REQUIRED_ENCODER not in encoders_result.stdout:
            raise EncoderLoadError(f"ffmpeg does not support {REQUIRED_ENCODER} encoder")

        try:
            root_dir = tempfile.mkdtemp(prefix="short-video-engine-", dir=self.root_parent)
        except OSError as exc:
            raise EncoderLoadError(f"engine workspace could not be created: {exc}") from exc
        return EngineHandle(ffmpeg_path=resolved, version=version_line, root_dir=root_dir)

    def require_loaded(self) -> EngineHandle:
        with self._lock:
            handle = self._handle
        if handle is None:
            raise EngineFileError("engine is not loaded", code=ENGINE_NOT_LOADED_CODE)
        return handle

    def resolve_path(self, name: str) -> str:
        """Map a workspace file name to its path on disk."""
        handle = self.require_loaded()
        base_name = name.lstrip("/")
        if (
            not base_name
            or base_name in PSEUDO_ENTRIES
            or "/" in base_name
            or "\\" in base_name
        ):
            raise EngineFileError(f"invalid engine file name: {name!r}")
        return os.path.join(handle.root_dir, base_name)

    def write_file(self, name: str, data: bytes) -> None:
        path = self.resolve_path(name)
        try:
            with open(path, "wb") as file_handle:
                file_handle.write(data)
        except OSError as exc:
            raise EngineFileError(f"write failed for {name}: {exc}") from exc

    def read_file(self, name: str) -> bytes:
        path = self.resolve_path(name)
        try:
            with open(path, "rb") as file_handle:
                return file_handle.read()
        except OSError as exc:
            raise EngineFileError(f"read failed for {name}: {exc}") from exc

    def delete_file(self, name: str) -> None:
        """Delete a workspace file; a missing file is not an error."""
        path = self.resolve_path(name)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise EngineFileError(f"delete failed for {name}: {exc}") from exc

    def list_dir(self, path: str = "/") -> list[EngineEntry]:
        """List the workspace root, including the ``.`` and ``..`` entries."""
        handle = self.require_loaded()
        if path not in ROOT_PATHS:
            raise EngineFileError(f"only the workspace root can be listed: {path!r}")
        entries = [EngineEntry(name=name, is_dir=True) for name in PSEUDO_ENTRIES]
        try:
            with os.scandir(handle.root_dir) as iterator:
                for entry in sorted(iterator, key=lambda item: item.name):
                    entries.append(
                        EngineEntry(name=entry.name, is_dir=entry.is_dir(follow_symlinks=False))
                    )
        except OSError as exc:
            raise EngineFileError(f"listing failed: {exc}") from exc
        return entries

    def subscribe(
        self, kind: EngineEventKind, handler: Callable[..., None]
    ) -> Callable[[], None]:
        """Register a handler; log handlers get a line, progress handlers an int."""
        with self._lock:
            self._subscribers[kind].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers[kind]
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def dispatch(self, kind: EngineEventKind, payload: object) -> None:
        with self._lock:
            handlers = list(self._subscribers[kind])
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:
                LOGGER.warning(
                    "short_video.engine.subscriber_failed kind=%s: %s", kind.value, exc
                )

    def emit_log(self, message: str) -> None:
        self.dispatch(EngineEventKind.LOG, message)

    def emit_progress(
        self, ratio: float | None = None, percent: float | None = None
    ) -> int:
        value = normalize_progress(ratio=ratio, percent=percent)
        self.dispatch(EngineEventKind.PROGRESS, value)
        return value

    def invoke(self, argv: Sequence[str], duration_seconds: float | None = None) -> bool:
        """Run ffmpeg with ``argv`` in the workspace; return whether it succeeded."""
        handle = self.require_loaded()
        command = [
            handle.ffmpeg_path,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-loglevel",
            self.log_level,
            "-progress",
            "pipe:1",
            "-nostats",
            *argv,
        ]
        LOGGER.debug("short_video.engine.invoke: %s", " ".join(command))
        try:
            process = subprocess.Popen(
                command,
                cwd=handle.root_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            LOGGER.error("short_video.engine.exec_failed: %s", exc)
            self.emit_log(f"ffmpeg could not start: {exc}")
            return False

        stderr_tail: list[str] = []

        def pump_stderr() -> None:
            assert process.stderr is not None
            for raw_line in process.stderr:
                line = raw_line.rstrip()
                if not line:
                    continue
                stderr_tail.append(line)
                del stderr_tail[:-20]
                self.emit_log(line)

        stderr_thread = threading.Thread(target=pump_stderr, daemon=True)
        stderr_thread.start()
        timed_out = threading.Event()

        def kill_on_timeout() -> None:
            timed_out.set()
            process.kill()

        timer = threading.Timer(self.invoke_timeout_seconds, kill_on_timeout)
        timer.daemon = True
        timer.start()
        try:
            assert process.stdout is not None
            for raw_line in process.stdout:
                line = raw_line.strip()
                progress_match = PROGRESS_PATTERN.match(line)
                if progress_match and progress_match.group(1) == "end":
                    self.emit_progress(ratio=1.0)
                    continue
                current_seconds = parse_progress_seconds(line)
                if current_seconds is not None and duration_seconds:
                    self.emit_progress(ratio=current_seconds / duration_seconds)
            return_code = process.wait()
        finally:
            timer.cancel()
            stderr_thread.join(timeout=5)

        if timed_out.is_set():
            LOGGER.error(
                "short_video.engine.timeout: ffmpeg exceeded %ss", self.invoke_timeout_seconds
            )
            self.emit_log("ffmpeg timed out")
            return False
        if return_code != 0:
            LOGGER.error(
                "short_video.engine.process_failed: exit code %s. %s",
                return_code,
                " | ".join(stderr_tail[-5:]),
            )
            return False
        return True

    def close(self) -> None:
        """Remove the private workspace; the engine can be loaded again."""
        with self._lock:
            handle = self._handle
            self._handle = None
        if handle is None:
            return
        shutil.rmtree(handle.root_dir, ignore_errors=True)
        LOGGER.info("short_video.engine.closed root=%s", handle.root_dir)
