"""Environment-backed settings and logging setup shared by the entrypoints."""

from __future__ import annotations

import dataclasses
import logging

from service.codec_engine import DEFAULT_INVOKE_TIMEOUT_SECONDS, DEFAULT_LOG_LEVEL
from service.progress_bus import DEFAULT_STATUS_CAPACITY

CONFIG_CODE = "short_video.config.invalid"

LOG_LEVEL_ENV = "SHORT_VIDEO_LOG_LEVEL"
FFMPEG_PATH_ENV = "SHORT_VIDEO_FFMPEG_PATH"
FFMPEG_LOG_LEVEL_ENV = "SHORT_VIDEO_FFMPEG_LOG_LEVEL"
FONTS_DIR_ENV = "SHORT_VIDEO_FONTS_DIR"
ENGINE_ROOT_ENV = "SHORT_VIDEO_ENGINE_ROOT"
INVOKE_TIMEOUT_ENV = "SHORT_VIDEO_INVOKE_TIMEOUT_SECONDS"
STATUS_CAPACITY_ENV = "SHORT_VIDEO_STATUS_CAPACITY"

FFMPEG_LOG_LEVELS = {
    "quiet",
    "panic",
    "fatal",
    "error",
    "warning",
    "info",
    "verbose",
    "debug",
    "trace",
}


@dataclasses.dataclass(frozen=True)
class EngineSettings:
    """Settings for the codec engine, slide fonts and status log."""

    ffmpeg_path: str = "ffmpeg"
    ffmpeg_log_level: str = DEFAULT_LOG_LEVEL
    fonts_dir: str | None = None
    engine_root: str | None = None
    invoke_timeout_seconds: float = DEFAULT_INVOKE_TIMEOUT_SECONDS
    status_capacity: int = DEFAULT_STATUS_CAPACITY

    def __post_init__(self) -> None:
        if not self.ffmpeg_path.strip():
            raise ValueError("ffmpeg-path must be non-empty")
        if self.ffmpeg_log_level not in FFMPEG_LOG_LEVELS:
            raise ValueError(f"ffmpeg log level is invalid: {self.ffmpeg_log_level}")
        if self.invoke_timeout_seconds <= 0:
            raise ValueError("invoke-timeout-seconds must be positive")
        if self.status_capacity <= 0:
            raise ValueError("status-capacity must be positive")


def parse_positive_int(raw_value: str, label: str) -> int:
    """Parse a positive integer from a string."""
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{label} must be positive")
    return value


def parse_positive_float(raw_value: str, label: str) -> float:
    """Parse a positive float from a string."""
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{label} must be a number") from exc
    if value <= 0:
        raise ValueError(f"{label} must be positive")
    return value


def read_env_int(env: dict[str, str], key: str, label: str, fallback: int) -> int:
    """Read a positive integer from the environment."""
    raw_value = env.get(key, "").strip()
    if not raw_value:
        return fallback
    return parse_positive_int(raw_value, label)


def read_env_float(
    env: dict[str, str], key: str, label: str, fallback: float
) -> float:
    """Read a positive float from the environment."""
    raw_value = env.get(key, "").strip()
    if not raw_value:
        return fallback
    return parse_positive_float(raw_value, label)


def read_env_str(env: dict[str, str], key: str) -> str | None:
    raw_value = env.get(key, "").strip()
    return raw_value or None


def load_engine_settings(
    env: dict[str, str],
    ffmpeg_path: str | None = None,
    fonts_dir: str | None = None,
) -> EngineSettings:
    """Build engine settings; explicit arguments win over the environment."""
    resolved_ffmpeg = read_env_str(env, FFMPEG_PATH_ENV) or "ffmpeg"
    if ffmpeg_path is not None:
        resolved_ffmpeg = ffmpeg_path
    resolved_fonts = read_env_str(env, FONTS_DIR_ENV)
    if fonts_dir is not None:
        resolved_fonts = fonts_dir
    log_level = (read_env_str(env, FFMPEG_LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).lower()
    return EngineSettings(
        ffmpeg_path=resolved_ffmpeg,
        ffmpeg_log_level=log_level,
        fonts_dir=resolved_fonts,
        engine_root=read_env_str(env, ENGINE_ROOT_ENV),
        invoke_timeout_seconds=read_env_float(
            env,
            INVOKE_TIMEOUT_ENV,
            "invoke-timeout-seconds",
            DEFAULT_INVOKE_TIMEOUT_SECONDS,
        ),
        status_capacity=read_env_int(
            env, STATUS_CAPACITY_ENV, "status-capacity", DEFAULT_STATUS_CAPACITY
        ),
    )


def configure_logging(env: dict[str, str]) -> None:
    """Configure logging from environment."""
    level_name = env.get(LOG_LEVEL_ENV, "INFO").strip().upper()
    level = logging.INFO
    if level_name == "DEBUG":
        level = logging.DEBUG
    elif level_name == "WARNING":
        level = logging.WARNING
    elif level_name == "ERROR":
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
