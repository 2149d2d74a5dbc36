"""Unit tests for environment-backed settings."""

from __future__ import annotations

import pytest

from service.settings import (
    FFMPEG_LOG_LEVEL_ENV,
    FFMPEG_PATH_ENV,
    FONTS_DIR_ENV,
    INVOKE_TIMEOUT_ENV,
    STATUS_CAPACITY_ENV,
    EngineSettings,
    load_engine_settings,
)


def test_defaults_without_environment() -> None:
    assert load_engine_settings({}) == EngineSettings()


def test_environment_values_are_applied() -> None:
    settings = load_engine_settings(
        {
            FFMPEG_PATH_ENV: "/opt/ffmpeg/bin/ffmpeg",
            FFMPEG_LOG_LEVEL_ENV: "ERROR",
            FONTS_DIR_ENV: "fonts",
            INVOKE_TIMEOUT_ENV: "30",
            STATUS_CAPACITY_ENV: "12",
        }
    )

    assert settings.ffmpeg_path == "/opt/ffmpeg/bin/ffmpeg"
    assert settings.ffmpeg_log_level == "error"
    assert settings.fonts_dir == "fonts"
    assert settings.invoke_timeout_seconds == 30.0
    assert settings.status_capacity == 12


def test_arguments_override_environment() -> None:
    settings = load_engine_settings(
        {FFMPEG_PATH_ENV: "/usr/bin/ffmpeg", FONTS_DIR_ENV: "fonts"},
        ffmpeg_path="ffmpeg-7",
        fonts_dir="brand-fonts",
    )

    assert settings.ffmpeg_path == "ffmpeg-7"
    assert settings.fonts_dir == "brand-fonts"


@pytest.mark.parametrize(
    "env",
    [
        {STATUS_CAPACITY_ENV: "0"},
        {STATUS_CAPACITY_ENV: "many"},
        {INVOKE_TIMEOUT_ENV: "-1"},
        {FFMPEG_LOG_LEVEL_ENV: "chatty"},
    ],
)
def test_invalid_environment_values_raise(env: dict[str, str]) -> None:
    with pytest.raises(ValueError):
        load_engine_settings(env)
