#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "numpy",
#   "pillow>=10.1"
# ]
# ///
"""Render a storyboard plan into a 1080x1920 silent MP4 short."""

from __future__ import annotations

import argparse
from dataclasses import dataclass
import json
import logging
import os
import sys
import threading
from typing import Sequence

from domain.render_errors import ShortRenderError
from domain.short_plan import (
    PLAN_FILE_CODE,
    Plan,
    PlanValidationError,
    ShortStyle,
    parse_plan_payload,
    parse_short_style,
    serialize_plan,
)
from service.encode_orchestrator import create_engine, create_orchestrator
from service.plan_source import generate_short_plan
from service.progress_bus import ProgressBus, StatusEntry
from service.settings import CONFIG_CODE, configure_logging, load_engine_settings

LOGGER = logging.getLogger("render_short_video")

INVALID_ARGUMENTS_CODE = "short_video.input.invalid_arguments"
OUTPUT_WRITE_CODE = "short_video.output.write_failed"
DEFAULT_OUTPUT_FILE = "short.mp4"
STATUS_POLL_SECONDS = 0.5


@dataclass(frozen=True)
class RenderRequest:
    """Parsed CLI request."""

    topic: str | None
    style: ShortStyle
    plan_file: str | None
    output_video_file: str
    fonts_dir: str | None
    ffmpeg_path: str | None
    emit_plan: bool


def parse_args(argv: Sequence[str]) -> RenderRequest:
    """Parse CLI arguments into a RenderRequest."""
    parser = argparse.ArgumentParser(prog="render_short_video.py", add_help=True)
    parser.add_argument("--topic", default=None)
    parser.add_argument("--style", default=None)
    parser.add_argument("--plan-file", default=None)
    parser.add_argument("--output-video-file", default=DEFAULT_OUTPUT_FILE)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--ffmpeg-path", default=None)
    parser.add_argument("--emit-plan", action="store_true")
    parsed = parser.parse_args(list(argv))

    if parsed.plan_file is not None:
        if parsed.topic is not None or parsed.style is not None:
            raise PlanValidationError(
                INVALID_ARGUMENTS_CODE, "plan-file cannot be combined with topic or style"
            )
    elif parsed.topic is None:
        raise PlanValidationError(INVALID_ARGUMENTS_CODE, "topic or plan-file is required")
    if not parsed.output_video_file.lower().endswith(".mp4"):
        raise PlanValidationError(
            INVALID_ARGUMENTS_CODE, "output-video-file must end with .mp4"
        )
    style = (
        parse_short_style(parsed.style) if parsed.style is not None else ShortStyle.EDUCATIONAL
    )
    return RenderRequest(
        topic=parsed.topic,
        style=style,
        plan_file=parsed.plan_file,
        output_video_file=parsed.output_video_file,
        fonts_dir=parsed.fonts_dir,
        ffmpeg_path=parsed.ffmpeg_path,
        emit_plan=parsed.emit_plan,
    )


def read_plan_file(file_path: str) -> Plan:
    """Read and validate a plan JSON file."""
    try:
        with open(file_path, "rb") as file_handle:
            file_bytes = file_handle.read()
    except OSError as exc:
        raise PlanValidationError(
            PLAN_FILE_CODE, f"plan file could not be read: {file_path}"
        ) from exc
    try:
        payload = json.loads(file_bytes.decode("utf-8", errors="strict"))
    except UnicodeDecodeError as exc:
        raise PlanValidationError(
            PLAN_FILE_CODE, f"plan file is not valid UTF-8 at byte offset {exc.start}"
        ) from exc
    except json.JSONDecodeError as exc:
        raise PlanValidationError(
            PLAN_FILE_CODE, f"plan file is not valid JSON: {exc.msg} (line {exc.lineno})"
        ) from exc
    return parse_plan_payload(payload)


def resolve_plan(request: RenderRequest) -> Plan:
    if request.plan_file is not None:
        return read_plan_file(request.plan_file)
    return generate_short_plan(request.topic or "", request.style)


def emit_plan(plan: Plan) -> None:
    """Print the plan JSON to stdout."""
    sys.stdout.write(json.dumps(serialize_plan(plan), indent=2))
    sys.stdout.write("\n")


def follow_status(bus: ProgressBus, stop_event: threading.Event) -> None:
    """Log status lines in the order they were appended until stopped."""
    last_seen: StatusEntry | None = None
    change_id = bus.change_id
    while True:
        change_id = bus.wait_for_change(change_id, timeout=STATUS_POLL_SECONDS)
        entries = bus.entries()
        fresh: list[StatusEntry] = []
        for entry in entries:
            if entry is last_seen:
                break
            fresh.append(entry)
        if entries:
            last_seen = entries[0]
        for entry in reversed(fresh):
            LOGGER.info("status: %s", entry.label)
        if stop_event.is_set():
            return


def write_output_video(path: str, payload: bytes) -> None:
    try:
        with open(path, "wb") as file_handle:
            file_handle.write(payload)
    except OSError as exc:
        raise ShortRenderError(
            OUTPUT_WRITE_CODE, f"output video could not be written: {path}: {exc}"
        ) from exc


def render_short(request: RenderRequest, plan: Plan, env: dict[str, str]) -> int:
    """Load the encoder, render the plan and write the MP4; return the exit code."""
    settings = load_engine_settings(
        env, ffmpeg_path=request.ffmpeg_path, fonts_dir=request.fonts_dir
    )
    with create_engine(settings) as engine:
        orchestrator = create_orchestrator(engine, settings)
        stop_event = threading.Event()
        watcher = threading.Thread(
            target=follow_status, args=(orchestrator.bus, stop_event), daemon=True
        )
        watcher.start()
        try:
            if not orchestrator.load_encoder():
                return 1
            orchestrator.accept_plan(plan)
            asset = orchestrator.render()
        finally:
            stop_event.set()
            watcher.join(timeout=STATUS_POLL_SECONDS * 4)
            orchestrator.close()
        if asset is None:
            return 1
        write_output_video(request.output_video_file, asset.payload)
    LOGGER.info(
        "render_short_video.output: %s (%s bytes)", request.output_video_file, asset.size
    )
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    env = dict(os.environ)
    configure_logging(env)

    try:
        request = parse_args(list(argv) if argv is not None else sys.argv[1:])
        plan = resolve_plan(request)
        if request.emit_plan:
            emit_plan(plan)
            return 0
        return render_short(request, plan, env)
    except PlanValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except ShortRenderError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    except ValueError as exc:
        LOGGER.error("%s: %s", CONFIG_CODE, str(exc).strip())
        return 1
    except Exception as exc:
        LOGGER.error("short_video.unhandled_error: %s", str(exc).strip())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
