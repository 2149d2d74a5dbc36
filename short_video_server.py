"""HTTP control surface for planning, rendering and downloading shorts."""

from __future__ import annotations

import argparse
import dataclasses
from email.message import Message
import ipaddress
import json
import logging
import os
import sys
import threading
from concurrent import futures
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import BinaryIO, Sequence
from urllib.parse import quote, urlparse

from domain.render_errors import ShortRenderError
from domain.short_plan import (
    PlanValidationError,
    ShortStyle,
    parse_plan_payload,
    parse_short_style,
    serialize_plan,
)
from service.encode_orchestrator import (
    EncodeOrchestrator,
    create_engine,
    create_orchestrator,
)
from service.settings import (
    CONFIG_CODE,
    EngineSettings,
    configure_logging,
    load_engine_settings,
    parse_positive_float,
    read_env_float,
    read_env_int,
)

LOGGER = logging.getLogger("short_video_server")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8090
DEFAULT_KEEPALIVE_SECONDS = 5.0
DEFAULT_MAX_BODY_BYTES = 1024 * 1024
RENDER_WORKERS = 2

HOST_ENV = "SHORT_VIDEO_SERVER_HOST"
PORT_ENV = "SHORT_VIDEO_SERVER_PORT"
KEEPALIVE_SECONDS_ENV = "SHORT_VIDEO_SERVER_KEEPALIVE_SECONDS"
ALLOWED_ORIGINS_ENV = "SHORT_VIDEO_SERVER_ALLOWED_ORIGINS"
MAX_BODY_BYTES_ENV = "SHORT_VIDEO_SERVER_MAX_BODY_BYTES"

SERVER_REQUEST_CODE = "short_video_server.request.invalid"
SERVER_BUSY_CODE = "short_video_server.render.busy"
SERVER_PRECONDITION_CODE = "short_video_server.render.precondition_failed"
SERVER_OUTPUT_NOT_FOUND_CODE = "short_video_server.output.not_found"
SERVER_NOT_FOUND_CODE = "short_video_server.path.not_found"
OUTPUTS_PREFIX = "/api/outputs/"
STATUS_DOWNLOAD = "Download triggered."


class RequestError(ValueError):
    """Malformed request with a stable code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclasses.dataclass(frozen=True)
class ServerConfig:
    """HTTP server configuration."""

    host: str
    port: int
    keepalive_seconds: float
    allowed_origins: tuple[str, ...]
    allow_any_origin: bool
    max_body_bytes: int
    engine: EngineSettings

    def __post_init__(self) -> None:
        if not self.host.strip():
            raise ValueError("host must be non-empty")
        if not is_loopback_host(self.host):
            raise ValueError(f"host must be a loopback address: {self.host}")
        if self.port <= 0 or self.port > 65535:
            raise ValueError("port must be between 1 and 65535")
        if self.keepalive_seconds <= 0:
            raise ValueError("keepalive-seconds must be positive")
        if self.max_body_bytes <= 0:
            raise ValueError("max-body-bytes must be positive")


def is_loopback_host(host: str) -> bool:
    """Return True when ``host`` names this machine only."""
    trimmed = host.strip()
    if trimmed == "localhost":
        return True
    try:
        return ipaddress.ip_address(trimmed).is_loopback
    except ValueError:
        return False


def parse_allowed_origins(raw_value: str) -> tuple[tuple[str, ...], bool]:
    """Parse allowed origins from a comma-delimited string."""
    trimmed = raw_value.strip()
    if not trimmed or trimmed == "*":
        return tuple(), True
    values = tuple(value.strip() for value in trimmed.split(",") if value.strip())
    return values, False


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse server CLI arguments."""
    parser = argparse.ArgumentParser(prog="short_video_server.py", add_help=True)
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--keepalive-seconds", type=float, default=None)
    parser.add_argument("--allowed-origins", default=None)
    parser.add_argument("--fonts-dir", default=None)
    parser.add_argument("--ffmpeg-path", default=None)
    return parser.parse_args(list(argv))


def load_config(args: argparse.Namespace, env: dict[str, str]) -> ServerConfig:
    """Load server configuration from args and environment."""
    host = env.get(HOST_ENV, DEFAULT_HOST)
    if args.host:
        host = args.host
    port = read_env_int(env, PORT_ENV, "port", DEFAULT_PORT)
    if args.port is not None:
        port = args.port
    keepalive = read_env_float(
        env, KEEPALIVE_SECONDS_ENV, "keepalive-seconds", DEFAULT_KEEPALIVE_SECONDS
    )
    if args.keepalive_seconds is not None:
        keepalive = parse_positive_float(str(args.keepalive_seconds), "keepalive-seconds")
    allowed_raw = env.get(ALLOWED_ORIGINS_ENV, "").strip()
    if args.allowed_origins is not None:
        allowed_raw = args.allowed_origins
    allowed_origins, allow_any = parse_allowed_origins(allowed_raw)
    return ServerConfig(
        host=str(host),
        port=int(port),
        keepalive_seconds=float(keepalive),
        allowed_origins=allowed_origins,
        allow_any_origin=allow_any,
        max_body_bytes=read_env_int(
            env, MAX_BODY_BYTES_ENV, "max-body-bytes", DEFAULT_MAX_BODY_BYTES
        ),
        engine=load_engine_settings(
            env, ffmpeg_path=args.ffmpeg_path, fonts_dir=args.fonts_dir
        ),
    )


def parse_content_length(headers: Message, max_bytes: int) -> int:
    """Parse and bound the Content-Length header."""
    raw_length = headers.get("Content-Length")
    if raw_length is None:
        return 0
    try:
        length = int(raw_length)
    except ValueError as exc:
        raise RequestError(
            SERVER_REQUEST_CODE, "Content-Length must be an integer"
        ) from exc
    if length < 0:
        raise RequestError(SERVER_REQUEST_CODE, "Content-Length must be non-negative")
    if length > max_bytes:
        raise RequestError(SERVER_REQUEST_CODE, "request body exceeds max size")
    return length


def read_json_body(stream: BinaryIO, length: int) -> dict[str, object]:
    """Read a JSON object body; an empty body is an empty object."""
    if length == 0:
        return {}
    body = stream.read(length)
    if body is None or len(body) != length:
        raise RequestError(SERVER_REQUEST_CODE, "request body is incomplete")
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RequestError(SERVER_REQUEST_CODE, "request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise RequestError(SERVER_REQUEST_CODE, "request body must be a JSON object")
    return payload


def parse_plan_request(payload: dict[str, object]) -> tuple[str, ShortStyle]:
    """Extract topic and style from a plan request."""
    topic = payload.get("topic")
    if not isinstance(topic, str):
        raise RequestError(SERVER_REQUEST_CODE, "topic must be a string")
    raw_style = payload.get("style", ShortStyle.EDUCATIONAL.value)
    if not isinstance(raw_style, str):
        raise RequestError(SERVER_REQUEST_CODE, "style must be a string")
    return topic, parse_short_style(raw_style)


def content_disposition_attachment(filename: str) -> str:
    """Build a Content-Disposition attachment header value."""
    sanitized = filename.replace("\r", " ").replace("\n", " ").strip()
    ascii_fallback = "".join(
        char if 32 <= ord(char) < 127 and char not in {'"', "\\"} else "_"
        for char in sanitized
    ).strip()
    return (
        f'attachment; filename="{ascii_fallback}"; '
        f"filename*=UTF-8''{quote(sanitized, safe='')}"
    )


def build_state_payload(orchestrator: EncodeOrchestrator) -> dict[str, object]:
    """Describe the orchestrator, the status log and the live output."""
    plan = orchestrator.plan
    asset = orchestrator.outputs.current
    job = orchestrator.job
    payload: dict[str, object] = dict(orchestrator.bus.snapshot())
    payload.update(
        {
            "phase": orchestrator.phase.value,
            "encoder_loaded": orchestrator.engine.loaded,
            "rendering": orchestrator.is_rendering(),
            "plan": serialize_plan(plan) if plan is not None else None,
            "job": (
                {
                    "job_id": job.job_id,
                    "current_index": job.current_index,
                    "total_segments": job.total_segments,
                    "progress_percent": job.progress_percent,
                }
                if job is not None
                else None
            ),
            "output": (
                {
                    "handle": asset.handle,
                    "filename": asset.filename,
                    "content_type": asset.content_type,
                    "size": asset.size,
                    "url": f"{OUTPUTS_PREFIX}{asset.handle}",
                }
                if asset is not None
                else None
            ),
        }
    )
    return payload


def parse_output_handle(path: str) -> str | None:
    if not path.startswith(OUTPUTS_PREFIX):
        return None
    handle = path[len(OUTPUTS_PREFIX):]
    if not handle or "/" in handle:
        return None
    return handle


def build_handler(
    config: ServerConfig,
    orchestrator: EncodeOrchestrator,
    executor: futures.Executor,
    shutdown_event: threading.Event,
) -> type[BaseHTTPRequestHandler]:
    """Create the request handler class bound to one orchestrator."""

    class ShortVideoHandler(BaseHTTPRequestHandler):
        """HTTP request handler for the short video service."""

        protocol_version = "HTTP/1.1"

        def log_message(self, format: str, *args: object) -> None:
            LOGGER.info("%s - %s", self.client_address[0], format % args)

        def send_cors_headers(self) -> None:
            origin = self.headers.get("Origin")
            if config.allow_any_origin:
                self.send_header("Access-Control-Allow-Origin", "*")
                return
            if origin and origin in config.allowed_origins:
                self.send_header("Access-Control-Allow-Origin", origin)

        def send_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_cors_headers()
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def send_error_response(self, status: HTTPStatus, message: str) -> None:
            self.send_json(status, {"error": message})

        def send_sse_headers(self) -> None:
            self.send_response(HTTPStatus.OK)
            self.send_cors_headers()
            self.send_header("Content-Type", "text/event-stream; charset=utf-8")
            self.send_header("Cache-Control", "no-cache, no-transform")
            self.send_header("Connection", "keep-alive")
            self.send_header("X-Accel-Buffering", "no")
            self.end_headers()
            self.wfile.flush()
            self.close_connection = False

        def send_sse_event(
            self, payload: dict[str, object], event_id: int | None = None
        ) -> bool:
            lines: list[str] = []
            if event_id is not None:
                lines.append(f"id: {event_id}")
            lines.append(f"data: {json.dumps(payload)}")
            body = ("\n".join(lines) + "\n\n").encode("utf-8")
            try:
                self.wfile.write(body)
                self.wfile.flush()
            except OSError:
                self.close_connection = True
                return False
            return True

        def send_state_event(self) -> bool:
            payload = build_state_payload(orchestrator)
            payload["type"] = "snapshot"
            change_id = payload["change_id"]
            return self.send_sse_event(
                payload, event_id=change_id if isinstance(change_id, int) else None
            )

        def stream_events(self) -> None:
            self.send_sse_headers()
            change_id = orchestrator.bus.change_id
            if not self.send_state_event():
                return
            while not shutdown_event.is_set():
                next_change = orchestrator.bus.wait_for_change(
                    change_id, timeout=config.keepalive_seconds
                )
                if next_change == change_id:
                    if not self.send_sse_event({"type": "keepalive"}):
                        return
                    continue
                change_id = next_change
                if not self.send_state_event():
                    return

        def send_output(self, handle: str) -> None:
            asset = orchestrator.outputs.resolve(handle)
            if asset is None:
                self.send_error_response(
                    HTTPStatus.NOT_FOUND,
                    f"{SERVER_OUTPUT_NOT_FOUND_CODE}: output not found",
                )
                return
            self.send_response(HTTPStatus.OK)
            self.send_cors_headers()
            self.send_header("Content-Type", asset.content_type)
            self.send_header(
                "Content-Disposition", content_disposition_attachment(asset.filename)
            )
            self.send_header("Content-Length", str(asset.size))
            self.end_headers()
            self.wfile.write(asset.payload)
            orchestrator.bus.append_status(STATUS_DOWNLOAD)

        def read_payload(self) -> dict[str, object]:
            length = parse_content_length(self.headers, config.max_body_bytes)
            return read_json_body(self.rfile, length)

        def do_OPTIONS(self) -> None:
            self.send_response(HTTPStatus.NO_CONTENT)
            self.send_cors_headers()
            self.send_header("Access-Control-Allow-Methods", "GET,POST,DELETE,OPTIONS")
            self.send_header("Access-Control-Allow-Headers", "Content-Type")
            self.send_header("Access-Control-Max-Age", "600")
            self.end_headers()

        def do_GET(self) -> None:
            parsed = urlparse(self.path)
            if parsed.path == "/health":
                self.send_json(HTTPStatus.OK, {"status": "ok"})
                return
            if parsed.path == "/api/state":
                self.send_json(HTTPStatus.OK, build_state_payload(orchestrator))
                return
            if parsed.path == "/api/events":
                self.stream_events()
                return
            handle = parse_output_handle(parsed.path)
            if handle:
                self.send_output(handle)
                return
            self.send_error_response(
                HTTPStatus.NOT_FOUND, f"{SERVER_NOT_FOUND_CODE}: not found"
            )

        def do_POST(self) -> None:
            parsed = urlparse(self.path)
            try:
                payload = self.read_payload()
            except RequestError as exc:
                self.send_error_response(HTTPStatus.BAD_REQUEST, f"{exc.code}: {exc}")
                return
            if parsed.path == "/api/encoder":
                executor.submit(orchestrator.load_encoder)
                self.send_json(HTTPStatus.ACCEPTED, build_state_payload(orchestrator))
                return
            if parsed.path == "/api/plan":
                self.accept_plan(payload)
                return
            if parsed.path == "/api/render":
                self.start_render()
                return
            self.send_error_response(
                HTTPStatus.NOT_FOUND, f"{SERVER_NOT_FOUND_CODE}: not found"
            )

        def accept_plan(self, payload: dict[str, object]) -> None:
            try:
                if "plan" in payload:
                    orchestrator.accept_plan(parse_plan_payload(payload["plan"]))
                else:
                    topic, style = parse_plan_request(payload)
                    orchestrator.generate_plan(topic, style)
            except (PlanValidationError, RequestError) as exc:
                self.send_error_response(HTTPStatus.BAD_REQUEST, f"{exc.code}: {exc}")
                return
            self.send_json(HTTPStatus.OK, build_state_payload(orchestrator))

        def start_render(self) -> None:
            if orchestrator.is_rendering():
                self.send_error_response(
                    HTTPStatus.CONFLICT, f"{SERVER_BUSY_CODE}: a render is in progress"
                )
                return
            blocker = orchestrator.render_blocker()
            if blocker is not None:
                orchestrator.bus.append_status(blocker)
                self.send_error_response(
                    HTTPStatus.BAD_REQUEST, f"{SERVER_PRECONDITION_CODE}: {blocker}"
                )
                return
            executor.submit(orchestrator.render)
            self.send_json(HTTPStatus.ACCEPTED, build_state_payload(orchestrator))

        def do_DELETE(self) -> None:
            parsed = urlparse(self.path)
            handle = parse_output_handle(parsed.path)
            if not handle:
                self.send_error_response(
                    HTTPStatus.NOT_FOUND, f"{SERVER_NOT_FOUND_CODE}: not found"
                )
                return
            if not orchestrator.outputs.revoke(handle):
                self.send_error_response(
                    HTTPStatus.NOT_FOUND,
                    f"{SERVER_OUTPUT_NOT_FOUND_CODE}: output not found",
                )
                return
            self.send_json(HTTPStatus.OK, {"revoked": handle})

    return ShortVideoHandler


def serve(config: ServerConfig) -> None:
    """Run the HTTP server until interrupted."""
    executor = futures.ThreadPoolExecutor(max_workers=RENDER_WORKERS)
    shutdown_event = threading.Event()
    with create_engine(config.engine) as engine:
        orchestrator = create_orchestrator(engine, config.engine)
        executor.submit(orchestrator.load_encoder)
        handler = build_handler(config, orchestrator, executor, shutdown_event)
        server = ThreadingHTTPServer((config.host, config.port), handler)
        LOGGER.info(
            "short_video_server.started address=%s:%s", config.host, config.port
        )
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            LOGGER.info("short_video_server.shutdown: received interrupt")
        finally:
            shutdown_event.set()
            server.server_close()
            executor.shutdown(wait=True)
            orchestrator.close()


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint for the server."""
    env = dict(os.environ)
    configure_logging(env)
    try:
        args = parse_args(list(argv) if argv is not None else sys.argv[1:])
        config = load_config(args, env)
    except ValueError as exc:
        LOGGER.error("%s: %s", CONFIG_CODE, exc)
        return 1
    try:
        serve(config)
    except ShortRenderError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
