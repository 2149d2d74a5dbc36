"""Shared fakes for short video tests."""

from __future__ import annotations

from typing import Callable, Sequence

import pytest

from domain.render_errors import EncoderLoadError, EngineFileError
from domain.short_plan import Plan, Segment
from service.codec_engine import (
    PSEUDO_ENTRIES,
    EngineEntry,
    EngineEventKind,
    EngineHandle,
    normalize_progress,
)
from service.encode_orchestrator import EncodeOrchestrator
from service.output_asset import OutputSlot
from service.progress_bus import ProgressBus


class FakeCodecEngine:
    """In-memory engine that records invocations and fakes their outputs."""

    def __init__(self, fail_on_invoke: int | None = None, fail_load: bool = False) -> None:
        self.files: dict[str, bytes] = {}
        self.invocations: list[list[str]] = []
        self.writes: list[str] = []
        self.fail_on_invoke = fail_on_invoke
        self.fail_load = fail_load
        self.locked: set[str] = set()
        self.load_count = 0
        self.handle: EngineHandle | None = None
        self.subscribers: dict[EngineEventKind, list[Callable[..., None]]] = {
            EngineEventKind.LOG: [],
            EngineEventKind.PROGRESS: [],
        }

    @property
    def loaded(self) -> bool:
        return self.handle is not None

    def ensure_loaded(self) -> EngineHandle:
        if self.handle is not None:
            return self.handle
        self.load_count += 1
        if self.fail_load:
            raise EncoderLoadError("fake engine refused to load")
        self.handle = EngineHandle(ffmpeg_path="ffmpeg", version="ffmpeg version fake", root_dir="/")
        return self.handle

    def write_file(self, name: str, data: bytes) -> None:
        self.writes.append(name)
        self.files[name] = data

    def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise EngineFileError(f"missing file {name}")
        return self.files[name]

    def delete_file(self, name: str) -> None:
        if name in self.locked:
            raise EngineFileError(f"{name} is locked")
        self.files.pop(name, None)

    def list_dir(self, path: str = "/") -> list[EngineEntry]:
        entries = [EngineEntry(name=name, is_dir=True) for name in PSEUDO_ENTRIES]
        entries.extend(EngineEntry(name=name, is_dir=False) for name in sorted(self.files))
        return entries

    def subscribe(
        self, kind: EngineEventKind, handler: Callable[..., None]
    ) -> Callable[[], None]:
        self.subscribers[kind].append(handler)
        return lambda: self.subscribers[kind].remove(handler)

    def emit(self, kind: EngineEventKind, payload: object) -> None:
        for handler in list(self.subscribers[kind]):
            handler(payload)

    def invoke(self, argv: Sequence[str], duration_seconds: float | None = None) -> bool:
        self.invocations.append(list(argv))
        if self.fail_on_invoke == len(self.invocations):
            self.emit(EngineEventKind.LOG, "Conversion failed!")
            return False
        output_name = argv[-1]
        if "-f" in argv and "concat" in argv:
            manifest = self.files[argv[argv.index("-i") + 1]]
            self.files[output_name] = b"MP4:" + manifest
        else:
            self.files[output_name] = b"CLIP:" + argv[argv.index("-i") + 1].encode("utf-8")
        self.emit(EngineEventKind.PROGRESS, normalize_progress(ratio=1.0))
        return True

    def segment_invocations(self) -> list[list[str]]:
        return [argv for argv in self.invocations if "-loop" in argv]

    def stitch_invocations(self) -> list[list[str]]:
        return [argv for argv in self.invocations if "concat" in argv]


class StubSynthesizer:
    """Slide synthesizer stand-in that returns tiny payloads."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, int, int, str]] = []

    def render(self, segment: Segment, index: int, total: int, headline: str) -> bytes:
        self.calls.append((segment.id, index, total, headline))
        return f"PNG:{segment.id}".encode("utf-8")


def build_plan(durations: Sequence[float], title: str = "X") -> Plan:
    """Build a plan with one segment per duration."""
    return Plan(
        title=title,
        hook="hook",
        summary="summary",
        cta="cta",
        segments=tuple(
            Segment(
                id=f"beat-{index}",
                label=f"Beat {index + 1}",
                caption=f"Caption {index + 1}",
                narration=f"Narration {index + 1}",
                visual_cue="cue",
                duration=duration,
            )
            for index, duration in enumerate(durations)
        ),
    )


def build_orchestrator(
    engine: FakeCodecEngine, synthesizer: object | None = None
) -> EncodeOrchestrator:
    """Wire an orchestrator around a fake engine."""
    return EncodeOrchestrator(
        engine=engine,
        bus=ProgressBus(),
        outputs=OutputSlot(),
        synthesizer=synthesizer or StubSynthesizer(),  # type: ignore[arg-type]
    )


@pytest.fixture
def fake_engine() -> FakeCodecEngine:
    return FakeCodecEngine()
