"""Tests for the encode orchestrator state machine."""

from __future__ import annotations

import logging
import threading

import pytest

from domain.render_errors import (
    SEGMENT_ENCODE_CODE,
    UNHANDLED_CODE,
    SlideRenderError,
)
from domain.short_plan import (
    INVALID_SEGMENT_CODE,
    PlanValidationError,
    Segment,
    ShortStyle,
)
from service.encode_orchestrator import (
    STATUS_COMPLETE,
    STATUS_ENCODER_FAILED,
    STATUS_ENCODER_LOADING,
    STATUS_NEED_PLAN,
    STATUS_PLAN_REFRESHED,
    STATUS_RENDER_BUSY,
    STATUS_STITCHING,
    ArtifactNames,
    RenderPhase,
    build_manifest,
    build_segment_command,
    build_stitch_command,
)
from service.slide_synthesizer import SlideSynthesizer
from conftest import FakeCodecEngine, StubSynthesizer, build_orchestrator, build_plan

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


class BlockingSynthesizer(StubSynthesizer):
    """Synthesizer that waits for a release signal on the first slide."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def render(self, segment: Segment, index: int, total: int, headline: str) -> bytes:
        self.started.set()
        self.release.wait(timeout=5)
        return super().render(segment, index, total, headline)


class FailingSynthesizer(StubSynthesizer):
    """Synthesizer that raises the configured error."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    def render(self, segment: Segment, index: int, total: int, headline: str) -> bytes:
        raise self.error


def status_labels(orchestrator: object) -> list[str]:
    """Return status labels, newest first."""
    return [entry.label for entry in orchestrator.bus.entries()]  # type: ignore[attr-defined]


def test_artifact_names_are_scoped_per_job() -> None:
    names = ArtifactNames(3)

    assert names.slide(0) == "job-3-slide-0.png"
    assert names.segment(1) == "job-3-segment-1.mp4"
    assert names.manifest == "job-3-filelist.txt"
    assert names.output == "job-3-short.mp4"


def test_segment_command_matches_encoder_contract() -> None:
    assert build_segment_command("slide.png", "clip.mp4", 3) == [
        "-loop",
        "1",
        "-t",
        "3.00",
        "-i",
        "slide.png",
        "-vf",
        "scale=1080:1920:flags=lanczos:force_original_aspect_ratio=decrease,"
        "pad=1080:1920:(ow-iw)/2:(oh-ih)/2",
        "-r",
        "30",
        "-an",
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-tune",
        "stillimage",
        "-crf",
        "20",
        "-pix_fmt",
        "yuv420p",
        "clip.mp4",
    ]


def test_manifest_and_stitch_command() -> None:
    assert build_manifest(["a.mp4", "b.mp4"]) == b"file a.mp4\nfile b.mp4"
    assert build_stitch_command("list.txt", "out.mp4") == [
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        "list.txt",
        "-c",
        "copy",
        "out.mp4",
    ]


def test_render_issues_segment_encodes_then_one_stitch(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    assert orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([3.0, 4.5]))

    asset = orchestrator.render()

    assert asset is not None
    segment_calls = fake_engine.segment_invocations()
    assert [argv[argv.index("-t") + 1] for argv in segment_calls] == ["3.00", "4.50"]
    assert fake_engine.invocations[-1] == fake_engine.stitch_invocations()[0]
    assert len(fake_engine.stitch_invocations()) == 1
    manifest_lines = asset.payload.removeprefix(b"MP4:").decode("utf-8").split("\n")
    assert len(manifest_lines) == 2
    assert manifest_lines[0].endswith("segment-0.mp4")
    assert manifest_lines[1].endswith("segment-1.mp4")
    assert orchestrator.phase == RenderPhase.COMPLETE
    assert orchestrator.outputs.resolve(asset.handle) is asset
    assert orchestrator.bus.progress == 100
    assert fake_engine.files == {}
    labels = status_labels(orchestrator)
    assert labels[0] == STATUS_COMPLETE
    assert STATUS_STITCHING in labels
    assert "Segment 2 locked." in labels


def test_render_with_real_slides_writes_png_per_segment(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine, SlideSynthesizer())
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([3.0, 4.5]))
    written_slides: list[bytes] = []
    original_write = fake_engine.write_file

    def capture_write(name: str, data: bytes) -> None:
        if name.endswith(".png"):
            written_slides.append(data)
        original_write(name, data)

    fake_engine.write_file = capture_write  # type: ignore[method-assign]

    assert orchestrator.render() is not None
    assert len(written_slides) == 2
    assert all(slide.startswith(PNG_SIGNATURE) for slide in written_slides)


def test_segment_failure_stops_before_stitch(
    caplog: pytest.LogCaptureFixture,
) -> None:
    engine = FakeCodecEngine(fail_on_invoke=2)
    orchestrator = build_orchestrator(engine)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0, 2.0, 3.0]))

    with caplog.at_level(logging.ERROR, logger="short_video.encode_orchestrator"):
        asset = orchestrator.render()

    assert asset is None
    assert orchestrator.phase == RenderPhase.FAILED
    assert engine.stitch_invocations() == []
    assert len(engine.segment_invocations()) == 2
    assert "job-1-segment-0.mp4" in engine.files
    assert "job-1-slide-1.png" not in engine.files
    assert status_labels(orchestrator)[0] == "Segment 2 failed to encode."
    assert SEGMENT_ENCODE_CODE in caplog.text
    assert orchestrator.last_error is not None
    assert not orchestrator.is_rendering()


def test_next_render_sweeps_leftover_clips() -> None:
    engine = FakeCodecEngine(fail_on_invoke=2)
    orchestrator = build_orchestrator(engine)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0, 2.0, 3.0]))
    orchestrator.render()

    asset = orchestrator.render()

    assert asset is not None
    assert engine.files == {}
    assert all("job-2-" in argv[-1] for argv in engine.invocations[2:])


def test_stitch_failure_marks_render_failed() -> None:
    engine = FakeCodecEngine(fail_on_invoke=3)
    orchestrator = build_orchestrator(engine)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0, 2.0]))

    assert orchestrator.render() is None
    assert orchestrator.phase == RenderPhase.FAILED
    assert status_labels(orchestrator)[0] == "Stitching failed."
    assert orchestrator.outputs.current is None


def test_slide_failure_marks_render_failed(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(
        fake_engine, FailingSynthesizer(SlideRenderError("no surface"))
    )
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0]))

    assert orchestrator.render() is None
    assert orchestrator.phase == RenderPhase.FAILED
    assert status_labels(orchestrator)[0] == "Slide rendering failed."
    assert fake_engine.invocations == []


def test_unexpected_error_is_reported_once(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine, FailingSynthesizer(RuntimeError("boom")))
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0]))

    assert orchestrator.render() is None
    assert orchestrator.phase == RenderPhase.FAILED
    assert orchestrator.last_error is not None
    assert orchestrator.last_error.code == UNHANDLED_CODE
    assert status_labels(orchestrator)[0] == "Render failed. Check logs for details."


def test_new_plan_revokes_live_output(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0]))
    asset = orchestrator.render()
    assert asset is not None

    orchestrator.generate_plan("tidy desks", ShortStyle.PRODUCT)

    assert orchestrator.outputs.resolve(asset.handle) is None
    assert orchestrator.phase == RenderPhase.PLAN_READY
    assert status_labels(orchestrator)[0] == STATUS_PLAN_REFRESHED


def test_render_requires_plan(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    orchestrator.load_encoder()

    assert orchestrator.render() is None
    assert status_labels(orchestrator)[0] == STATUS_NEED_PLAN
    assert orchestrator.phase == RenderPhase.IDLE
    assert fake_engine.invocations == []


def test_render_requires_loaded_encoder(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    orchestrator.accept_plan(build_plan([1.0]))

    assert orchestrator.render() is None
    assert status_labels(orchestrator)[0] == STATUS_ENCODER_LOADING
    assert orchestrator.phase == RenderPhase.PLAN_READY


def test_encoder_load_failure_can_be_retried() -> None:
    engine = FakeCodecEngine(fail_load=True)
    orchestrator = build_orchestrator(engine)

    assert not orchestrator.load_encoder()
    assert orchestrator.phase == RenderPhase.FAILED
    assert status_labels(orchestrator)[0] == STATUS_ENCODER_FAILED

    engine.fail_load = False
    assert orchestrator.load_encoder()
    assert orchestrator.phase == RenderPhase.IDLE
    assert engine.load_count == 2


def test_second_render_is_rejected_while_busy(fake_engine: FakeCodecEngine) -> None:
    synthesizer = BlockingSynthesizer()
    orchestrator = build_orchestrator(fake_engine, synthesizer)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0, 2.0]))
    results: list[object] = []
    worker = threading.Thread(target=lambda: results.append(orchestrator.render()))
    worker.start()
    assert synthesizer.started.wait(timeout=5)

    assert orchestrator.is_rendering()
    assert orchestrator.render() is None
    assert status_labels(orchestrator)[0] == STATUS_RENDER_BUSY

    synthesizer.release.set()
    worker.join(timeout=5)
    assert results and results[0] is not None
    assert len(fake_engine.stitch_invocations()) == 1


def test_plan_change_during_render_keeps_running_plan(fake_engine: FakeCodecEngine) -> None:
    synthesizer = BlockingSynthesizer()
    orchestrator = build_orchestrator(fake_engine, synthesizer)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([1.0, 2.0], title="First"))
    worker = threading.Thread(target=orchestrator.render)
    worker.start()
    assert synthesizer.started.wait(timeout=5)

    orchestrator.accept_plan(build_plan([5.0], title="Second"))
    synthesizer.release.set()
    worker.join(timeout=5)

    assert {call[3] for call in synthesizer.calls} == {"First"}
    assert len(fake_engine.segment_invocations()) == 2
    assert orchestrator.outputs.current is not None
    assert orchestrator.plan is not None and orchestrator.plan.title == "Second"
    assert orchestrator.phase == RenderPhase.PLAN_READY


def test_render_blocker_reports_without_side_effects(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    assert orchestrator.render_blocker() == STATUS_NEED_PLAN

    orchestrator.accept_plan(build_plan([1.0]))
    labels = status_labels(orchestrator)
    assert orchestrator.render_blocker() == STATUS_ENCODER_LOADING
    assert status_labels(orchestrator) == labels

    orchestrator.load_encoder()
    assert orchestrator.render_blocker() is None
    assert fake_engine.invocations == []


def test_sub_centisecond_beat_never_reaches_encoder() -> None:
    with pytest.raises(PlanValidationError) as error:
        build_plan([0.004, 1.0])

    assert error.value.code == INVALID_SEGMENT_CODE


def test_shortest_beat_encodes_with_nonzero_length(fake_engine: FakeCodecEngine) -> None:
    orchestrator = build_orchestrator(fake_engine)
    orchestrator.load_encoder()
    orchestrator.accept_plan(build_plan([0.006, 1.0]))

    assert orchestrator.render() is not None
    first = fake_engine.segment_invocations()[0]
    assert first[first.index("-t") + 1] == "0.01"
