"""State machine that turns a plan into one stitched vertical video."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import itertools
import logging
import threading
from typing import Callable, Protocol, Sequence

from domain.render_errors import (
    UNHANDLED_CODE,
    EncoderLoadError,
    OutputReadError,
    SegmentEncodeError,
    ShortRenderError,
    StitchError,
)
from domain.short_plan import Plan, ShortStyle, estimate_runtime
from service.codec_engine import CodecEngine, EngineEntry, EngineEventKind, EngineHandle
from service.engine_workspace import EngineWorkspace
from service.output_asset import OutputAsset, OutputSlot
from service.plan_source import generate_short_plan
from service.progress_bus import ProgressBus
from service.settings import EngineSettings
from service.slide_synthesizer import (
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
    SlideSynthesizer,
    load_typography,
)

LOGGER = logging.getLogger("short_video.encode_orchestrator")

FRAME_RATE = 30
VIDEO_CODEC = "libx264"
ENCODER_PRESET = "veryfast"
ENCODER_TUNE = "stillimage"
ENCODER_CRF = 20
PIXEL_FORMAT = "yuv420p"

STATUS_BOOTING = "Booting…"
STATUS_ENCODER_READY = "Encoder ready."
STATUS_ENCODER_FAILED = EncoderLoadError.status_label
STATUS_NEED_PLAN = "Generate a storyboard first."
STATUS_ENCODER_LOADING = "Encoder still loading, one sec…"
STATUS_RENDER_BUSY = "A render is already in progress."
STATUS_RENDERING = "Rendering slides for each beat…"
STATUS_STITCHING = "Stitching timeline…"
STATUS_COMPLETE = "Short rendered, ready to download."
STATUS_PLAN_REFRESHED = "Storyboard refreshed with new beat map."


class RenderPhase(str, Enum):
    IDLE = "idle"
    AWAITING_ENCODER = "awaiting_encoder"
    PLAN_READY = "plan_ready"
    RENDERING_SEGMENTS = "rendering_segments"
    STITCHING = "stitching"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class RenderJob:
    """Mutable bookkeeping for a single render run."""

    job_id: int
    plan: Plan
    total_segments: int
    current_index: int = 0
    progress_percent: int = 0
    phase: RenderPhase = RenderPhase.RENDERING_SEGMENTS


@dataclass(frozen=True)
class ArtifactNames:
    """Engine file names scoped to one render job."""

    job_id: int

    @property
    def prefix(self) -> str:
        return f"job-{self.job_id}"

    def slide(self, index: int) -> str:
        return f"{self.prefix}-slide-{index}.png"

    def segment(self, index: int) -> str:
        return f"{self.prefix}-segment-{index}.mp4"

    @property
    def manifest(self) -> str:
        return f"{self.prefix}-filelist.txt"

    @property
    def output(self) -> str:
        return f"{self.prefix}-short.mp4"


class RenderEngine(Protocol):
    """Engine surface used by the orchestrator."""

    @property
    def loaded(self) -> bool: ...

    def ensure_loaded(self) -> EngineHandle: ...

    def write_file(self, name: str, data: bytes) -> None: ...

    def read_file(self, name: str) -> bytes: ...

    def delete_file(self, name: str) -> None: ...

    def list_dir(self, path: str = "/") -> list[EngineEntry]: ...

    def invoke(self, argv: Sequence[str], duration_seconds: float | None = None) -> bool: ...

    def subscribe(
        self, kind: EngineEventKind, handler: Callable[..., None]
    ) -> Callable[[], None]: ...


def format_duration(seconds: float) -> str:
    return f"{seconds:.2f}"


def build_segment_command(slide_name: str, clip_name: str, duration: float) -> list[str]:
    """Encode one still slide into a fixed-length silent clip."""
    video_filter = (
        f"scale={VIDEO_WIDTH}:{VIDEO_HEIGHT}:flags=lanczos:force_original_aspect_ratio=decrease,"
        f"pad={VIDEO_WIDTH}:{VIDEO_HEIGHT}:(ow-iw)/2:(oh-ih)/2"
    )
    return [
        "-loop",
        "1",
        "-t",
        format_duration(duration),
        "-i",
        slide_name,
        "-vf",
        video_filter,
        "-r",
        str(FRAME_RATE),
        "-an",
        "-c:v",
        VIDEO_CODEC,
        "-preset",
        ENCODER_PRESET,
        "-tune",
        ENCODER_TUNE,
        "-crf",
        str(ENCODER_CRF),
        "-pix_fmt",
        PIXEL_FORMAT,
        clip_name,
    ]


def build_manifest(clip_names: Sequence[str]) -> bytes:
    """Concat demuxer list, one ``file`` line per clip in playback order."""
    return "\n".join(f"file {name}" for name in clip_names).encode("utf-8")


def build_stitch_command(manifest_name: str, output_name: str) -> list[str]:
    return ["-f", "concat", "-safe", "0", "-i", manifest_name, "-c", "copy", output_name]


class EncodeOrchestrator:
    """Drive plan acceptance, encoder loading and the render sequence.

    Only one render runs at a time. Every failure is reported as one status
    line on the bus plus one coded log record; nothing is retried.
    """

    def __init__(
        self,
        engine: RenderEngine,
        bus: ProgressBus,
        outputs: OutputSlot,
        synthesizer: SlideSynthesizer,
        plan_source: Callable[[str, ShortStyle], Plan] = generate_short_plan,
        workspace: EngineWorkspace | None = None,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.outputs = outputs
        self.synthesizer = synthesizer
        self.plan_source = plan_source
        self.workspace = workspace or EngineWorkspace(engine)
        self.last_error: ShortRenderError | None = None
        self._plan: Plan | None = None
        self._phase = RenderPhase.IDLE
        self._job: RenderJob | None = None
        self._job_ids = itertools.count(1)
        self._state_lock = threading.Lock()
        self._render_guard = threading.Lock()
        self._detach_bus = bus.attach(engine)

    @property
    def phase(self) -> RenderPhase:
        with self._state_lock:
            return self._phase

    @property
    def plan(self) -> Plan | None:
        with self._state_lock:
            return self._plan

    @property
    def job(self) -> RenderJob | None:
        with self._state_lock:
            return self._job

    def is_rendering(self) -> bool:
        return self._render_guard.locked()

    def set_phase(self, phase: RenderPhase) -> None:
        with self._state_lock:
            self._phase = phase
            if self._job is not None:
                self._job.phase = phase
        LOGGER.debug("short_video.phase: %s", phase.value)

    def load_encoder(self) -> bool:
        """Load the codec engine; a failed load may be retried."""
        if self.engine.loaded:
            return True
        self.set_phase(RenderPhase.AWAITING_ENCODER)
        self.bus.append_status(STATUS_BOOTING)
        try:
            self.engine.ensure_loaded()
        except EncoderLoadError as exc:
            self.set_phase(RenderPhase.FAILED)
            self.last_error = exc
            self.bus.append_status(exc.status_label)
            LOGGER.error("%s: %s", exc.code, exc)
            return False
        with self._state_lock:
            if self._phase == RenderPhase.AWAITING_ENCODER:
                self._phase = (
                    RenderPhase.PLAN_READY if self._plan is not None else RenderPhase.IDLE
                )
        self.bus.append_status(STATUS_ENCODER_READY)
        return True

    def generate_plan(self, topic: str, style: ShortStyle) -> Plan:
        plan = self.plan_source(topic, style)
        self.accept_plan(plan)
        return plan

    def accept_plan(self, plan: Plan) -> None:
        """Install a new plan and revoke any previously published output.

        A render already in flight keeps its own plan and still publishes
        its output when it finishes.
        """
        self.outputs.revoke()
        with self._state_lock:
            self._plan = plan
            if not self._render_guard.locked():
                self._phase = RenderPhase.PLAN_READY
        self.bus.append_status(STATUS_PLAN_REFRESHED)

    def render_blocker(self) -> str | None:
        """Return the status line that keeps a render from starting, if any."""
        if self.plan is None:
            return STATUS_NEED_PLAN
        if not self.engine.loaded:
            return STATUS_ENCODER_LOADING
        return None

    def render(self) -> OutputAsset | None:
        """Render the current plan; returns the published asset or ``None``."""
        blocker = self.render_blocker()
        plan = self.plan
        if blocker is not None or plan is None:
            self.bus.append_status(blocker or STATUS_NEED_PLAN)
            return None
        if not self._render_guard.acquire(blocking=False):
            self.bus.append_status(STATUS_RENDER_BUSY)
            return None
        try:
            return self.run_job(plan)
        finally:
            with self._state_lock:
                self._job = None
            self._render_guard.release()

    def run_job(self, plan: Plan) -> OutputAsset | None:
        job = RenderJob(
            job_id=next(self._job_ids), plan=plan, total_segments=len(plan.segments)
        )
        with self._state_lock:
            self._job = job
        self.last_error = None
        names = ArtifactNames(job.job_id)
        try:
            return self.execute(job, names)
        except ShortRenderError as exc:
            self.fail(exc.status_label, exc.code, str(exc))
            self.last_error = exc
        except Exception as exc:
            self.fail(ShortRenderError.status_label, UNHANDLED_CODE, str(exc).strip())
            self.last_error = ShortRenderError(UNHANDLED_CODE, str(exc))
        return None

    def fail(self, status_label: str, code: str, message: str) -> None:
        self.set_phase(RenderPhase.FAILED)
        self.bus.append_status(status_label)
        LOGGER.error("%s: %s", code, message)

    def execute(self, job: RenderJob, names: ArtifactNames) -> OutputAsset:
        plan = job.plan
        self.set_phase(RenderPhase.RENDERING_SEGMENTS)
        self.bus.set_progress(0)
        self.bus.append_status(STATUS_RENDERING)
        swept = self.workspace.sweep()
        if swept:
            LOGGER.info("short_video.cleanup.pre_render removed=%s", swept)

        clip_names: list[str] = []
        for index, segment in enumerate(plan.segments):
            job.current_index = index
            slide_name = names.slide(index)
            clip_name = names.segment(index)
            slide_bytes = self.synthesizer.render(
                segment, index, job.total_segments, plan.title
            )
            self.engine.write_file(slide_name, slide_bytes)
            succeeded = self.engine.invoke(
                build_segment_command(slide_name, clip_name, segment.duration),
                duration_seconds=segment.duration,
            )
            self.workspace.discard([slide_name])
            if not succeeded:
                raise SegmentEncodeError(
                    index, f"segment {segment.id} ({index + 1}/{job.total_segments}) failed"
                )
            clip_names.append(clip_name)
            job.progress_percent = round((index + 1) * 100 / job.total_segments)
            self.bus.append_status(f"Segment {index + 1} locked.")

        self.set_phase(RenderPhase.STITCHING)
        self.engine.write_file(names.manifest, build_manifest(clip_names))
        self.bus.append_status(STATUS_STITCHING)
        if not self.engine.invoke(
            build_stitch_command(names.manifest, names.output),
            duration_seconds=estimate_runtime(plan.segments),
        ):
            raise StitchError(f"concatenating {len(clip_names)} clips failed")

        try:
            payload = self.engine.read_file(names.output)
        except ShortRenderError as exc:
            raise OutputReadError(str(exc)) from exc
        if not payload:
            raise OutputReadError(f"{names.output} is empty")

        asset = self.outputs.publish(payload)
        self.workspace.discard([*clip_names, names.manifest, names.output])
        job.progress_percent = 100
        self.bus.set_progress(100)
        with self._state_lock:
            replaced = self._plan is not job.plan
        self.set_phase(RenderPhase.PLAN_READY if replaced else RenderPhase.COMPLETE)
        self.bus.append_status(STATUS_COMPLETE)
        LOGGER.info(
            "short_video.render.complete job=%s segments=%s bytes=%s",
            job.job_id,
            job.total_segments,
            asset.size,
        )
        return asset

    def close(self) -> None:
        self._detach_bus()


def create_engine(settings: EngineSettings) -> CodecEngine:
    return CodecEngine(
        ffmpeg_path=settings.ffmpeg_path,
        log_level=settings.ffmpeg_log_level,
        root_parent=settings.engine_root,
        invoke_timeout_seconds=settings.invoke_timeout_seconds,
    )


def create_orchestrator(
    engine: RenderEngine, settings: EngineSettings
) -> EncodeOrchestrator:
    """Wire an orchestrator, its bus and its output slot around ``engine``."""
    return EncodeOrchestrator(
        engine=engine,
        bus=ProgressBus(capacity=settings.status_capacity),
        outputs=OutputSlot(),
        synthesizer=SlideSynthesizer(typography=load_typography(settings.fonts_dir)),
    )
