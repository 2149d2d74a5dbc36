"""Domain types and parsing for short video plans."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Sequence, Tuple

INVALID_PLAN_CODE = "short_video.input.invalid_plan"
INVALID_SEGMENT_CODE = "short_video.input.invalid_segment"
INVALID_STYLE_CODE = "short_video.input.invalid_style"
EMPTY_TOPIC_CODE = "short_video.input.empty_topic"
PLAN_FILE_CODE = "short_video.input.plan_file"


class PlanValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ShortStyle(str, Enum):
    """Supported narrative styles for a generated plan."""

    EDUCATIONAL = "educational"
    STORY = "story"
    PRODUCT = "product"
    MOTIVATIONAL = "motivational"


@dataclass(frozen=True)
class Segment:
    """One timed beat of the short."""

    id: str
    label: str
    caption: str
    narration: str
    visual_cue: str
    duration: float

    def __post_init__(self) -> None:
        if not self.id.strip():
            raise PlanValidationError(INVALID_SEGMENT_CODE, "segment id must be non-empty")
        if isinstance(self.duration, bool) or not isinstance(self.duration, (int, float)):
            raise PlanValidationError(
                INVALID_SEGMENT_CODE, f"segment {self.id} duration must be a number"
            )
        if not math.isfinite(self.duration) or self.duration <= 0:
            raise PlanValidationError(
                INVALID_SEGMENT_CODE, f"segment {self.id} duration must be positive"
            )
        if round(self.duration, 2) <= 0:
            raise PlanValidationError(
                INVALID_SEGMENT_CODE,
                f"segment {self.id} duration must be at least 0.01 seconds",
            )


@dataclass(frozen=True)
class Plan:
    """Ordered beat map for one short; segment order is playback order."""

    title: str
    hook: str
    summary: str
    cta: str
    segments: Tuple[Segment, ...]

    def __post_init__(self) -> None:
        if not self.segments:
            raise PlanValidationError(INVALID_PLAN_CODE, "plan contains no segments")
        seen_ids: set[str] = set()
        for segment in self.segments:
            if segment.id in seen_ids:
                raise PlanValidationError(
                    INVALID_PLAN_CODE, f"duplicate segment id: {segment.id!r}"
                )
            seen_ids.add(segment.id)


def parse_short_style(value: str) -> ShortStyle:
    """Parse a style name into a ShortStyle."""
    normalized = value.strip().lower()
    try:
        return ShortStyle(normalized)
    except ValueError as exc:
        raise PlanValidationError(
            INVALID_STYLE_CODE, f"invalid style: {value!r}"
        ) from exc


def estimate_runtime(segments: Sequence[Segment]) -> float:
    """Return the total runtime in seconds."""
    return sum(segment.duration for segment in segments)


def parse_plan_string(payload: dict[str, object], key: str, label: str) -> str:
    """Parse a required string field."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise PlanValidationError(INVALID_PLAN_CODE, f"{label} must be a string")
    return value


def parse_segment(value: object, position: int) -> Segment:
    """Parse a segment JSON object."""
    if not isinstance(value, dict):
        raise PlanValidationError(
            INVALID_SEGMENT_CODE, f"segment {position} must be an object"
        )
    label = f"segment {position}"
    visual_key = "visual_cue" if "visual_cue" in value else "visualCue"
    duration = value.get("duration")
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise PlanValidationError(
            INVALID_SEGMENT_CODE, f"{label} duration must be a number"
        )
    return Segment(
        id=parse_plan_string(value, "id", f"{label} id"),
        label=parse_plan_string(value, "label", f"{label} label"),
        caption=parse_plan_string(value, "caption", f"{label} caption"),
        narration=parse_plan_string(value, "narration", f"{label} narration"),
        visual_cue=parse_plan_string(value, visual_key, f"{label} visual_cue"),
        duration=float(duration),
    )


def parse_plan_payload(payload: object) -> Plan:
    """Parse a plan JSON object into a Plan."""
    if not isinstance(payload, dict):
        raise PlanValidationError(INVALID_PLAN_CODE, "plan must be an object")
    raw_segments = payload.get("segments")
    if not isinstance(raw_segments, list):
        raise PlanValidationError(INVALID_PLAN_CODE, "segments must be a list")
    segments = tuple(
        parse_segment(raw_segment, position)
        for position, raw_segment in enumerate(raw_segments)
    )
    return Plan(
        title=parse_plan_string(payload, "title", "title"),
        hook=parse_plan_string(payload, "hook", "hook"),
        summary=parse_plan_string(payload, "summary", "summary"),
        cta=parse_plan_string(payload, "cta", "cta"),
        segments=segments,
    )


def serialize_plan(plan: Plan) -> dict[str, object]:
    """Serialize a plan into a JSON-ready payload."""
    return {
        "title": plan.title,
        "hook": plan.hook,
        "summary": plan.summary,
        "cta": plan.cta,
        "runtime_seconds": estimate_runtime(plan.segments),
        "segments": [
            {
                "id": segment.id,
                "label": segment.label,
                "caption": segment.caption,
                "narration": segment.narration,
                "visual_cue": segment.visual_cue,
                "duration": segment.duration,
            }
            for segment in plan.segments
        ],
    }
