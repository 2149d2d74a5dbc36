"""Error taxonomy and stable codes for the short video pipeline."""

from __future__ import annotations

ENCODER_LOAD_CODE = "short_video.encoder.load_failed"
SLIDE_RENDER_CODE = "short_video.slide.render_failed"
SEGMENT_ENCODE_CODE = "short_video.encode.segment_failed"
STITCH_CODE = "short_video.encode.stitch_failed"
OUTPUT_READ_CODE = "short_video.output.read_failed"
ENGINE_FILE_CODE = "short_video.engine.file_error"
ENGINE_NOT_LOADED_CODE = "short_video.engine.not_loaded"
UNHANDLED_CODE = "short_video.unhandled_error"


class ShortRenderError(RuntimeError):
    """Runtime error with a stable error code."""

    status_label = "Render failed. Check logs for details."

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class EncoderLoadError(ShortRenderError):
    """The codec engine could not be initialised; the caller may retry."""

    status_label = "Unable to load encoder."

    def __init__(self, message: str) -> None:
        super().__init__(ENCODER_LOAD_CODE, message)


class SlideRenderError(ShortRenderError):
    """A slide could not be drawn or encoded."""

    status_label = "Slide rendering failed."

    def __init__(self, message: str) -> None:
        super().__init__(SLIDE_RENDER_CODE, message)


class SegmentEncodeError(ShortRenderError):
    """The engine failed to encode one segment clip."""

    def __init__(self, segment_index: int, message: str) -> None:
        super().__init__(SEGMENT_ENCODE_CODE, message)
        self.segment_index = segment_index

    @property
    def status_label(self) -> str:  # type: ignore[override]
        return f"Segment {self.segment_index + 1} failed to encode."


class StitchError(ShortRenderError):
    """Concatenating the segment clips failed."""

    status_label = "Stitching failed."

    def __init__(self, message: str) -> None:
        super().__init__(STITCH_CODE, message)


class OutputReadError(ShortRenderError):
    """The stitched output could not be read back from the engine."""

    status_label = "Rendered video could not be retrieved."

    def __init__(self, message: str) -> None:
        super().__init__(OUTPUT_READ_CODE, message)


class EngineFileError(ShortRenderError):
    """A file operation inside the engine workspace failed."""

    def __init__(self, message: str, code: str = ENGINE_FILE_CODE) -> None:
        super().__init__(code, message)
