"""Render one still slide per beat into a PNG buffer."""

from __future__ import annotations

from dataclasses import dataclass, field
import io
import logging
import os
from typing import Callable, Tuple

import numpy as np
from PIL import Image, ImageColor, ImageDraw, ImageFont

from domain.render_errors import SlideRenderError
from domain.short_plan import Segment

LOGGER = logging.getLogger("short_video.slide_synthesizer")

VIDEO_WIDTH = 1080
VIDEO_HEIGHT = 1920
HUE_SWEEP_DEGREES = 300
SCRIM_RGBA = (6, 10, 28, 115)
PANEL_RGBA = (255, 255, 255, 51)
PANEL_INSET = 72
DIVIDER_RGBA = (10, 10, 15, 20)
DIVIDER_BOX = (100, 200, 100, 4)
CONTENT_X = 112
CONTENT_WIDTH = 856
HEADLINE_Y = 150
HEADLINE_SIZE = 40
HEADLINE_RGBA = (255, 255, 255, 184)
CAPTION_Y = 320
CAPTION_SIZE = 92
CAPTION_LINE_HEIGHT = 110
CAPTION_RGBA = (255, 255, 255, 255)
NARRATION_GAP = 80
NARRATION_SIZE = 42
NARRATION_LINE_HEIGHT = 60
NARRATION_RGBA = (226, 232, 255, 204)
CUE_BOTTOM_OFFSET = 220
CUE_SIZE = 32
CUE_RGBA = (15, 15, 25, 66)
BADGE_SIZE = 48
BADGE_RIGHT_MARGIN = 120
BADGE_RGBA = (255, 255, 255, 219)


@dataclass(frozen=True)
class SlideTypography:
    """Font files for regular and bold weights; ``None`` uses Pillow's default."""

    regular_font_path: str | None = None
    bold_font_path: str | None = None


@dataclass(frozen=True)
class WrappedLine:
    """A committed line of wrapped text and its baseline."""

    text: str
    y: float


def list_font_files(fonts_dir: str) -> list[str]:
    """List font files from the fonts directory."""
    if not os.path.isdir(fonts_dir):
        raise SlideRenderError(f"fonts directory does not exist: {fonts_dir}")

    font_files: list[str] = []
    for entry_name in sorted(os.listdir(fonts_dir)):
        lower_name = entry_name.lower()
        if lower_name.endswith(".ttf") or lower_name.endswith(".otf"):
            font_files.append(os.path.join(fonts_dir, entry_name))

    if not font_files:
        raise SlideRenderError(f"no font files found in {fonts_dir}")
    return font_files


def load_typography(fonts_dir: str | None) -> SlideTypography:
    """Pick regular and bold fonts from a directory."""
    if fonts_dir is None:
        return SlideTypography()
    font_files = list_font_files(fonts_dir)
    bold_files = [path for path in font_files if "bold" in os.path.basename(path).lower()]
    regular_files = [path for path in font_files if path not in bold_files]
    regular = regular_files[0] if regular_files else font_files[0]
    bold = bold_files[0] if bold_files else regular
    LOGGER.info("short_video.slide.fonts regular=%s bold=%s", regular, bold)
    return SlideTypography(regular_font_path=regular, bold_font_path=bold)


def compute_gradient_stops(
    index: int, total: int
) -> Tuple[Tuple[int, int, int], Tuple[int, int, int]]:
    """Return the top and bottom gradient colours for a beat."""
    hue = (index / max(total - 1, 1)) * HUE_SWEEP_DEGREES
    top = ImageColor.getrgb(f"hsl({round((hue + 10) % 360)}, 82%, 60%)")
    bottom = ImageColor.getrgb(f"hsl({round((hue + 90) % 360)}, 92%, 28%)")
    return top[:3], bottom[:3]


def build_gradient_background(
    index: int, total: int, width: int, height: int
) -> Image.Image:
    """Build the vertical hue-sweep gradient for a beat."""
    top_rgb, bottom_rgb = compute_gradient_stops(index, total)
    top = np.array(top_rgb, dtype=np.float32)
    bottom = np.array(bottom_rgb, dtype=np.float32)
    alpha = np.linspace(0.0, 1.0, height, dtype=np.float32)[:, np.newaxis]
    column = (1.0 - alpha) * top + alpha * bottom
    gradient_array = np.repeat(column[:, np.newaxis, :], width, axis=1)
    np.clip(np.rint(gradient_array), 0, 255, out=gradient_array)
    return Image.fromarray(gradient_array.astype(np.uint8))


def wrap_lines(
    text: str,
    start_y: float,
    max_width: float,
    line_height: float,
    measure: Callable[[str], float],
) -> Tuple[list[WrappedLine], float]:
    """Greedy word wrap; returns the lines and the cursor below the block."""
    words = text.split(" ")
    line = ""
    cursor_y = start_y
    lines: list[WrappedLine] = []
    for word_index, word in enumerate(words):
        candidate = f"{line}{word} "
        if measure(candidate) > max_width and word_index > 0:
            lines.append(WrappedLine(text=line.rstrip(), y=cursor_y))
            line = f"{word} "
            cursor_y += line_height
        else:
            line = candidate
    lines.append(WrappedLine(text=line.rstrip(), y=cursor_y))
    return lines, cursor_y + line_height


def measure_text_width(
    draw_context: ImageDraw.ImageDraw,
    text_value: str,
    font: ImageFont.FreeTypeFont,
) -> float:
    """Measure text advance width using font metrics."""
    if not text_value:
        return 0.0
    return float(draw_context.textlength(text_value, font=font))


def draw_wrapped_text(
    draw_context: ImageDraw.ImageDraw,
    text: str,
    x: float,
    y: float,
    max_width: float,
    line_height: float,
    font: ImageFont.FreeTypeFont,
    fill: Tuple[int, int, int, int],
) -> float:
    """Draw word-wrapped text and return the cursor below the block."""
    lines, next_y = wrap_lines(
        text,
        y,
        max_width,
        line_height,
        lambda candidate: measure_text_width(draw_context, candidate, font),
    )
    for line in lines:
        draw_context.text((x, line.y), line.text, font=font, fill=fill, anchor="ls")
    return next_y


@dataclass
class SlideSynthesizer:
    """Composite the layered slide for a beat."""

    typography: SlideTypography = field(default_factory=SlideTypography)
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT
    font_cache: dict[Tuple[str | None, int], ImageFont.FreeTypeFont] = field(
        default_factory=dict
    )

    def load_font(self, bold: bool, size: int) -> ImageFont.FreeTypeFont:
        """Load a font for the weight and size, cached by path and size."""
        font_path = (
            self.typography.bold_font_path if bold else self.typography.regular_font_path
        )
        cache_key = (font_path, size)
        cached_font = self.font_cache.get(cache_key)
        if cached_font is not None:
            return cached_font
        try:
            if font_path is None:
                font = ImageFont.load_default(size=size)
            else:
                font = ImageFont.truetype(font_path, size=size)
        except (OSError, ValueError) as exc:
            raise SlideRenderError(
                f"failed to load font {font_path or 'default'} at size {size}"
            ) from exc
        self.font_cache[cache_key] = font
        return font

    def compose(
        self, segment: Segment, index: int, total: int, headline: str
    ) -> Image.Image:
        """Draw every layer of the slide and return the RGB image."""
        try:
            canvas = build_gradient_background(index, total, self.width, self.height)
        except (MemoryError, ValueError) as exc:
            raise SlideRenderError(
                f"unable to acquire a {self.width}x{self.height} drawing surface"
            ) from exc
        draw = ImageDraw.Draw(canvas, "RGBA")

        draw.rectangle((0, 0, self.width, self.height), fill=SCRIM_RGBA)
        draw.rectangle(
            (
                PANEL_INSET,
                PANEL_INSET,
                self.width - PANEL_INSET - 1,
                self.height - PANEL_INSET - 1,
            ),
            fill=PANEL_RGBA,
        )
        divider_x, divider_y, divider_inset, divider_height = DIVIDER_BOX
        draw.rectangle(
            (
                divider_x,
                divider_y,
                divider_x + self.width - 2 * divider_inset - 1,
                divider_y + divider_height - 1,
            ),
            fill=DIVIDER_RGBA,
        )

        draw.text(
            (CONTENT_X, HEADLINE_Y),
            headline,
            font=self.load_font(True, HEADLINE_SIZE),
            fill=HEADLINE_RGBA,
            anchor="ls",
        )
        caption_bottom = draw_wrapped_text(
            draw,
            segment.caption,
            CONTENT_X,
            CAPTION_Y,
            CONTENT_WIDTH,
            CAPTION_LINE_HEIGHT,
            self.load_font(False, CAPTION_SIZE),
            CAPTION_RGBA,
        )
        draw_wrapped_text(
            draw,
            segment.narration,
            CONTENT_X,
            caption_bottom + NARRATION_GAP,
            CONTENT_WIDTH,
            NARRATION_LINE_HEIGHT,
            self.load_font(False, NARRATION_SIZE),
            NARRATION_RGBA,
        )
        draw.text(
            (CONTENT_X, self.height - CUE_BOTTOM_OFFSET),
            segment.visual_cue,
            font=self.load_font(False, CUE_SIZE),
            fill=CUE_RGBA,
            anchor="ls",
        )

        badge_font = self.load_font(True, BADGE_SIZE)
        badge_text = f"{index + 1}/{total}"
        badge_x = self.width - measure_text_width(draw, badge_text, badge_font) - BADGE_RIGHT_MARGIN
        draw.text(
            (badge_x, HEADLINE_Y), badge_text, font=badge_font, fill=BADGE_RGBA, anchor="ls"
        )
        return canvas

    def render(self, segment: Segment, index: int, total: int, headline: str) -> bytes:
        """Render the slide for a beat and return PNG bytes."""
        canvas = self.compose(segment, index, total, headline)
        buffer = io.BytesIO()
        try:
            canvas.save(buffer, format="PNG")
        except OSError as exc:
            raise SlideRenderError(f"slide {index + 1} PNG encoding failed") from exc
        png_bytes = buffer.getvalue()
        if not png_bytes:
            raise SlideRenderError(f"slide {index + 1} PNG encoding produced no data")
        LOGGER.debug(
            "short_video.slide.rendered index=%s total=%s bytes=%s",
            index,
            total,
            len(png_bytes),
        )
        return png_bytes
