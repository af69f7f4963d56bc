"""Pixel comparator: counts differing pixels between two same-sized screenshots."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Protocol

from PIL import Image, ImageChops

from pixelwatch.errors import DimensionMismatchError

logger = logging.getLogger(__name__)

DIFF_COLOR = (255, 0, 0, 255)


@dataclass
class DiffOutput:
    diff_ratio: float
    diff_pixel_count: int
    total_pixels: int
    diff_image: bytes | None = None  # PNG bytes


class Comparator(Protocol):
    def diff(self, image_a: bytes, image_b: bytes) -> DiffOutput: ...


class PixelComparator:
    """Compare two PNG buffers pixel by pixel.

    A pixel counts as different when any RGBA channel differs by more than
    ``color_threshold`` (fraction of full scale).
    """

    def __init__(self, color_threshold: float = 0.1):
        self.color_threshold = color_threshold

    def diff(self, image_a: bytes, image_b: bytes) -> DiffOutput:
        baseline = Image.open(io.BytesIO(image_a)).convert("RGBA")
        current = Image.open(io.BytesIO(image_b)).convert("RGBA")

        if baseline.size != current.size:
            raise DimensionMismatchError(baseline.size, current.size)

        width, height = baseline.size
        total = width * height
        if total == 0:
            return DiffOutput(0.0, 0, 0, None)

        # Largest per-channel delta for every pixel
        delta = ImageChops.difference(baseline, current)
        r, g, b, a = delta.split()
        max_delta = ImageChops.lighter(ImageChops.lighter(r, g), ImageChops.lighter(b, a))

        cutoff = int(self.color_threshold * 255)
        mask = max_delta.point(lambda v: 255 if v > cutoff else 0)
        diff_count = mask.histogram()[255]

        # Faded baseline with changed pixels painted red
        faded = Image.blend(baseline, Image.new("RGBA", baseline.size, (255, 255, 255, 255)), 0.7)
        overlay = Image.composite(Image.new("RGBA", baseline.size, DIFF_COLOR), faded, mask)
        buf = io.BytesIO()
        overlay.save(buf, format="PNG")

        ratio = diff_count / total
        logger.debug("Pixel diff: %d/%d (%.2f%%)", diff_count, total, ratio * 100)
        return DiffOutput(ratio, diff_count, total, buf.getvalue())
