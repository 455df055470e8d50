"""Sensor-frame to canonical landscape frame correction.

Some OCR passes report boxes in the camera sensor's frame, rotated 90 degrees
from the landscape canvas the rest of the engine works in. The remap is a
fixed formula; if any corrected box leaves the canvas the formula no longer
matches the input convention, so the whole batch is rejected rather than
masking individual blocks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from .types import Box, OcrBlock

logger = logging.getLogger(__name__)


class FrameConfigurationError(ValueError):
    """Canvas dimensions the corrector cannot work with."""


class BatchGeometryError(RuntimeError):
    """At least one corrected block fell outside the canvas."""

    def __init__(self, message: str, block_ids: list[str]):
        super().__init__(message)
        self.block_ids = block_ids


@dataclass(frozen=True)
class FrameCorrector:
    canvas_width: float
    canvas_height: float

    def __post_init__(self) -> None:
        if self.canvas_width <= 0 or self.canvas_height <= 0:
            raise FrameConfigurationError(
                f"invalid canvas dimensions: {self.canvas_width}x{self.canvas_height}"
            )
        if self.canvas_height > self.canvas_width:
            raise FrameConfigurationError(
                f"portrait canvas ({self.canvas_width}x{self.canvas_height}); corrector requires landscape"
            )
        logger.debug("frame corrector for %sx%s canvas", self.canvas_width, self.canvas_height)

    def transform_box(self, box: Box) -> Box:
        return Box(
            x=box.y,
            y=self.canvas_width - (box.x + box.width),
            width=box.height,
            height=box.width,
            unit=box.unit,
        )

    def inverse_box(self, box: Box) -> Box:
        return Box(
            x=self.canvas_width - (box.y + box.height),
            y=box.x,
            width=box.height,
            height=box.width,
            unit=box.unit,
        )

    def out_of_bounds_mask(self, boxes: list[Box]) -> np.ndarray:
        if not boxes:
            return np.zeros(0, dtype=bool)
        arr = np.array([b.values for b in boxes], dtype=np.float64)
        x, y, w, h = arr[:, 0], arr[:, 1], arr[:, 2], arr[:, 3]
        return (x < 0) | (y < 0) | (x + w > self.canvas_width) | (y + h > self.canvas_height)

    def transform_and_validate_all(self, raw_blocks: list[OcrBlock | dict[str, Any]]) -> list[OcrBlock]:
        blocks = [b if isinstance(b, OcrBlock) else OcrBlock.from_dict(b) for b in raw_blocks]
        corrected = [b.with_box(self.transform_box(b.box)) for b in blocks]

        bad = self.out_of_bounds_mask([b.box for b in corrected])
        if bad.any():
            bad_ids = [b.id for b, flag in zip(corrected, bad) if flag]
            first = corrected[int(np.argmax(bad))]
            logger.error(
                "frame correction rejected batch: %d/%d blocks out of %sx%s canvas (first: %r %s)",
                len(bad_ids), len(corrected), self.canvas_width, self.canvas_height,
                first.text[:30], first.box.to_dict(),
            )
            raise BatchGeometryError(
                f"block {first.id!r} ({first.text[:30]!r}) is outside the canvas after correction; "
                f"{len(bad_ids)} block(s) rejected",
                bad_ids,
            )

        logger.debug("corrected %d blocks", len(corrected))
        return corrected
