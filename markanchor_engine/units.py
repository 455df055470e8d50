"""Coordinate unit inference and conversion to absolute pixels.

Collaborators report boxes in one of three conventions:
- percentage (0-100 of the page)
- parts-per-thousand (0-1000 of the page)
- raw pixels

When a box carries no unit tag the convention is inferred from the largest
of its four values. Values between the percentage and pixel thresholds are
ambiguous (a 764px-wide image collides with the 0-1000 scale); they default
to parts-per-thousand. That default is a guess, so producers that know their
unit should tag it.
"""
from __future__ import annotations

from typing import Iterable

from .types import Box, PixelBox, Unit
from .utils import clamp

PERCENTAGE_MAX = 101.0
PIXEL_MIN_EXCLUSIVE = 1001.0

_DENOMINATORS: dict[str, float] = {
    "percentage": 100.0,
    "parts_per_thousand": 1000.0,
}


def detect_unit(
    values: Iterable[float],
    *,
    percentage_max: float = PERCENTAGE_MAX,
    pixel_min_exclusive: float = PIXEL_MIN_EXCLUSIVE,
) -> Unit:
    m = max((float(v) for v in values), default=0.0)
    if m <= percentage_max:
        return "percentage"
    if m > pixel_min_exclusive:
        return "pixel"
    return "parts_per_thousand"


def effective_unit(box: Box, explicit_unit: Unit | None = None, **thresholds: float) -> Unit:
    return explicit_unit or box.unit or detect_unit(box.values, **thresholds)


def resolve(
    box: Box,
    page_width: float,
    page_height: float,
    explicit_unit: Unit | None = None,
    **thresholds: float,
) -> PixelBox:
    """Convert a box to absolute pixels for a page of the given size."""
    unit = effective_unit(box, explicit_unit, **thresholds)
    if unit == "pixel":
        return PixelBox(box.x, box.y, box.width, box.height)

    den = _DENOMINATORS[unit]
    return PixelBox(
        x=box.x / den * page_width,
        y=box.y / den * page_height,
        width=box.width / den * page_width,
        height=box.height / den * page_height,
    )


def to_ppt(box: Box, page_width: float, page_height: float, **thresholds: float) -> Box:
    """Standardize a box to the 0-1000 scale."""
    px = resolve(box, page_width, page_height, **thresholds)
    sx = 1000.0 / page_width if page_width else 0.0
    sy = 1000.0 / page_height if page_height else 0.0
    return Box(px.x * sx, px.y * sy, px.width * sx, px.height * sy, "parts_per_thousand")


def resolve_pixels(
    box: Box,
    page_width: float,
    page_height: float,
    *,
    offset_x: float = 0.0,
    offset_y: float = 0.0,
    clamp_y: tuple[float, float] | None = None,
    pad: float = 5.0,
    **thresholds: float,
) -> PixelBox:
    """Resolve, translate by an offset, and optionally clamp y into a band.

    clamp_y is (start_y, end_y); the result's y is kept inside
    [start_y + pad, end_y - pad].
    """
    px = resolve(box, page_width, page_height, **thresholds).translate(offset_x, offset_y)
    if clamp_y is None:
        return px
    start_y, end_y = clamp_y
    y = clamp(px.y, start_y + pad, max(start_y + pad, end_y - pad))
    return PixelBox(px.x, y, px.width, px.height)


def normalize_block_boxes(blocks, page_width: float, page_height: float, **thresholds: float):
    """Return blocks with every box resolved to pixel units."""
    return [
        b.with_box(resolve(b.box, page_width, page_height, **thresholds).as_box())
        for b in blocks
    ]
