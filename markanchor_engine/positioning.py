"""Final absolute positions for verified annotations."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Sequence

from .matcher import index_blocks
from .types import MATCHED, EnrichedAnnotation, OcrBlock, Offset, PixelBox, Zone
from .units import resolve
from .utils import clamp
from .zones import clamp_to_zone, find_matching_zone

logger = logging.getLogger(__name__)


def position_annotations(
    annotations: Iterable[EnrichedAnnotation],
    ocr_blocks: Sequence[OcrBlock],
    offset: Offset | None,
    page_width: float,
    page_height: float,
    zones: dict[str, list[Zone]] | None = None,
    *,
    stagger_px: float = 15,
    **thresholds: float,
) -> list[EnrichedAnnotation]:
    """MATCHED -> its block's box; UNMATCHED -> model position + offset, or None.

    Several unmatched marks reported at the same model position are
    staggered to the right so they stay readable.
    """
    blocks_by_id = index_blocks(ocr_blocks)
    reuse: dict[tuple[int, int, int], int] = {}
    out: list[EnrichedAnnotation] = []

    for anno in annotations:
        if anno.match_status == MATCHED and anno.block_id in blocks_by_id:
            b = blocks_by_id[anno.block_id].box
            out.append(replace(anno, position=PixelBox(b.x, b.y, b.width, b.height)))
            continue

        if anno.ai_position is None:
            out.append(anno.note("unplaced"))
            continue
        if offset is None:
            out.append(anno.note("offset_unresolved"))
            continue

        px = resolve(anno.ai_position, page_width, page_height, **thresholds).translate(offset.offset_x, offset.offset_y)
        key = (anno.page_index or 0, round(px.x), round(px.y))
        used = reuse.get(key, 0)
        reuse[key] = used + 1
        if used:
            px = px.translate(used * stagger_px, 0)

        zone = find_matching_zone(anno.sub_question or "", zones or {}, anno.page_index)
        if zone is not None:
            px = clamp_to_zone(px, zone)
        if px.width > page_width or px.height > page_height:
            logger.warning("annotation %s box %.0fx%.0f does not fit the page", anno.mark, px.width, px.height)
            out.append(anno.note("position_out_of_page"))
            continue
        if not px.within(page_width, page_height):
            px = PixelBox(
                clamp(px.x, 0, page_width - px.width),
                clamp(px.y, 0, page_height - px.height),
                px.width,
                px.height,
            )
        out.append(replace(anno, position=px).note("model_position"))
    return out


def resolve_collisions(
    annotations: Sequence[EnrichedAnnotation],
    page_width: float,
    page_height: float,
    zones: dict[str, list[Zone]] | None = None,
    *,
    padding: float = 5,
) -> list[EnrichedAnnotation]:
    """Push movable annotations vertically off anything they overlap.

    MATCHED annotations never move and a moved box stays on the page.
    Output keeps input order.
    """
    placed = list(annotations)
    if len(placed) <= 1:
        return placed

    order = sorted(
        range(len(placed)),
        key=lambda i: (0 if placed[i].match_status == MATCHED else 1, placed[i].position.y if placed[i].position else 0),
    )
    for i in order:
        mobile = placed[i]
        if mobile.match_status == MATCHED or mobile.position is None:
            continue
        zone = find_matching_zone(mobile.sub_question or "", zones or {}, mobile.page_index)
        box = mobile.position

        for j in order:
            if j == i:
                continue
            fixed = placed[j]
            if fixed.position is None or (fixed.page_index or 0) != (mobile.page_index or 0):
                continue
            if not box.overlaps(fixed.position, padding):
                continue

            fb = fixed.position
            below = box.center[1] > fb.center[1]
            new_y = fb.bottom + 2 if below else fb.y - box.height - 2
            floor, ceiling = 0.0, page_height - box.height
            if zone is not None:
                floor, ceiling = zone.start_y + 5, min(ceiling, zone.end_y - box.height - 5)
            if new_y < floor:
                new_y = fb.bottom + 2
            new_y = max(0.0, min(new_y, ceiling))
            logger.debug("moving %s from y=%.1f to y=%.1f", mobile.mark, box.y, new_y)
            box = PixelBox(clamp(box.x, 0, max(0.0, page_width - box.width)), new_y, box.width, box.height)

        if box != mobile.position:
            placed[i] = replace(mobile, position=box).note("collision_shifted")
    return placed
