"""Question landmark detection and zone building.

A landmark is the OCR block that carries a question label ("6", "6a",
"(a)"); its position is the local origin for everything written under that
label. Zones turn the landmark list into horizontal strips of the page, one
per label, used to keep annotation bindings inside their own question.

Blocks are expected to be in pixel units already (see units.resolve).
"""
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Iterable

from .labels import (
    anchor_kind,
    is_first_child,
    is_root_label,
    normalize_label,
    parent_label,
    split_label,
)
from .text import verify_match
from .types import Landmark, OcrBlock, PixelBox, Zone
from .utils import natural_sort_key

logger = logging.getLogger(__name__)

_KIND_RANK = {"exact": 3, "sub": 2, "parent": 1}
_ABSORBING_SUFFIXES = ("a", "1", "ai", "i", "parta")

STOP_MARKERS = ("total for question", "marks)", "total marks")


def _pixel_box(block: OcrBlock) -> PixelBox:
    b = block.box
    return PixelBox(b.x, b.y, b.width, b.height)


def sort_blocks(blocks: Iterable[OcrBlock]) -> list[OcrBlock]:
    """Page order, then top-to-bottom; input order breaks ties."""
    return sorted(blocks, key=lambda b: (b.page_index, b.box.y))


def _cutoff_index(blocks: list[OcrBlock], next_question_text: str | None) -> int:
    if not next_question_text:
        return len(blocks)
    for idx, b in enumerate(blocks):
        if verify_match(next_question_text, b.text):
            logger.debug("zone scan bounded at block %s (next question text)", b.id)
            return idx
    return len(blocks)


def _is_footer_noise(block: OcrBlock, page_height: float, footer_ratio: float) -> bool:
    if "question" in block.text.lower():
        return False
    return block.box.y > page_height * footer_ratio and len(block.text.strip()) <= 4


def _find_anchor(
    blocks: list[OcrBlock],
    start: int,
    label: str,
    next_label: str | None,
    page_height: float,
    footer_ratio: float,
) -> tuple[int, OcrBlock] | None:
    best: tuple[int, OcrBlock] | None = None
    best_rank = 0
    for idx in range(start, len(blocks)):
        block = blocks[idx]
        kind = anchor_kind(block.text, label)

        if kind is None and next_label is not None:
            next_kind = anchor_kind(block.text, next_label)
            if next_kind in ("exact", "sub") and not _is_footer_noise(block, page_height, footer_ratio):
                logger.debug("label %s: search stopped at next label %s (block %s)", label, next_label, block.id)
                break

        if kind is None:
            continue
        if _is_footer_noise(block, page_height, footer_ratio):
            logger.debug("label %s: skipping footer block %s %r", label, block.id, block.text)
            continue

        rank = _KIND_RANK[kind]
        if rank > best_rank:
            best, best_rank = (idx, block), rank
            if kind == "exact":
                break
    return best


def detect_zones(
    ocr_blocks: list[OcrBlock],
    page_height: float,
    expected_labels: list[str],
    next_question_text: str | None = None,
    *,
    footer_ratio: float = 0.92,
) -> list[Landmark]:
    """Build the label -> landmark table for one question.

    Labels are searched in the order given, each below the previous anchor.
    Missing roots are bridged to their first child ("a"/"i"/"1"), missing
    children inherit their parent's landmark. Returned in expected order.
    """
    blocks = sort_blocks(ocr_blocks)
    blocks = blocks[: _cutoff_index(blocks, next_question_text)]

    found: dict[str, Landmark] = {}
    pos = 0
    for i, label in enumerate(expected_labels):
        next_label = expected_labels[i + 1] if i + 1 < len(expected_labels) else None
        hit = _find_anchor(blocks, pos, label, next_label, page_height, footer_ratio)
        if hit is None:
            logger.debug("label %s could not be anchored from block index %d", label, pos)
            continue
        idx, block = hit
        found[label] = Landmark(label=label, box=_pixel_box(block), page_index=block.page_index, header_block_id=block.id)
        pos = idx + 1

    # Root content often starts unlabeled and belongs to the first sub-part.
    for label in expected_labels:
        if label in found or not is_root_label(label):
            continue
        base, _ = split_label(label)
        children = [
            c for c in expected_labels
            if c != label and (parent_label(c) == base or not split_label(c)[0])
        ]
        if children and is_first_child(children[0]) and children[0] in found:
            child = found[children[0]]
            logger.info("bridging root %s to first child %s", label, children[0])
            found[label] = replace(child, label=label)

    for label in expected_labels:
        if label in found:
            continue
        parent = parent_label(label)
        if parent is None:
            continue
        parent_hit = next((found[k] for k in found if normalize_label(k) == parent), None)
        if parent_hit is not None:
            logger.info("label %s inherits parent %s landmark", label, parent)
            found[label] = replace(parent_hit, label=label)

    return [found[label] for label in expected_labels if label in found]


def _find_stop_marker(
    blocks: list[OcrBlock],
    page_index: int,
    min_y: float,
    markers: list[str],
) -> OcrBlock | None:
    for b in blocks:
        if b.page_index != page_index or b.box.y < min_y:
            continue
        t = b.text.lower()
        if any(m in t for m in markers):
            return b
    return None


def _absorbed_roots(landmarks: list[Landmark]) -> set[int]:
    """Indices of numeric roots swallowed by their first child on the same page."""
    absorbed: set[int] = set()
    for i in range(len(landmarks) - 1):
        cur, nxt = landmarks[i], landmarks[i + 1]
        if cur.page_index != nxt.page_index:
            continue
        root = normalize_label(cur.label)
        if not root.isdigit():
            continue
        child = normalize_label(nxt.label)
        if child.startswith(root) and child[len(root):] in _ABSORBING_SUFFIXES:
            logger.debug("zone %s absorbs root %s on page %d", nxt.label, cur.label, cur.page_index)
            absorbed.add(i)
    return absorbed


def build_semantic_zones(
    landmarks: list[Landmark],
    page_width: float,
    page_height: float,
    ocr_blocks: Iterable[OcrBlock] = (),
    next_question_text: str | None = None,
    *,
    margin_ratio: float = 0.06,
    stop_marker_pad_px: float = 50,
    min_zone_height_px: float = 100,
    stop_markers: Iterable[str] = STOP_MARKERS,
) -> dict[str, list[Zone]]:
    """Turn landmarks into per-label page strips.

    The first landmark on a page owns the top margin, each zone runs down to
    the next landmark on the same page, and the last one stops at a
    "Total for Question" style marker or the bottom margin.
    """
    ordered = sorted(landmarks, key=lambda l: (l.page_index, l.box.y))
    absorbed = _absorbed_roots(ordered)
    final = [l for i, l in enumerate(ordered) if i not in absorbed]

    blocks = sort_blocks(ocr_blocks)
    markers = [m.lower() for m in stop_markers]
    if next_question_text:
        markers.append(next_question_text.lower())

    v_margin = math.floor(page_height * margin_ratio)
    h_margin = math.floor(page_width * margin_ratio)
    strip_width = page_width - 2 * h_margin

    zones: dict[str, list[Zone]] = {}
    seen_pages: set[int] = set()
    for i, cur in enumerate(final):
        nxt = final[i + 1] if i + 1 < len(final) else None

        start_y = cur.box.y - 150
        if cur.page_index not in seen_pages:
            start_y = v_margin
            seen_pages.add(cur.page_index)
        start_y = max(v_margin, start_y)

        if nxt is not None and nxt.page_index == cur.page_index:
            end_y = nxt.box.y
        else:
            stop = _find_stop_marker(blocks, cur.page_index, cur.box.y + 50, markers)
            if stop is not None:
                logger.debug("zone %s ends at stop marker %r", cur.label, stop.text[:30])
                end_y = stop.box.y + stop_marker_pad_px
            else:
                end_y = page_height - v_margin

        if end_y >= page_height - 20:
            end_y = page_height - v_margin
        end_y = max(end_y, start_y + min_zone_height_px)

        zones.setdefault(cur.label, []).append(
            Zone(
                label=cur.label,
                page_index=cur.page_index,
                start_y=start_y,
                end_y=end_y,
                x=h_margin,
                width=strip_width,
                header_block_id=cur.header_block_id,
            )
        )

    # A question that runs onto later pages owns the pages in between and
    # the top of the page where the next question starts.
    for i, cur in enumerate(final[:-1]):
        nxt = final[i + 1]
        if nxt.page_index <= cur.page_index:
            continue
        for p in range(cur.page_index + 1, nxt.page_index):
            zones[cur.label].append(
                Zone(cur.label, p, v_margin, page_height - v_margin, h_margin, strip_width)
            )
        if nxt.box.y > v_margin + 50:
            zones[cur.label].append(
                Zone(cur.label, nxt.page_index, v_margin, nxt.box.y, h_margin, strip_width)
            )

    return zones


def refine_zones(zones: dict[str, list[Zone]]) -> dict[str, list[Zone]]:
    """Merge same-page segments of a label, then pull overlapping ends up."""
    merged: dict[str, list[Zone]] = {}
    for label, segs in zones.items():
        by_page: dict[int, list[Zone]] = {}
        for z in segs:
            by_page.setdefault(z.page_index, []).append(z)
        out: list[Zone] = []
        for page_segs in by_page.values():
            first = page_segs[0]
            if len(page_segs) > 1:
                first = replace(
                    first,
                    start_y=min(z.start_y for z in page_segs),
                    end_y=max(z.end_y for z in page_segs),
                )
            out.append(first)
        merged[label] = out

    by_page_all: dict[int, list[tuple[str, int]]] = {}
    for label, segs in merged.items():
        for j, z in enumerate(segs):
            by_page_all.setdefault(z.page_index, []).append((label, j))

    for refs in by_page_all.values():
        refs.sort(key=lambda r: natural_sort_key(r[0]))
        for (lbl, j), (nlbl, nj) in zip(refs, refs[1:]):
            cur, nxt = merged[lbl][j], merged[nlbl][nj]
            if nxt.start_y < cur.end_y:
                logger.debug("tightening zone %s end %s -> %s", lbl, cur.end_y, nxt.start_y)
                merged[lbl][j] = replace(cur, end_y=nxt.start_y)
    return merged


def find_matching_zones(
    label: str,
    zones: dict[str, list[Zone]],
    question_prefix: str | None = None,
) -> list[Zone]:
    """All zones for a label, matching partial labels ('bi' -> '10bi')."""
    if not label or not zones:
        return []
    target = normalize_label(label)
    prefix = normalize_label(question_prefix) if question_prefix else ""
    keys = [
        (normalize_label(k), k)
        for k in sorted(zones, key=natural_sort_key)
        if zones[k] and normalize_label(k).startswith(prefix)
    ]
    for nk, key in keys:
        if nk == target:
            return zones[key]
    # 'i' -> '2ai' before '2aii': the shortest key ending in the label
    for nk, key in sorted(keys, key=lambda kv: len(kv[0])):
        if nk.endswith(target):
            return zones[key]
    # '10bi' -> 'bi' before 'i': the longest key the label ends in
    for nk, key in sorted(keys, key=lambda kv: len(kv[0]), reverse=True):
        if target.endswith(nk):
            return zones[key]
    if target.isdigit():
        # absorbed root: use the first zone of one of its children
        for key in sorted(zones, key=natural_sort_key):
            if normalize_label(key).startswith(target) and zones[key]:
                return zones[key]
    return []


def find_matching_zone(
    label: str,
    zones: dict[str, list[Zone]],
    page_index: int | None = None,
    question_prefix: str | None = None,
) -> Zone | None:
    matches = find_matching_zones(label, zones, question_prefix)
    if not matches:
        return None
    if page_index is None:
        return matches[0]
    on_page = [z for z in matches if z.page_index == page_index]
    if not on_page:
        return matches[0]
    if len(on_page) == 1:
        return on_page[0]
    return replace(
        on_page[0],
        start_y=min(z.start_y for z in on_page),
        end_y=max(z.end_y for z in on_page),
    )


def is_point_in_zone(y: float, zone: Zone, tolerance: float = 0.05) -> bool:
    buffer = zone.height * tolerance
    return zone.start_y - buffer <= y <= zone.end_y + buffer


def clamp_to_zone(box: PixelBox, zone: Zone, padding: float = 0.05) -> PixelBox:
    """Keep a box inside its zone, with an inner margin capped at 30px."""
    y_pad = min(30, round(zone.height * padding))
    zone_width = zone.width or 2 * box.width
    zone_end_x = zone.x + zone_width
    x_pad = min(30, round(zone_width * padding))

    x, y = box.x, box.y
    if y < zone.start_y + y_pad:
        y = zone.start_y + y_pad
    elif y + box.height > zone.end_y - y_pad:
        y = max(zone.start_y + y_pad, zone.end_y - box.height - y_pad)

    if x < zone.x + x_pad:
        x = zone.x + x_pad
    elif x + box.width > zone_end_x - x_pad:
        x = max(zone.x + x_pad, zone_end_x - box.width - x_pad)

    return PixelBox(x, y, box.width, box.height)
