"""Bind grading annotations to OCR blocks and veto unsafe bindings.

Every check here can only demote MATCHED to UNMATCHED, never the reverse
(binding is the one step that creates MATCHED claims, and its output still
goes through sanitize). A demoted annotation keeps its reasoning and gets a
diagnostic so the renderer can show it as an un-anchored note.
"""
from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable, Sequence

from .labels import is_bare_label
from .text import matches_printed_text, missing_digits, normalize_for_rescue, verify_match
from .types import MATCHED, UNMATCHED, Annotation, EnrichedAnnotation, OcrBlock, Offset, PixelBox, Zone
from .units import resolve
from .zones import find_matching_zone, is_point_in_zone

logger = logging.getLogger(__name__)

_MARK_ATOM_RE = re.compile(r"^[A-Z]+\d+$")
INSTRUCTION_TAG = "[PRINTED_INSTRUCTION]"


def split_compound_marks(annotations: Iterable[Annotation]) -> list[Annotation]:
    """'M1, A1' -> two annotations, 'M1' and 'A1'."""
    out: list[Annotation] = []
    for anno in annotations:
        parts = anno.mark.replace(",", " ").split()
        if len(parts) > 1 and all(_MARK_ATOM_RE.match(p) for p in parts):
            logger.debug("splitting compound mark %r into %d", anno.mark, len(parts))
            out.extend(replace(anno, mark=p) for p in parts)
        else:
            out.append(anno)
    return out


def index_blocks(ocr_blocks: Iterable[OcrBlock]) -> dict[str, OcrBlock]:
    """id -> block; the first pass to report an id wins."""
    by_id: dict[str, OcrBlock] = {}
    for b in ocr_blocks:
        by_id.setdefault(b.id, b)
    return by_id


def _zone_for(anno_sub_question: str | None, zones: dict[str, list[Zone]] | None, page_index: int | None) -> Zone | None:
    if not zones or not anno_sub_question:
        return None
    return find_matching_zone(anno_sub_question, zones, page_index)


def _is_candidate(
    block: OcrBlock,
    claimed: str,
    *,
    labels: Sequence[str],
    veto_texts: Sequence[str],
    threshold: float,
    fingerprint_tokens: int,
    min_token_length: int,
    rescue_min_length: int,
) -> bool:
    if not block.text.strip() or is_bare_label(block.text, labels):
        return False
    if INSTRUCTION_TAG in block.text or matches_printed_text(block.text, veto_texts):
        logger.debug("block %s is printed question text, not a candidate", block.id)
        return False
    if verify_match(
        claimed,
        block.text,
        threshold=threshold,
        fingerprint_tokens=fingerprint_tokens,
        min_token_length=min_token_length,
    ):
        return True
    target = normalize_for_rescue(claimed)
    if len(target) < rescue_min_length:
        return False
    text = normalize_for_rescue(block.text)
    return target in text or (len(text) > 3 and text in target)


def _model_y(
    anno: Annotation,
    page_width: float | None,
    page_height: float | None,
    offset: Offset | None,
) -> float | None:
    if anno.ai_position is None:
        return None
    if page_width is None or page_height is None:
        return anno.ai_position.y
    y = resolve(anno.ai_position, page_width, page_height).y
    return y + offset.offset_y if offset is not None else y


def bind(
    annotations: Iterable[Annotation],
    ocr_blocks: Sequence[OcrBlock],
    zones: dict[str, list[Zone]] | None = None,
    *,
    labels: Sequence[str] = (),
    veto_texts: Sequence[str] = (),
    page_width: float | None = None,
    page_height: float | None = None,
    offset: Offset | None = None,
    threshold: float = 0.4,
    fingerprint_tokens: int = 15,
    min_token_length: int = 3,
    rescue_min_length: int = 4,
) -> list[Annotation]:
    """Attach a block reference to annotations that arrive without one.

    Candidates are blocks whose text overlaps the claimed student text and
    that are not printed question text; when the annotation's zone is known
    only blocks inside it count. With a model position the candidate closest
    to it vertically wins, input order breaking ties; without one the first
    candidate wins.
    """
    out: list[Annotation] = []
    for anno in annotations:
        if anno.candidate_block_ref or not anno.claimed_student_text.strip():
            out.append(anno)
            continue

        zone = _zone_for(anno.sub_question, zones, anno.page_index)
        candidates = [
            block
            for block in ocr_blocks
            if (zone is None or (block.page_index == zone.page_index and is_point_in_zone(block.box.y, zone, 0)))
            and _is_candidate(
                block,
                anno.claimed_student_text,
                labels=labels,
                veto_texts=veto_texts,
                threshold=threshold,
                fingerprint_tokens=fingerprint_tokens,
                min_token_length=min_token_length,
                rescue_min_length=rescue_min_length,
            )
        ]
        if not candidates:
            out.append(anno)
            continue

        chosen = candidates[0]
        model_y = _model_y(anno, page_width, page_height, offset)
        if model_y is not None and len(candidates) > 1:
            # min() keeps the first of equal distances
            chosen = min(candidates, key=lambda b: abs(b.box.y - model_y))
        logger.debug("bound %r (%s) to block %s", anno.claimed_student_text[:30], anno.mark, chosen.id)
        out.append(
            replace(anno, candidate_block_ref=chosen.id, match_status=MATCHED, page_index=chosen.page_index)
        )
    return out


def digit_veto_suffix(digit: str, block_id: str) -> str:
    return f"[digit-veto: '{digit}' missing from block {block_id}]"


def sanitize(
    raw_annotations: Iterable[Annotation | EnrichedAnnotation],
    ocr_blocks: Iterable[OcrBlock],
    *,
    page_width: float | None = None,
    page_height: float | None = None,
    zones: dict[str, list[Zone]] | None = None,
    labels: Sequence[str] = (),
    veto_texts: Sequence[str] = (),
) -> list[EnrichedAnnotation]:
    """Verify every MATCHED claim against the block it references.

    Non-MATCHED annotations pass through. A MATCHED annotation is demoted
    when its block is missing, when a digit of the claimed text is absent
    from the block's OCR text, when the block lies off the page, when the
    block is only a question label, printed question text or the zone
    header, or when it sits outside the annotation's zone.
    """
    blocks_by_id = index_blocks(ocr_blocks)
    out: list[EnrichedAnnotation] = []
    for raw in raw_annotations:
        anno = raw if isinstance(raw, EnrichedAnnotation) else EnrichedAnnotation.from_annotation(raw)

        if anno.match_status != MATCHED:
            out.append(anno)
            continue
        if not anno.block_id:
            out.append(anno.demote("matched_without_block"))
            continue

        block = blocks_by_id.get(anno.block_id)
        if block is None:
            logger.warning("annotation %s references unknown block %s", anno.mark, anno.block_id)
            out.append(anno.demote("block_not_found"))
            continue

        missing = missing_digits(anno.claimed_student_text, block.text)
        if missing:
            d = missing[0]
            logger.warning(
                "digit veto: %r vs block %s %r (missing %s)",
                anno.claimed_student_text, block.id, block.text, d,
            )
            out.append(anno.demote(f"digit_veto:{d}", digit_veto_suffix(d, block.id)))
            continue

        if page_width is not None and page_height is not None:
            b = block.box
            if not PixelBox(b.x, b.y, b.width, b.height).within(page_width, page_height):
                logger.warning("block %s lies outside the %sx%s page", block.id, page_width, page_height)
                out.append(anno.demote("block_out_of_bounds"))
                continue

        if labels and is_bare_label(block.text, labels):
            logger.info("annotation %s bound to label block %s %r", anno.mark, block.id, block.text)
            out.append(anno.demote("label_block"))
            continue

        if INSTRUCTION_TAG in block.text:
            out.append(anno.demote("printed_instruction"))
            continue
        printed = matches_printed_text(block.text, veto_texts)
        if printed is not None:
            logger.info("annotation %s bound to printed text %r (block %s)", anno.mark, printed[:40], block.id)
            out.append(anno.demote("classification_text"))
            continue

        zone = _zone_for(anno.sub_question, zones, block.page_index)
        if zone is not None:
            if zone.header_block_id == block.id:
                out.append(anno.demote("header_block"))
                continue
            if block.page_index != zone.page_index or not is_point_in_zone(block.box.y, zone, 0):
                logger.info("annotation %s block %s is outside zone %s", anno.mark, block.id, zone.label)
                out.append(anno.demote("out_of_zone"))
                continue

        out.append(anno if anno.page_index is not None else replace(anno, page_index=block.page_index))
    return out


def count_status(annotations: Iterable[EnrichedAnnotation]) -> dict[str, int]:
    counts = {MATCHED: 0, UNMATCHED: 0}
    for a in annotations:
        counts[a.match_status] = counts.get(a.match_status, 0) + 1
    return counts
