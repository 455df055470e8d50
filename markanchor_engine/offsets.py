"""Global origin for one question.

Annotation positions reported relative to a question are translated by this
offset to become page-absolute. Sources are tried in a fixed order and the
first one that yields a position wins:

1. classification region (already in pixels)
2. detection region for the question, or its numeric parent ("6a" -> "6")
3. landmark for the label, or the first child landmark for a root query
4. raw OCR anchor text "(a)" / "Q6", else the first raw block

A source that lands exactly on (0, 0) counts as empty so the chain goes on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Sequence

from .labels import contains_paren_label, is_first_child, label_patterns, normalize_label, split_label
from .types import Detection, Landmark, OcrBlock, Offset, PixelBox
from .units import resolve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OffsetContext:
    question_number: str
    page_width: float
    page_height: float
    classification_blocks: Sequence[PixelBox] = field(default_factory=tuple)
    detections: Sequence[Detection] = field(default_factory=tuple)
    target_question: Detection | None = None
    raw_ocr_blocks: Sequence[OcrBlock] = field(default_factory=tuple)
    landmarks: Sequence[Landmark] = field(default_factory=tuple)

    @property
    def sub_label(self) -> str:
        return split_label(self.question_number)[1]

    @property
    def base_label(self) -> str:
        return split_label(self.question_number)[0]


def _offset(x: float, y: float, source: str) -> Offset | None:
    if x == 0 and y == 0:
        return None
    return Offset(float(x), float(y), source)


def from_classification(ctx: OffsetContext) -> Offset | None:
    if not ctx.classification_blocks:
        return None
    first = ctx.classification_blocks[0]
    return _offset(first.x, first.y, "classification")


def from_detection(ctx: OffsetContext) -> Offset | None:
    region = ctx.target_question.region if ctx.target_question is not None else None
    source = "detection"

    if region is None:
        target = normalize_label(ctx.question_number)
        exact = next((d for d in ctx.detections if normalize_label(d.question_number) == target and d.region), None)
        if exact is not None:
            region = exact.region

    if region is None and ctx.base_label and ctx.sub_label:
        parent = next(
            (d for d in ctx.detections if normalize_label(d.question_number) == ctx.base_label and d.region),
            None,
        )
        if parent is not None:
            logger.debug("question %s inherits parent %s detection region", ctx.question_number, ctx.base_label)
            region = parent.region
            source = "detection_parent"

    if region is None:
        return None
    px = resolve(region, ctx.page_width, ctx.page_height)
    return _offset(px.x, px.y, source)


def from_landmarks(ctx: OffsetContext) -> Offset | None:
    if not ctx.landmarks:
        return None
    sub = ctx.sub_label
    full = normalize_label(ctx.question_number)

    match = next(
        (
            l for l in ctx.landmarks
            if (sub and normalize_label(l.label) == sub)
            or normalize_label(l.label) == full
            or (sub and contains_paren_label(l.label, sub))
        ),
        None,
    )
    source = "landmark"

    if match is None and not sub:
        first = ctx.landmarks[0]
        if is_first_child(first.label):
            logger.info("bridging root question %s to first child landmark %s", ctx.question_number, first.label)
            match = first
            source = "landmark_first_child"

    if match is None:
        return None
    return _offset(match.box.x, match.box.y, source)


def from_ocr_anchor(ctx: OffsetContext) -> Offset | None:
    if not ctx.raw_ocr_blocks:
        return None
    patterns = label_patterns(ctx.question_number)

    anchor = None
    if patterns.paren_sub is not None:
        anchor = next((b for b in ctx.raw_ocr_blocks if patterns.paren_sub.match(b.text.strip())), None)
    if anchor is None and patterns.root is not None:
        anchor = next((b for b in ctx.raw_ocr_blocks if patterns.root.match(b.text.strip())), None)
    source = "ocr_anchor"
    if anchor is None:
        anchor = ctx.raw_ocr_blocks[0]
        source = "ocr_first_block"

    logger.debug("question %s anchored on block %s %r", ctx.question_number, anchor.id, anchor.text[:20])
    px = resolve(anchor.box, ctx.page_width, ctx.page_height)
    return _offset(px.x, px.y, source)


STRATEGIES: tuple[Callable[[OffsetContext], Offset | None], ...] = (
    from_classification,
    from_detection,
    from_landmarks,
    from_ocr_anchor,
)


def resolve_offset(
    classification_blocks: Sequence[PixelBox],
    detections: Sequence[Detection],
    target_question: Detection | None,
    question_number: str,
    raw_ocr_blocks: Sequence[OcrBlock],
    *,
    page_width: float,
    page_height: float,
    landmarks: Sequence[Landmark] = (),
) -> Offset | None:
    """Return the question's global origin, or None when no source applies."""
    ctx = OffsetContext(
        question_number=str(question_number or ""),
        page_width=page_width,
        page_height=page_height,
        classification_blocks=tuple(classification_blocks or ()),
        detections=tuple(detections or ()),
        target_question=target_question,
        raw_ocr_blocks=tuple(raw_ocr_blocks or ()),
        landmarks=tuple(landmarks or ()),
    )
    for strategy in STRATEGIES:
        found = strategy(ctx)
        if found is not None:
            logger.debug("question %s offset (%.1f, %.1f) from %s", ctx.question_number, found.offset_x, found.offset_y, found.source)
            return found

    logger.warning("no offset source for question %s; positions stay unresolved", ctx.question_number)
    return None
