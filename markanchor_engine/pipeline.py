from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from .config import EngineConfig
from .frame import BatchGeometryError, FrameCorrector
from .labels import normalize_label
from .matcher import bind, count_status, sanitize, split_compound_marks
from .offsets import resolve_offset
from .positioning import position_annotations, resolve_collisions
from .types import (
    Annotation,
    Box,
    Detection,
    EnrichedAnnotation,
    Landmark,
    OcrBlock,
    Offset,
    Zone,
)
from .units import normalize_block_boxes, resolve
from .utils import utc_now_iso
from .zones import build_semantic_zones, detect_zones, refine_zones

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageRequest:
    page_width: float
    page_height: float
    question_number: str
    expected_labels: list[str] = field(default_factory=list)
    ocr_blocks: list[OcrBlock] = field(default_factory=list)
    annotations: list[Annotation] = field(default_factory=list)
    classification_blocks: list[Box] = field(default_factory=list)
    detections: list[Detection] = field(default_factory=list)
    next_question_text: str | None = None
    veto_texts: list[str] = field(default_factory=list)
    rotated_frame: bool = False

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PageRequest":
        for k in ("pageWidth", "pageHeight"):
            if k not in d:
                raise ValueError(f"request missing field {k}")
        return cls(
            page_width=float(d["pageWidth"]),
            page_height=float(d["pageHeight"]),
            question_number=str(d.get("questionNumber") or ""),
            expected_labels=[str(x) for x in d.get("expectedLabels") or []],
            ocr_blocks=[OcrBlock.from_dict(b) for b in d.get("ocrBlocks") or []],
            annotations=[Annotation.from_dict(a) for a in d.get("annotations") or []],
            classification_blocks=[Box.from_dict(b) for b in d.get("classificationBlocks") or []],
            detections=[Detection.from_dict(x) for x in d.get("detections") or []],
            next_question_text=d.get("nextQuestionText") or None,
            veto_texts=[str(t) for t in ([d.get("questionText")] + list(d.get("vetoTexts") or [])) if t],
            rotated_frame=bool(d.get("rotatedFrame", False)),
        )


@dataclass
class PageResult:
    question_number: str
    annotations: list[EnrichedAnnotation]
    landmarks: list[Landmark] = field(default_factory=list)
    zones: dict[str, list[Zone]] = field(default_factory=dict)
    offset: Offset | None = None
    error: str | None = None
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def metrics(self) -> dict[str, int]:
        counts = count_status(self.annotations)
        return {
            "annotations_total": len(self.annotations),
            "matched": counts.get("MATCHED", 0),
            "unmatched": counts.get("UNMATCHED", 0),
            "vetoed": sum(1 for a in self.annotations if any(d.startswith("digit_veto") for d in a.diagnostics)),
            "unpositioned": sum(1 for a in self.annotations if a.position is None),
            "landmarks": len(self.landmarks),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionNumber": self.question_number,
            "createdAt": self.created_at,
            "error": self.error,
            "offset": self.offset.to_dict() if self.offset else None,
            "landmarks": [l.to_dict() for l in self.landmarks],
            "zones": {k: [z.to_dict() for z in v] for k, v in self.zones.items()},
            "annotations": [a.to_dict() for a in self.annotations],
            "metrics": self.metrics,
        }


@dataclass
class PageReconciler:
    cfg: EngineConfig = field(default_factory=EngineConfig.default)

    def normalize_blocks(self, request: PageRequest) -> list[OcrBlock]:
        """Frame-correct (if rotated) and resolve every block to pixels.

        Raises BatchGeometryError when the correction puts any block off the
        canvas; FrameConfigurationError for a portrait canvas.
        """
        blocks = list(request.ocr_blocks)
        if request.rotated_frame:
            corrector = FrameCorrector(request.page_width, request.page_height)
            blocks = [
                b.with_box(replace(b.box, unit=b.box.unit or "pixel"))
                for b in corrector.transform_and_validate_all(blocks)
            ]
        return normalize_block_boxes(blocks, request.page_width, request.page_height, **self.cfg.units)

    def _rejected(self, request: PageRequest, err: BatchGeometryError) -> PageResult:
        logger.error("page for question %s left un-positioned: %s", request.question_number, err)
        annotations = [
            EnrichedAnnotation.from_annotation(a).demote("page_geometry_rejected")
            for a in split_compound_marks(request.annotations)
        ]
        return PageResult(question_number=request.question_number, annotations=annotations, error=str(err))

    def reconcile(self, request: PageRequest) -> PageResult:
        w, h = request.page_width, request.page_height
        zcfg = self.cfg.zones
        mcfg = self.cfg.matching
        pcfg = self.cfg.positioning

        try:
            blocks = self.normalize_blocks(request)
        except BatchGeometryError as e:
            return self._rejected(request, e)

        landmarks = detect_zones(
            blocks,
            h,
            request.expected_labels,
            request.next_question_text,
            footer_ratio=float(zcfg["footer_ratio"]),
        )
        zones = refine_zones(
            build_semantic_zones(
                landmarks,
                w,
                h,
                blocks,
                request.next_question_text,
                margin_ratio=float(zcfg["margin_ratio"]),
                stop_marker_pad_px=float(zcfg["stop_marker_pad_px"]),
                min_zone_height_px=float(zcfg["min_zone_height_px"]),
                stop_markers=list(zcfg["stop_markers"]),
            )
        )

        target = normalize_label(request.question_number)
        target_detection = next(
            (d for d in request.detections if normalize_label(d.question_number) == target),
            None,
        )
        offset = resolve_offset(
            [resolve(b, w, h, **self.cfg.units) for b in request.classification_blocks],
            request.detections,
            target_detection,
            request.question_number,
            blocks,
            page_width=w,
            page_height=h,
            landmarks=landmarks,
        )

        annotations = split_compound_marks(request.annotations)
        annotations = bind(
            annotations,
            blocks,
            zones,
            labels=request.expected_labels,
            veto_texts=request.veto_texts,
            page_width=w,
            page_height=h,
            offset=offset,
            threshold=float(mcfg["overlap_threshold"]),
            fingerprint_tokens=int(mcfg["fingerprint_tokens"]),
            min_token_length=int(mcfg["min_token_length"]),
            rescue_min_length=int(mcfg["rescue_min_length"]),
        )
        enriched = sanitize(
            annotations,
            blocks,
            page_width=w,
            page_height=h,
            zones=zones,
            labels=request.expected_labels,
            veto_texts=request.veto_texts,
        )
        positioned = position_annotations(
            enriched,
            blocks,
            offset,
            w,
            h,
            zones,
            stagger_px=float(pcfg["stagger_px"]),
            **self.cfg.units,
        )
        final = resolve_collisions(positioned, w, h, zones, padding=float(pcfg["collision_padding_px"]))

        result = PageResult(
            question_number=request.question_number,
            annotations=final,
            landmarks=landmarks,
            zones=zones,
            offset=offset,
        )
        m = result.metrics
        logger.info(
            "question %s: %d annotations, %d matched, %d unmatched (%d digit vetoes), %d unpositioned",
            request.question_number, m["annotations_total"], m["matched"], m["unmatched"], m["vetoed"], m["unpositioned"],
        )
        return result
