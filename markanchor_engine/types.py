from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Literal

from .utils import first_number

Unit = Literal["percentage", "parts_per_thousand", "pixel"]
UNITS: tuple[str, ...] = ("percentage", "parts_per_thousand", "pixel")

# Spellings seen from OCR/grading collaborators.
_UNIT_ALIASES = {
    "percentage": "percentage",
    "percent": "percentage",
    "%": "percentage",
    "parts_per_thousand": "parts_per_thousand",
    "ppt": "parts_per_thousand",
    "pixel": "pixel",
    "pixels": "pixel",
    "px": "pixel",
}

MatchStatus = Literal["MATCHED", "UNMATCHED"]
MATCHED: MatchStatus = "MATCHED"
UNMATCHED: MatchStatus = "UNMATCHED"


def parse_unit(value: Any) -> Unit | None:
    if value is None or value == "":
        return None
    unit = _UNIT_ALIASES.get(str(value).strip().lower())
    if unit is None:
        raise ValueError(f"unknown coordinate unit: {value!r}")
    return unit  # type: ignore[return-value]


@dataclass(frozen=True)
class Box:
    """Box in whatever convention the producer used (see units.detect_unit)."""
    x: float
    y: float
    width: float
    height: float
    unit: Unit | None = None

    @property
    def values(self) -> tuple[float, float, float, float]:
        return (self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"x": self.x, "y": self.y, "width": self.width, "height": self.height}
        if self.unit is not None:
            out["unit"] = self.unit
        return out

    @classmethod
    def from_list(cls, lst: list[float], unit: Unit | None = None) -> "Box":
        return cls(float(lst[0]), float(lst[1]), float(lst[2]), float(lst[3]), unit)

    @classmethod
    def from_dict(cls, d: dict[str, Any] | list[float]) -> "Box":
        if isinstance(d, (list, tuple)):
            return cls.from_list(list(d))
        return cls(
            first_number(d, "x", "left"),
            first_number(d, "y", "top"),
            first_number(d, "width", "w"),
            first_number(d, "height", "h"),
            parse_unit(d.get("unit")),
        )


@dataclass(frozen=True)
class PixelBox:
    """Absolute pixel box on the canonical page."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def translate(self, dx: float, dy: float) -> "PixelBox":
        return PixelBox(self.x + dx, self.y + dy, self.width, self.height)

    def overlaps(self, other: "PixelBox", padding: float = 0.0) -> bool:
        return (
            self.x < other.right + padding
            and self.right + padding > other.x
            and self.y < other.bottom + padding
            and self.bottom + padding > other.y
        )

    def within(self, page_width: float, page_height: float) -> bool:
        return self.x >= 0 and self.y >= 0 and self.right <= page_width and self.bottom <= page_height

    def as_box(self) -> Box:
        return Box(self.x, self.y, self.width, self.height, "pixel")

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "PixelBox":
        return cls(float(d["x"]), float(d["y"]), float(d["width"]), float(d["height"]))


@dataclass(frozen=True)
class OcrBlock:
    id: str
    text: str
    box: Box
    source: str = "unknown"
    confidence: float = 0.0
    page_index: int = 0

    def with_box(self, box: Box) -> "OcrBlock":
        return replace(self, box=box)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "box": self.box.to_dict(),
            "source": self.source,
            "confidence": self.confidence,
            "pageIndex": self.page_index,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "OcrBlock":
        raw_box = d.get("box") or d.get("boundingBox") or d.get("coordinates") or {}
        return cls(
            id=str(d.get("id") or d.get("globalBlockId") or ""),
            text=str(d.get("text") or ""),
            box=Box.from_dict(raw_box),
            source=str(d.get("source") or "unknown"),
            confidence=float(d.get("confidence") or 0.0),
            page_index=int(d.get("pageIndex") or 0),
        )


@dataclass(frozen=True)
class Landmark:
    label: str
    box: PixelBox
    page_index: int = 0
    header_block_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "box": self.box.to_dict(),
            "pageIndex": self.page_index,
            "headerBlockId": self.header_block_id,
        }


@dataclass(frozen=True)
class Zone:
    """Horizontal strip of a page owned by one question label."""
    label: str
    page_index: int
    start_y: float
    end_y: float
    x: float = 0.0
    width: float = 0.0
    header_block_id: str | None = None

    @property
    def height(self) -> float:
        return self.end_y - self.start_y

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "pageIndex": self.page_index,
            "startY": self.start_y,
            "endY": self.end_y,
            "x": self.x,
            "width": self.width,
            "headerBlockId": self.header_block_id,
        }


@dataclass(frozen=True)
class Detection:
    """Question region reported by the question-detection collaborator."""
    question_number: str
    region: Box | None = None
    page_index: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Detection":
        raw = d.get("region") or d.get("box") or d.get("rect") or d.get("coordinates")
        return cls(
            question_number=str(d.get("questionNumber") or ""),
            region=Box.from_dict(raw) if raw else None,
            page_index=int(d.get("pageIndex") or 0),
        )


@dataclass(frozen=True)
class Offset:
    offset_x: float
    offset_y: float
    source: str

    def to_dict(self) -> dict[str, Any]:
        return {"offsetX": self.offset_x, "offsetY": self.offset_y, "source": self.source}


@dataclass(frozen=True)
class Annotation:
    """Unpositioned annotation as produced by the grading collaborator."""
    mark: str
    reasoning: str = ""
    claimed_student_text: str = ""
    candidate_block_ref: str | None = None
    sub_question: str | None = None
    match_status: MatchStatus = UNMATCHED
    page_index: int | None = None
    ai_position: Box | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Annotation":
        ref = d.get("candidateBlockRef") or d.get("blockId") or None
        status = str(d.get("matchStatus") or (MATCHED if ref else UNMATCHED)).upper()
        if status not in (MATCHED, UNMATCHED):
            status = UNMATCHED
        pos = d.get("aiPosition")
        page_index = d.get("pageIndex")
        return cls(
            mark=str(d.get("mark") or ""),
            reasoning=str(d.get("reasoning") or ""),
            claimed_student_text=str(d.get("claimedStudentText") or ""),
            candidate_block_ref=str(ref) if ref else None,
            sub_question=d.get("subQuestion") or None,
            match_status=status,  # type: ignore[arg-type]
            page_index=int(page_index) if page_index is not None else None,
            ai_position=Box.from_dict(pos) if pos else None,
        )


@dataclass(frozen=True)
class EnrichedAnnotation:
    mark: str
    reasoning: str
    claimed_student_text: str
    match_status: MatchStatus
    block_id: str | None = None
    sub_question: str | None = None
    page_index: int | None = None
    position: PixelBox | None = None
    ai_position: Box | None = None
    diagnostics: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_annotation(cls, anno: Annotation) -> "EnrichedAnnotation":
        return cls(
            mark=anno.mark,
            reasoning=anno.reasoning,
            claimed_student_text=anno.claimed_student_text,
            match_status=anno.match_status,
            block_id=anno.candidate_block_ref if anno.match_status == MATCHED else None,
            sub_question=anno.sub_question,
            page_index=anno.page_index,
            ai_position=anno.ai_position,
        )

    def demote(self, diagnostic: str, reasoning_suffix: str | None = None) -> "EnrichedAnnotation":
        reasoning = self.reasoning
        if reasoning_suffix:
            reasoning = f"{reasoning} {reasoning_suffix}".strip()
        return replace(
            self,
            match_status=UNMATCHED,
            block_id=None,
            reasoning=reasoning,
            diagnostics=self.diagnostics + (diagnostic,),
        )

    def note(self, diagnostic: str) -> "EnrichedAnnotation":
        return replace(self, diagnostics=self.diagnostics + (diagnostic,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "mark": self.mark,
            "reasoning": self.reasoning,
            "claimedStudentText": self.claimed_student_text,
            "matchStatus": self.match_status,
            "blockId": self.block_id,
            "subQuestion": self.sub_question,
            "pageIndex": self.page_index,
            "position": self.position.to_dict() if self.position else None,
            "diagnostics": list(self.diagnostics),
        }
