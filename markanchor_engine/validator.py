from __future__ import annotations

from pathlib import Path
from typing import Any

from .utils import load_json

_ANNOTATION_FIELDS = ("mark", "reasoning", "claimedStudentText", "matchStatus", "blockId", "position", "diagnostics")


def _check_position(pos: Any, idx: int, page: tuple[float, float] | None, errors: list[str]) -> int:
    if pos is None:
        return 0
    if not isinstance(pos, dict) or any(not isinstance(pos.get(k), (int, float)) for k in ("x", "y", "width", "height")):
        errors.append(f"invalid annotation[{idx}]: position must be {{x,y,width,height}} numbers or null")
        return 1
    if page is not None:
        w, h = page
        if pos["x"] < 0 or pos["y"] < 0 or pos["x"] + pos["width"] > w + 1e-6 or pos["y"] + pos["height"] > h + 1e-6:
            errors.append(f"invalid annotation[{idx}]: position outside {w}x{h} page")
            return 1
    return 0


def _validate_annotations(obj: Any, errors: list[str], page: tuple[float, float] | None) -> tuple[int, int]:
    invalid = 0
    out_of_page = 0
    annotations = (obj or {}).get("annotations", []) if isinstance(obj, dict) else []
    for idx, a in enumerate(annotations):
        if not isinstance(a, dict):
            errors.append(f"invalid annotation[{idx}]: not an object")
            invalid += 1
            continue

        for k in _ANNOTATION_FIELDS:
            if k not in a:
                errors.append(f"invalid annotation[{idx}]: missing field {k}")
                invalid += 1

        status = a.get("matchStatus")
        if status not in ("MATCHED", "UNMATCHED"):
            errors.append(f"invalid annotation[{idx}]: matchStatus={status}")
            invalid += 1

        # A MATCHED record must name the block it was verified against.
        block_id = a.get("blockId")
        if status == "MATCHED" and (not isinstance(block_id, str) or not block_id.strip()):
            errors.append(f"invalid annotation[{idx}]: MATCHED requires a blockId")
            invalid += 1
        if status == "UNMATCHED" and block_id is not None:
            errors.append(f"invalid annotation[{idx}]: UNMATCHED must not carry blockId={block_id}")
            invalid += 1

        if not isinstance(a.get("diagnostics", []), list):
            errors.append(f"invalid annotation[{idx}]: diagnostics must be a list")
            invalid += 1

        out_of_page += _check_position(a.get("position"), idx, page, errors)
    return invalid, out_of_page


def validate_result(obj: Any, *, page_width: float | None = None, page_height: float | None = None) -> tuple[bool, dict[str, Any]]:
    """Check a reconciled page result against the output contract."""
    errors: list[str] = []

    if not isinstance(obj, dict):
        errors.append("result must be an object")
        return False, {"invalid_annotations": 0, "positions_out_of_page": 0, "errors": errors}

    for k in ("questionNumber", "annotations", "metrics"):
        if k not in obj:
            errors.append(f"result: missing field {k}")
    if not isinstance(obj.get("annotations", []), list):
        errors.append("result: annotations must be a list")

    page = (float(page_width), float(page_height)) if page_width and page_height else None
    invalid, out_of_page = _validate_annotations(obj, errors, page)

    metrics = obj.get("metrics")
    annotations = obj.get("annotations") if isinstance(obj.get("annotations"), list) else []
    if isinstance(metrics, dict):
        try:
            total = int(metrics.get("annotations_total") or 0)
            matched = int(metrics.get("matched") or 0)
            unmatched = int(metrics.get("unmatched") or 0)
            if total != len(annotations) or matched + unmatched != total:
                errors.append(f"metrics: inconsistent counts total={total} matched={matched} unmatched={unmatched}")
        except (TypeError, ValueError):
            errors.append("metrics: counts must be ints")
    elif metrics is not None:
        errors.append("metrics: must be an object")

    summary: dict[str, Any] = {
        "annotations_total": len(annotations),
        "invalid_annotations": invalid,
        "positions_out_of_page": out_of_page,
        "errors": errors,
    }
    ok = not errors
    return ok, summary


def validate_result_file(
    path: str | Path, *, page_width: float | None = None, page_height: float | None = None
) -> tuple[bool, dict[str, Any]]:
    try:
        obj = load_json(path)
    except (OSError, ValueError) as e:
        return False, {"invalid_annotations": 0, "positions_out_of_page": 0, "errors": [f"failed to read {path}: {e}"]}
    return validate_result(obj, page_width=page_width, page_height=page_height)
