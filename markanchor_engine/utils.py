from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def write_json(path: str | Path, data: Any) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def load_json(path: str | Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def natural_sort_key(label: str) -> tuple:
    """Sort key that orders "2" < "10" < "10a" < "10b"."""
    parts = re.split(r"(\d+)", label.lower())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts if p)


def first_number(value: Any, *keys: str) -> float:
    """Return the first non-null numeric field among keys, or 0.0.

    Collaborator payloads name the same coordinate differently
    (x/left, y/top); this reads whichever is present.
    """
    if not isinstance(value, dict):
        return 0.0
    for k in keys:
        v = value.get(k)
        if v is None:
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return 0.0
