from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .utils import load_json

DEFAULT_UNITS: dict[str, Any] = {
    "percentage_max": 101,
    "pixel_min_exclusive": 1001,
}

DEFAULT_MATCHING: dict[str, Any] = {
    "overlap_threshold": 0.4,
    "fingerprint_tokens": 15,
    "min_token_length": 3,
    "rescue_min_length": 4,
}

DEFAULT_ZONES: dict[str, Any] = {
    "margin_ratio": 0.06,
    "footer_ratio": 0.92,
    "stop_marker_pad_px": 50,
    "min_zone_height_px": 100,
    "stop_markers": ["total for question", "marks)", "total marks"],
}

DEFAULT_POSITIONING: dict[str, Any] = {
    "stagger_px": 15,
    "collision_padding_px": 5,
}

DEFAULT_OVERLAY: dict[str, Any] = {
    "line_width": 3,
    "colors": {
        "landmark": "#0066FF",
        "zone": "#888888",
        "matched": "#00AA00",
        "unmatched": "#FF8800",
    },
}


@dataclass(frozen=True)
class EngineConfig:
    units: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_UNITS))
    matching: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_MATCHING))
    zones: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_ZONES))
    positioning: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_POSITIONING))
    overlay: dict[str, Any] = field(default_factory=lambda: dict(DEFAULT_OVERLAY))

    @classmethod
    def default(cls) -> "EngineConfig":
        return cls()


def _section(data: dict[str, Any], name: str, defaults: dict[str, Any]) -> dict[str, Any]:
    value = data.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"config section {name!r} must be an object")
    merged = dict(defaults)
    merged.update(value)
    return merged


def load_config(config_path: str | Path) -> EngineConfig:
    data = load_json(config_path)
    if not isinstance(data, dict):
        raise ValueError(f"config must be a JSON object: {config_path}")
    return EngineConfig(
        units=_section(data, "units", DEFAULT_UNITS),
        matching=_section(data, "matching", DEFAULT_MATCHING),
        zones=_section(data, "zones", DEFAULT_ZONES),
        positioning=_section(data, "positioning", DEFAULT_POSITIONING),
        overlay=_section(data, "overlay", DEFAULT_OVERLAY),
    )
