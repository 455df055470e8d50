"""Debug overlay for a reconciled page.

Draws zones, landmarks and annotation positions over the page scan so a
human can see where each mark was anchored and which ones fell back to the
model position.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from PIL import Image, ImageDraw, ImageFont

from .config import DEFAULT_OVERLAY

logger = logging.getLogger(__name__)


def _get_font(size: int = 14) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    for font_name in ["DejaVuSans.ttf", "arial.ttf", "Arial.ttf", "FreeSans.ttf"]:
        try:
            return ImageFont.truetype(font_name, size)
        except OSError:
            continue
    return ImageFont.load_default()


def _xyxy(box: dict[str, Any]) -> tuple[float, float, float, float]:
    x, y = float(box["x"]), float(box["y"])
    return x, y, x + float(box["width"]), y + float(box["height"])


def _label(draw: ImageDraw.ImageDraw, pos: tuple[float, float], text: str, color: str, font: Any) -> None:
    text_bbox = draw.textbbox(pos, text, font=font)
    draw.rectangle(text_bbox, fill="black")
    draw.text(pos, text, fill=color, font=font)


def render_overlay(
    page_image: Image.Image,
    result: dict[str, Any],
    out_path: str | Path | None = None,
    *,
    page_index: int = 0,
    overlay_cfg: dict[str, Any] | None = None,
) -> Image.Image:
    """Return an annotated copy of page_image; also saved when out_path is set.

    ``result`` is a ``PageResult.to_dict()`` payload.
    """
    cfg = dict(DEFAULT_OVERLAY)
    cfg.update(overlay_cfg or {})
    colors = {**DEFAULT_OVERLAY["colors"], **(cfg.get("colors") or {})}
    line_width = int(cfg.get("line_width", 3))

    annotated = page_image.copy().convert("RGB")
    draw = ImageDraw.Draw(annotated)
    font = _get_font()
    width = annotated.width

    for label, zones in (result.get("zones") or {}).items():
        for z in zones:
            if int(z.get("pageIndex") or 0) != page_index:
                continue
            y0, y1 = float(z["startY"]), float(z["endY"])
            draw.rectangle([(1, y0), (width - 2, y1)], outline=colors["zone"], width=1)
            _label(draw, (4, y0 + 2), f"zone {label}", colors["zone"], font)

    for lm in result.get("landmarks") or []:
        if int(lm.get("pageIndex") or 0) != page_index:
            continue
        x0, y0, x1, y1 = _xyxy(lm["box"])
        draw.rectangle([(x0, y0), (x1, y1)], outline=colors["landmark"], width=line_width)

    drawn = 0
    for a in result.get("annotations") or []:
        pos = a.get("position")
        if pos is None or int(a.get("pageIndex") or 0) != page_index:
            continue
        color = colors["matched"] if a.get("matchStatus") == "MATCHED" else colors["unmatched"]
        x0, y0, x1, y1 = _xyxy(pos)
        draw.rectangle([(x0, y0), (x1, y1)], outline=color, width=line_width)
        _label(draw, (x1 + 3, y0), str(a.get("mark") or "?"), color, font)
        drawn += 1

    logger.debug("overlay drew %d annotation boxes on page %d", drawn, page_index)
    if out_path is not None:
        Path(out_path).parent.mkdir(parents=True, exist_ok=True)
        annotated.save(out_path)
    return annotated
