"""Test coordinate resolution and frame correction.

Tests cover:
1. Unit inference thresholds
2. Conversion to pixels and to the 0-1000 scale
3. Offset + band clamping
4. Sensor-frame remap and its inverse
5. Whole-batch rejection on out-of-canvas blocks
"""
from __future__ import annotations

import numpy as np
import pytest

from markanchor_engine.frame import BatchGeometryError, FrameConfigurationError, FrameCorrector
from markanchor_engine.types import Box, OcrBlock, PixelBox
from markanchor_engine.units import (
    detect_unit,
    effective_unit,
    normalize_block_boxes,
    resolve,
    resolve_pixels,
    to_ppt,
)


# ═══════════════════════════════════════════════════════════════════════════════
# TEST FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def corrector() -> FrameCorrector:
    """Landscape 1000x500 canvas."""
    return FrameCorrector(1000, 500)


# ═══════════════════════════════════════════════════════════════════════════════
# UNIT INFERENCE TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestUnitInference:
    """Unit guessing from the largest coordinate."""

    def test_small_values_are_percentage(self):
        """All coordinates <= 100 are read as percentages."""
        assert detect_unit([10, 20, 30, 40]) == "percentage"
        assert detect_unit([101, 0, 0, 0]) == "percentage"

    def test_large_values_are_pixels(self):
        """Any coordinate above 1001 means pixels."""
        assert detect_unit([1002, 5, 5, 5]) == "pixel"
        assert detect_unit([1500, 2000, 100, 40]) == "pixel"

    def test_middle_band_is_parts_per_thousand(self):
        """102..1001 is ambiguous and defaults to parts-per-thousand."""
        assert detect_unit([500, 10, 10, 10]) == "parts_per_thousand"
        assert detect_unit([1001, 0, 0, 0]) == "parts_per_thousand"

    def test_thresholds_are_configurable(self):
        assert detect_unit([150], percentage_max=200) == "percentage"
        assert detect_unit([150], pixel_min_exclusive=120) == "pixel"

    def test_tagged_unit_wins(self):
        """An explicit unit on the box (or the call) beats inference."""
        assert effective_unit(Box(10, 10, 10, 10, "pixel")) == "pixel"
        assert effective_unit(Box(10, 10, 10, 10), "parts_per_thousand") == "parts_per_thousand"


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERSION TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestConversion:
    """Pixel resolution for a known page size."""

    def test_percentage_to_pixels(self):
        assert resolve(Box(50, 50, 10, 10), 2000, 1000) == PixelBox(1000, 500, 200, 100)

    def test_ppt_to_pixels(self):
        assert resolve(Box(500, 250, 100, 100), 2000, 1000) == PixelBox(1000, 250, 200, 100)

    def test_pixels_untouched(self):
        assert resolve(Box(12, 34, 5, 6, "pixel"), 2000, 1000) == PixelBox(12, 34, 5, 6)

    def test_to_ppt(self):
        """Pixel box standardized onto the 0-1000 scale."""
        out = to_ppt(Box(1000, 500, 200, 100, "pixel"), 2000, 1000)
        assert out == Box(500, 500, 100, 100, "parts_per_thousand")

    def test_resolve_pixels_offset_and_clamp(self):
        """Offset is applied, then y is kept inside the band with padding."""
        box = Box(10, 10, 5, 5, "pixel")
        assert resolve_pixels(box, 1000, 1000, offset_x=100, offset_y=200) == PixelBox(110, 210, 5, 5)

        clamped = resolve_pixels(box, 1000, 1000, offset_x=100, offset_y=200, clamp_y=(300, 400))
        assert clamped.y == 305
        assert clamped.x == 110

    def test_normalize_block_boxes_tags_pixels(self):
        blocks = [OcrBlock("b1", "hello", Box(10, 20, 5, 5))]
        out = normalize_block_boxes(blocks, 1000, 2000)
        assert out[0].box == Box(100, 400, 50, 100, "pixel")
        assert blocks[0].box.unit is None


# ═══════════════════════════════════════════════════════════════════════════════
# FRAME CORRECTION TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestFrameCorrector:
    """Sensor-frame remap onto the landscape canvas."""

    def test_transform_known_box(self, corrector: FrameCorrector):
        """{10,20,30,40} on 1000x500 maps to {20,960,40,30}."""
        out = corrector.transform_box(Box(10, 20, 30, 40))
        assert out.values == (20, 960, 40, 30)

    def test_inverse_recovers_input(self, corrector: FrameCorrector):
        box = Box(10, 20, 30, 40)
        assert corrector.inverse_box(corrector.transform_box(box)) == box

    def test_portrait_canvas_rejected(self):
        with pytest.raises(FrameConfigurationError):
            FrameCorrector(500, 1000)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            FrameCorrector(0, 0)

    def test_valid_batch_corrected(self, corrector: FrameCorrector):
        blocks = [OcrBlock("b1", "(a) Expand", Box(600, 100, 50, 20))]
        out = corrector.transform_and_validate_all(blocks)
        assert out[0].box.values == (100, 350, 20, 50)
        assert out[0].id == "b1"

    def test_accepts_raw_dicts(self, corrector: FrameCorrector):
        raw = [{"id": "b1", "text": "x", "box": {"x": 600, "y": 100, "width": 50, "height": 20}}]
        out = corrector.transform_and_validate_all(raw)
        assert isinstance(out[0], OcrBlock)

    def test_one_bad_block_fails_whole_batch(self, corrector: FrameCorrector):
        """No partial results: the batch raises and names the bad block."""
        blocks = [
            OcrBlock("good", "fine", Box(600, 100, 50, 20)),
            OcrBlock("bad", "off canvas", Box(100, 400, 50, 20)),
        ]
        with pytest.raises(BatchGeometryError) as exc_info:
            corrector.transform_and_validate_all(blocks)
        assert exc_info.value.block_ids == ["bad"]
        assert isinstance(exc_info.value, RuntimeError)

    def test_bounds_mask(self, corrector: FrameCorrector):
        mask = corrector.out_of_bounds_mask([Box(0, 0, 10, 10), Box(995, 0, 10, 10), Box(0, -1, 5, 5)])
        assert mask.tolist() == [False, True, True]
        assert corrector.out_of_bounds_mask([]).shape == (0,)
        assert mask.dtype == np.bool_
