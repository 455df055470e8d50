"""Test landmark detection, zone building and offset resolution.

Tests cover:
1. Sequential landmark search bounded by the next question
2. Root bridging and parent inheritance
3. Zone strips: top margin, stop markers, absorbed roots, gap pages
4. Zone lookup, containment and clamping
5. Offset fallback chain
"""
from __future__ import annotations

import logging

import pytest

from markanchor_engine.offsets import resolve_offset
from markanchor_engine.types import Box, Detection, Landmark, OcrBlock, PixelBox, Zone
from markanchor_engine.zones import (
    build_semantic_zones,
    clamp_to_zone,
    detect_zones,
    find_matching_zone,
    is_point_in_zone,
    refine_zones,
)

PAGE_W, PAGE_H = 1000, 1400
LABELS = ["6", "6a", "6b"]
NEXT_Q = "7 A bag contains counters"


def _block(block_id: str, text: str, y: float, x: float = 100, page: int = 0) -> OcrBlock:
    return OcrBlock(block_id, text, Box(x, y, 200, 40, "pixel"), page_index=page)


# ═══════════════════════════════════════════════════════════════════════════════
# TEST FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def exam_blocks() -> list[OcrBlock]:
    """Question 6 with two parts, a total line and the start of question 7."""
    return [
        _block("next", NEXT_Q, 1000),
        _block("h1", "6 Simplify the expression", 100),
        _block("h2", "(a) Expand the brackets", 200),
        _block("s1", "x = 52", 260),
        _block("s3", "x = 5a", 300),
        _block("h3", "(b) Factorise fully", 500),
        _block("s2", "(x+1)(x+2)", 560),
        _block("stop", "(Total for Question 6 is 5 marks)", 900),
    ]


@pytest.fixture
def landmarks(exam_blocks: list[OcrBlock]) -> list[Landmark]:
    return detect_zones(exam_blocks, PAGE_H, LABELS, NEXT_Q)


@pytest.fixture
def zones(landmarks: list[Landmark], exam_blocks: list[OcrBlock]) -> dict[str, list[Zone]]:
    return refine_zones(build_semantic_zones(landmarks, PAGE_W, PAGE_H, exam_blocks, NEXT_Q))


# ═══════════════════════════════════════════════════════════════════════════════
# LANDMARK TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestDetectZones:
    """Label -> landmark table."""

    def test_all_labels_found_in_order(self, landmarks: list[Landmark]):
        assert [l.label for l in landmarks] == LABELS
        assert [l.header_block_id for l in landmarks] == ["h1", "h2", "h3"]
        assert [l.box.y for l in landmarks] == [100, 200, 500]

    def test_search_stops_at_next_question(self):
        """Blocks from the next question's text onward are never anchors."""
        blocks = [
            _block("h1", "6 Simplify", 100),
            _block("next", NEXT_Q, 400),
            _block("late", "(b) not ours", 600),
        ]
        found = detect_zones(blocks, PAGE_H, ["6", "6b"], NEXT_Q)
        assert "late" not in [l.header_block_id for l in found]
        assert found[-1].box.y == 100  # 6b falls back to its parent

    def test_root_bridged_to_first_child(self):
        """No '6' block: the root takes the '(a)' landmark."""
        blocks = [_block("h2", "(a) Expand", 200), _block("h3", "(b) Factorise", 500)]
        found = {l.label: l for l in detect_zones(blocks, PAGE_H, LABELS)}
        assert found["6"].box == found["6a"].box
        assert found["6"].header_block_id == "h2"

    def test_child_inherits_parent(self):
        blocks = [_block("h1", "6 Simplify", 100), _block("s", "working", 300)]
        found = {l.label: l for l in detect_zones(blocks, PAGE_H, ["6", "6a"])}
        assert found["6a"].box.y == 100

    def test_footer_page_number_ignored(self):
        """A bare '6' in the footer is a page number, not the question."""
        blocks = [_block("s", "some working", 120), _block("foot", "6", 1350)]
        assert detect_zones(blocks, PAGE_H, ["6"]) == []


# ═══════════════════════════════════════════════════════════════════════════════
# ZONE TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestSemanticZones:
    """Per-label page strips."""

    def test_root_absorbed_into_first_child(self, zones: dict[str, list[Zone]]):
        assert set(zones) == {"6a", "6b"}

    def test_first_landmark_owns_top_margin(self, zones: dict[str, list[Zone]]):
        assert zones["6a"][0].start_y == 84  # floor(1400 * 0.06)

    def test_last_zone_ends_at_stop_marker(self, zones: dict[str, list[Zone]]):
        assert zones["6b"][0].end_y == 900 + 50

    def test_zones_tightened_against_each_other(self, zones: dict[str, list[Zone]]):
        assert zones["6a"][0].end_y == zones["6b"][0].start_y == 350

    def test_no_stop_marker_uses_bottom_margin(self, landmarks: list[Landmark]):
        out = build_semantic_zones(landmarks, PAGE_W, PAGE_H)
        assert out["6b"][0].end_y == PAGE_H - 84

    def test_zone_strip_geometry(self, zones: dict[str, list[Zone]]):
        z = zones["6a"][0]
        assert z.x == 60
        assert z.width == PAGE_W - 120
        assert z.header_block_id == "h2"

    def test_gap_pages_backfilled(self):
        """A question running from page 0 to page 2 owns page 1 outright."""
        lms = [
            Landmark("1", PixelBox(100, 200, 50, 20), page_index=0),
            Landmark("2", PixelBox(100, 600, 50, 20), page_index=2),
        ]
        out = build_semantic_zones(lms, PAGE_W, PAGE_H)
        gap = [z for z in out["1"] if z.page_index == 1]
        assert len(gap) == 1
        assert (gap[0].start_y, gap[0].end_y) == (84, PAGE_H - 84)

    def test_refine_merges_same_page_segments(self):
        zs = {"3": [Zone("3", 0, 100, 200), Zone("3", 0, 400, 700)]}
        out = refine_zones(zs)
        assert len(out["3"]) == 1
        assert (out["3"][0].start_y, out["3"][0].end_y) == (100, 700)


class TestZoneLookup:
    """Finding, testing and clamping against zones."""

    def test_partial_label_match(self, zones: dict[str, list[Zone]]):
        assert find_matching_zone("b", zones).label == "6b"
        assert find_matching_zone("6a", zones, page_index=0).label == "6a"

    def test_absorbed_root_uses_child_zone(self, zones: dict[str, list[Zone]]):
        assert find_matching_zone("6", zones).label == "6a"

    def test_exact_key_before_suffix(self):
        zs = {"2ai": [Zone("2ai", 0, 100, 200)], "ai": [Zone("ai", 0, 300, 400)]}
        assert find_matching_zone("ai", zs).start_y == 300

    def test_short_sub_label_prefers_shortest_key(self):
        """'i' is the roman-numeral part of '2ai', not the tail of '2aii'."""
        zs = {"2ai": [Zone("2ai", 0, 100, 200)], "2aii": [Zone("2aii", 0, 200, 300)]}
        assert find_matching_zone("i", zs).label == "2ai"
        assert find_matching_zone("ii", zs).label == "2aii"
        assert find_matching_zone("Q2(a)(ii)", zs).label == "2aii"

    def test_unknown_label(self, zones: dict[str, list[Zone]]):
        assert find_matching_zone("9", zones) is None
        assert find_matching_zone("", zones) is None

    def test_point_in_zone(self):
        z = Zone("6a", 0, 100, 300)
        assert is_point_in_zone(200, z)
        assert is_point_in_zone(305, z)  # 5% tolerance
        assert not is_point_in_zone(305, z, tolerance=0)

    def test_clamp_to_zone(self):
        z = Zone("6a", 0, 100, 400, x=60, width=880)
        out = clamp_to_zone(PixelBox(110, 50, 40, 20), z)
        assert out.y == 115
        assert out.x == 110
        low = clamp_to_zone(PixelBox(110, 395, 40, 20), z)
        assert low.bottom == 400 - 15


# ═══════════════════════════════════════════════════════════════════════════════
# OFFSET TESTS
# ═══════════════════════════════════════════════════════════════════════════════

class TestResolveOffset:
    """Per-question origin fallback chain."""

    def _resolve(self, question: str, **kw):
        args = dict(classification_blocks=[], detections=[], target_question=None, raw_ocr_blocks=[])
        args.update(kw)
        return resolve_offset(
            args["classification_blocks"],
            args["detections"],
            args["target_question"],
            question,
            args["raw_ocr_blocks"],
            page_width=PAGE_W,
            page_height=PAGE_H,
            landmarks=kw.get("landmarks", ()),
        )

    def test_classification_first(self):
        off = self._resolve("6a", classification_blocks=[PixelBox(120, 340, 10, 10)])
        assert (off.offset_x, off.offset_y, off.source) == (120, 340, "classification")

    def test_zero_origin_counts_as_empty(self):
        off = self._resolve(
            "6",
            classification_blocks=[PixelBox(0, 0, 10, 10)],
            detections=[Detection("6", Box(40, 90, 900, 800, "pixel"))],
        )
        assert off.source == "detection"
        assert (off.offset_x, off.offset_y) == (40, 90)

    def test_target_region_resolved_with_page_size(self):
        target = Detection("6a", Box(10, 20, 5, 5))
        off = self._resolve("6a", target_question=target)
        assert (off.offset_x, off.offset_y) == (100, 280)

    def test_sub_question_inherits_parent_region(self):
        """Region only for '6' -> '6a' resolves to '6's offset."""
        off = self._resolve("6a", detections=[Detection("6", Box(100, 200, 50, 50, "pixel"))])
        assert (off.offset_x, off.offset_y, off.source) == (100, 200, "detection_parent")

    def test_root_bridges_to_first_child_landmark(self):
        """Landmarks [a] with no root landmark -> root resolves to a's box."""
        off = self._resolve("6", landmarks=[Landmark("a", PixelBox(50, 300, 20, 20))])
        assert (off.offset_x, off.offset_y, off.source) == (50, 300, "landmark_first_child")

    def test_sub_label_landmark(self):
        lms = [Landmark("a", PixelBox(50, 300, 20, 20)), Landmark("b", PixelBox(55, 600, 20, 20))]
        off = self._resolve("6b", landmarks=lms)
        assert (off.offset_x, off.offset_y, off.source) == (55, 600, "landmark")

    def test_ocr_anchor_text(self):
        blocks = [
            OcrBlock("b1", "Some header", Box(10, 10, 5, 5, "pixel")),
            OcrBlock("b2", "(b) next part", Box(40, 700, 5, 5, "pixel")),
        ]
        off = self._resolve("6b", raw_ocr_blocks=blocks)
        assert (off.offset_x, off.offset_y, off.source) == (40, 700, "ocr_anchor")

    def test_first_block_fallback(self):
        blocks = [OcrBlock("b1", "Some header", Box(10, 12, 5, 5, "pixel"))]
        off = self._resolve("9", raw_ocr_blocks=blocks)
        assert off.source == "ocr_first_block"

    def test_exhausted_chain_returns_none(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.WARNING, logger="markanchor_engine.offsets"):
            assert self._resolve("6") is None
        assert "no offset source" in caplog.text
