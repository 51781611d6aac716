"""
Tests for overlap and conflict detection between placed fields.
"""
import pytest

from signflow.coordinates import (
    DEFAULT_CONFLICT_THRESHOLD,
    PercentRect,
    PlacedRect,
    conflict_severity,
    detect_conflict,
    detect_internal_conflicts,
    overlap_area,
    overlap_ratio,
    suggest_positions,
)

RECTS = [
    PercentRect(x=10, y=10, width=20, height=10),
    PercentRect(x=15, y=12, width=20, height=10),
    PercentRect(x=50, y=50, width=5, height=5),
    PercentRect(x=0, y=0, width=100, height=100),
    PercentRect(x=29, y=19, width=1, height=1),
    PercentRect(x=10, y=10, width=0, height=10),
]


class TestOverlapArea:
    """Test overlap_area()."""

    def test_disjoint_rects(self):
        a = PercentRect(x=0, y=0, width=10, height=10)
        b = PercentRect(x=20, y=20, width=10, height=10)
        assert overlap_area(a, b) == 0

    def test_touching_edges_do_not_overlap(self):
        a = PercentRect(x=0, y=0, width=10, height=10)
        b = PercentRect(x=10, y=0, width=10, height=10)
        assert overlap_area(a, b) == 0

    def test_partial_overlap(self):
        a = PercentRect(x=0, y=0, width=10, height=10)
        b = PercentRect(x=5, y=5, width=10, height=10)
        assert overlap_area(a, b) == pytest.approx(25)

    @pytest.mark.parametrize("a", RECTS)
    @pytest.mark.parametrize("b", RECTS)
    def test_symmetry(self, a, b):
        assert overlap_area(a, b) == pytest.approx(overlap_area(b, a))

    @pytest.mark.parametrize("a", RECTS)
    def test_self_overlap_is_area(self, a):
        assert overlap_area(a, a) == pytest.approx(a.area)

    @pytest.mark.parametrize("a", RECTS)
    @pytest.mark.parametrize("b", RECTS)
    def test_never_negative(self, a, b):
        assert overlap_area(a, b) >= 0


class TestOverlapRatio:
    """Overlap relative to the smaller rect."""

    def test_containment_is_full_overlap(self):
        outer = PercentRect(x=0, y=0, width=50, height=50)
        inner = PercentRect(x=10, y=10, width=5, height=5)
        assert overlap_ratio(outer, inner) == pytest.approx(1.0)

    def test_degenerate_rect_never_overlaps(self):
        """Zero-area rects are a validation problem, not a conflict."""
        flat = PercentRect(x=10, y=10, width=0, height=10)
        other = PercentRect(x=0, y=0, width=50, height=50)
        assert overlap_ratio(flat, other) == 0

    def test_growing_towards_containment_is_monotonic(self):
        """Enlarging the smaller rect into the bigger one never lowers the ratio."""
        big = PercentRect(x=20, y=20, width=40, height=40)
        previous = -1.0
        for step in range(0, 21):
            small = PercentRect(x=10 + step * 0.5, y=10 + step * 0.5, width=10 + step * 0.5, height=10 + step * 0.5)
            ratio = overlap_ratio(small, big)
            assert ratio >= previous
            previous = ratio
        assert previous == pytest.approx(1.0)


class TestConflictSeverity:

    @pytest.mark.parametrize("ratio,expected", [
        (0.21, "low"),
        (0.35, "low"),
        (0.36, "medium"),
        (0.5, "medium"),
        (0.51, "high"),
        (1.0, "high"),
    ])
    def test_bands(self, ratio, expected):
        assert conflict_severity(ratio) == expected


class TestDetectConflict:
    """Test detect_conflict()."""

    def test_default_threshold(self):
        assert DEFAULT_CONFLICT_THRESHOLD == 0.20

    def test_overlap_above_threshold_conflicts(self):
        existing = [PlacedRect(page_number=1, rect=PercentRect(x=10, y=10, width=20, height=10), id="p1")]
        candidate = PlacedRect(page_number=1, rect=PercentRect(x=15, y=12, width=20, height=10))
        result = detect_conflict(candidate, existing)
        assert result.has_conflict is True
        assert result.conflicting_with[0].position_id == "p1"
        assert result.conflicting_with[0].overlap_ratio == pytest.approx(0.6)
        assert result.conflicting_with[0].severity == "high"

    def test_overlap_at_threshold_does_not_conflict(self):
        """Strictly greater than the threshold is required."""
        existing = [PlacedRect(page_number=1, rect=PercentRect(x=0, y=0, width=10, height=10), id="p1")]
        candidate = PlacedRect(page_number=1, rect=PercentRect(x=8, y=0, width=10, height=10))
        result = detect_conflict(candidate, existing, threshold=0.20)
        assert result.has_conflict is False

    def test_other_pages_ignored(self):
        rect = PercentRect(x=10, y=10, width=20, height=10)
        existing = [PlacedRect(page_number=2, rect=rect, id="p1")]
        result = detect_conflict(PlacedRect(page_number=1, rect=rect), existing)
        assert result.has_conflict is False

    def test_same_id_ignored(self):
        """An edited field is not compared with its own stored placement."""
        rect = PercentRect(x=10, y=10, width=20, height=10)
        existing = [PlacedRect(page_number=1, rect=rect, id="p1")]
        result = detect_conflict(PlacedRect(page_number=1, rect=rect, id="p1"), existing)
        assert result.has_conflict is False

    def test_sorted_by_ratio(self):
        candidate = PlacedRect(page_number=1, rect=PercentRect(x=0, y=0, width=10, height=10))
        existing = [
            PlacedRect(page_number=1, rect=PercentRect(x=6, y=0, width=10, height=10), id="low"),
            PlacedRect(page_number=1, rect=PercentRect(x=1, y=0, width=10, height=10), id="high"),
        ]
        result = detect_conflict(candidate, existing)
        assert [c.position_id for c in result.conflicting_with] == ["high", "low"]

    def test_warnings_are_readable(self):
        existing = [PlacedRect(page_number=3, rect=PercentRect(x=10, y=10, width=20, height=10), id="p1")]
        result = detect_conflict(PlacedRect(page_number=3, rect=PercentRect(x=10, y=10, width=20, height=10)), existing)
        assert result.warnings == ["Field overlaps p1 on page 3 by 100% (high)"]


class TestDetectInternalConflicts:

    def test_reports_each_overlapping_pair_once(self):
        placed = [
            PlacedRect(page_number=1, rect=PercentRect(x=10, y=10, width=20, height=10), id="a"),
            PlacedRect(page_number=1, rect=PercentRect(x=12, y=10, width=20, height=10), id="b"),
            PlacedRect(page_number=1, rect=PercentRect(x=60, y=60, width=10, height=10), id="c"),
        ]
        results = detect_internal_conflicts(placed)
        assert len(results) == 1
        assert results[0].conflicting_with[0].position_id == "b"


class TestSuggestPositions:

    def test_empty_page_starts_top_left(self):
        suggestions = suggest_positions([], page_number=1)
        assert suggestions[0] == PercentRect(x=0, y=0, width=15, height=5)
        assert len(suggestions) == 10

    def test_suggestions_avoid_existing_fields(self):
        existing = [PlacedRect(page_number=1, rect=PercentRect(x=0, y=0, width=100, height=50))]
        suggestions = suggest_positions(existing, page_number=1)
        assert suggestions
        assert all(s.y >= 50 for s in suggestions)

    def test_suggestions_fit_on_page(self):
        for s in suggest_positions([], page_number=1, width=30, height=20, limit=100):
            assert s.right <= 100
            assert s.bottom <= 100
