"""
Tests for coordinate conversion and position validation.
"""
import math

import pytest

from signflow.coordinates import (
    PageDimensions,
    PercentRect,
    PixelRect,
    build_page_dimensions_map,
    percent_rect_to_pixel,
    percentage_to_pixel,
    pixel_rect_to_percent,
    pixel_to_percentage,
    to_pdf_rect,
    to_top_left_rect,
    validate_page_dimensions,
    validate_position,
)

A4 = PageDimensions(width=595, height=842)
LETTER = PageDimensions(width=612, height=792)


class TestPercentageToPixel:
    """Test percentage_to_pixel() and its inverse."""

    def test_basic_conversion(self):
        """50% of an A4 width is half the page."""
        assert percentage_to_pixel(50, 595) == 298
        assert percentage_to_pixel(10, 842) == 84

    def test_zero_and_full(self):
        assert percentage_to_pixel(0, 595) == 0
        assert percentage_to_pixel(100, 595) == 595

    def test_returns_int(self):
        assert isinstance(percentage_to_pixel(33.3, 595), int)

    def test_pixel_to_percentage(self):
        assert pixel_to_percentage(595, 595) == 100.0
        assert pixel_to_percentage(84, 842) == 9.98

    def test_pixel_to_percentage_rejects_zero_dimension(self):
        with pytest.raises(ValueError):
            pixel_to_percentage(10, 0)


class TestRoundTrip:
    """Percentage -> pixel -> percentage stays within one unit."""

    @pytest.mark.parametrize("page", [A4, LETTER, PageDimensions(width=1000, height=400)])
    @pytest.mark.parametrize("rect", [
        PercentRect(x=0, y=0, width=100, height=100),
        PercentRect(x=12.5, y=33.3, width=20.7, height=4.1),
        PercentRect(x=95, y=90, width=5, height=10),
        PercentRect(x=0.1, y=0.1, width=0.5, height=0.5),
    ])
    def test_round_trip_within_tolerance(self, rect, page):
        back = pixel_rect_to_percent(percent_rect_to_pixel(rect, page), page)
        assert abs(back.x - rect.x) <= 1
        assert abs(back.y - rect.y) <= 1
        assert abs(back.width - rect.width) <= 1
        assert abs(back.height - rect.height) <= 1

    def test_pixel_rect_components(self):
        pixel = percent_rect_to_pixel(PercentRect(x=10, y=10, width=20, height=5), A4)
        assert pixel == PixelRect(x=60, y=84, width=119, height=42)


class TestToPdfRect:
    """Percent rect (top-left origin) onto PDF space (bottom-left origin)."""

    def test_y_axis_is_flipped(self):
        """pdf_y = H - (y + h) / 100 * H"""
        rect = PercentRect(x=10, y=10, width=20, height=10)
        pdf = to_pdf_rect(rect, PageDimensions(width=600, height=800))
        assert pdf.x == pytest.approx(60)
        assert pdf.y == pytest.approx(800 - 0.2 * 800)
        assert pdf.width == pytest.approx(120)
        assert pdf.height == pytest.approx(80)

    def test_top_of_page_maps_to_high_y(self):
        pdf = to_pdf_rect(PercentRect(x=0, y=0, width=10, height=5), A4)
        assert pdf.y + pdf.height == pytest.approx(A4.height)

    def test_bottom_of_page_maps_to_zero(self):
        pdf = to_pdf_rect(PercentRect(x=0, y=95, width=10, height=5), A4)
        assert pdf.y == pytest.approx(0)

    def test_uses_given_page_size(self):
        """Same percentages land on different points for different pages."""
        rect = PercentRect(x=50, y=50, width=10, height=10)
        assert to_pdf_rect(rect, A4).x != to_pdf_rect(rect, LETTER).x


class TestToTopLeftRect:
    """Percent rect onto a top-left origin page in points."""

    def test_corners(self):
        x0, y0, x1, y1 = to_top_left_rect(PercentRect(x=10, y=10, width=30, height=5), A4)
        assert x0 == pytest.approx(59.5)
        assert y0 == pytest.approx(84.2)
        assert x1 == pytest.approx(238.0)
        assert y1 == pytest.approx(126.3)

    def test_mirrors_pdf_rect(self):
        rect = PercentRect(x=20, y=60, width=25, height=10)
        pdf = to_pdf_rect(rect, LETTER)
        x0, y0, x1, y1 = to_top_left_rect(rect, LETTER)
        assert x0 == pytest.approx(pdf.x)
        assert x1 - x0 == pytest.approx(pdf.width)
        assert y1 == pytest.approx(LETTER.height - pdf.y)

    def test_top_of_page_starts_at_zero(self):
        _, y0, _, _ = to_top_left_rect(PercentRect(x=0, y=0, width=10, height=5), A4)
        assert y0 == pytest.approx(0)


class TestBuildPageDimensionsMap:

    def test_one_based_keys(self):
        pages = build_page_dimensions_map([(595, 842), (842, 595)])
        assert pages[1] == A4
        assert pages[2] == PageDimensions(width=842, height=595)
        assert 0 not in pages


class TestValidatePosition:
    """Test validate_position()."""

    def test_valid_rect(self):
        result = validate_position(PercentRect(x=10, y=10, width=20, height=5), 1)
        assert result.valid is True
        assert result.errors == []

    def test_right_boundary_violation(self):
        """x=95, width=10 reports 95 + 10 = 105 > 100."""
        result = validate_position(PercentRect(x=95, y=10, width=10, height=5), 1)
        assert result.valid is False
        assert len(result.errors) == 1
        assert "right boundary" in result.errors[0]
        assert "95 + 10 = 105 > 100" in result.errors[0]

    def test_bottom_boundary_violation(self):
        result = validate_position(PercentRect(x=10, y=98, width=10, height=5), 1)
        assert result.valid is False
        assert "bottom boundary" in result.errors[0]
        assert "98 + 5 = 103 > 100" in result.errors[0]

    def test_each_violation_reported_once(self):
        """Negative x, zero height and page 0 give three distinct errors."""
        result = validate_position(PercentRect(x=-1, y=10, width=10, height=0), 0)
        assert result.valid is False
        assert len(result.errors) == 3
        assert len(set(result.errors)) == 3

    @pytest.mark.parametrize("rect,page", [
        (PercentRect(x=-0.1, y=0, width=10, height=10), 1),
        (PercentRect(x=0, y=-5, width=10, height=10), 1),
        (PercentRect(x=0, y=0, width=0, height=10), 1),
        (PercentRect(x=0, y=0, width=10, height=-1), 1),
        (PercentRect(x=91, y=0, width=10, height=10), 1),
        (PercentRect(x=0, y=91, width=10, height=10), 1),
        (PercentRect(x=0, y=0, width=10, height=10), 0),
    ])
    def test_invalid_rects(self, rect, page):
        result = validate_position(rect, page)
        assert result.valid is False
        assert result.errors

    @pytest.mark.parametrize("rect", [
        PercentRect(x=0, y=0, width=100, height=100),
        PercentRect(x=90, y=90, width=10, height=10),
        PercentRect(x=0, y=0, width=0.01, height=0.01),
    ])
    def test_in_bounds_rects_are_valid(self, rect):
        assert validate_position(rect, 3).valid is True

    @pytest.mark.parametrize("rect", [
        PercentRect(x=math.nan, y=10, width=10, height=5),
        PercentRect(x=10, y=math.nan, width=10, height=5),
        PercentRect(x=10, y=10, width=math.inf, height=5),
        PercentRect(x=10, y=10, width=10, height=-math.inf),
    ])
    def test_non_finite_coordinates_are_invalid(self, rect):
        result = validate_position(rect, 1)
        assert result.valid is False
        assert len(result.errors) == 1
        assert "finite" in result.errors[0]

    def test_each_non_finite_field_reported(self):
        result = validate_position(PercentRect(x=math.nan, y=math.nan, width=10, height=5), 1)
        assert result.valid is False
        assert result.errors == [
            "X position must be a finite number (got nan)",
            "Y position must be a finite number (got nan)",
        ]

    def test_edge_warning(self):
        result = validate_position(PercentRect(x=90, y=10, width=8, height=5), 1)
        assert result.valid is True
        assert any("right edge" in w for w in result.warnings)

    def test_tiny_field_warning(self):
        result = validate_position(PercentRect(x=10, y=10, width=0.5, height=5), 1)
        assert result.valid is True
        assert any("very small" in w for w in result.warnings)


class TestValidatePageDimensions:

    def test_positive_dimensions(self):
        assert validate_page_dimensions(A4).valid is True

    def test_zero_width(self):
        result = validate_page_dimensions(PageDimensions(width=0, height=842))
        assert result.valid is False
        assert "width" in result.errors[0]

    @pytest.mark.parametrize("page", [
        PageDimensions(width=math.nan, height=842),
        PageDimensions(width=595, height=math.inf),
    ])
    def test_non_finite_dimensions(self, page):
        result = validate_page_dimensions(page)
        assert result.valid is False
        assert len(result.errors) == 1
        assert "finite" in result.errors[0]
