"""
Conversion between percentage and pixel coordinate spaces.
"""
from typing import Dict, Iterable, Tuple

from signflow.coordinates.types import PageDimensions, PdfRect, PercentRect, PixelRect


def percentage_to_pixel(percent: float, dimension: float) -> int:
    """pixel = percent / 100 * dimension, rounded to the nearest integer."""
    return int(round((percent / 100.0) * dimension))


def pixel_to_percentage(pixel: float, dimension: float) -> float:
    """Inverse of percentage_to_pixel, rounded to two decimals."""
    if dimension <= 0:
        raise ValueError(f"Page dimension must be positive, got {dimension}")
    return round((pixel / dimension) * 100.0, 2)


def percent_rect_to_pixel(rect: PercentRect, page: PageDimensions) -> PixelRect:
    return PixelRect(
        x=percentage_to_pixel(rect.x, page.width),
        y=percentage_to_pixel(rect.y, page.height),
        width=percentage_to_pixel(rect.width, page.width),
        height=percentage_to_pixel(rect.height, page.height),
    )


def pixel_rect_to_percent(rect: PixelRect, page: PageDimensions) -> PercentRect:
    return PercentRect(
        x=pixel_to_percentage(rect.x, page.width),
        y=pixel_to_percentage(rect.y, page.height),
        width=pixel_to_percentage(rect.width, page.width),
        height=pixel_to_percentage(rect.height, page.height),
    )


def to_pdf_rect(rect: PercentRect, page: PageDimensions) -> PdfRect:
    """
    Map a top-left percentage rect onto PDF user space.

    PDF origin is bottom-left, so the rect's lower edge becomes its y:
    pdf_y = H - (y + height) / 100 * H. Values are kept unrounded for
    embedding.
    """
    width = rect.width / 100.0 * page.width
    height = rect.height / 100.0 * page.height
    return PdfRect(
        x=rect.x / 100.0 * page.width,
        y=page.height - (rect.y + rect.height) / 100.0 * page.height,
        width=width,
        height=height,
    )


def to_top_left_rect(rect: PercentRect, page: PageDimensions) -> Tuple[float, float, float, float]:
    """
    Map a percentage rect onto a top-left origin page in points.

    Returns (x0, y0, x1, y1) as renderers such as PyMuPDF expect; this is
    to_pdf_rect with the y axis flipped back.
    """
    pdf_rect = to_pdf_rect(rect, page)
    y0 = page.height - pdf_rect.y - pdf_rect.height
    return pdf_rect.x, y0, pdf_rect.x + pdf_rect.width, y0 + pdf_rect.height


def build_page_dimensions_map(sizes: Iterable[Tuple[float, float]]) -> Dict[int, PageDimensions]:
    """1-based page number -> dimensions, from (width, height) pairs in page order."""
    return {
        index: PageDimensions(width=width, height=height)
        for index, (width, height) in enumerate(sizes, start=1)
    }

