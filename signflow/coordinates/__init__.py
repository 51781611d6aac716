"""
Coordinate engine: conversion, validation and conflict detection for
signature field placements.
"""
from signflow.coordinates.types import (
    DEFAULT_PAGE_HEIGHT,
    DEFAULT_PAGE_WIDTH,
    ConflictInfo,
    ConflictResult,
    PageDimensions,
    PdfRect,
    PercentRect,
    PixelRect,
    PlacedRect,
    ValidationResult,
)
from signflow.coordinates.converter import (
    build_page_dimensions_map,
    percent_rect_to_pixel,
    percentage_to_pixel,
    pixel_rect_to_percent,
    pixel_to_percentage,
    to_pdf_rect,
    to_top_left_rect,
)
from signflow.coordinates.validator import validate_page_dimensions, validate_position
from signflow.coordinates.conflicts import (
    DEFAULT_CONFLICT_THRESHOLD,
    conflict_severity,
    detect_conflict,
    detect_internal_conflicts,
    overlap_area,
    overlap_ratio,
    suggest_positions,
)

__all__ = [
    "DEFAULT_PAGE_HEIGHT",
    "DEFAULT_PAGE_WIDTH",
    "DEFAULT_CONFLICT_THRESHOLD",
    "ConflictInfo",
    "ConflictResult",
    "PageDimensions",
    "PdfRect",
    "PercentRect",
    "PixelRect",
    "PlacedRect",
    "ValidationResult",
    "build_page_dimensions_map",
    "conflict_severity",
    "detect_conflict",
    "detect_internal_conflicts",
    "overlap_area",
    "overlap_ratio",
    "percent_rect_to_pixel",
    "percentage_to_pixel",
    "pixel_rect_to_percent",
    "pixel_to_percentage",
    "suggest_positions",
    "to_pdf_rect",
    "to_top_left_rect",
    "validate_page_dimensions",
    "validate_position",
]
