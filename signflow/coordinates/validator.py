"""
Bounds validation for signature field placements.
"""
import math

from signflow.coordinates.types import PageDimensions, PercentRect, ValidationResult

# Edges beyond this percentage are legal but usually a placement mistake
EDGE_WARNING_PERCENT = 95.0
MIN_FIELD_PERCENT = 1.0


def _fmt(value: float) -> str:
    return f"{value:g}"


def validate_position(rect: PercentRect, page_number: int) -> ValidationResult:
    """
    Check a percentage rect against the page bounds.

    Every violated rule contributes exactly one error string; the result
    is valid only when no rule is violated. A non-finite coordinate is
    reported once and the bounds rules are not evaluated for it.
    """
    errors = []
    warnings = []

    if page_number < 1:
        errors.append(f"Page number must be 1 or greater (got {page_number})")

    non_finite = [
        f"{label} must be a finite number (got {_fmt(value)})"
        for label, value in (
            ("X position", rect.x),
            ("Y position", rect.y),
            ("Width", rect.width),
            ("Height", rect.height),
        )
        if not math.isfinite(value)
    ]
    if non_finite:
        errors.extend(non_finite)
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    if rect.x < 0:
        errors.append(f"X position cannot be negative (got {_fmt(rect.x)})")
    if rect.y < 0:
        errors.append(f"Y position cannot be negative (got {_fmt(rect.y)})")
    if rect.width <= 0:
        errors.append(f"Width must be greater than 0 (got {_fmt(rect.width)})")
    if rect.height <= 0:
        errors.append(f"Height must be greater than 0 (got {_fmt(rect.height)})")
    if rect.x + rect.width > 100:
        errors.append(
            "Field extends beyond the right boundary of the page "
            f"(x + width = {_fmt(rect.x)} + {_fmt(rect.width)} = {_fmt(rect.x + rect.width)} > 100)"
        )
    if rect.y + rect.height > 100:
        errors.append(
            "Field extends beyond the bottom boundary of the page "
            f"(y + height = {_fmt(rect.y)} + {_fmt(rect.height)} = {_fmt(rect.y + rect.height)} > 100)"
        )

    if not errors:
        if rect.right > EDGE_WARNING_PERCENT:
            warnings.append("Field is very close to the right edge of the page")
        if rect.bottom > EDGE_WARNING_PERCENT:
            warnings.append("Field is very close to the bottom edge of the page")
        if rect.width < MIN_FIELD_PERCENT or rect.height < MIN_FIELD_PERCENT:
            warnings.append("Field is very small and may be hard to fill in")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def validate_page_dimensions(page: PageDimensions) -> ValidationResult:
    errors = []
    for label, value in (("Page width", page.width), ("Page height", page.height)):
        if not math.isfinite(value):
            errors.append(f"{label} must be a finite number (got {_fmt(value)})")
        elif value <= 0:
            errors.append(f"{label} must be greater than 0 (got {_fmt(value)})")
    return ValidationResult(valid=not errors, errors=errors)
