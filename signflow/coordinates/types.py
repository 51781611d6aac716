"""
Value types shared by the coordinate functions.

Percentage rectangles use a top-left origin with every component in
[0, 100] relative to the page. Pixel rectangles are absolute page units
(PDF points) for a specific page size.
"""
from dataclasses import dataclass, field
from typing import List, Optional

# A4 portrait in PDF points, used when a page size is not supplied
DEFAULT_PAGE_WIDTH = 595
DEFAULT_PAGE_HEIGHT = 842


@dataclass(frozen=True)
class PageDimensions:
    width: float
    height: float

    @classmethod
    def default(cls) -> "PageDimensions":
        return cls(width=DEFAULT_PAGE_WIDTH, height=DEFAULT_PAGE_HEIGHT)


@dataclass(frozen=True)
class PercentRect:
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        if self.width <= 0 or self.height <= 0:
            return 0.0
        return self.width * self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height


@dataclass(frozen=True)
class PixelRect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class PdfRect:
    """Rectangle in PDF user space (origin bottom-left, y grows upwards)."""
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PlacedRect:
    """A percentage rectangle tied to a page, optionally identified."""
    page_number: int
    rect: PercentRect
    id: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConflictInfo:
    position_id: Optional[str]
    page_number: int
    overlap_area: float
    overlap_ratio: float
    severity: str


@dataclass
class ConflictResult:
    has_conflict: bool
    conflicting_with: List[ConflictInfo] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return [
            f"Field overlaps {c.position_id or 'another field'} on page {c.page_number} "
            f"by {c.overlap_ratio:.0%} ({c.severity})"
            for c in self.conflicting_with
        ]
