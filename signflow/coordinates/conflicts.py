"""
Overlap detection between fields placed on the same page.

Conflicts are advisory: callers decide whether to block a placement.
"""
from typing import Iterable, List, Sequence

from signflow.coordinates.types import ConflictInfo, ConflictResult, PercentRect, PlacedRect

DEFAULT_CONFLICT_THRESHOLD = 0.20
SUGGESTION_THRESHOLD = 0.10


def overlap_area(a: PercentRect, b: PercentRect) -> float:
    """Intersection area of two axis-aligned rects, 0 when disjoint."""
    overlap_w = min(a.right, b.right) - max(a.x, b.x)
    overlap_h = min(a.bottom, b.bottom) - max(a.y, b.y)
    if overlap_w <= 0 or overlap_h <= 0:
        return 0.0
    return overlap_w * overlap_h


def overlap_ratio(a: PercentRect, b: PercentRect) -> float:
    """Overlap relative to the smaller rect; degenerate rects never overlap."""
    smaller = min(a.area, b.area)
    if smaller <= 0:
        return 0.0
    return overlap_area(a, b) / smaller


def conflict_severity(ratio: float) -> str:
    if ratio > 0.5:
        return "high"
    if ratio > 0.35:
        return "medium"
    return "low"


def detect_conflict(
    candidate: PlacedRect,
    existing: Iterable[PlacedRect],
    threshold: float = DEFAULT_CONFLICT_THRESHOLD,
) -> ConflictResult:
    """
    Compare a candidate field against fields already on its page.

    Entries sharing the candidate's id are skipped so an edited field is
    not reported against its own previous placement.
    """
    conflicts = []
    for other in existing:
        if other.page_number != candidate.page_number:
            continue
        if candidate.id is not None and other.id == candidate.id:
            continue
        ratio = overlap_ratio(candidate.rect, other.rect)
        if ratio > threshold:
            conflicts.append(ConflictInfo(
                position_id=other.id,
                page_number=other.page_number,
                overlap_area=overlap_area(candidate.rect, other.rect),
                overlap_ratio=ratio,
                severity=conflict_severity(ratio),
            ))
    conflicts.sort(key=lambda c: c.overlap_ratio, reverse=True)
    return ConflictResult(has_conflict=bool(conflicts), conflicting_with=conflicts)


def detect_internal_conflicts(
    placed: Sequence[PlacedRect],
    threshold: float = DEFAULT_CONFLICT_THRESHOLD,
) -> List[ConflictResult]:
    """Pairwise check of a set; one result per field that conflicts with a later one."""
    results = []
    for index, candidate in enumerate(placed):
        result = detect_conflict(candidate, placed[index + 1:], threshold)
        if result.has_conflict:
            results.append(result)
    return results


def suggest_positions(
    existing: Iterable[PlacedRect],
    page_number: int,
    width: float = 15.0,
    height: float = 5.0,
    grid: float = 5.0,
    limit: int = 10,
) -> List[PercentRect]:
    """Scan the page on a grid and return free slots of the requested size."""
    on_page = [p.rect for p in existing if p.page_number == page_number]
    suggestions = []
    y = 0.0
    while y + height <= 100 and len(suggestions) < limit:
        x = 0.0
        while x + width <= 100 and len(suggestions) < limit:
            slot = PercentRect(x=x, y=y, width=width, height=height)
            if all(overlap_ratio(slot, rect) <= SUGGESTION_THRESHOLD for rect in on_page):
                suggestions.append(slot)
            x += grid
        y += grid
    return suggestions
