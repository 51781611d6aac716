"""
Task status state machine.

The transition table and the timestamp effects are plain data so they can
be read, tested and changed in one place.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from signflow.models import TaskStatus
from signflow.utils.datetime_utils import utc_now


@dataclass(frozen=True)
class TransitionRule:
    allowed: FrozenSet[TaskStatus]
    description: str


TRANSITION_RULES: Dict[TaskStatus, TransitionRule] = {
    TaskStatus.DRAFT: TransitionRule(
        allowed=frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, TaskStatus.TRASHED}),
        description="Draft tasks can be sent for signing, cancelled or moved to trash",
    ),
    TaskStatus.IN_PROGRESS: TransitionRule(
        allowed=frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.TRASHED}),
        description="Tasks in progress can be completed, cancelled or moved to trash",
    ),
    TaskStatus.COMPLETED: TransitionRule(
        allowed=frozenset({TaskStatus.TRASHED}),
        description="Completed tasks can only be moved to trash",
    ),
    TaskStatus.CANCELLED: TransitionRule(
        allowed=frozenset({TaskStatus.DRAFT, TaskStatus.TRASHED}),
        description="Cancelled tasks can be reopened as drafts or moved to trash",
    ),
    TaskStatus.TRASHED: TransitionRule(
        allowed=frozenset(),
        description="Trashed tasks cannot change status and can only be deleted permanently",
    ),
}

SET = "set"
CLEAR = "clear"

# (from, to, column, effect); None matches any status
TIMESTAMP_EFFECTS: Tuple[Tuple[Optional[TaskStatus], Optional[TaskStatus], str, str], ...] = (
    (None, None, "updated_at", SET),
    (TaskStatus.DRAFT, TaskStatus.IN_PROGRESS, "sent_at", SET),
    (None, TaskStatus.COMPLETED, "completed_at", SET),
    (None, TaskStatus.CANCELLED, "completed_at", CLEAR),
    (TaskStatus.CANCELLED, TaskStatus.DRAFT, "sent_at", CLEAR),
    (TaskStatus.CANCELLED, TaskStatus.DRAFT, "completed_at", CLEAR),
)

# (from, to) -> action label; None matches any status
TRANSITION_ACTIONS: Tuple[Tuple[Optional[TaskStatus], TaskStatus, str], ...] = (
    (TaskStatus.DRAFT, TaskStatus.IN_PROGRESS, "start"),
    (TaskStatus.CANCELLED, TaskStatus.DRAFT, "reactivate"),
    (None, TaskStatus.COMPLETED, "complete"),
    (None, TaskStatus.CANCELLED, "cancel"),
    (None, TaskStatus.TRASHED, "trash"),
)

_ORDER = list(TaskStatus)


@dataclass
class TransitionValidation:
    valid: bool
    current: TaskStatus
    target: TaskStatus
    allowed: List[TaskStatus] = field(default_factory=list)
    description: str = ""
    error: Optional[str] = None

    def to_details(self) -> dict:
        return {
            "current_status": self.current.value,
            "attempted_status": self.target.value,
            "valid_transitions": [s.value for s in self.allowed],
            "rule": self.description,
        }


@dataclass(frozen=True)
class TransitionInfo:
    action: str
    description: str
    timestamp_updates: Tuple[str, ...]


def get_valid_transitions(current: TaskStatus) -> List[TaskStatus]:
    """Allowed targets in declaration order of TaskStatus."""
    allowed = TRANSITION_RULES[current].allowed
    return [status for status in _ORDER if status in allowed]


def validate_status_transition(current: TaskStatus, target: TaskStatus) -> TransitionValidation:
    """
    Check a transition against the table.

    Staying in the same status is always valid. A rejected transition
    carries the current and attempted states, the allowed next states and
    the rule description so a client can correct itself.
    """
    current = TaskStatus(current)
    target = TaskStatus(target)
    rule = TRANSITION_RULES[current]
    allowed = get_valid_transitions(current)

    if current == target or target in rule.allowed:
        return TransitionValidation(
            valid=True,
            current=current,
            target=target,
            allowed=allowed,
            description=rule.description,
        )

    allowed_text = ", ".join(s.value for s in allowed) or "none"
    return TransitionValidation(
        valid=False,
        current=current,
        target=target,
        allowed=allowed,
        description=rule.description,
        error=(
            f"Cannot change status from '{current.value}' to '{target.value}'. "
            f"{rule.description}. Valid next statuses: {allowed_text}."
        ),
    )


def _matches(pattern: Optional[TaskStatus], status: TaskStatus) -> bool:
    return pattern is None or pattern == status


def compute_transition_updates(
    current: TaskStatus,
    target: TaskStatus,
    now: Optional[datetime] = None,
) -> Dict[str, Optional[datetime]]:
    """
    Column updates for a transition, status excluded.

    A same-status transition only touches updated_at. Raises ValueError
    for a transition outside the table.
    """
    current = TaskStatus(current)
    target = TaskStatus(target)
    now = now or utc_now()

    if current == target:
        return {"updated_at": now}

    validation = validate_status_transition(current, target)
    if not validation.valid:
        raise ValueError(validation.error)

    updates: Dict[str, Optional[datetime]] = {}
    for from_status, to_status, column, effect in TIMESTAMP_EFFECTS:
        if _matches(from_status, current) and _matches(to_status, target):
            updates[column] = now if effect == SET else None
    return updates


def get_transition_info(current: TaskStatus, target: TaskStatus) -> TransitionInfo:
    current = TaskStatus(current)
    target = TaskStatus(target)
    action = "none"
    if current != target:
        for from_status, to_status, label in TRANSITION_ACTIONS:
            if _matches(from_status, current) and to_status == target:
                action = label
                break
    columns = tuple(compute_transition_updates(current, target).keys()) if (
        validate_status_transition(current, target).valid
    ) else ()
    return TransitionInfo(
        action=action,
        description=TRANSITION_RULES[current].description,
        timestamp_updates=columns,
    )


def is_task_editable(status: TaskStatus) -> bool:
    return status == TaskStatus.DRAFT


def can_add_files(status: TaskStatus) -> bool:
    return status == TaskStatus.DRAFT


def can_add_recipients(status: TaskStatus) -> bool:
    return status == TaskStatus.DRAFT
