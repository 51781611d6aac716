"""
Tests for the task status state machine.
"""
from datetime import datetime, timezone

import pytest

from signflow.models import TaskStatus
from signflow.status import (
    TRANSITION_RULES,
    can_add_files,
    compute_transition_updates,
    get_transition_info,
    get_valid_transitions,
    is_task_editable,
    validate_status_transition,
)

ALLOWED = {
    TaskStatus.DRAFT: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, TaskStatus.TRASHED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.CANCELLED, TaskStatus.TRASHED},
    TaskStatus.COMPLETED: {TaskStatus.TRASHED},
    TaskStatus.CANCELLED: {TaskStatus.DRAFT, TaskStatus.TRASHED},
    TaskStatus.TRASHED: set(),
}

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestTransitionTable:
    """Every (from, to) pair against the table."""

    @pytest.mark.parametrize("current", list(TaskStatus))
    @pytest.mark.parametrize("target", list(TaskStatus))
    def test_totality(self, current, target):
        result = validate_status_transition(current, target)
        expected = current == target or target in ALLOWED[current]
        assert result.valid is expected

    def test_trashed_is_terminal(self):
        assert get_valid_transitions(TaskStatus.TRASHED) == []

    def test_valid_transitions_follow_enum_order(self):
        assert get_valid_transitions(TaskStatus.DRAFT) == [
            TaskStatus.IN_PROGRESS,
            TaskStatus.CANCELLED,
            TaskStatus.TRASHED,
        ]

    def test_rules_cover_every_status(self):
        assert set(TRANSITION_RULES) == set(TaskStatus)


class TestValidateStatusTransition:

    def test_completed_to_in_progress_rejected(self):
        """The error says completed tasks can only move to trash."""
        result = validate_status_transition(TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS)
        assert result.valid is False
        assert "Completed tasks can only be moved to trash" in result.error
        assert "'completed'" in result.error
        assert "'in_progress'" in result.error

    def test_details_for_client(self):
        result = validate_status_transition(TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS)
        details = result.to_details()
        assert details["current_status"] == "completed"
        assert details["attempted_status"] == "in_progress"
        assert details["valid_transitions"] == ["trashed"]

    def test_same_state_is_valid(self):
        assert validate_status_transition(TaskStatus.TRASHED, TaskStatus.TRASHED).valid is True

    def test_accepts_plain_strings(self):
        assert validate_status_transition("draft", "in_progress").valid is True


class TestComputeTransitionUpdates:
    """Timestamp side effects of each transition."""

    def test_send_sets_sent_at(self):
        updates = compute_transition_updates(TaskStatus.DRAFT, TaskStatus.IN_PROGRESS, NOW)
        assert updates == {"updated_at": NOW, "sent_at": NOW}

    def test_complete_sets_completed_at(self):
        updates = compute_transition_updates(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, NOW)
        assert updates == {"updated_at": NOW, "completed_at": NOW}

    def test_cancel_clears_completed_at(self):
        updates = compute_transition_updates(TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, NOW)
        assert updates == {"updated_at": NOW, "completed_at": None}

    def test_reactivate_clears_sent_and_completed(self):
        updates = compute_transition_updates(TaskStatus.CANCELLED, TaskStatus.DRAFT, NOW)
        assert updates == {"updated_at": NOW, "sent_at": None, "completed_at": None}

    def test_trash_only_touches_updated_at(self):
        updates = compute_transition_updates(TaskStatus.COMPLETED, TaskStatus.TRASHED, NOW)
        assert updates == {"updated_at": NOW}

    def test_same_state_only_touches_updated_at(self):
        updates = compute_transition_updates(TaskStatus.IN_PROGRESS, TaskStatus.IN_PROGRESS, NOW)
        assert updates == {"updated_at": NOW}

    def test_status_not_included(self):
        assert "status" not in compute_transition_updates(TaskStatus.DRAFT, TaskStatus.IN_PROGRESS)

    def test_invalid_transition_raises(self):
        with pytest.raises(ValueError):
            compute_transition_updates(TaskStatus.TRASHED, TaskStatus.DRAFT)


class TestTransitionInfo:

    @pytest.mark.parametrize("current,target,action", [
        (TaskStatus.DRAFT, TaskStatus.IN_PROGRESS, "start"),
        (TaskStatus.CANCELLED, TaskStatus.DRAFT, "reactivate"),
        (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, "complete"),
        (TaskStatus.DRAFT, TaskStatus.CANCELLED, "cancel"),
        (TaskStatus.COMPLETED, TaskStatus.TRASHED, "trash"),
        (TaskStatus.DRAFT, TaskStatus.DRAFT, "none"),
    ])
    def test_action_labels(self, current, target, action):
        assert get_transition_info(current, target).action == action

    def test_timestamp_columns(self):
        info = get_transition_info(TaskStatus.DRAFT, TaskStatus.IN_PROGRESS)
        assert set(info.timestamp_updates) == {"updated_at", "sent_at"}

    def test_invalid_transition_has_no_columns(self):
        assert get_transition_info(TaskStatus.TRASHED, TaskStatus.DRAFT).timestamp_updates == ()


class TestEditability:

    @pytest.mark.parametrize("status", list(TaskStatus))
    def test_only_drafts_are_editable(self, status):
        assert is_task_editable(status) is (status == TaskStatus.DRAFT)
        assert can_add_files(status) is (status == TaskStatus.DRAFT)
