"""
Tests for the status transition rules.
"""
from datetime import date

import pytest

from app.models.case import ActionKind, CaseStatus
from app.utils.status_resolver import (
    PROGRESSION_STEPS,
    OutreachAction,
    UNKNOWN_RANK,
    days_until_due,
    evaluate_step,
    is_branch_status,
    needs_advance,
    progression_rank,
    resolve,
    step_for_target,
)


class TestResolve:
    """Threshold table, most urgent first."""

    @pytest.mark.parametrize(
        "days,expected_status,expected_action",
        [
            (45, CaseStatus.NEW, OutreachAction.NONE),
            (31, CaseStatus.NEW, OutreachAction.NONE),
            (30, CaseStatus.REMINDER1_SENT, OutreachAction.SEND_TEMPLATE),
            (16, CaseStatus.REMINDER1_SENT, OutreachAction.SEND_TEMPLATE),
            (15, CaseStatus.REMINDER2_SENT, OutreachAction.SEND_TEMPLATE),
            (8, CaseStatus.REMINDER2_SENT, OutreachAction.SEND_TEMPLATE),
            (7, CaseStatus.REMINDER3_SENT, OutreachAction.SEND_TEMPLATE),
            (4, CaseStatus.REMINDER3_SENT, OutreachAction.SEND_TEMPLATE),
            (3, CaseStatus.TO_BE_CALLED, OutreachAction.MARK_FOR_CALL),
            (0, CaseStatus.TO_BE_CALLED, OutreachAction.MARK_FOR_CALL),
            (-5, CaseStatus.TO_BE_CALLED, OutreachAction.MARK_FOR_CALL),
        ],
    )
    def test_thresholds(self, days, expected_status, expected_action):
        resolution = resolve(days, CaseStatus.NEW.value)
        assert resolution.target_status == expected_status.value
        assert resolution.action == expected_action

    def test_deterministic(self):
        assert resolve(10, "Pending") == resolve(10, "Pending")

    @pytest.mark.parametrize(
        "status",
        ["Onhold", "To_be_contacted", "Appointment_confirmed", "Closed", "Completed"],
    )
    def test_branch_statuses_resolve_to_themselves(self, status):
        resolution = resolve(-10, status)
        assert resolution.target_status == status
        assert resolution.action == OutreachAction.NONE

    def test_unknown_status_is_resolved_from_due_date(self):
        resolution = resolve(10, "Archived")
        assert resolution.target_status == CaseStatus.REMINDER2_SENT.value


class TestRanks:
    """Forward-only ordering."""

    def test_pending_ranks_between_new_and_first_reminder(self):
        assert progression_rank("New") < progression_rank("Pending") < progression_rank("Reminder1_sent")

    def test_unknown_rank(self):
        assert progression_rank("Archived") == UNKNOWN_RANK
        assert progression_rank(None) == UNKNOWN_RANK
        assert progression_rank("Onhold") == UNKNOWN_RANK

    def test_is_branch_status(self):
        assert is_branch_status("Onhold")
        assert is_branch_status(CaseStatus.CLOSED)
        assert not is_branch_status("Reminder2_sent")
        assert not is_branch_status("something-else")

    def test_needs_advance_forward_only(self):
        assert needs_advance("New", "Reminder1_sent")
        assert needs_advance("Reminder1_sent", "To_be_called")
        assert not needs_advance("Reminder2_sent", "Reminder2_sent")
        assert not needs_advance("Reminder3_sent", "Reminder1_sent")

    def test_pending_does_not_regress_to_new(self):
        assert not needs_advance("Pending", "New")

    def test_unknown_current_status_is_eligible(self):
        assert needs_advance("Archived", "Reminder1_sent")

    def test_branch_statuses_never_advance(self):
        assert not needs_advance("Onhold", "To_be_called")
        assert not needs_advance("Appointment_confirmed", "Reminder3_sent")


class TestEvaluateStep:
    """Single ladder step decisions used by the daily driver."""

    def test_step_order_is_increasing_urgency(self):
        assert [s.threshold_days for s in PROGRESSION_STEPS] == [30, 15, 7, 3]
        assert [s.name for s in PROGRESSION_STEPS] == ["J30", "J15", "J7", "J3"]

    def test_applies_inside_window(self):
        j30 = PROGRESSION_STEPS[0]
        resolution = evaluate_step(j30, 30, "New")
        assert resolution is not None
        assert resolution.target_status == "Reminder1_sent"
        assert resolution.action == OutreachAction.SEND_TEMPLATE

    def test_pending_is_a_source_of_the_first_step(self):
        assert evaluate_step(PROGRESSION_STEPS[0], 20, "Pending") is not None

    def test_outside_window(self):
        assert evaluate_step(PROGRESSION_STEPS[0], 31, "New") is None

    def test_wrong_source_status(self):
        assert evaluate_step(PROGRESSION_STEPS[1], 10, "New") is None
        assert evaluate_step(PROGRESSION_STEPS[1], 10, "Onhold") is None

    def test_call_step(self):
        j3 = PROGRESSION_STEPS[3]
        resolution = evaluate_step(j3, 2, "Reminder3_sent")
        assert resolution.target_status == "To_be_called"
        assert resolution.action == OutreachAction.MARK_FOR_CALL
        assert j3.action_kind == ActionKind.CALL_J3

    def test_step_for_target(self):
        assert step_for_target("Reminder2_sent").catch_up_action_kind == ActionKind.CATCH_UP_J15
        assert step_for_target("To_be_called").catch_up_action_kind == ActionKind.CATCH_UP_CALL
        assert step_for_target("New") is None


def test_days_until_due():
    today = date(2026, 3, 2)
    assert days_until_due(date(2026, 4, 1), today) == 30
    assert days_until_due(today, today) == 0
    assert days_until_due(date(2026, 2, 25), today) == -5
