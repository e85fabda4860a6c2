"""
Status transition rules for renewal cases.

Maps "days until due" and the current status to the status a case should be
in and the automated action that gets it there. This module owns the
progression rank table; drivers never compare statuses any other way.

Pure functions only: no clock, no I/O, no channel checks.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple, Union

from app.models.case import ActionKind, CaseStatus


class OutreachAction(str, Enum):
    """Automated action required to reach a target status."""
    NONE = "none"
    SEND_TEMPLATE = "send_template"
    MARK_FOR_CALL = "mark_for_call"


# Forward-only ordering of the automated statuses.
PROGRESSION_RANK: Dict[CaseStatus, int] = {
    CaseStatus.NEW: 0,
    CaseStatus.PENDING: 1,
    CaseStatus.REMINDER1_SENT: 2,
    CaseStatus.REMINDER2_SENT: 3,
    CaseStatus.REMINDER3_SENT: 4,
    CaseStatus.TO_BE_CALLED: 5,
}

# Reached only by a client reply or an agent decision.
BRANCH_STATUSES: FrozenSet[CaseStatus] = frozenset({
    CaseStatus.ONHOLD,
    CaseStatus.TO_BE_CONTACTED,
    CaseStatus.APPOINTMENT_CONFIRMED,
    CaseStatus.CLOSED,
    CaseStatus.COMPLETED,
})

UNKNOWN_RANK = -1

StatusLike = Union[CaseStatus, str, None]


@dataclass(frozen=True)
class Resolution:
    """Decision for one case: where it should be and how to get there."""
    target_status: str
    action: OutreachAction


@dataclass(frozen=True)
class ProgressionStep:
    """One rung of the reminder ladder."""
    threshold_days: int
    source_statuses: FrozenSet[CaseStatus]
    target_status: CaseStatus
    action: OutreachAction
    action_kind: ActionKind
    catch_up_action_kind: ActionKind

    @property
    def name(self) -> str:
        return f"J{self.threshold_days}"


# Ordered by increasing urgency; the daily driver walks it in this order.
PROGRESSION_STEPS: Tuple[ProgressionStep, ...] = (
    ProgressionStep(
        threshold_days=30,
        source_statuses=frozenset({CaseStatus.NEW, CaseStatus.PENDING}),
        target_status=CaseStatus.REMINDER1_SENT,
        action=OutreachAction.SEND_TEMPLATE,
        action_kind=ActionKind.REMINDER_J30,
        catch_up_action_kind=ActionKind.CATCH_UP_J30,
    ),
    ProgressionStep(
        threshold_days=15,
        source_statuses=frozenset({CaseStatus.REMINDER1_SENT}),
        target_status=CaseStatus.REMINDER2_SENT,
        action=OutreachAction.SEND_TEMPLATE,
        action_kind=ActionKind.REMINDER_J15,
        catch_up_action_kind=ActionKind.CATCH_UP_J15,
    ),
    ProgressionStep(
        threshold_days=7,
        source_statuses=frozenset({CaseStatus.REMINDER2_SENT}),
        target_status=CaseStatus.REMINDER3_SENT,
        action=OutreachAction.SEND_TEMPLATE,
        action_kind=ActionKind.REMINDER_J7,
        catch_up_action_kind=ActionKind.CATCH_UP_J7,
    ),
    ProgressionStep(
        threshold_days=3,
        source_statuses=frozenset({CaseStatus.REMINDER3_SENT}),
        target_status=CaseStatus.TO_BE_CALLED,
        action=OutreachAction.MARK_FOR_CALL,
        action_kind=ActionKind.CALL_J3,
        catch_up_action_kind=ActionKind.CATCH_UP_CALL,
    ),
)

# Statuses still below the end of the automated ladder.
OPEN_PROGRESSION_STATUSES: FrozenSet[CaseStatus] = frozenset({
    CaseStatus.NEW,
    CaseStatus.PENDING,
    CaseStatus.REMINDER1_SENT,
    CaseStatus.REMINDER2_SENT,
    CaseStatus.REMINDER3_SENT,
})


def _as_status(status: StatusLike) -> Optional[CaseStatus]:
    if isinstance(status, CaseStatus):
        return status
    if status is None:
        return None
    try:
        return CaseStatus(status)
    except ValueError:
        return None


def days_until_due(due_date: date, today: date) -> int:
    """Whole calendar days from today to the due date (0 on the day, negative when overdue)."""
    return (due_date - today).days


def progression_rank(status: StatusLike) -> int:
    """Rank of an automated status; anything else ranks as unknown (-1)."""
    known = _as_status(status)
    if known is None:
        return UNKNOWN_RANK
    return PROGRESSION_RANK.get(known, UNKNOWN_RANK)


def is_branch_status(status: StatusLike) -> bool:
    """True for on-hold and terminal statuses owned by people, not the resolver."""
    return _as_status(status) in BRANCH_STATUSES


def needs_advance(current_status: StatusLike, target_status: StatusLike) -> bool:
    """
    Check whether moving from current to target goes strictly forward.

    Unknown current statuses rank -1 and are therefore always eligible.
    Branch and terminal statuses are never advanced automatically.
    """
    if is_branch_status(current_status) or is_branch_status(target_status):
        return False
    return progression_rank(target_status) > progression_rank(current_status)


def step_for_target(target_status: StatusLike) -> Optional[ProgressionStep]:
    """Find the ladder step that lands on the given status."""
    target = _as_status(target_status)
    for step in PROGRESSION_STEPS:
        if step.target_status == target:
            return step
    return None


def resolve(days_until_due: int, current_status: StatusLike) -> Resolution:
    """
    Compute the status a case should be in today and the action to get there.

    Thresholds are checked from the most urgent one; the first match wins.
    A case on hold or in a terminal state resolves to itself with no action.

    Args:
        days_until_due: Calendar days until the due date
        current_status: Stored case status

    Returns:
        Resolution with target status and required action
    """
    if is_branch_status(current_status):
        current = _as_status(current_status)
        return Resolution(target_status=current.value, action=OutreachAction.NONE)

    for step in sorted(PROGRESSION_STEPS, key=lambda s: s.threshold_days):
        if days_until_due <= step.threshold_days:
            return Resolution(target_status=step.target_status.value, action=step.action)

    return Resolution(target_status=CaseStatus.NEW.value, action=OutreachAction.NONE)


def evaluate_step(
    step: ProgressionStep,
    days_until_due: int,
    current_status: StatusLike,
) -> Optional[Resolution]:
    """
    Decide whether a single ladder step applies to a case.

    Returns the step's resolution when the case sits in one of the step's
    source statuses, is inside the step's window and would move forward;
    otherwise None.
    """
    if _as_status(current_status) not in step.source_statuses:
        return None
    if days_until_due > step.threshold_days:
        return None
    if not needs_advance(current_status, step.target_status):
        return None
    return Resolution(target_status=step.target_status.value, action=step.action)
