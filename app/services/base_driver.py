"""
Run support shared by the workflow drivers.

A driver run is sequential. Each case is processed in isolation: whatever
goes wrong for one case is classified, audited and counted, and the run
moves on to the next case. A run always ends with a summary.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Tuple

import structlog

from app.core.exceptions import ContactChannelUnavailableError, DatabaseError, ExternalServiceError
from app.core.logging import driver_run_context, log_business_event, performance_timing
from app.database.audit_repository import AuditSink
from app.database.case_repository import CaseStore
from app.models.case import ActionKind, Case, Outcome
from app.schemas.runs import CaseOutcomeDetail, RunSummary
from app.services.notification_service import NotificationSeverity, NotificationSink
from app.utils.clock import Clock
from app.utils.pacing import CallPacer

logger = structlog.get_logger(__name__)


def classify_failure(error: Exception) -> Tuple[Outcome, str]:
    """Map a per-case exception to the outcome recorded for it."""
    if isinstance(error, ContactChannelUnavailableError):
        return Outcome.SKIPPED, error.detail
    if isinstance(error, (ExternalServiceError, DatabaseError)):
        return Outcome.FAILED, str(error)
    return Outcome.FAILED, f"Unexpected error: {error}"


class BaseDriver(ABC):
    """Common plumbing for the progression, follow-up and catch-up drivers."""

    name: str = "driver"

    def __init__(
        self,
        cases: CaseStore,
        audit: AuditSink,
        notifications: NotificationSink,
        clock: Clock,
        send_delay_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cases = cases
        self.audit = audit
        self.notifications = notifications
        self.clock = clock
        self.send_delay_seconds = send_delay_seconds
        self._sleep = sleep

    def new_pacer(self) -> CallPacer:
        return CallPacer(self.send_delay_seconds, sleep=self._sleep)

    async def run(self, run_id: Optional[str] = None) -> RunSummary:
        """Execute one run and return its summary."""
        with driver_run_context(self.name, run_id) as bound_run_id:
            summary = RunSummary(driver=self.name, run_id=bound_run_id, started_at=self.clock.now())
            with performance_timing(f"{self.name}_run"):
                await self._execute(summary)
            summary.finished_at = self.clock.now()

            log_business_event(
                f"{self.name}_run_completed",
                run_id=summary.run_id,
                candidates=summary.candidates,
                counts=summary.counts,
                already_correct=summary.already_correct,
                message=summary.message,
            )
            return summary

    @abstractmethod
    async def _execute(self, summary: RunSummary) -> None:
        """Process candidates, recording every outcome on the summary."""

    async def record_outcome(
        self,
        summary: RunSummary,
        case: Case,
        action_kind: Optional[str],
        outcome: Outcome,
        to_status: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        """Add the outcome to the summary and append it to the audit log."""
        summary.record(CaseOutcomeDetail(
            case_id=case.id,
            subject_id=case.subject.id,
            action_kind=action_kind,
            outcome=outcome,
            from_status=case.status,
            to_status=to_status,
            detail=detail,
        ))

        log = logger.warning if outcome == Outcome.FAILED else logger.info
        log(
            "Case processed",
            case_id=case.id,
            action_kind=action_kind,
            outcome=outcome.value,
            from_status=case.status,
            to_status=to_status,
            detail=detail,
        )

        try:
            await self.audit.append(case.id, action_kind or "", outcome, detail, self.clock.now())
        except Exception as e:
            logger.error("Failed to append audit record", case_id=case.id, outcome=outcome.value, error=str(e))

    async def record_failure(
        self, summary: RunSummary, case: Case, action_kind: Optional[str], error: Exception
    ) -> None:
        outcome, detail = classify_failure(error)
        if outcome == Outcome.FAILED and not isinstance(error, (ExternalServiceError, DatabaseError)):
            logger.error("Unexpected error processing case", case_id=case.id, error=str(error), exc_info=True)
        await self.record_outcome(summary, case, action_kind, outcome, detail=detail)

    async def claim(self, case: Case, action_kind: ActionKind, follow_up_sent: Optional[bool] = None) -> bool:
        """
        Take the outreach claim before an external send.

        A refused claim means the case moved since it was read, or another
        run already has a send in flight (or crashed after one).
        """
        return await self.cases.claim_outreach(
            case.id, case.status, action_kind, self.clock.now(), follow_up_sent=follow_up_sent
        )

    async def release(self, case: Case, action_kind: ActionKind) -> None:
        """Drop our claim; the case stays blocked if this fails."""
        try:
            await self.cases.release_outreach(case.id, action_kind)
        except Exception as e:
            logger.error("Failed to release outreach claim", case_id=case.id, error=str(e))

    async def notify(
        self,
        title: str,
        body: str,
        severity: NotificationSeverity,
        link_ref: Optional[str] = None,
    ) -> bool:
        delivered = await self.notifications.notify(title, body, severity, link_ref)
        if not delivered:
            logger.warning("Notification not delivered", title=title, severity=severity.value)
        return delivered
