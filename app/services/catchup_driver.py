"""
Backfill (catch-up) driver.

One-shot reconciliation for cases that fell behind the ladder, e.g. after an
outage or a bulk import. Each lagging case jumps straight to the status it
should be in today with at most one send; overdue cases are flagged for a
call without any message. Running it again over a reconciled population
does nothing.
"""
import asyncio
from typing import Awaitable, Callable, List

import structlog

from app.core.exceptions import DatabaseError
from app.core.logging import case_context
from app.database.audit_repository import AuditSink
from app.database.case_repository import CaseStore
from app.models.case import ActionKind, ActionMeta, Case, Outcome
from app.schemas.runs import RunSummary
from app.services.base_driver import BaseDriver
from app.services.notification_service import NotificationSeverity, NotificationSink
from app.services.outreach_service import OutreachService
from app.utils.clock import Clock
from app.utils.pacing import CallPacer
from app.utils.status_resolver import (
    OPEN_PROGRESSION_STATUSES,
    OutreachAction,
    Resolution,
    days_until_due,
    needs_advance,
    resolve,
    step_for_target,
)

logger = structlog.get_logger(__name__)


class CatchUpDriver(BaseDriver):

    name = "catch_up"

    def __init__(
        self,
        cases: CaseStore,
        audit: AuditSink,
        notifications: NotificationSink,
        clock: Clock,
        outreach: OutreachService,
        send_delay_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(cases, audit, notifications, clock, send_delay_seconds, sleep)
        self.outreach = outreach

    async def _execute(self, summary: RunSummary) -> None:
        today = self.clock.today()
        try:
            candidates = await self.cases.find_cases(statuses=[s.value for s in OPEN_PROGRESSION_STATUSES])
        except DatabaseError as e:
            logger.error("Catch-up candidate query failed", error=str(e))
            summary.message = "Candidate query failed"
            return

        summary.candidates = len(candidates)
        pacer = self.new_pacer()

        for case in candidates:
            resolution = resolve(days_until_due(case.due_date, today), case.status)
            if not needs_advance(case.status, resolution.target_status):
                summary.already_correct += 1
                continue
            with case_context(case.id):
                await self._process_case(summary, case, resolution, pacer)

        if summary.processed == 0:
            summary.message = "All cases already in the correct status"
            return

        await self.notify(
            "Rattrapage des relances bloquées",
            f"{summary.processed} dossiers traités: {', '.join(self._report_parts(summary))}",
            NotificationSeverity.WARNING if summary.count(Outcome.FAILED) else NotificationSeverity.SUCCESS,
            "/todo",
        )

    @staticmethod
    def _report_parts(summary: RunSummary) -> List[str]:
        parts = []
        if summary.count(Outcome.SENT):
            parts.append(f"{summary.count(Outcome.SENT)} WhatsApp envoyés")
        if summary.count(Outcome.MARKED_FOR_CALL):
            parts.append(f"{summary.count(Outcome.MARKED_FOR_CALL)} marqués À appeler (en retard)")
        if summary.count(Outcome.SKIPPED):
            parts.append(f"{summary.count(Outcome.SKIPPED)} ignorés")
        if summary.count(Outcome.SKIPPED_CONFLICT):
            parts.append(f"{summary.count(Outcome.SKIPPED_CONFLICT)} déjà traités")
        if summary.count(Outcome.FAILED):
            parts.append(f"{summary.count(Outcome.FAILED)} échecs")
        return parts

    async def _process_case(
        self, summary: RunSummary, case: Case, resolution: Resolution, pacer: CallPacer
    ) -> None:
        step = step_for_target(resolution.target_status)
        action_kind = step.catch_up_action_kind if step else ActionKind.CATCH_UP_CALL
        try:
            if resolution.action == OutreachAction.MARK_FOR_CALL:
                swapped = await self.cases.compare_and_swap_status(
                    case.id,
                    case.status,
                    resolution.target_status,
                    ActionMeta(action_kind=ActionKind.CATCH_UP_CALL, acted_at=self.clock.now()),
                )
                outcome = Outcome.MARKED_FOR_CALL if swapped else Outcome.SKIPPED_CONFLICT
                await self.record_outcome(
                    summary, case, ActionKind.CATCH_UP_CALL.value, outcome,
                    to_status=resolution.target_status if swapped else None,
                )
                return

            if not await self.claim(case, action_kind):
                await self.record_outcome(
                    summary, case, action_kind.value, Outcome.SKIPPED_CONFLICT,
                    detail="Status changed or outreach already attempted",
                )
                return

            try:
                result = await self.outreach.send_reminder(case, pacer)
            except Exception:
                await self.release(case, action_kind)
                raise

            swapped = await self.cases.compare_and_swap_status(
                case.id,
                case.status,
                resolution.target_status,
                ActionMeta(action_kind=action_kind, acted_at=self.clock.now()),
            )
            if not swapped:
                await self.release(case, action_kind)
                await self.record_outcome(
                    summary, case, action_kind.value, Outcome.SKIPPED_CONFLICT,
                    detail=f"Sent {result.delivery_id} but status changed concurrently",
                )
                return

            await self.record_outcome(
                summary, case, action_kind.value, Outcome.SENT,
                to_status=resolution.target_status,
                detail=f"{result.message.template_name} -> {result.delivery_id}",
            )

        except Exception as e:
            await self.record_failure(summary, case, action_kind.value, e)
