"""
Daily progression driver.

Walks the reminder ladder (J30, J15, J7, J3) in increasing urgency and moves
every eligible case one rung forward: a template send for the reminder
rungs, a call flag for J3. A case handled by one rung is not considered by
a later rung of the same run.
"""
import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, Set

import structlog

from app.core.exceptions import DatabaseError
from app.core.logging import case_context
from app.database.audit_repository import AuditSink
from app.database.case_repository import CaseStore
from app.models.case import ActionMeta, Case, Outcome
from app.schemas.runs import RunSummary
from app.services.base_driver import BaseDriver
from app.services.notification_service import NotificationSeverity, NotificationSink
from app.services.outreach_service import OutreachService
from app.utils.clock import Clock
from app.utils.message_templates import format_due_date
from app.utils.pacing import CallPacer
from app.utils.status_resolver import (
    PROGRESSION_STEPS,
    OutreachAction,
    ProgressionStep,
    Resolution,
    days_until_due,
    evaluate_step,
)

logger = structlog.get_logger(__name__)


class ProgressionDriver(BaseDriver):
    """Routine once-a-day reminder run."""

    name = "progression"

    def __init__(
        self,
        cases: CaseStore,
        audit: AuditSink,
        notifications: NotificationSink,
        clock: Clock,
        outreach: OutreachService,
        import_grace_minutes: int = 30,
        send_delay_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(cases, audit, notifications, clock, send_delay_seconds, sleep)
        self.outreach = outreach
        self.import_grace = timedelta(minutes=import_grace_minutes)

    async def _execute(self, summary: RunSummary) -> None:
        today = self.clock.today()
        # Freshly imported cases are left alone until the import has settled.
        created_before = self.clock.now() - self.import_grace
        pacer = self.new_pacer()
        handled: Set[str] = set()

        for step in PROGRESSION_STEPS:
            try:
                candidates = await self.cases.find_cases(
                    statuses=[s.value for s in step.source_statuses],
                    due_on_or_before=today + timedelta(days=step.threshold_days),
                    created_before=created_before,
                )
            except DatabaseError as e:
                logger.error("Candidate query failed", step=step.name, error=str(e))
                summary.message = f"Candidate query failed for {step.name}"
                continue

            logger.info("Step candidates fetched", step=step.name, count=len(candidates))

            for case in candidates:
                if case.id in handled:
                    continue
                resolution = evaluate_step(step, days_until_due(case.due_date, today), case.status)
                if resolution is None:
                    continue

                handled.add(case.id)
                summary.candidates += 1
                with case_context(case.id):
                    await self._process_case(summary, step, case, resolution, pacer)

        sent = summary.count(Outcome.SENT)
        calls = summary.count(Outcome.MARKED_FOR_CALL)
        if summary.candidates == 0 and summary.message is None:
            summary.message = "No cases due for a reminder"
        if sent or calls:
            await self.notify(
                "Rapport quotidien des rappels",
                f"{sent} WhatsApp envoyés, {calls} appels requis",
                NotificationSeverity.INFO,
            )

    async def _process_case(
        self,
        summary: RunSummary,
        step: ProgressionStep,
        case: Case,
        resolution: Resolution,
        pacer: CallPacer,
    ) -> None:
        action_kind = step.action_kind.value
        try:
            if resolution.action == OutreachAction.MARK_FOR_CALL:
                await self._mark_for_call(summary, step, case, resolution)
                return

            if not await self.claim(case, step.action_kind):
                await self.record_outcome(
                    summary, case, action_kind, Outcome.SKIPPED_CONFLICT,
                    detail="Status changed or outreach already attempted",
                )
                return

            try:
                result = await self.outreach.send_reminder(case, pacer)
            except Exception:
                await self.release(case, step.action_kind)
                raise

            swapped = await self.cases.compare_and_swap_status(
                case.id,
                case.status,
                resolution.target_status,
                ActionMeta(action_kind=step.action_kind, acted_at=self.clock.now()),
            )
            if not swapped:
                await self.release(case, step.action_kind)
                await self.record_outcome(
                    summary, case, action_kind, Outcome.SKIPPED_CONFLICT,
                    detail=f"Sent {result.delivery_id} but status changed concurrently",
                )
                return

            await self.record_outcome(
                summary, case, action_kind, Outcome.SENT,
                to_status=resolution.target_status,
                detail=f"{result.message.template_name} -> {result.delivery_id}",
            )

        except Exception as e:
            await self.record_failure(summary, case, action_kind, e)

    async def _mark_for_call(
        self, summary: RunSummary, step: ProgressionStep, case: Case, resolution: Resolution
    ) -> None:
        action_kind = step.action_kind.value
        swapped = await self.cases.compare_and_swap_status(
            case.id,
            case.status,
            resolution.target_status,
            ActionMeta(action_kind=step.action_kind, acted_at=self.clock.now()),
        )
        if not swapped:
            await self.record_outcome(summary, case, action_kind, Outcome.SKIPPED_CONFLICT)
            return

        await self.record_outcome(
            summary, case, action_kind, Outcome.MARKED_FOR_CALL, to_status=resolution.target_status
        )
        await self.notify(
            "Appel requis",
            f"Le client {case.subject.name or case.subject.phone} nécessite un appel téléphonique. "
            f"Échéance: {format_due_date(case.due_date)}",
            NotificationSeverity.ACTION_REQUIRED,
            f"/clients/{case.subject.id}",
        )
