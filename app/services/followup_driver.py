"""
Follow-up driver.

During business hours, offers a phone call to clients who read their first
reminder a while ago and did not answer. At most one follow-up per case.
"""
import asyncio
from datetime import timedelta
from typing import Awaitable, Callable

import structlog

from app.core.exceptions import DatabaseError
from app.core.logging import case_context
from app.database.audit_repository import AuditSink
from app.database.case_repository import CaseStore
from app.models.case import ActionKind, Case, CaseStatus, Outcome
from app.schemas.runs import RunSummary
from app.services.base_driver import BaseDriver
from app.services.notification_service import NotificationSeverity, NotificationSink
from app.services.outreach_service import OutreachService
from app.services.whatsapp_gateway import MessagingGateway
from app.utils.business_hours import BusinessHours
from app.utils.clock import Clock
from app.utils.pacing import CallPacer

logger = structlog.get_logger(__name__)

OUTSIDE_BUSINESS_HOURS = "outside business hours"


class FollowUpDriver(BaseDriver):
    """Hourly follow-up run."""

    name = "follow_up"

    def __init__(
        self,
        cases: CaseStore,
        audit: AuditSink,
        notifications: NotificationSink,
        clock: Clock,
        outreach: OutreachService,
        gateway: MessagingGateway,
        business_hours: BusinessHours,
        min_dwell_hours: float = 2.0,
        send_delay_seconds: float = 1.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__(cases, audit, notifications, clock, send_delay_seconds, sleep)
        self.outreach = outreach
        self.gateway = gateway
        self.business_hours = business_hours
        self.min_dwell = timedelta(hours=min_dwell_hours)

    async def _execute(self, summary: RunSummary) -> None:
        now = self.clock.now()
        if not self.business_hours.is_open(now):
            logger.info(
                "Skipping follow-up run outside business hours",
                local_time=self.business_hours.local_time(now).isoformat(),
            )
            summary.message = OUTSIDE_BUSINESS_HOURS
            return

        try:
            found = await self.cases.find_cases(
                statuses=[CaseStatus.REMINDER1_SENT.value],
                follow_up_sent=False,
            )
        except DatabaseError as e:
            logger.error("Follow-up candidate query failed", error=str(e))
            summary.message = "Candidate query failed"
            return

        candidates = [c for c in found if c.subject.whatsapp_available is True]
        summary.candidates = len(candidates)
        pacer = self.new_pacer()

        for case in candidates:
            with case_context(case.id):
                await self._process_case(summary, case, pacer)

        sent = summary.count(Outcome.SENT)
        if sent:
            await self.notify(
                "Follow-up envoyés",
                f"{sent} message(s) \"Souhaitez-vous qu'on vous appelle?\" envoyé(s) "
                "aux clients ayant lu leur relance.",
                NotificationSeverity.INFO,
                "/todo",
            )
        elif summary.message is None:
            summary.message = "No follow-up due"

    async def _is_eligible(self, case: Case) -> bool:
        """Read, old enough, and unanswered."""
        message = await self.gateway.latest_outbound_template(case.subject.id)
        if message is None:
            return False

        receipt = await self.gateway.get_read_receipt(message.id)
        if not receipt.is_read:
            return False

        read_at = receipt.read_at or message.created_at
        if self.clock.now() - read_at < self.min_dwell:
            return False

        return not await self.gateway.has_inbound_since(message.conversation_id, message.created_at)

    async def _process_case(self, summary: RunSummary, case: Case, pacer: CallPacer) -> None:
        action_kind = ActionKind.FOLLOW_UP.value
        try:
            if not await self._is_eligible(case):
                return

            if not await self.claim(case, ActionKind.FOLLOW_UP, follow_up_sent=False):
                await self.record_outcome(
                    summary, case, action_kind, Outcome.SKIPPED_CONFLICT,
                    detail="Case changed or follow-up already attempted",
                )
                return

            try:
                result = await self.outreach.send_follow_up(case, pacer)
            except Exception:
                await self.release(case, ActionKind.FOLLOW_UP)
                raise

            if not await self.cases.set_follow_up_sent(case.id, self.clock.now()):
                await self.release(case, ActionKind.FOLLOW_UP)
                await self.record_outcome(
                    summary, case, action_kind, Outcome.SKIPPED_CONFLICT,
                    detail=f"Sent {result.delivery_id} but follow-up already flagged",
                )
                return

            await self.record_outcome(
                summary, case, action_kind, Outcome.SENT,
                to_status=case.status,
                detail=f"{result.message.template_name} -> {result.delivery_id}",
            )

        except Exception as e:
            await self.record_failure(summary, case, action_kind, e)
