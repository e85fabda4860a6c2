"""
Tests for the backfill (catch-up) driver.
"""
import pytest

from app.models.case import Outcome
from app.services.notification_service import NotificationSeverity


class TestCatchUp:

    @pytest.mark.asyncio
    async def test_overdue_pending_case_is_flagged_without_message(
        self, catchup_driver, make_case, case_store, gateway, audit_sink
    ):
        make_case("case-1", due_in_days=-5, status="Pending")

        summary = await catchup_driver.run()

        stored = case_store.peek("case-1")
        assert stored.status == "To_be_called"
        assert stored.last_action_kind == "catch_up"
        assert gateway.sent == []
        assert summary.count(Outcome.MARKED_FOR_CALL) == 1
        assert audit_sink.for_case("case-1")[0].action_kind == "catch_up"

    @pytest.mark.asyncio
    async def test_lagging_case_jumps_with_one_send(self, catchup_driver, make_case, case_store, gateway):
        make_case("case-1", due_in_days=10, status="Pending")

        summary = await catchup_driver.run()

        stored = case_store.peek("case-1")
        assert stored.status == "Reminder2_sent"
        assert stored.last_action_kind == "J15_catchup"
        assert len(gateway.sent) == 1
        assert summary.count(Outcome.SENT) == 1

    @pytest.mark.asyncio
    async def test_skips_intermediate_rungs(self, catchup_driver, make_case, case_store, gateway):
        make_case("case-1", due_in_days=5, status="Reminder1_sent")

        await catchup_driver.run()

        assert case_store.peek("case-1").status == "Reminder3_sent"
        assert case_store.peek("case-1").last_action_kind == "J7_catchup"
        assert len(gateway.sent) == 1

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, catchup_driver, make_case, gateway, audit_sink, notification_sink):
        make_case("overdue", due_in_days=-5, status="Pending")
        make_case("lagging", due_in_days=10, status="Pending", phone="+33699999999")

        await catchup_driver.run()
        audit_count = len(audit_sink.records)
        notification_count = len(notification_sink.notifications)

        second = await catchup_driver.run()

        assert len(gateway.sent) == 1
        assert second.processed == 0
        assert second.already_correct == 1
        assert second.message == "All cases already in the correct status"
        assert len(audit_sink.records) == audit_count
        assert len(notification_sink.notifications) == notification_count

    @pytest.mark.asyncio
    async def test_cases_in_step_are_left_alone(self, catchup_driver, make_case, case_store, gateway):
        make_case("far", due_in_days=60, status="New")
        make_case("pending-far", due_in_days=45, status="Pending")
        make_case("on-track", due_in_days=20, status="Reminder1_sent")

        summary = await catchup_driver.run()

        assert summary.already_correct == 3
        assert gateway.sent == []
        assert case_store.peek("pending-far").status == "Pending"

    @pytest.mark.asyncio
    async def test_branch_statuses_are_not_candidates(self, catchup_driver, make_case, case_store):
        make_case("held", due_in_days=-5, status="Onhold")
        make_case("booked", due_in_days=2, status="Appointment_confirmed")

        summary = await catchup_driver.run()

        assert summary.candidates == 0
        assert case_store.peek("held").status == "Onhold"


class TestCatchUpReport:

    @pytest.mark.asyncio
    async def test_success_report(self, catchup_driver, make_case, notification_sink):
        make_case("case-1", due_in_days=-5, status="Pending")

        await catchup_driver.run()

        report = notification_sink.notifications[-1]
        assert report.title == "Rattrapage des relances bloquées"
        assert report.severity == NotificationSeverity.SUCCESS
        assert report.link_ref == "/todo"
        assert "1 marqués À appeler" in report.body

    @pytest.mark.asyncio
    async def test_warning_report_when_a_send_failed(self, catchup_driver, make_case, gateway, notification_sink, case_store):
        make_case("case-1", due_in_days=10, status="New", phone="+33611111111")
        make_case("case-2", due_in_days=10, status="New", phone="+33622222222")
        gateway.failing_destinations.add("33611111111")

        summary = await catchup_driver.run()

        assert summary.count(Outcome.FAILED) == 1
        assert summary.count(Outcome.SENT) == 1
        assert case_store.peek("case-1").status == "New"
        assert case_store.peek("case-1").outreach_claim is None
        assert notification_sink.notifications[-1].severity == NotificationSeverity.WARNING
