"""
Case store: persistent renewal cases and the compare-and-swap write primitive.

Every status mutation goes through ``compare_and_swap_status``; a rejected
swap means another run already handled the case. There are no locks.

An external send is bracketed by an outreach claim: ``claim_outreach`` marks
the case before the call and the status swap (or follow-up flag) that
follows clears it. A claim left behind by a crash blocks further sends for
that case until it is released by hand.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError
from supabase import Client

from app.core.exceptions import DatabaseError
from app.core.retry import create_retry_decorator, get_database_retry_config
from app.database.client import execute_query
from app.models.case import ActionKind, ActionMeta, Case, Subject
from app.utils.message_templates import clean_phone_number

logger = structlog.get_logger(__name__)

REMINDERS_TABLE = "reminders"
CLIENTS_TABLE = "clients"

CASE_SELECT = (
    "id, client_id, due_date, status, created_at, last_reminder_sent, last_reminder_at, "
    "follow_up_sent, follow_up_sent_at, response_received_at, outreach_claim, outreach_claimed_at, "
    "client:clients(id, phone, name, vehicle, center_name, center_id, whatsapp_available)"
)


class CaseStore(ABC):
    """Interface to the renewal case table."""

    @abstractmethod
    async def find_cases(
        self,
        statuses: Iterable[str],
        due_on_or_before: Optional[date] = None,
        due_on_or_after: Optional[date] = None,
        created_before: Optional[datetime] = None,
        follow_up_sent: Optional[bool] = None,
    ) -> List[Case]:
        """
        Find cases by status and due-date window, ordered by ascending due date.

        Args:
            statuses: Stored status values to match
            due_on_or_before: Inclusive upper bound on due date
            due_on_or_after: Inclusive lower bound on due date
            created_before: Only cases created strictly before this instant
            follow_up_sent: Filter on the follow-up flag when given

        Returns:
            Snapshot of matching cases
        """

    @abstractmethod
    async def get_case(self, case_id: str) -> Optional[Case]:
        """Fresh read of a single case."""

    @abstractmethod
    async def compare_and_swap_status(
        self,
        case_id: str,
        expected_status: str,
        new_status: str,
        action_meta: ActionMeta,
    ) -> bool:
        """
        Atomically move a case from ``expected_status`` to ``new_status``.

        Returns:
            True if the row was updated, False if its status no longer matched
        """

    @abstractmethod
    async def claim_outreach(
        self,
        case_id: str,
        expected_status: str,
        action_kind: ActionKind,
        claimed_at: datetime,
        follow_up_sent: Optional[bool] = None,
    ) -> bool:
        """
        Mark the case as having an outreach in flight.

        Succeeds only if the status still equals ``expected_status``, no other
        claim is held and, when given, the follow-up flag matches.

        Returns:
            True if this caller now holds the claim
        """

    @abstractmethod
    async def release_outreach(self, case_id: str, action_kind: ActionKind) -> None:
        """Drop a claim held for ``action_kind`` after a send that did not go out."""

    @abstractmethod
    async def set_follow_up_sent(self, case_id: str, sent_at: datetime) -> bool:
        """Flip ``follow_up_sent`` false -> true. False if it was already set."""

    @abstractmethod
    async def find_active_cases_for_phone(self, phone: str, statuses: Iterable[str]) -> List[Case]:
        """Cases in ``statuses`` whose subject owns the given phone number."""


class InMemoryCaseStore(CaseStore):
    """
    Dictionary-backed store for tests and local runs.

    Reads return deep copies so callers hold snapshots, the way rows read
    from the database behave.
    """

    def __init__(self, cases: Optional[Iterable[Case]] = None):
        self._cases: Dict[str, Case] = {}
        self.cas_attempts = 0
        for case in cases or []:
            self.add_case(case)

    def add_case(self, case: Case) -> None:
        self._cases[case.id] = case.model_copy(deep=True)

    def peek(self, case_id: str) -> Case:
        """Current stored row (test helper)."""
        return self._cases[case_id].model_copy(deep=True)

    async def find_cases(
        self,
        statuses: Iterable[str],
        due_on_or_before: Optional[date] = None,
        due_on_or_after: Optional[date] = None,
        created_before: Optional[datetime] = None,
        follow_up_sent: Optional[bool] = None,
    ) -> List[Case]:
        wanted = {str(s) for s in statuses}
        matches = []
        for case in self._cases.values():
            if case.status not in wanted:
                continue
            if due_on_or_before is not None and case.due_date > due_on_or_before:
                continue
            if due_on_or_after is not None and case.due_date < due_on_or_after:
                continue
            if created_before is not None and case.created_at >= created_before:
                continue
            if follow_up_sent is not None and case.follow_up_sent != follow_up_sent:
                continue
            matches.append(case.model_copy(deep=True))
        return sorted(matches, key=lambda c: (c.due_date, c.id))

    async def get_case(self, case_id: str) -> Optional[Case]:
        case = self._cases.get(case_id)
        return case.model_copy(deep=True) if case else None

    async def compare_and_swap_status(
        self,
        case_id: str,
        expected_status: str,
        new_status: str,
        action_meta: ActionMeta,
    ) -> bool:
        self.cas_attempts += 1
        case = self._cases.get(case_id)
        if case is None or case.status != expected_status:
            return False

        case.status = new_status
        case.last_action_kind = action_meta.action_kind.value
        case.last_action_at = action_meta.acted_at
        if action_meta.response_received_at is not None:
            case.response_received_at = action_meta.response_received_at
        case.outreach_claim = None
        case.outreach_claimed_at = None
        return True

    async def claim_outreach(
        self,
        case_id: str,
        expected_status: str,
        action_kind: ActionKind,
        claimed_at: datetime,
        follow_up_sent: Optional[bool] = None,
    ) -> bool:
        case = self._cases.get(case_id)
        if case is None or case.status != expected_status or case.outreach_claim is not None:
            return False
        if follow_up_sent is not None and case.follow_up_sent != follow_up_sent:
            return False
        case.outreach_claim = action_kind.value
        case.outreach_claimed_at = claimed_at
        return True

    async def release_outreach(self, case_id: str, action_kind: ActionKind) -> None:
        case = self._cases.get(case_id)
        if case is not None and case.outreach_claim == action_kind.value:
            case.outreach_claim = None
            case.outreach_claimed_at = None

    async def set_follow_up_sent(self, case_id: str, sent_at: datetime) -> bool:
        case = self._cases.get(case_id)
        if case is None or case.follow_up_sent:
            return False
        case.follow_up_sent = True
        case.follow_up_sent_at = sent_at
        case.outreach_claim = None
        case.outreach_claimed_at = None
        return True

    async def find_active_cases_for_phone(self, phone: str, statuses: Iterable[str]) -> List[Case]:
        target = clean_phone_number(phone)
        if not target:
            return []
        wanted = {str(s) for s in statuses}
        return [
            case.model_copy(deep=True)
            for case in self._cases.values()
            if case.status in wanted and clean_phone_number(case.subject.phone) == target
        ]


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def case_from_row(row: Dict[str, Any]) -> Case:
    """Map a ``reminders`` row (with its joined client) to a Case."""
    client = row.get("client") or {}
    subject = Subject(
        id=str(client.get("id") or row.get("client_id")),
        phone=client.get("phone"),
        name=client.get("name"),
        vehicle=client.get("vehicle"),
        center_id=client.get("center_id"),
        center_name=client.get("center_name"),
        whatsapp_available=client.get("whatsapp_available"),
    )
    return Case(
        id=str(row["id"]),
        subject=subject,
        due_date=date.fromisoformat(str(row["due_date"])[:10]),
        status=row.get("status") or "New",
        last_action_kind=row.get("last_reminder_sent"),
        last_action_at=_parse_datetime(row.get("last_reminder_at")),
        follow_up_sent=bool(row.get("follow_up_sent")),
        follow_up_sent_at=_parse_datetime(row.get("follow_up_sent_at")),
        response_received_at=_parse_datetime(row.get("response_received_at")),
        outreach_claim=row.get("outreach_claim"),
        outreach_claimed_at=_parse_datetime(row.get("outreach_claimed_at")),
        created_at=_parse_datetime(row.get("created_at")),
    )


def cases_from_rows(rows: Iterable[Dict[str, Any]], operation: str) -> List[Case]:
    """Map rows one at a time; a malformed row is logged and left out."""
    cases = []
    for row in rows:
        try:
            cases.append(case_from_row(row))
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Skipping malformed reminder row",
                operation=operation,
                case_id=row.get("id"),
                error=str(e),
            )
    return cases


class SupabaseCaseStore(CaseStore):
    """
    Case store backed by the Supabase ``reminders`` table.

    Reads are retried on connection errors; writes are never retried.
    """

    def __init__(self, client: Client, read_retry_attempts: int = 3):
        self.client = client
        self._retry = create_retry_decorator(
            get_database_retry_config(read_retry_attempts), operation="case store read"
        )

    def _read(self, query: Any, operation: str) -> List[Dict[str, Any]]:
        response = self._retry(execute_query)(query, operation)
        return response.data or []

    async def find_cases(
        self,
        statuses: Iterable[str],
        due_on_or_before: Optional[date] = None,
        due_on_or_after: Optional[date] = None,
        created_before: Optional[datetime] = None,
        follow_up_sent: Optional[bool] = None,
    ) -> List[Case]:
        query = self.client.table(REMINDERS_TABLE).select(CASE_SELECT).in_(
            "status", [str(s) for s in statuses]
        )
        if due_on_or_before is not None:
            query = query.lte("due_date", due_on_or_before.isoformat())
        if due_on_or_after is not None:
            query = query.gte("due_date", due_on_or_after.isoformat())
        if created_before is not None:
            query = query.lt("created_at", created_before.isoformat())
        if follow_up_sent is not None:
            query = query.eq("follow_up_sent", follow_up_sent)
        query = query.order("due_date")

        rows = self._read(query, "find_cases")
        logger.debug("Cases fetched", count=len(rows))
        return cases_from_rows(rows, "find_cases")

    async def get_case(self, case_id: str) -> Optional[Case]:
        query = self.client.table(REMINDERS_TABLE).select(CASE_SELECT).eq("id", case_id).limit(1)
        rows = self._read(query, "get_case")
        return case_from_row(rows[0]) if rows else None

    async def compare_and_swap_status(
        self,
        case_id: str,
        expected_status: str,
        new_status: str,
        action_meta: ActionMeta,
    ) -> bool:
        payload: Dict[str, Any] = {
            "status": new_status,
            "last_reminder_sent": action_meta.action_kind.value,
            "last_reminder_at": action_meta.acted_at.isoformat(),
            "outreach_claim": None,
            "outreach_claimed_at": None,
        }
        if action_meta.response_received_at is not None:
            payload["response_received_at"] = action_meta.response_received_at.isoformat()

        query = (
            self.client.table(REMINDERS_TABLE)
            .update(payload)
            .eq("id", case_id)
            .eq("status", expected_status)
        )
        response = execute_query(query, "compare_and_swap_status")
        updated = len(response.data or [])
        if updated > 1:
            raise DatabaseError(
                f"Status swap matched {updated} rows for case {case_id}",
                operation="compare_and_swap_status",
            )
        return updated == 1

    async def claim_outreach(
        self,
        case_id: str,
        expected_status: str,
        action_kind: ActionKind,
        claimed_at: datetime,
        follow_up_sent: Optional[bool] = None,
    ) -> bool:
        query = (
            self.client.table(REMINDERS_TABLE)
            .update({"outreach_claim": action_kind.value, "outreach_claimed_at": claimed_at.isoformat()})
            .eq("id", case_id)
            .eq("status", expected_status)
            .is_("outreach_claim", "null")
        )
        if follow_up_sent is not None:
            query = query.eq("follow_up_sent", follow_up_sent)
        response = execute_query(query, "claim_outreach")
        return len(response.data or []) == 1

    async def release_outreach(self, case_id: str, action_kind: ActionKind) -> None:
        query = (
            self.client.table(REMINDERS_TABLE)
            .update({"outreach_claim": None, "outreach_claimed_at": None})
            .eq("id", case_id)
            .eq("outreach_claim", action_kind.value)
        )
        execute_query(query, "release_outreach")

    async def set_follow_up_sent(self, case_id: str, sent_at: datetime) -> bool:
        query = (
            self.client.table(REMINDERS_TABLE)
            .update({
                "follow_up_sent": True,
                "follow_up_sent_at": sent_at.isoformat(),
                "outreach_claim": None,
                "outreach_claimed_at": None,
            })
            .eq("id", case_id)
            .eq("follow_up_sent", False)
        )
        response = execute_query(query, "set_follow_up_sent")
        return len(response.data or []) == 1

    async def find_active_cases_for_phone(self, phone: str, statuses: Iterable[str]) -> List[Case]:
        digits = clean_phone_number(phone)
        if not digits:
            return []

        client_query = (
            self.client.table(CLIENTS_TABLE)
            .select("id")
            .or_(f"phone.eq.{digits},phone.eq.+{digits}")
        )
        client_ids = [str(row["id"]) for row in self._read(client_query, "find_client_by_phone")]
        if not client_ids:
            return []

        query = (
            self.client.table(REMINDERS_TABLE)
            .select(CASE_SELECT)
            .in_("client_id", client_ids)
            .in_("status", [str(s) for s in statuses])
            .order("due_date")
        )
        rows = self._read(query, "find_active_cases_for_phone")
        return cases_from_rows(rows, "find_active_cases_for_phone")
