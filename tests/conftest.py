"""
Pytest configuration and fixtures for the Renewal Reminder Orchestrator.

Every collaborator is the in-memory implementation, except the messaging
gateway which is a recording fake. The clock is frozen on a Monday morning
in Paris unless a test moves it.
"""
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Set
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.dependencies import (
    WorkflowContainer,
    get_catchup_driver,
    get_followup_driver,
    get_inbound_service,
    get_progression_driver,
)
from app.core.exceptions import GatewayError
from app.database.audit_repository import InMemoryAuditSink
from app.database.case_repository import InMemoryCaseStore
from app.database.center_repository import InMemoryCenterDirectory
from app.database.conversation_repository import InMemoryConversationStore
from app.main import create_app
from app.models.case import Case, CaseStatus, CenterConfig, Subject
from app.models.conversation import ConversationMessage, DeliveryStatus, ReadReceipt
from app.services.notification_service import InMemoryNotificationSink
from app.services.whatsapp_gateway import MessagingGateway
from app.utils.clock import Clock
from app.utils.message_templates import TemplateVariables, clean_phone_number

PARIS = ZoneInfo("Europe/Paris")
MONDAY_MORNING = datetime(2026, 3, 2, 10, 0, tzinfo=PARIS)


class FixedClock(Clock):
    """Clock frozen at a settable instant."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeGateway(MessagingGateway):
    """Records template sends; queries read the conversation log like the real gateway."""

    def __init__(self, conversations: InMemoryConversationStore):
        self.conversations = conversations
        self.sent: List[Dict[str, Any]] = []
        self.failing_destinations: Set[str] = set()
        self.fail_queries = False

    async def send_template(
        self,
        destination: str,
        template_name: str,
        language: str,
        variables: TemplateVariables,
    ) -> str:
        if clean_phone_number(destination) in self.failing_destinations:
            raise GatewayError("Template rejected", status_code=400)
        message_id = f"wamid.test{len(self.sent) + 1}"
        self.sent.append({
            "id": message_id,
            "destination": destination,
            "template_name": template_name,
            "language": language,
            "variables": variables,
        })
        return message_id

    async def latest_outbound_template(self, subject_id: str) -> Optional[ConversationMessage]:
        if self.fail_queries:
            raise GatewayError("Conversation lookup failed")
        conversation = await self.conversations.find_conversation_for_subject(subject_id)
        if conversation is None:
            return None
        return await self.conversations.latest_outbound_template(conversation.id)

    async def get_read_receipt(self, message_ref: str) -> ReadReceipt:
        if self.fail_queries:
            raise GatewayError("Read receipt lookup failed")
        message = await self.conversations.get_message(message_ref)
        if message is None or message.status != DeliveryStatus.READ.value:
            return ReadReceipt(is_read=False)
        return ReadReceipt(is_read=True, read_at=message.read_at)

    async def has_inbound_since(self, conversation_ref: str, since: datetime) -> bool:
        return await self.conversations.has_inbound_since(conversation_ref, since)


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns at once and keeps the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(MONDAY_MORNING)


@pytest.fixture
def case_store() -> InMemoryCaseStore:
    return InMemoryCaseStore()


@pytest.fixture
def conversation_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def notification_sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def sample_center() -> CenterConfig:
    return CenterConfig(
        id="center-1",
        name="Centre Lyon Est",
        phone="+33 4 78 00 00 00",
        short_url="https://rdv.example.com/lyon-est",
        network="AUTOSUR",
    )


@pytest.fixture
def center_directory(sample_center) -> InMemoryCenterDirectory:
    return InMemoryCenterDirectory([sample_center])


@pytest.fixture
def gateway(conversation_store) -> FakeGateway:
    return FakeGateway(conversation_store)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the developer's environment file."""
    return Settings(
        _env_file=None,
        cron_secret=None,
        catch_up_enabled=True,
        whatsapp_api_token="test-token",
        whatsapp_phone_id="123456789",
        whatsapp_verify_token="verify-me",
    )


@pytest.fixture
def container(
    settings,
    case_store,
    center_directory,
    conversation_store,
    audit_sink,
    notification_sink,
    gateway,
    clock,
    recording_sleep,
) -> WorkflowContainer:
    return WorkflowContainer(
        settings=settings,
        cases=case_store,
        centers=center_directory,
        conversations=conversation_store,
        audit=audit_sink,
        notifications=notification_sink,
        gateway=gateway,
        clock=clock,
        sleep=recording_sleep,
    )


@pytest.fixture
def make_case(case_store, clock):
    """
    Factory storing a case due ``due_in_days`` from the clock's today.

    The case was imported two days ago and its client is reachable on
    WhatsApp unless overridden.
    """

    def _make(
        case_id: str = "case-1",
        due_in_days: int = 30,
        status: str = CaseStatus.NEW.value,
        phone: Optional[str] = "+33612345678",
        name: Optional[str] = "Jean Dupont",
        subject_id: Optional[str] = None,
        whatsapp_available: Optional[bool] = True,
        center_id: Optional[str] = "center-1",
        created_hours_ago: float = 48,
        due_date: Optional[date] = None,
        **fields,
    ) -> Case:
        case = Case(
            id=case_id,
            subject=Subject(
                id=subject_id or f"client-{case_id}",
                phone=phone,
                name=name,
                vehicle="Peugeot 208",
                center_id=center_id,
                whatsapp_available=whatsapp_available,
            ),
            due_date=due_date or clock.today() + timedelta(days=due_in_days),
            status=status,
            created_at=clock.now() - timedelta(hours=created_hours_ago),
            **fields,
        )
        case_store.add_case(case)
        return case

    return _make


@pytest.fixture
def progression_driver(container):
    return get_progression_driver(container)


@pytest.fixture
def followup_driver(container):
    return get_followup_driver(container)


@pytest.fixture
def catchup_driver(container):
    return get_catchup_driver(container)


@pytest.fixture
def inbound_service(container):
    return get_inbound_service(container)


@pytest.fixture
def client(container):
    """TestClient over an application wired to the in-memory container."""
    with TestClient(create_app(container=container)) as test_client:
        yield test_client
