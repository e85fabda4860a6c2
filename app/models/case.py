"""
Renewal case model and the workflow vocabulary shared by every driver.
"""
from datetime import date, datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class CaseStatus(str, Enum):
    """Case status enumeration (stored values match the reminders table)"""
    NEW = "New"
    PENDING = "Pending"
    REMINDER1_SENT = "Reminder1_sent"
    REMINDER2_SENT = "Reminder2_sent"
    REMINDER3_SENT = "Reminder3_sent"
    TO_BE_CALLED = "To_be_called"
    ONHOLD = "Onhold"
    TO_BE_CONTACTED = "To_be_contacted"
    APPOINTMENT_CONFIRMED = "Appointment_confirmed"
    CLOSED = "Closed"
    COMPLETED = "Completed"


class ActionKind(str, Enum):
    """Automated action tags recorded on the case and in the audit log"""
    REMINDER_J30 = "J30"
    REMINDER_J15 = "J15"
    REMINDER_J7 = "J7"
    CALL_J3 = "J3"
    CATCH_UP_J30 = "J30_catchup"
    CATCH_UP_J15 = "J15_catchup"
    CATCH_UP_J7 = "J7_catchup"
    CATCH_UP_CALL = "catch_up"
    FOLLOW_UP = "follow_up"
    INBOUND_REPLY = "inbound_reply"


class Outcome(str, Enum):
    """Per-case result of a driver step"""
    SENT = "sent"
    MARKED_FOR_CALL = "marked_for_call"
    SKIPPED = "skipped"
    FAILED = "failed"
    SKIPPED_CONFLICT = "skipped-conflict"
    PUT_ON_HOLD = "put_on_hold"


class Subject(BaseModel):
    """Read-only snapshot of the customer record a case belongs to"""
    id: str
    phone: Optional[str] = None
    name: Optional[str] = None
    vehicle: Optional[str] = None
    center_id: Optional[str] = None
    center_name: Optional[str] = None
    whatsapp_available: Optional[bool] = None


class Case(BaseModel):
    """One due-date cycle tracked through the reminder workflow"""
    id: str
    subject: Subject
    due_date: date
    # Stored as a plain string: rows may carry values outside CaseStatus.
    status: str = CaseStatus.NEW.value
    last_action_kind: Optional[str] = None
    last_action_at: Optional[datetime] = None
    follow_up_sent: bool = False
    follow_up_sent_at: Optional[datetime] = None
    response_received_at: Optional[datetime] = None
    # Set before an external send, cleared by the status swap that follows it.
    outreach_claim: Optional[str] = None
    outreach_claimed_at: Optional[datetime] = None
    created_at: datetime


class CenterConfig(BaseModel):
    """Inspection center outreach configuration"""
    id: Optional[str] = None
    name: str
    phone: Optional[str] = None
    short_url: Optional[str] = None
    network: Optional[str] = None
    template_name: Optional[str] = None


class ActionMeta(BaseModel):
    """Bookkeeping written together with a status compare-and-swap"""
    action_kind: ActionKind
    acted_at: datetime
    response_received_at: Optional[datetime] = None


class AuditRecord(BaseModel):
    """Append-only action log entry"""
    case_id: str
    action_kind: str
    outcome: Outcome
    detail: Optional[str] = None
    timestamp: datetime = Field(...)
