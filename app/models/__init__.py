"""
Models package for the Renewal Reminder Orchestrator.
"""
from .case import (
    ActionKind,
    ActionMeta,
    AuditRecord,
    Case,
    CaseStatus,
    CenterConfig,
    Outcome,
    Subject,
)
from .conversation import (
    Conversation,
    ConversationMessage,
    DeliveryStatus,
    MessageDirection,
    ReadReceipt,
    StatusEvent,
)

__all__ = [
    "ActionKind",
    "ActionMeta",
    "AuditRecord",
    "Case",
    "CaseStatus",
    "CenterConfig",
    "Outcome",
    "Subject",
    "Conversation",
    "ConversationMessage",
    "DeliveryStatus",
    "MessageDirection",
    "ReadReceipt",
    "StatusEvent",
]
