"""Renewal Reminder Orchestrator

This service drives vehicle-inspection renewal cases through their reminder
workflow:
- Sends WhatsApp reminders as the due date approaches (J-30, J-15, J-7)
- Flags cases for a phone call when the due date is close or past
- Sends a single follow-up prompt to clients who read but did not answer
- Reconciles cases left behind by blocked sends (one-shot catch-up)
- Puts cases on hold when the client replies
"""

__version__ = "1.0.0"
