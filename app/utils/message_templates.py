"""
WhatsApp template selection and variable building for reminder outreach.

The reminder template is chosen per inspection center (centers may register
their own template); the variables are the center label, the due date and
the two call-to-action buttons (booking URL and center phone).
"""

import re
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional

from app.models.case import CenterConfig, Subject

MIN_PHONE_DIGITS = 10


@dataclass(frozen=True)
class TemplateVariables:
    """Values substituted into a registered WhatsApp template."""
    body_parameters: List[str] = field(default_factory=list)
    url_button: Optional[str] = None
    call_button: Optional[str] = None


@dataclass(frozen=True)
class OutreachMessage:
    """A fully resolved template send plus the text kept in the conversation log."""
    template_name: str
    language: str
    variables: TemplateVariables
    content: str


def clean_phone_number(phone: Optional[str]) -> str:
    """
    Normalize a phone number to the digits-only international form the API expects.

    Strips formatting, a leading '+' and a leading '00' prefix.
    """
    if not phone:
        return ""
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
    if cleaned.startswith("00"):
        cleaned = cleaned[2:]
    return cleaned.replace("+", "")


def is_valid_destination(phone: Optional[str]) -> bool:
    return len(clean_phone_number(phone)) >= MIN_PHONE_DIGITS


def format_due_date(due_date: date) -> str:
    """DD/MM/YYYY, as displayed in the reminder template."""
    return due_date.strftime("%d/%m/%Y")


def center_label(
    center: Optional[CenterConfig],
    subject: Subject,
    default_label: str,
    default_network: str,
) -> str:
    name = (center.name if center else None) or subject.center_name or default_label
    network = (center.network if center else None) or default_network
    if network:
        return f"{name} - {network}"
    return name


def build_reminder_message(
    subject: Subject,
    due_date: date,
    center: Optional[CenterConfig],
    default_template: str,
    language: str,
    default_label: str = "Notre centre",
    default_network: str = "AUTOSUR",
) -> OutreachMessage:
    """
    Build the due-date reminder for a case.

    Args:
        subject: Client the reminder is addressed to
        due_date: Inspection due date
        center: Center configuration, when the client's center is known
        default_template: Template used when the center has none of its own
        language: Template language code
        default_label: Center name used when nothing better is known
        default_network: Network appended to the center name

    Returns:
        OutreachMessage ready to hand to the gateway
    """
    label = center_label(center, subject, default_label, default_network)
    due = format_due_date(due_date)
    template_name = (center.template_name if center else None) or default_template

    variables = TemplateVariables(
        body_parameters=[label, due],
        url_button=(center.short_url if center else None) or "",
        call_button=clean_phone_number(center.phone if center else None),
    )

    content = (
        "Madame, Monsieur,\n\n"
        f"Nous avons eu le plaisir de contrôler votre véhicule dans notre centre {label}.\n\n"
        "La validité de ce contrôle technique arrivant bientôt à échéance, "
        f"le prochain devra s'effectuer avant le : {due}.\n\n"
        "Nous vous invitons à prendre rendez-vous en ligne ou par téléphone."
    )

    return OutreachMessage(
        template_name=template_name,
        language=language,
        variables=variables,
        content=content,
    )


def build_followup_message(subject: Subject, template_name: str, language: str) -> OutreachMessage:
    """Build the "shall we call you?" prompt sent after an unanswered, read reminder."""
    body = [subject.name] if subject.name else []
    content = (
        "Bonjour ! Suite à notre précédent message, souhaitez-vous qu'on vous appelle "
        "pour vous assister dans la prise de votre prochain rendez-vous ?"
    )
    return OutreachMessage(
        template_name=template_name,
        language=language,
        variables=TemplateVariables(body_parameters=body),
        content=content,
    )
