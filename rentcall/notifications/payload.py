"""
Outbound notification payloads.

``build_outbound_message`` is the single place that decides whether a
tenant is notified at all: nothing is sent for a zero or negative net
balance. Everything downstream (template parameters, free text, deep links)
formats the validated amount carried by :class:`OutboundMessage`.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from pathlib import Path
from typing import Annotated, List, Optional, Union

import structlog
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel, Field, field_validator

from rentcall.core.config import settings
from rentcall.settlement import terms
from rentcall.settlement.calculator import compute_total, due_amount
from rentcall.settlement.models import BillingTerm, TermTotal, round_amount
from rentcall.settlement.repository import TenantContact
from rentcall.utils.exceptions import ValidationError

logger = structlog.get_logger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

# locale -> template folder
SUPPORTED_LOCALES = {
    "en": "en",
    "es-CO": "es-CO",
    "es-DO": "es-CO",
    "fr-FR": "fr-FR",
    "de-DE": "de-DE",
    "pt-BR": "pt-BR",
}

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


class MessageType(str, Enum):
    INVOICE = "invoice"
    RENTCALL = "rentcall"
    RENTCALL_REMINDER = "rentcall_reminder"
    RENTCALL_LAST_REMINDER = "rentcall_last_reminder"

    @classmethod
    def parse(cls, value: Union[str, "MessageType"]) -> "MessageType":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        key = MESSAGE_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(f"Unknown message type '{value}'") from None

    @property
    def is_reminder(self) -> bool:
        return self in (MessageType.RENTCALL_REMINDER, MessageType.RENTCALL_LAST_REMINDER)


MESSAGE_TYPE_ALIASES = {
    "payment_notice": "rentcall",
    "payment_reminder": "rentcall_reminder",
    "final_notice": "rentcall_last_reminder",
}


class OutboundMessage(BaseModel):
    message_type: MessageType
    recipient_name: Annotated[str, Field(min_length=1)]
    phone_numbers: Annotated[List[str], Field(min_length=1)]
    email: Optional[str] = None
    locale: str = "en"
    currency: str = "RD$"
    amount: Annotated[float, Field(gt=0, allow_inf_nan=False)]
    period: Annotated[str, Field(min_length=1)]
    due_date: str = "-"
    days_overdue: Annotated[int, Field(ge=0)] = 0
    link: Optional[str] = None
    organization_name: str = "MicroRealEstate"

    @field_validator("recipient_name", "period")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cannot be blank")
        return v

    @property
    def formatted_amount(self) -> str:
        return format_amount(self.amount, self.currency)


def format_amount(amount: float, currency: str) -> str:
    return f"{currency} {round_amount(amount):.2f}"


def normalize_locale(locale: Optional[str]) -> str:
    """Supported locale key for ``locale``, falling back to the default then ``en``."""
    for candidate in (locale, settings.DEFAULT_LOCALE, "en"):
        if not candidate:
            continue
        candidate = candidate.replace("_", "-")
        if candidate in SUPPORTED_LOCALES:
            return candidate
        # bare language: es -> first es-XX
        language = candidate.split("-")[0].lower()
        for key in SUPPORTED_LOCALES:
            if key.split("-")[0] == language:
                return key
    return "en"


def build_outbound_message(
    total: TermTotal,
    recipient_name: str,
    phone_numbers: List[str],
    message_type: Union[str, MessageType],
    period: str,
    *,
    due_date: Optional[str] = None,
    days_overdue: int = 0,
    link: Optional[str] = None,
    email: Optional[str] = None,
    locale: Optional[str] = None,
    currency: Optional[str] = None,
    organization_name: Optional[str] = None,
) -> Optional[OutboundMessage]:
    """
    Payload for a tenant notification, or None when nothing is owed.

    Raises:
        ValidationError: unknown message type, blank name, no phone numbers
    """
    message_type = MessageType.parse(message_type)
    amount = due_amount(total)
    if amount <= 0:
        logger.info(
            "notification_not_required",
            message_type=message_type.value,
            balance=total.balance,
        )
        return None

    if not phone_numbers:
        raise ValidationError("At least one phone number is required")

    try:
        return OutboundMessage(
            message_type=message_type,
            recipient_name=recipient_name or "",
            phone_numbers=list(phone_numbers),
            email=email,
            locale=normalize_locale(locale),
            currency=currency or settings.DEFAULT_CURRENCY,
            amount=amount,
            period=period,
            due_date=due_date or "-",
            days_overdue=max(0, days_overdue),
            link=link or None,
            organization_name=organization_name or settings.ORGANIZATION_NAME,
        )
    except ValueError as e:
        raise ValidationError(f"Invalid notification payload: {e}") from e


def build_message_for_term(
    term: BillingTerm,
    tenant: TenantContact,
    message_type: Union[str, MessageType],
    *,
    link: Optional[str] = None,
    locale: Optional[str] = None,
    currency: Optional[str] = None,
    organization_name: Optional[str] = None,
    today: Optional[date] = None,
) -> Optional[OutboundMessage]:
    locale = normalize_locale(locale or tenant.locale)
    return build_outbound_message(
        compute_total(term),
        tenant.name,
        tenant.phone_numbers,
        message_type,
        terms.period_label(term.term, locale),
        due_date=terms.format_due_date(term.term),
        days_overdue=terms.days_overdue(term.term, today),
        link=link,
        email=tenant.email,
        locale=locale,
        currency=currency,
        organization_name=organization_name,
    )


def template_parameters(message: OutboundMessage) -> List[str]:
    """Ordered body parameters for the approved provider template."""
    params = [
        message.recipient_name,
        message.period,
        message.formatted_amount,
        message.due_date,
    ]
    if message.message_type.is_reminder:
        params.append(str(message.days_overdue))
    params.append(message.link or "#")
    return params


def render_text(message: OutboundMessage) -> str:
    """Localized free-text body used by the plain-text and deep-link fallbacks."""
    folder = SUPPORTED_LOCALES[normalize_locale(message.locale)]
    template = _env.get_template(f"{folder}/{message.message_type.value}.txt.j2")
    return template.render(
        tenant_name=message.recipient_name,
        period=message.period,
        amount=message.formatted_amount,
        due_date=message.due_date,
        days_overdue=message.days_overdue,
        link=message.link,
        organization_name=message.organization_name,
    ).strip()
