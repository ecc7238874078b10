"""
Parsing of WhatsApp Business webhook calls.

Both functions are pure: they never touch the tracker, so the route
decides what to do with the parsed updates.

Status payload shape::

    {"object": "whatsapp_business_account",
     "entry": [{"changes": [{"field": "messages",
                             "value": {"statuses": [{"id": "wamid...",
                                                     "status": "delivered",
                                                     "timestamp": "1700000000",
                                                     "recipient_id": "18095551234",
                                                     "errors": [...]}]}}]}]}
"""

import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog

from rentcall.utils.exceptions import ValidationError, WebhookVerificationError
from rentcall.whatsapp.tracker import DeliveryStatus

logger = structlog.get_logger(__name__)

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"


@dataclass(frozen=True)
class StatusUpdate:
    message_id: str
    status: DeliveryStatus
    timestamp: Optional[datetime]
    recipient_id: Optional[str]
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    sender: str
    type: str
    text: Optional[str]
    timestamp: Optional[datetime]


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: str,
) -> str:
    """Return the challenge verbatim when the subscription handshake is valid."""
    if not mode or not token or challenge is None:
        raise ValidationError("Missing hub.mode, hub.verify_token or hub.challenge")
    if mode != "subscribe" or not hmac.compare_digest(token, expected_token):
        logger.warning("webhook_verification_failed", mode=mode)
        raise WebhookVerificationError("Webhook verification failed")
    logger.info("webhook_verified")
    return challenge


def _epoch(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _dicts(items: Any, kind: str) -> Iterator[Dict[str, Any]]:
    """Dict elements of ``items``; anything else is logged and skipped."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning("webhook_malformed", kind=kind, got=type(items).__name__)
        return
    for item in items:
        if isinstance(item, dict):
            yield item
        else:
            logger.warning("webhook_malformed", kind=kind, got=type(item).__name__)


def _message_changes(payload: Any) -> Iterator[Dict[str, Any]]:
    if not isinstance(payload, dict) or payload.get("object") != BUSINESS_ACCOUNT_OBJECT:
        return
    for entry in _dicts(payload.get("entry"), "entry"):
        for change in _dicts(entry.get("changes"), "change"):
            if change.get("field") != "messages":
                continue
            value = change.get("value")
            if isinstance(value, dict):
                yield value
            else:
                logger.warning("webhook_malformed", kind="value", got=type(value).__name__)


def _first_error(raw: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    for first in _dicts(raw.get("errors"), "error"):
        details = first.get("error_data")
        message = (
            first.get("title")
            or first.get("message")
            or (details.get("details") if isinstance(details, dict) else None)
        )
        code = first.get("code")
        return (
            str(code) if code is not None else None,
            str(message) if message is not None else None,
        )
    return None, None


def parse_status_updates(payload: Dict[str, Any]) -> List[StatusUpdate]:
    updates = []
    for value in _message_changes(payload):
        for raw in _dicts(value.get("statuses"), "status"):
            message_id = raw.get("id")
            try:
                status = DeliveryStatus(raw.get("status"))
            except ValueError:
                logger.info("webhook_status_ignored", message_id=message_id, status=raw.get("status"))
                continue
            if not message_id or not isinstance(message_id, str):
                continue

            error_code, error_message = _first_error(raw)
            recipient_id = raw.get("recipient_id")
            updates.append(StatusUpdate(
                message_id=message_id,
                status=status,
                timestamp=_epoch(raw.get("timestamp")),
                recipient_id=str(recipient_id) if recipient_id is not None else None,
                error_code=error_code,
                error_message=error_message,
            ))
    return updates


def parse_inbound_messages(payload: Dict[str, Any]) -> List[InboundMessage]:
    messages = []
    for value in _message_changes(payload):
        for raw in _dicts(value.get("messages"), "message"):
            text = raw.get("text")
            messages.append(InboundMessage(
                message_id=str(raw.get("id", "")),
                sender=str(raw.get("from", "")),
                type=str(raw.get("type", "unknown")),
                text=text.get("body") if isinstance(text, dict) else None,
                timestamp=_epoch(raw.get("timestamp")),
            ))
    return messages
