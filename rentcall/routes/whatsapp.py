from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from rentcall.auth.dependencies import get_current_identity
from rentcall.metrics.metrics import MetricsCollector
from rentcall.notifications.payload import MessageType, OutboundMessage, build_outbound_message
from rentcall.settlement.models import TermTotal
from rentcall.utils.exceptions import ValidationError
from rentcall.whatsapp.config import WhatsAppConfig
from rentcall.whatsapp.dispatcher import TemplateDispatcher
from rentcall.whatsapp.tracker import DeliveryStatusTracker
from rentcall.whatsapp.webhook import (
    parse_inbound_messages,
    parse_status_updates,
    verify_subscription,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/whatsapp", tags=["WhatsApp"])


def get_dispatcher(request: Request) -> TemplateDispatcher:
    return request.app.state.dispatcher


def get_tracker(request: Request) -> DeliveryStatusTracker:
    return request.app.state.tracker


def get_whatsapp_config(request: Request) -> WhatsAppConfig:
    return request.app.state.whatsapp_config


def get_metrics_collector(request: Request) -> MetricsCollector:
    return request.app.state.metrics


class SendInvoiceRequest(BaseModel):
    phone_numbers: List[str] = Field(..., alias="phoneNumbers", min_length=1)
    tenant_name: str = Field(..., alias="tenantName")
    invoice_period: str = Field(..., alias="invoicePeriod", min_length=1)
    # net balance still owed for the period
    total_amount: float = Field(..., alias="totalAmount", strict=True, allow_inf_nan=False)
    currency: Optional[str] = None
    due_date: Optional[str] = Field(None, alias="dueDate")
    days_overdue: int = Field(0, alias="daysOverdue", ge=0)
    invoice_url: Optional[str] = Field(None, alias="invoiceUrl")
    locale: Optional[str] = None
    organization_name: Optional[str] = Field(None, alias="organizationName")
    template_name: str = Field(MessageType.INVOICE.value, alias="templateName")


class SendDocumentRequest(SendInvoiceRequest):
    template_name: str = Field(..., alias="templateName")


class SendMessageRequest(BaseModel):
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    message: str = Field(..., min_length=1)
    recipient_name: Optional[str] = Field(None, alias="recipientName")


async def dispatch_or_suppress(
    dispatcher: TemplateDispatcher,
    message: Optional[OutboundMessage],
    message_type: MessageType,
    metrics: Optional[MetricsCollector] = None,
    link_only: bool = False,
) -> Dict[str, Any]:
    if message is None:
        if metrics:
            metrics.record_suppressed(message_type.value)
        return {
            "success": True,
            "suppressed": True,
            "reason": "no_balance_due",
            "messageType": message_type.value,
            "results": [],
            "summary": {"total": 0, "apiSuccess": 0, "linkFallback": 0},
        }
    result = await dispatcher.dispatch(message, link_only=link_only)
    return {"success": True, "suppressed": False, **result.as_dict()}


def _message_from_request(body: SendInvoiceRequest) -> Tuple[MessageType, Optional[OutboundMessage]]:
    message_type = MessageType.parse(body.template_name)
    total = TermTotal(grand_total=body.total_amount, balance=body.total_amount)
    message = build_outbound_message(
        total,
        body.tenant_name,
        body.phone_numbers,
        message_type,
        body.invoice_period,
        due_date=body.due_date,
        days_overdue=body.days_overdue,
        link=body.invoice_url,
        locale=body.locale,
        currency=body.currency,
        organization_name=body.organization_name,
    )
    return message_type, message


@router.post("/send-invoice")
async def send_invoice(
    body: SendInvoiceRequest,
    identity: Dict[str, Any] = Depends(get_current_identity),
    dispatcher: TemplateDispatcher = Depends(get_dispatcher),
    metrics: MetricsCollector = Depends(get_metrics_collector),
) -> Dict[str, Any]:
    message_type, message = _message_from_request(body)
    return await dispatch_or_suppress(dispatcher, message, message_type, metrics)


@router.post("/send-document")
async def send_document(
    body: SendDocumentRequest,
    identity: Dict[str, Any] = Depends(get_current_identity),
    dispatcher: TemplateDispatcher = Depends(get_dispatcher),
    metrics: MetricsCollector = Depends(get_metrics_collector),
) -> Dict[str, Any]:
    """Localized wa.me links only; the API is never called."""
    message_type, message = _message_from_request(body)
    return await dispatch_or_suppress(dispatcher, message, message_type, metrics, link_only=True)


@router.post("/send-message")
async def send_message(
    body: SendMessageRequest,
    identity: Dict[str, Any] = Depends(get_current_identity),
    dispatcher: TemplateDispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    outcome = await dispatcher.send_message(body.phone_number, body.message)
    return {
        "success": True,
        "recipientName": body.recipient_name or body.phone_number,
        **outcome.as_dict(),
    }


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    config: WhatsAppConfig = Depends(get_whatsapp_config),
):
    try:
        return verify_subscription(mode, token, challenge, config.webhook_verify_token)
    except ValidationError as e:
        return PlainTextResponse(e.message, status_code=400)


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(
    request: Request,
    tracker: DeliveryStatusTracker = Depends(get_tracker),
    metrics: MetricsCollector = Depends(get_metrics_collector),
):
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Webhook body is not valid JSON") from e

    for update in parse_status_updates(payload):
        record = tracker.apply_status_update(
            update.message_id,
            update.status,
            timestamp=update.timestamp,
            error_code=update.error_code,
            error_message=update.error_message,
        )
        metrics.record_status_update(update.status.value, applied=record is not None)

    for inbound in parse_inbound_messages(payload):
        logger.info("whatsapp_message_received", sender=inbound.sender, type=inbound.type)

    return "EVENT_RECEIVED"


@router.get("/message-status/{message_id}")
async def message_status(
    message_id: str,
    identity: Dict[str, Any] = Depends(get_current_identity),
    tracker: DeliveryStatusTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    return {"success": True, "status": tracker.query(message_id)}


@router.get("/message-statuses")
async def message_statuses(
    identity: Dict[str, Any] = Depends(get_current_identity),
    tracker: DeliveryStatusTracker = Depends(get_tracker),
) -> Dict[str, Any]:
    records = tracker.query_all()
    return {"success": True, "count": len(records), "statuses": records}


@router.get("/health")
async def health(dispatcher: TemplateDispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    return {
        "status": "OK",
        "apiConfigured": dispatcher.api_enabled,
        "mode": "api-with-fallback" if dispatcher.api_enabled else "link-only",
    }
