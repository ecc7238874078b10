from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from rentcall.auth.dependencies import get_current_identity
from rentcall.core.config import settings
from rentcall.metrics.metrics import MetricsCollector
from rentcall.notifications.payload import MessageType, build_message_for_term
from rentcall.routes.whatsapp import dispatch_or_suppress, get_dispatcher, get_metrics_collector
from rentcall.settlement.calculator import settlement_status
from rentcall.settlement.repository import RentRepository
from rentcall.whatsapp.dispatcher import TemplateDispatcher

router = APIRouter(prefix="/rents", tags=["Rents"])


def get_rent_repository(request: Request) -> RentRepository:
    return request.app.state.rent_repository


class NotifyRequest(BaseModel):
    message_type: str = Field(MessageType.RENTCALL.value, alias="messageType")
    locale: Optional[str] = None
    link: Optional[str] = None


@router.get("/{tenant_id}/{term}")
async def get_settlement(
    tenant_id: str,
    term: int,
    identity: Dict[str, Any] = Depends(get_current_identity),
    rents: RentRepository = Depends(get_rent_repository),
) -> Dict[str, Any]:
    settled = await rents.settle_term(tenant_id, term)
    return {
        "tenantId": tenant_id,
        "term": term,
        "total": settled.total.model_dump(by_alias=True),
        "status": settlement_status(settled.total).value,
    }


@router.post("/{tenant_id}/{term}/whatsapp")
async def notify_tenant(
    tenant_id: str,
    term: int,
    body: NotifyRequest,
    identity: Dict[str, Any] = Depends(get_current_identity),
    rents: RentRepository = Depends(get_rent_repository),
    dispatcher: TemplateDispatcher = Depends(get_dispatcher),
    metrics: MetricsCollector = Depends(get_metrics_collector),
) -> Dict[str, Any]:
    message_type = MessageType.parse(body.message_type)
    billing_term = await rents.settle_term(tenant_id, term)
    tenant = await rents.get_tenant(tenant_id)
    message = build_message_for_term(
        billing_term,
        tenant,
        message_type,
        link=body.link or f"{settings.PUBLIC_BASE_URL}/invoices/{tenant_id}/{term}",
        locale=body.locale,
    )
    return await dispatch_or_suppress(dispatcher, message, message_type, metrics)
