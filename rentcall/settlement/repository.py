from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from rentcall.settlement.calculator import parse_billing_term, settle
from rentcall.settlement.models import BillingTerm
from rentcall.utils.exceptions import NotFoundError

logger = structlog.get_logger(__name__)


class TenantContact(BaseModel):
    """Who to notify for a tenant, extracted from its contacts list."""
    tenant_id: str
    name: str
    phone_numbers: List[str] = Field(default_factory=list)
    email: Optional[str] = None
    locale: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TenantContact":
        phones: List[str] = []
        email = None
        for contact in doc.get("contacts") or []:
            email = email or contact.get("email")
            for key in ("phone1", "phone2", "phone"):
                phone = contact.get(key)
                enabled = contact.get(key.replace("phone", "whatsapp"), contact.get("whatsapp", True))
                if phone and enabled and phone not in phones:
                    phones.append(phone)
        return cls(
            tenant_id=str(doc["_id"]),
            name=doc.get("name") or "",
            phone_numbers=phones,
            email=email,
            locale=doc.get("locale"),
        )


def _id_filter(value: str) -> Any:
    return ObjectId(value) if ObjectId.is_valid(value) else value


class RentRepository:
    """Billing terms live in ``rents``; notification contacts in ``tenants``."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.rents = db.rents
        self.tenants = db.tenants

    async def get_term(self, tenant_id: str, term: int) -> BillingTerm:
        doc = await self.rents.find_one({"tenantId": tenant_id, "term": term})
        if doc is None:
            raise NotFoundError(f"No billing term {term} for tenant {tenant_id}")
        return parse_billing_term(doc)

    async def settle_term(self, tenant_id: str, term: int) -> BillingTerm:
        """Recompute the total snapshot and persist it."""
        settled = settle(await self.get_term(tenant_id, term))
        await self.rents.update_one(
            {"tenantId": tenant_id, "term": term},
            {"$set": {"total": settled.total.model_dump(by_alias=True)}},
        )
        logger.info(
            "billing_term_total_saved",
            tenant_id=tenant_id,
            term=term,
            balance=settled.total.balance,
        )
        return settled

    async def get_tenant(self, tenant_id: str) -> TenantContact:
        doc = await self.tenants.find_one({"_id": _id_filter(tenant_id)})
        if doc is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return TenantContact.from_document(doc)
