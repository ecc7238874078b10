from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Optional

from pydantic import Field, field_validator

from rentcall.core.MongoORJSONResponse import MongoModel, PyObjectId
from rentcall.settlement.terms import parse_term
from rentcall.utils.exceptions import ValidationError

# strict: booleans and numeric strings are rejected instead of coerced
Amount = Annotated[float, Field(ge=0, strict=True, allow_inf_nan=False)]


def round_amount(value: float) -> float:
    """Round to cents, normalizing -0.0."""
    return round(value, 2) + 0.0


class SettlementStatus(str, Enum):
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    UNPAID = "unpaid"


class Charge(MongoModel):
    description: str = ""
    amount: Amount


class Payment(MongoModel):
    date: Optional[datetime] = None
    amount: Amount
    type: Optional[str] = Field(None, description="cash, transfer, cheque, ...")
    reference: Optional[str] = None
    description: Optional[str] = None


class Discount(MongoModel):
    origin: Optional[str] = None
    description: str = ""
    amount: Amount


class Debt(MongoModel):
    description: str = ""
    amount: Amount


class TermTotal(MongoModel):
    pre_tax_amount: float = Field(0.0, alias="preTaxAmount", allow_inf_nan=False)
    grand_total: float = Field(0.0, alias="grandTotal", allow_inf_nan=False)
    payment: float = Field(0.0, allow_inf_nan=False)
    balance: float = Field(0.0, allow_inf_nan=False)

    @field_validator("pre_tax_amount", "grand_total", "payment", "balance")
    @classmethod
    def round_two_decimals(cls, v: float) -> float:
        return round_amount(v)


class BillingTerm(MongoModel):
    id: Optional[PyObjectId] = Field(None, alias="_id")
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    realm_id: Optional[str] = Field(None, alias="realmId")
    term: int = Field(..., strict=True, description="YYYYMMDDHH")
    description: str = ""

    charges: List[Charge] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)
    discounts: List[Discount] = Field(default_factory=list)
    debts: List[Debt] = Field(default_factory=list)

    total: Optional[TermTotal] = None

    @field_validator("term")
    @classmethod
    def check_term(cls, v: int) -> int:
        try:
            parse_term(v)
        except ValidationError as e:
            raise ValueError(e.message) from e
        return v

    @field_validator("tenant_id", "realm_id", mode="before")
    @classmethod
    def stringify_ids(cls, v):
        return None if v is None else str(v)
