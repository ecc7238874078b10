"""
Balance calculation for a billing term.

    grandTotal = sum(charges) - sum(discounts) + sum(debts)
    balance    = grandTotal - sum(payments)

A negative balance is a credit in the tenant's favour and is reported as-is.
"""

from typing import Any, Iterable, Mapping

import structlog
from pydantic import ValidationError as PydanticValidationError

from rentcall.settlement.models import (
    BillingTerm,
    SettlementStatus,
    TermTotal,
    round_amount,
)
from rentcall.utils.exceptions import ValidationError

logger = structlog.get_logger(__name__)

# half a cent
EPSILON = 0.005


def _sum(items: Iterable[Any]) -> float:
    return sum((item.amount for item in items), 0.0)


def parse_billing_term(data: Mapping[str, Any]) -> BillingTerm:
    """Validate raw term data. Malformed amounts are rejected, never zeroed."""
    try:
        return BillingTerm.model_validate(data)
    except PydanticValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        logger.warning("billing_term_rejected", fields=fields)
        raise ValidationError(f"Invalid billing term: {', '.join(fields)}") from e


def compute_total(term: BillingTerm) -> TermTotal:
    pre_tax = _sum(term.charges)
    grand_total = pre_tax - _sum(term.discounts) + _sum(term.debts)
    payment = _sum(term.payments)
    return TermTotal(
        pre_tax_amount=pre_tax,
        grand_total=grand_total,
        payment=payment,
        balance=round_amount(grand_total) - round_amount(payment),
    )


def settlement_status(total: TermTotal) -> SettlementStatus:
    if total.grand_total <= EPSILON or total.balance <= EPSILON:
        return SettlementStatus.PAID
    if total.payment > EPSILON and total.balance < total.grand_total - EPSILON:
        return SettlementStatus.PARTIALLY_PAID
    return SettlementStatus.UNPAID


def due_amount(total: TermTotal) -> float:
    """Amount still owed: the balance, clamped at zero."""
    return total.balance if total.balance > EPSILON else 0.0


def settle(term: BillingTerm) -> BillingTerm:
    """Copy of ``term`` with its total snapshot recomputed."""
    total = compute_total(term)
    logger.debug(
        "billing_term_settled",
        term=term.term,
        tenant_id=term.tenant_id,
        grand_total=total.grand_total,
        balance=total.balance,
    )
    return term.model_copy(update={"total": total})
