from datetime import date

import pytest

from rentcall.settlement import terms
from rentcall.settlement.calculator import (
    compute_total,
    due_amount,
    parse_billing_term,
    settle,
    settlement_status,
)
from rentcall.settlement.models import SettlementStatus
from rentcall.utils.exceptions import ValidationError


def make_term(charges=(), payments=(), discounts=(), debts=(), term=2024030100):
    return parse_billing_term({
        "tenantId": "tenant-1",
        "term": term,
        "charges": [{"description": "rent", "amount": a} for a in charges],
        "payments": [{"amount": a, "type": "transfer"} for a in payments],
        "discounts": [{"description": "discount", "amount": a} for a in discounts],
        "debts": [{"description": "debt", "amount": a} for a in debts],
    })


class TestComputeTotal:
    def test_grand_total_formula(self):
        total = compute_total(make_term(charges=[800, 200], discounts=[50], debts=[30], payments=[100]))

        assert total.pre_tax_amount == 1000
        assert total.grand_total == 980
        assert total.payment == 100
        assert total.balance == 880

    def test_overpayment_keeps_negative_balance(self):
        total = compute_total(make_term(charges=[200], payments=[400]))

        assert total.grand_total == 200
        assert total.balance == -200
        assert due_amount(total) == 0

    def test_partial_payment(self):
        total = compute_total(make_term(charges=[1000], payments=[600]))

        assert total.grand_total == 1000
        assert total.balance == 400
        assert settlement_status(total) == SettlementStatus.PARTIALLY_PAID
        assert due_amount(total) == 400

    def test_no_rounding_drift(self):
        total = compute_total(make_term(charges=[0.1] * 10, payments=[0.3, 0.3]))

        assert total.grand_total == 1.0
        assert total.balance == 0.4

    def test_settle_sets_snapshot(self):
        settled = settle(make_term(charges=[500]))

        assert settled.total is not None
        assert settled.total.balance == 500

    def test_total_serializes_with_camel_case(self):
        dumped = compute_total(make_term(charges=[10])).model_dump(by_alias=True)

        assert set(dumped) == {"preTaxAmount", "grandTotal", "payment", "balance"}


class TestSettlementStatus:
    @pytest.mark.parametrize("charges,payments,expected", [
        ([500], [500], SettlementStatus.PAID),
        ([500], [600], SettlementStatus.PAID),
        ([], [], SettlementStatus.PAID),
        ([500], [], SettlementStatus.UNPAID),
        ([500], [100], SettlementStatus.PARTIALLY_PAID),
    ])
    def test_states(self, charges, payments, expected):
        assert settlement_status(compute_total(make_term(charges=charges, payments=payments))) == expected

    def test_discount_cancelling_charges_is_paid(self):
        total = compute_total(make_term(charges=[300], discounts=[300]))

        assert settlement_status(total) == SettlementStatus.PAID


class TestValidation:
    @pytest.mark.parametrize("bad_amount", ["undefined", None, "12.5", True, float("nan"), -5])
    def test_malformed_amount_rejected(self, bad_amount):
        with pytest.raises(ValidationError) as exc:
            parse_billing_term({"term": 2024030100, "charges": [{"amount": bad_amount}]})

        assert "charges" in exc.value.message

    def test_missing_amount_rejected(self):
        with pytest.raises(ValidationError):
            parse_billing_term({"term": 2024030100, "payments": [{"type": "cash"}]})

    @pytest.mark.parametrize("bad_term", [202403, 2024133100, "2024030100"])
    def test_invalid_term_rejected(self, bad_term):
        with pytest.raises(ValidationError):
            parse_billing_term({"term": bad_term})


class TestTermHelpers:
    def test_parse_term(self):
        start = terms.parse_term(2024030100)

        assert (start.year, start.month, start.day) == (2024, 3, 1)

    def test_period_label_english(self):
        assert terms.period_label(2024030100, "en") == "March 2024"

    def test_period_label_spanish_is_capitalized(self):
        assert terms.period_label(2024030100, "es-CO") == "Marzo 2024"

    def test_period_label_unknown_locale_falls_back(self):
        assert terms.period_label(2024030100, "zz-ZZ") == "March 2024"

    def test_due_date_is_end_of_month(self):
        assert terms.format_due_date(2024020100) == "29/02/2024"
        assert terms.due_date(2023020100) == date(2023, 2, 28)

    def test_days_overdue_never_negative(self):
        assert terms.days_overdue(2024030100, today=date(2024, 3, 11)) == 10
        assert terms.days_overdue(2024030100, today=date(2024, 2, 1)) == 0
