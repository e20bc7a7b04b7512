from decimal import Decimal

import pytest

from recon_calc.data_models import ToleranceClass
from recon_calc.variance import (
    adjusted_bank_variance,
    aged_receivables_variance,
    bank_statement_variance,
    calculate_variance,
    is_rounding_difference,
    sum_amounts,
    unexplained_remainder,
)

D = Decimal


class TestToleranceClasses:
    def test_half_cent_difference_under_schedule_tolerance(self):
        result = calculate_variance(D("1000.00"), D("999.995"), ToleranceClass.SCHEDULE)
        assert result.variance_amount == D("0.01")
        assert result.is_reconciled is True
        assert result.tolerance is ToleranceClass.SCHEDULE

    def test_half_cent_difference_under_exact_tolerance(self):
        result = calculate_variance(D("1000.00"), D("999.995"), ToleranceClass.EXACT)
        assert result.variance_amount == D("0.01")
        assert result.is_reconciled is False

    def test_one_cent_is_a_variance_in_both_classes(self):
        for tolerance in ToleranceClass:
            assert calculate_variance("1000.00", "999.99", tolerance).is_reconciled is False

    def test_tolerance_accepts_string_value(self):
        assert calculate_variance("5", "5", "exact").tolerance is ToleranceClass.EXACT


def test_matching_balances_reconcile():
    result = calculate_variance(D("4500.00"), D("4500.00"))
    assert result.variance_amount == D("0.00")
    assert result.is_reconciled is True


def test_variance_sign_follows_ledger_minus_comparison():
    assert calculate_variance(D("1000.00"), D("998.50")).variance_amount == D("1.50")
    assert calculate_variance(D("998.50"), D("1000.00")).variance_amount == D("-1.50")


@pytest.mark.parametrize(
    "amount, expected",
    [("0.01", True), ("1.00", True), ("-0.50", True), ("1.01", False), ("0.004", False), ("0", False)],
)
def test_is_rounding_difference(amount, expected):
    assert is_rounding_difference(amount) is expected


def test_sum_amounts():
    assert sum_amounts(["150.00", D("50.25"), 10]) == D("210.25")
    assert sum_amounts([]) == D("0")


class TestBankReconciliation:
    def test_statement_matches_ledger(self):
        assert bank_statement_variance("1000.00", "1000.00").is_reconciled is True

    def test_ticked_items_explain_the_difference(self):
        assert bank_statement_variance("1200.00", "1000.00").is_reconciled is False
        result = adjusted_bank_variance("1200.00", "1000.00", ["150.00", "50.00"])
        assert result.variance_amount == D("0.00")
        assert result.is_reconciled is True
        assert result.tolerance is ToleranceClass.EXACT

    def test_unexplained_remainder(self):
        assert unexplained_remainder("1200.00", "1000.00", ["150.00", "50.00", "25.00"]) == D("-25.00")


def test_aged_receivables_uses_exact_tolerance():
    result = aged_receivables_variance("5000.00", "4999.996")
    assert result.is_reconciled is True
    assert aged_receivables_variance("5000.00", "4999.99").is_reconciled is False
