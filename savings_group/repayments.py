"""
Repayment Allocation Module

Splits a repayment into interest and principal against a loan's outstanding
balance. Interest is one month of the annual rate on the outstanding
balance; the rest reduces principal, never below zero.
"""

from decimal import Decimal
from dataclasses import dataclass
from typing import Optional

from .storage import StorageRecord
from .amortization import monthly_rate
from .money import MONEY_EPSILON, ZERO, is_settled, quantize, require_non_negative, require_positive


@dataclass(frozen=True)
class RepaymentAllocation:
    """Result of allocating one repayment"""
    amount: Decimal
    interest_portion: Decimal
    principal_portion: Decimal
    balance_before: Decimal
    balance_after: Decimal
    excess_amount: Decimal   # Paid beyond interest + outstanding
    completed: bool


def allocate_repayment(outstanding_balance, annual_rate_percent, amount,
                       epsilon: Decimal = MONEY_EPSILON) -> RepaymentAllocation:
    """
    Allocate a repayment

    Args:
        outstanding_balance: Loan balance before the payment
        annual_rate_percent: Loan's annual interest rate in percent
        amount: Amount paid, must be positive
        epsilon: Balance at or below which the loan counts as paid off

    Returns:
        RepaymentAllocation with both portions and the new balance

    Raises:
        InvalidAmount: if amount is not positive or inputs are malformed
    """
    amount = quantize(require_positive(amount))
    outstanding = quantize(require_non_negative(outstanding_balance, "outstanding balance"))
    rate = require_non_negative(annual_rate_percent, "interest rate")

    interest = quantize(outstanding * monthly_rate(rate))
    # Principal is capped at what is owed; anything beyond is excess
    principal = min(max(amount - interest, ZERO), outstanding)
    new_outstanding = max(outstanding - principal, ZERO)
    excess = max(amount - interest - outstanding, ZERO)

    return RepaymentAllocation(
        amount=amount,
        interest_portion=min(interest, amount),
        principal_portion=principal,
        balance_before=outstanding,
        balance_after=new_outstanding,
        excess_amount=excess,
        completed=is_settled(new_outstanding, epsilon)
    )


@dataclass
class Repayment(StorageRecord):
    """Immutable record of a payment against a loan"""
    loan_id: str
    amount: Decimal
    interest_portion: Decimal
    principal_portion: Decimal
    balance_before: Decimal
    balance_after: Decimal
    excess_amount: Decimal = ZERO
    notes: str = ""
    recorded_by: Optional[str] = None

    _decimal_fields = ('amount', 'interest_portion', 'principal_portion',
                       'balance_before', 'balance_after', 'excess_amount')
