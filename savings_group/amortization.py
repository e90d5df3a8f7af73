"""
Amortization Module

Flat monthly amortization: fixed monthly payment, interest on the declining
balance, rounding drift absorbed by the final installment so the schedule
always ends at exactly zero. Pure functions, no storage.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .errors import InvalidAmount
from .money import ZERO, quantize, require_non_negative, to_decimal


@dataclass(frozen=True)
class ScheduleEntry:
    """Single month of an amortization schedule"""
    month: int
    payment: Decimal
    principal: Decimal
    interest: Decimal
    balance: Decimal

    def __post_init__(self):
        # Validate that payment equals principal + interest
        if abs((self.principal + self.interest) - self.payment) > Decimal('0.01'):
            raise ValueError(f"Payment {self.payment} does not equal principal "
                             f"{self.principal} + interest {self.interest}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.month,
            "payment": str(self.payment),
            "principal": str(self.principal),
            "interest": str(self.interest),
            "balance": str(self.balance),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScheduleEntry':
        return cls(
            month=int(data["month"]),
            payment=Decimal(str(data["payment"])),
            principal=Decimal(str(data["principal"])),
            interest=Decimal(str(data["interest"])),
            balance=Decimal(str(data["balance"])),
        )


@dataclass(frozen=True)
class AmortizationResult:
    monthly_payment: Decimal
    total_repayable: Decimal
    schedule: List[ScheduleEntry] = field(default_factory=list)

    @property
    def total_interest(self) -> Decimal:
        return sum((entry.interest for entry in self.schedule), ZERO)


def monthly_rate(annual_rate_percent) -> Decimal:
    """Convert an annual percentage rate to a monthly decimal rate"""
    return to_decimal(annual_rate_percent, "interest rate") / Decimal('100') / Decimal('12')


def _validate(principal, annual_rate_percent, term_months):
    principal = require_non_negative(principal, "principal")
    rate = require_non_negative(annual_rate_percent, "interest rate")
    if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months <= 0:
        raise InvalidAmount(f"Term must be a positive whole number of months, got {term_months!r}")
    return principal, rate, term_months


def monthly_payment(principal, annual_rate_percent, term_months: int) -> Decimal:
    """
    Calculate the fixed monthly payment (unrounded)

    Standard loan payment formula: P * [i(1+i)^n] / [(1+i)^n - 1]
    with i the monthly rate; straight-line P/n when the rate is zero.
    """
    principal, rate, n = _validate(principal, annual_rate_percent, term_months)
    i = monthly_rate(rate)

    if i == 0:
        return principal / Decimal(n)

    factor = (Decimal('1') + i) ** n
    return principal * (i * factor) / (factor - Decimal('1'))


def build_schedule(principal, annual_rate_percent, term_months: int) -> AmortizationResult:
    """
    Generate the full amortization schedule

    Args:
        principal: Amount approved
        annual_rate_percent: Annual interest rate in percent, e.g. 5 for 5%
        term_months: Number of monthly installments

    Returns:
        AmortizationResult with the rounded monthly payment, the total
        repayable (monthly payment x term) and one entry per month
    """
    principal, rate, n = _validate(principal, annual_rate_percent, term_months)
    i = monthly_rate(rate)
    payment = quantize(monthly_payment(principal, rate, n))

    balance = quantize(principal)
    schedule = []
    for month in range(1, n + 1):
        interest = quantize(balance * i)
        if month == n:
            # Final installment absorbs rounding drift
            month_principal = balance
        else:
            month_principal = min(quantize(payment - interest), balance)
        balance = max(balance - month_principal, ZERO)

        schedule.append(ScheduleEntry(
            month=month,
            payment=quantize(month_principal + interest),
            principal=month_principal,
            interest=interest,
            balance=quantize(balance)
        ))

    return AmortizationResult(
        monthly_payment=payment,
        total_repayable=quantize(payment * n),
        schedule=schedule
    )
