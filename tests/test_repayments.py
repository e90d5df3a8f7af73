"""
Tests for repayment allocation
"""

import pytest
from decimal import Decimal

from savings_group.errors import InvalidAmount
from savings_group.repayments import allocate_repayment


class TestAllocateRepayment:
    """Test interest-first allocation"""

    def test_partial_repayment(self):
        """1% monthly on 1,000: 10 interest, 40 principal"""
        allocation = allocate_repayment(Decimal('1000'), Decimal('12'), Decimal('50'))

        assert allocation.interest_portion == Decimal('10.00')
        assert allocation.principal_portion == Decimal('40.00')
        assert allocation.balance_before == Decimal('1000.00')
        assert allocation.balance_after == Decimal('960.00')
        assert allocation.excess_amount == Decimal('0.00')
        assert not allocation.completed

    def test_exact_payoff_at_zero_rate(self):
        allocation = allocate_repayment(Decimal('100'), Decimal('0'), Decimal('100'))

        assert allocation.balance_after == Decimal('0.00')
        assert allocation.completed

    def test_payment_below_interest(self):
        """Nothing reaches principal, balance unchanged"""
        allocation = allocate_repayment(Decimal('10000'), Decimal('12'), Decimal('50'))

        assert allocation.principal_portion == Decimal('0.00')
        assert allocation.interest_portion == Decimal('50.00')
        assert allocation.balance_after == Decimal('10000.00')
        assert not allocation.completed

    def test_overpayment_reports_excess(self):
        allocation = allocate_repayment(Decimal('100'), Decimal('12'), Decimal('200'))

        assert allocation.interest_portion == Decimal('1.00')
        assert allocation.principal_portion == Decimal('100.00')
        assert allocation.balance_after == Decimal('0.00')
        assert allocation.excess_amount == Decimal('99.00')
        assert allocation.completed

    def test_remaining_cent_counts_as_settled(self):
        allocation = allocate_repayment(Decimal('100.50'), Decimal('0'), Decimal('100.49'))

        assert allocation.balance_after == Decimal('0.01')
        assert allocation.completed

    def test_custom_epsilon(self):
        allocation = allocate_repayment(
            Decimal('100.50'), Decimal('0'), Decimal('100.49'), epsilon=Decimal('0')
        )
        assert not allocation.completed

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5'), "abc", None])
    def test_invalid_amount_rejected(self, amount):
        with pytest.raises(InvalidAmount):
            allocate_repayment(Decimal('1000'), Decimal('12'), amount)
