"""
Test suite for the member ledger

Every balance change must be recorded by a transaction whose balance_after
matches the member's balance.
"""

import pytest
from decimal import Decimal

from savings_group.storage import InMemoryStorage
from savings_group.audit import AuditTrail
from savings_group.errors import InvalidAmount, NotFound
from savings_group.members import MemberManager
from savings_group.ledger import LedgerManager, TransactionType


class TestLedgerManager:
    """Test balance updates"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.member_manager = MemberManager(self.storage, self.audit_trail)
        self.ledger = LedgerManager(self.storage, self.member_manager, self.audit_trail)
        self.member = self.member_manager.register_member("Grace Namuli")

    def balance(self):
        return self.member_manager.get_member(self.member.id).account_balance

    def test_deposit(self):
        transaction = self.ledger.deposit(self.member.id, "1,500.50", recorded_by="A1")

        assert transaction.transaction_type == TransactionType.DEPOSIT
        assert transaction.amount == Decimal('1500.50')
        assert transaction.balance_before == Decimal('0.00')
        assert transaction.balance_after == Decimal('1500.50')
        assert transaction.sequence == 1
        assert self.balance() == Decimal('1500.50')

    def test_withdraw(self):
        self.ledger.deposit(self.member.id, Decimal('1000'))
        transaction = self.ledger.withdraw(self.member.id, Decimal('400'))

        assert transaction.balance_before == Decimal('1000.00')
        assert transaction.balance_after == Decimal('600.00')
        assert self.balance() == Decimal('600.00')

    def test_withdraw_above_balance_rejected(self):
        self.ledger.deposit(self.member.id, Decimal('100'))

        with pytest.raises(InvalidAmount, match="Insufficient balance"):
            self.ledger.withdraw(self.member.id, Decimal('100.01'))

        assert self.balance() == Decimal('100.00')
        assert len(self.ledger.get_transactions(self.member.id)) == 1

    def test_contribution_counts_toward_total(self):
        self.ledger.contribute(self.member.id, Decimal('250'))
        self.ledger.deposit(self.member.id, Decimal('100'))

        member = self.member_manager.get_member(self.member.id)
        assert member.total_contributions == Decimal('250.00')
        assert member.account_balance == Decimal('350.00')

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-10'), "ten", True, "1e30"])
    def test_invalid_amounts_rejected(self, amount):
        with pytest.raises(InvalidAmount):
            self.ledger.deposit(self.member.id, amount)

    def test_unknown_member(self):
        with pytest.raises(NotFound):
            self.ledger.deposit("missing", Decimal('10'))

    def test_latest_transaction_matches_balance(self):
        self.ledger.deposit(self.member.id, Decimal('1000'))
        self.ledger.withdraw(self.member.id, Decimal('250'))
        self.ledger.contribute(self.member.id, Decimal('75.25'))

        transactions = self.ledger.get_transactions(self.member.id)
        assert [t.sequence for t in transactions] == [1, 2, 3]
        assert self.ledger.get_latest_transaction(self.member.id).balance_after == self.balance()
        assert self.ledger.verify_member_balance(self.member.id)

    def test_verify_detects_drift(self):
        self.ledger.deposit(self.member.id, Decimal('1000'))

        member = self.member_manager.get_member(self.member.id)
        member.account_balance = Decimal('999.00')
        self.member_manager.save_member(member)

        assert not self.ledger.verify_member_balance(self.member.id)

    def test_new_member_with_no_transactions_is_consistent(self):
        assert self.ledger.verify_member_balance(self.member.id)

    def test_transactions_are_audited(self):
        transaction = self.ledger.deposit(self.member.id, Decimal('10'), recorded_by="A1")

        events = self.audit_trail.get_events_for_entity("transaction", transaction.id)
        assert events[0].actor_id == "A1"
        assert events[0].metadata["balance_after"] == "10.00"
