"""
Member Ledger Module

Applies balance-affecting events to member savings. Every balance change is
written together with a Transaction record whose balance_before/balance_after
match the member's balance immediately before and after the change, so the
latest transaction of a member always agrees with the member's balance.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import List, Optional
from enum import Enum
import logging
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberManager
from .errors import InvalidAmount
from .money import quantize, require_positive
from .logging_config import log_action


logger = logging.getLogger("savings_group.ledger")


class TransactionType(Enum):
    """Balance-affecting event types"""
    DEPOSIT = "deposit"            # Cash deposit, loan disbursement, overpayment credit
    WITHDRAWAL = "withdrawal"
    CONTRIBUTION = "contribution"  # Counts toward total_contributions as well

    @property
    def is_credit(self) -> bool:
        return self != TransactionType.WITHDRAWAL


@dataclass
class Transaction(StorageRecord):
    """Immutable ledger entry for a member balance change"""
    member_id: str
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    sequence: int                       # Per-member ordering
    description: str = ""
    reference: Optional[str] = None     # Loan number for loan-related entries
    recorded_by: Optional[str] = None

    _enum_fields = {'transaction_type': TransactionType}
    _decimal_fields = ('amount', 'balance_before', 'balance_after')


class LedgerManager:
    """
    Posts transactions and keeps member balances consistent with them
    """

    def __init__(
        self,
        storage: StorageInterface,
        member_manager: MemberManager,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.member_manager = member_manager
        self.audit_trail = audit_trail
        self.table_name = "transactions"

    def post(
        self,
        member_id: str,
        transaction_type: TransactionType,
        amount,
        description: str = "",
        reference: Optional[str] = None,
        recorded_by: Optional[str] = None
    ) -> Transaction:
        """
        Apply a balance change and record it

        Args:
            member_id: Member whose balance changes
            transaction_type: Deposit, withdrawal or contribution
            amount: Positive amount
            description: Free text shown on receipts
            reference: Related loan number, if any
            recorded_by: Actor recording the transaction

        Returns:
            The posted Transaction

        Raises:
            InvalidAmount: for non-positive amounts or withdrawals above balance
            NotFound: if the member does not exist
        """
        amount = quantize(require_positive(amount))

        with self.storage.atomic():
            member = self.member_manager.require_member(member_id)
            balance_before = member.account_balance

            if transaction_type.is_credit:
                balance_after = balance_before + amount
            else:
                if amount > balance_before:
                    raise InvalidAmount(
                        f"Insufficient balance: {balance_before} available, {amount} requested"
                    )
                balance_after = balance_before - amount

            member.account_balance = quantize(balance_after)
            if transaction_type == TransactionType.CONTRIBUTION:
                member.total_contributions = quantize(member.total_contributions + amount)

            now = datetime.now(timezone.utc)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                member_id=member.id,
                transaction_type=transaction_type,
                amount=amount,
                balance_before=balance_before,
                balance_after=member.account_balance,
                sequence=len(self.storage.find(self.table_name, {"member_id": member.id})) + 1,
                description=description,
                reference=reference,
                recorded_by=recorded_by
            )

            self.member_manager.save_member(member)
            self.storage.save(self.table_name, transaction.id, transaction.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_POSTED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "member_id": member.id,
                    "transaction_type": transaction_type.value,
                    "amount": amount,
                    "balance_before": balance_before,
                    "balance_after": member.account_balance,
                    "reference": reference
                },
                actor_id=recorded_by
            )

        log_action(
            logger, "info", f"Posted {transaction_type.value} of {amount}",
            actor_id=recorded_by, action="post_transaction", resource=f"member:{member_id}",
            extra={"transaction_id": transaction.id, "balance_after": str(transaction.balance_after)}
        )
        return transaction

    def deposit(self, member_id: str, amount, description: str = "Deposit",
                reference: Optional[str] = None, recorded_by: Optional[str] = None) -> Transaction:
        return self.post(member_id, TransactionType.DEPOSIT, amount, description, reference, recorded_by)

    def withdraw(self, member_id: str, amount, description: str = "Withdrawal",
                 recorded_by: Optional[str] = None) -> Transaction:
        return self.post(member_id, TransactionType.WITHDRAWAL, amount, description, None, recorded_by)

    def contribute(self, member_id: str, amount, description: str = "Contribution",
                   recorded_by: Optional[str] = None) -> Transaction:
        return self.post(member_id, TransactionType.CONTRIBUTION, amount, description, None, recorded_by)

    def get_transactions(self, member_id: str) -> List[Transaction]:
        """Get a member's transactions, oldest first"""
        found = self.storage.find(self.table_name, {"member_id": member_id})
        transactions = [Transaction.from_dict(data) for data in found]
        transactions.sort(key=lambda t: t.sequence)
        return transactions

    def get_latest_transaction(self, member_id: str) -> Optional[Transaction]:
        transactions = self.get_transactions(member_id)
        return transactions[-1] if transactions else None

    def verify_member_balance(self, member_id: str) -> bool:
        """
        Check that the member's balance equals the balance_after of their
        latest transaction (or zero when they have none)
        """
        member = self.member_manager.require_member(member_id)
        latest = self.get_latest_transaction(member_id)
        expected = latest.balance_after if latest else Decimal('0')
        return member.account_balance == expected
