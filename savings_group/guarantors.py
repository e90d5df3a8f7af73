"""
Guarantor Module

Guarantee records (one per loan/guarantor pair) and the consensus rule that
decides whether a loan moves on to admin review, is rejected, or keeps
waiting for guarantors.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Iterable, List, Optional
from enum import Enum

from .storage import StorageInterface, StorageRecord


class GuarantorDecision(Enum):
    """A guarantor's answer to a guarantee request"""
    UNDECIDED = "undecided"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class ConsensusOutcome(Enum):
    """Aggregate disposition of a loan's guarantees"""
    AWAITING_GUARANTORS = "awaiting_guarantors"
    READY_FOR_ADMIN = "ready_for_admin"
    REJECTED = "rejected"


@dataclass
class Guarantee(StorageRecord):
    """Pledge by one member toward another member's loan"""
    loan_id: str
    guarantor_id: str
    amount_guaranteed: Decimal
    decision: GuarantorDecision = GuarantorDecision.UNDECIDED
    responded_at: Optional[datetime] = None

    _enum_fields = {'decision': GuarantorDecision}
    _decimal_fields = ('amount_guaranteed',)
    _datetime_fields = ('responded_at',)

    @property
    def is_valid(self) -> bool:
        """Only pledges above zero take part in consensus"""
        return self.amount_guaranteed > 0


def guarantee_id(loan_id: str, guarantor_id: str) -> str:
    """Record key for a (loan, guarantor) pair; upserts overwrite by this key"""
    return f"{loan_id}:{guarantor_id}"


def resolve_consensus(guarantees: Iterable[Guarantee]) -> ConsensusOutcome:
    """
    Decide a loan's disposition from its current guarantees

    Any valid decline rejects the loan outright. Otherwise the loan is ready
    for admin review once it has valid guarantees and every one of them is
    accepted; in every other case it keeps waiting.

    Safe to call after every individual guarantee write.
    """
    valid = [g for g in guarantees if g.is_valid]

    if any(g.decision == GuarantorDecision.DECLINED for g in valid):
        return ConsensusOutcome.REJECTED

    if valid and all(g.decision == GuarantorDecision.ACCEPTED for g in valid):
        return ConsensusOutcome.READY_FOR_ADMIN

    return ConsensusOutcome.AWAITING_GUARANTORS


class GuaranteeRepository:
    """Persistence for guarantee rows"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "loan_guarantees"

    def upsert(self, guarantee: Guarantee) -> Guarantee:
        guarantee.id = guarantee_id(guarantee.loan_id, guarantee.guarantor_id)
        guarantee.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, guarantee.id, guarantee.to_dict())
        return guarantee

    def get(self, loan_id: str, guarantor_id: str) -> Optional[Guarantee]:
        data = self.storage.load(self.table_name, guarantee_id(loan_id, guarantor_id))
        if data:
            return Guarantee.from_dict(data)
        return None

    def list_for_loan(self, loan_id: str) -> List[Guarantee]:
        return [Guarantee.from_dict(d) for d in self.storage.find(self.table_name, {"loan_id": loan_id})]

    def list_for_guarantor(self, guarantor_id: str) -> List[Guarantee]:
        return [Guarantee.from_dict(d) for d in self.storage.find(self.table_name, {"guarantor_id": guarantor_id})]
