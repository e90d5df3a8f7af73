"""
Tests for guarantee records and the consensus rule
"""

from decimal import Decimal
from datetime import datetime, timezone

from savings_group.storage import InMemoryStorage
from savings_group.guarantors import (
    ConsensusOutcome, Guarantee, GuaranteeRepository, GuarantorDecision,
    guarantee_id, resolve_consensus
)


def make_guarantee(guarantor_id, decision=GuarantorDecision.UNDECIDED, amount="500", loan_id="LOAN1"):
    now = datetime.now(timezone.utc)
    return Guarantee(
        id=guarantee_id(loan_id, guarantor_id),
        created_at=now,
        updated_at=now,
        loan_id=loan_id,
        guarantor_id=guarantor_id,
        amount_guaranteed=Decimal(amount),
        decision=decision
    )


class TestResolveConsensus:
    """Test the consensus rule"""

    def test_no_guarantees_keeps_waiting(self):
        assert resolve_consensus([]) == ConsensusOutcome.AWAITING_GUARANTORS

    def test_undecided_keeps_waiting(self):
        guarantees = [
            make_guarantee("G1", GuarantorDecision.ACCEPTED),
            make_guarantee("G2"),
        ]
        assert resolve_consensus(guarantees) == ConsensusOutcome.AWAITING_GUARANTORS

    def test_all_accepted_ready_for_admin(self):
        guarantees = [
            make_guarantee("G1", GuarantorDecision.ACCEPTED),
            make_guarantee("G2", GuarantorDecision.ACCEPTED),
        ]
        assert resolve_consensus(guarantees) == ConsensusOutcome.READY_FOR_ADMIN

    def test_any_decline_rejects(self):
        guarantees = [
            make_guarantee("G1", GuarantorDecision.ACCEPTED),
            make_guarantee("G2", GuarantorDecision.DECLINED),
            make_guarantee("G3"),
        ]
        assert resolve_consensus(guarantees) == ConsensusOutcome.REJECTED

    def test_zero_pledges_are_ignored(self):
        guarantees = [
            make_guarantee("G1", GuarantorDecision.ACCEPTED),
            make_guarantee("G2", GuarantorDecision.DECLINED, amount="0"),
        ]
        assert resolve_consensus(guarantees) == ConsensusOutcome.READY_FOR_ADMIN

    def test_only_zero_pledges_keep_waiting(self):
        guarantees = [make_guarantee("G1", GuarantorDecision.ACCEPTED, amount="0")]
        assert resolve_consensus(guarantees) == ConsensusOutcome.AWAITING_GUARANTORS


class TestGuaranteeRepository:
    """Test guarantee persistence"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.repository = GuaranteeRepository(self.storage)

    def test_upsert_overwrites_same_pair(self):
        self.repository.upsert(make_guarantee("G1"))
        self.repository.upsert(make_guarantee("G1", GuarantorDecision.ACCEPTED))

        guarantees = self.repository.list_for_loan("LOAN1")
        assert len(guarantees) == 1
        assert guarantees[0].decision == GuarantorDecision.ACCEPTED

    def test_get_round_trips_types(self):
        self.repository.upsert(make_guarantee("G1", amount="750.50"))

        guarantee = self.repository.get("LOAN1", "G1")
        assert guarantee.amount_guaranteed == Decimal('750.50')
        assert guarantee.decision == GuarantorDecision.UNDECIDED
        assert self.repository.get("LOAN1", "G2") is None

    def test_list_for_guarantor(self):
        self.repository.upsert(make_guarantee("G1", loan_id="LOAN1"))
        self.repository.upsert(make_guarantee("G1", loan_id="LOAN2"))
        self.repository.upsert(make_guarantee("G2", loan_id="LOAN2"))

        loans = {g.loan_id for g in self.repository.list_for_guarantor("G1")}
        assert loans == {"LOAN1", "LOAN2"}
