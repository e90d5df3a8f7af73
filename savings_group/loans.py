"""
Loan Module

Loan lifecycle state machine: request, guarantor review, admin approval with
amortization, disbursement into the borrower's savings, repayment until
payoff, plus rejection and cancellation.

    pending_guarantors -> pending -> approved -> disbursed -> completed
    pending_guarantors | pending -> rejected | cancelled

Each transition validates its inputs, then applies all of its writes in one
storage unit of work. The status write is a compare-and-set on the status
the transition started from, so two callers racing to approve or disburse
the same loan cannot both succeed. Transitions return the notifications
they want sent as effects instead of sending them.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union
from enum import Enum
import logging
import random
import time
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import Member, MemberManager
from .ledger import LedgerManager, Transaction
from .guarantors import (
    ConsensusOutcome, Guarantee, GuaranteeRepository, GuarantorDecision, resolve_consensus
)
from .amortization import ScheduleEntry, build_schedule
from .repayments import Repayment, allocate_repayment
from .notifications import EffectReport, NotificationEffect, NotificationType
from .errors import InsufficientCoverage, InvalidAmount, InvalidGuarantors, InvalidState, NotFound
from .money import MONEY_EPSILON, ZERO, format_money, quantize, require_non_negative, require_positive
from .logging_config import log_action


logger = logging.getLogger("savings_group.loans")


class LoanStatus(Enum):
    """Loan lifecycle states (persisted values)"""
    PENDING_GUARANTORS = "pending_guarantors"  # Waiting on guarantor responses
    PENDING = "pending"                        # Waiting on admin review
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"                    # Funds paid out, in repayment
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class LoanPolicy:
    """Rules applied when members request loans"""
    retained_savings: Decimal = Decimal('1000')  # Savings a borrower cannot borrow against
    max_guarantors: int = 3
    admin_role: str = "admin"
    money_epsilon: Decimal = MONEY_EPSILON

    @classmethod
    def from_config(cls, config) -> 'LoanPolicy':
        return cls(
            retained_savings=Decimal(config.retained_savings),
            max_guarantors=config.max_guarantors,
            admin_role=config.admin_role,
            money_epsilon=Decimal(config.money_epsilon)
        )


@dataclass(frozen=True)
class GuarantorPledge:
    """Guarantor named on a loan request"""
    guarantor_id: str
    amount: Decimal

    @classmethod
    def coerce(cls, value: Union['GuarantorPledge', Dict[str, Any]]) -> 'GuarantorPledge':
        if isinstance(value, GuarantorPledge):
            return value
        return cls(guarantor_id=value["guarantor_id"], amount=value["amount"])


@dataclass
class Loan(StorageRecord):
    """One borrowing request and, once approved, its repayment state"""
    member_id: str
    loan_number: str
    amount_requested: Decimal
    repayment_period_months: int
    reason: str = ""
    status: LoanStatus = LoanStatus.PENDING_GUARANTORS

    # Set at approval
    amount_approved: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None       # Annual %, e.g. 5 for 5%
    monthly_payment: Optional[Decimal] = None
    total_repayable: Optional[Decimal] = None
    outstanding_balance: Optional[Decimal] = None
    remaining_months: Optional[int] = None
    amortization_schedule: List[Dict[str, Any]] = field(default_factory=list)
    approved_by: Optional[str] = None

    amount_repaid: Decimal = ZERO
    rejection_reason: Optional[str] = None

    # Dates
    requested_date: Optional[datetime] = None
    approved_date: Optional[datetime] = None
    disbursed_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cancelled_date: Optional[datetime] = None

    _enum_fields = {'status': LoanStatus}
    _decimal_fields = ('amount_requested', 'amount_approved', 'interest_rate', 'monthly_payment',
                       'total_repayable', 'outstanding_balance', 'amount_repaid')
    _datetime_fields = ('requested_date', 'approved_date', 'disbursed_date',
                        'completed_date', 'cancelled_date')

    @property
    def loan_term(self) -> int:
        return self.repayment_period_months

    @property
    def schedule(self) -> List[ScheduleEntry]:
        return [ScheduleEntry.from_dict(entry) for entry in self.amortization_schedule]

    @property
    def is_active(self) -> bool:
        """Check if loan is in repayment"""
        return self.status == LoanStatus.DISBURSED


@dataclass
class TransitionResult:
    """Outcome of a lifecycle transition"""
    loan: Loan
    effects: List[NotificationEffect] = field(default_factory=list)
    guarantees: List[Guarantee] = field(default_factory=list)
    consensus: Optional[ConsensusOutcome] = None
    transaction: Optional[Transaction] = None
    repayment: Optional[Repayment] = None
    delivery: Optional[EffectReport] = None  # Filled in once effects have run


class LoanManager:
    """
    Manages loan lifecycle from request through payoff
    """

    def __init__(
        self,
        storage: StorageInterface,
        member_manager: MemberManager,
        ledger: LedgerManager,
        audit_trail: AuditTrail,
        policy: Optional[LoanPolicy] = None
    ):
        self.storage = storage
        self.member_manager = member_manager
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.policy = policy or LoanPolicy()
        self.guarantees = GuaranteeRepository(storage)

        self.loans_table = "loans"
        self.repayments_table = "loan_repayments"

    # Requests

    def usable_savings(self, member: Member) -> Decimal:
        """Savings a member can borrow against: balance above the retained minimum"""
        return max(member.account_balance - self.policy.retained_savings, ZERO)

    def request_loan(
        self,
        member_id: str,
        amount,
        term_months: int,
        reason: str = "",
        guarantors: Optional[Iterable[Union[GuarantorPledge, Dict[str, Any]]]] = None,
        actor_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Create a loan request

        The loan waits for guarantors when any pledge above zero was named,
        otherwise it goes straight to admin review.

        Args:
            member_id: Borrower
            amount: Amount requested
            term_months: Requested repayment period
            reason: Optional free text
            guarantors: Pledges as GuarantorPledge or {"guarantor_id", "amount"} dicts
            actor_id: Who submitted the request (defaults to the borrower)

        Raises:
            InvalidAmount: bad amount, term or pledge
            InvalidGuarantors: too many, repeated, or self-guaranteeing pledges
            NotFound: borrower or guarantor missing
            InvalidState: borrower or guarantor not active
            InsufficientCoverage: usable savings plus pledges below amount
        """
        amount = quantize(require_positive(amount))
        if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months <= 0:
            raise InvalidAmount(f"Repayment period must be a positive number of months, got {term_months!r}")

        pledges = [GuarantorPledge.coerce(g) for g in (guarantors or [])]
        pledges = [
            GuarantorPledge(p.guarantor_id, quantize(require_non_negative(p.amount, "guaranteed amount")))
            for p in pledges
        ]
        if len(pledges) > self.policy.max_guarantors:
            raise InvalidGuarantors(f"At most {self.policy.max_guarantors} guarantors can be named")
        guarantor_ids = [p.guarantor_id for p in pledges]
        if len(set(guarantor_ids)) != len(guarantor_ids):
            raise InvalidGuarantors("A guarantor can only be named once per loan")
        if member_id in guarantor_ids:
            raise InvalidGuarantors("A member cannot guarantee their own loan")

        actor_id = actor_id or member_id
        valid_pledges = [p for p in pledges if p.amount > 0]

        with self.storage.atomic():
            borrower = self.member_manager.require_member(member_id)
            if not borrower.is_active:
                raise InvalidState(borrower.id, borrower.status.value, "active", entity_type="member")

            for pledge in valid_pledges:
                guarantor = self.member_manager.require_member(pledge.guarantor_id)
                if not guarantor.is_active:
                    raise InvalidState(guarantor.id, guarantor.status.value, "active", entity_type="member")

            covered = self.usable_savings(borrower) + sum((p.amount for p in valid_pledges), ZERO)
            if covered < amount:
                raise InsufficientCoverage(amount - covered)

            now = datetime.now(timezone.utc)
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                member_id=borrower.id,
                loan_number=self._generate_loan_number(),
                amount_requested=amount,
                repayment_period_months=term_months,
                reason=reason or "",
                status=LoanStatus.PENDING_GUARANTORS if valid_pledges else LoanStatus.PENDING,
                requested_date=now
            )
            self.storage.save(self.loans_table, loan.id, loan.to_dict())

            guarantees = [
                self.guarantees.upsert(Guarantee(
                    id="",
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    guarantor_id=pledge.guarantor_id,
                    amount_guaranteed=pledge.amount
                ))
                for pledge in valid_pledges
            ]

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_REQUESTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "loan_number": loan.loan_number,
                    "member_id": borrower.id,
                    "amount_requested": amount,
                    "repayment_period_months": term_months,
                    "guarantors": [{"guarantor_id": p.guarantor_id, "amount": p.amount} for p in valid_pledges],
                    "status": loan.status.value
                },
                actor_id=actor_id
            )

        effects = []
        if guarantees:
            for guarantee in guarantees:
                effects.append(NotificationEffect(
                    notification_type=NotificationType.LOAN_GUARANTEE_REQUEST,
                    title="Loan Guarantee Request",
                    message=(f"{borrower.full_name} requested a loan of {format_money(amount)} and you "
                             f"pledged {format_money(guarantee.amount_guaranteed)}. "
                             f"Approve or reject your guarantee."),
                    recipient_id=guarantee.guarantor_id,
                    metadata={"loan_id": loan.id, "guarantor_id": guarantee.guarantor_id,
                              "pledged": guarantee.amount_guaranteed}
                ))
        else:
            effects.append(self._admin_effect(
                NotificationType.LOAN_REQUEST, "New Loan Request",
                f"{borrower.full_name} requested a loan of {format_money(amount)}.",
                {"loan_id": loan.id, "borrower_id": borrower.id}
            ))

        self._log(loan, "request_loan", actor_id)
        return TransitionResult(loan=loan, effects=effects, guarantees=guarantees)

    def _generate_loan_number(self) -> str:
        while True:
            candidate = f"LN{int(time.time() * 1000)}{random.randint(0, 999):03d}"
            if not self.storage.find(self.loans_table, {"loan_number": candidate}):
                return candidate

    # Guarantor review

    def submit_guarantee_decision(
        self,
        loan_id: str,
        guarantor_id: str,
        accept: bool,
        actor_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Record a guarantor's decision and re-evaluate consensus

        Re-submitting overwrites the guarantor's earlier decision. Any
        decline rejects the loan; once every guarantor has accepted the
        loan moves to admin review.

        Raises:
            NotFound: loan missing, or the member is not a guarantor on it
            InvalidState: loan is no longer waiting on guarantors
            InvalidAmount: the guarantee pledges nothing
        """
        actor_id = actor_id or guarantor_id

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.PENDING_GUARANTORS:
                raise InvalidState(loan.id, loan.status.value, LoanStatus.PENDING_GUARANTORS.value)

            guarantee = self.guarantees.get(loan.id, guarantor_id)
            if not guarantee:
                raise NotFound("guarantee", f"{loan.id}/{guarantor_id}")
            if not guarantee.is_valid:
                raise InvalidAmount("Invalid guaranteed amount")

            guarantor = self.member_manager.get_member(guarantor_id)
            guarantor_name = guarantor.full_name if guarantor else "A guarantor"

            guarantee.decision = GuarantorDecision.ACCEPTED if accept else GuarantorDecision.DECLINED
            guarantee.responded_at = datetime.now(timezone.utc)
            self.guarantees.upsert(guarantee)

            self.audit_trail.log_event(
                event_type=AuditEventType.GUARANTEE_DECIDED,
                entity_type="guarantee",
                entity_id=guarantee.id,
                metadata={"loan_id": loan.id, "guarantor_id": guarantor_id,
                          "decision": guarantee.decision.value},
                actor_id=actor_id
            )

            effects = [NotificationEffect(
                notification_type=NotificationType.GUARANTOR_RESPONSE,
                title="Guarantor Response",
                message=(f"{guarantor_name} accepted your loan guarantee." if accept
                         else f"{guarantor_name} declined your loan guarantee."),
                recipient_id=loan.member_id,
                metadata={"loan_id": loan.id, "guarantor_id": guarantor_id,
                          "decision": guarantee.decision.value}
            )]

            all_guarantees = self.guarantees.list_for_loan(loan.id)
            outcome = resolve_consensus(all_guarantees)

            if outcome == ConsensusOutcome.REJECTED:
                loan.status = LoanStatus.REJECTED
                loan.rejection_reason = "declined_by_guarantor"
                self._save_transition(loan, LoanStatus.PENDING_GUARANTORS)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_REJECTED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"reason": loan.rejection_reason, "guarantor_id": guarantor_id},
                    actor_id=actor_id
                )
                effects.append(NotificationEffect(
                    notification_type=NotificationType.LOAN_REJECTED_BY_GUARANTOR,
                    title="Loan Declined",
                    message=f"Your loan {loan.loan_number} was declined by a guarantor.",
                    recipient_id=loan.member_id,
                    metadata={"loan_id": loan.id}
                ))

            elif outcome == ConsensusOutcome.READY_FOR_ADMIN:
                loan.status = LoanStatus.PENDING
                self._save_transition(loan, LoanStatus.PENDING_GUARANTORS)
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_FORWARDED_TO_ADMIN,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"guarantors": [g.guarantor_id for g in all_guarantees if g.is_valid]},
                    actor_id=actor_id
                )
                borrower = self.member_manager.get_member(loan.member_id)
                borrower_name = borrower.full_name if borrower else "A member"
                effects.append(self._admin_effect(
                    NotificationType.GUARANTORS_APPROVED, "Loan Ready for Review",
                    f"All guarantors approved loan {loan.loan_number} for {borrower_name}.",
                    {"loan_id": loan.id, "borrower_id": loan.member_id}
                ))
                for g in all_guarantees:
                    if g.is_valid:
                        effects.append(NotificationEffect(
                            notification_type=NotificationType.GUARANTEE_CONSENSUS,
                            title="All Guarantors Approved",
                            message=(f"All guarantors approved loan {loan.loan_number}. "
                                     f"It has been forwarded to the admin for review."),
                            recipient_id=g.guarantor_id,
                            metadata={"loan_id": loan.id}
                        ))

        self._log(loan, "submit_guarantee_decision", actor_id, {"consensus": outcome.value})
        return TransitionResult(loan=loan, effects=effects, guarantees=all_guarantees, consensus=outcome)

    # Admin review

    def approve_loan(
        self,
        loan_id: str,
        approved_amount,
        interest_rate,
        term_months: Optional[int] = None,
        actor_id: Optional[str] = None
    ) -> TransitionResult:
        """
        Approve a loan under admin review and fix its repayment terms

        Args:
            loan_id: Loan to approve
            approved_amount: Principal granted (may differ from the request)
            interest_rate: Annual interest rate in percent
            term_months: Repayment period; defaults to the requested period
            actor_id: Approving admin

        Raises:
            InvalidState: loan is not pending admin review
            InvalidAmount: bad amount, rate or term
        """
        approved_amount = quantize(require_positive(approved_amount, "approved amount"))
        interest_rate = require_non_negative(interest_rate, "interest rate")

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidState(loan.id, loan.status.value, LoanStatus.PENDING.value)

            term = term_months if term_months is not None else loan.repayment_period_months
            result = build_schedule(approved_amount, interest_rate, term)

            now = datetime.now(timezone.utc)
            loan.status = LoanStatus.APPROVED
            loan.amount_approved = approved_amount
            loan.interest_rate = interest_rate
            loan.repayment_period_months = term
            loan.monthly_payment = result.monthly_payment
            loan.total_repayable = result.total_repayable
            loan.outstanding_balance = result.total_repayable
            loan.remaining_months = term
            loan.amortization_schedule = [entry.to_dict() for entry in result.schedule]
            loan.approved_date = now
            loan.approved_by = actor_id
            self._save_transition(loan, LoanStatus.PENDING)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_APPROVED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "amount_approved": approved_amount,
                    "interest_rate": interest_rate,
                    "term_months": term,
                    "monthly_payment": result.monthly_payment,
                    "total_repayable": result.total_repayable
                },
                actor_id=actor_id
            )

        effects = [NotificationEffect(
            notification_type=NotificationType.LOAN_APPROVED,
            title="Loan Approved",
            message=(f"Your loan request of {format_money(approved_amount)} has been approved at "
                     f"{interest_rate}% interest. Monthly payment: {format_money(loan.monthly_payment)}."),
            recipient_id=loan.member_id,
            metadata={"loan_id": loan.id, "loan_status": loan.status.value}
        )]

        self._log(loan, "approve_loan", actor_id)
        return TransitionResult(loan=loan, effects=effects)

    def reject_loan(self, loan_id: str, actor_id: Optional[str] = None,
                    reason: Optional[str] = None) -> TransitionResult:
        """
        Reject a loan under admin review

        Raises:
            InvalidState: loan is not pending admin review
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.PENDING:
                raise InvalidState(loan.id, loan.status.value, LoanStatus.PENDING.value)

            loan.status = LoanStatus.REJECTED
            loan.approved_by = actor_id
            loan.rejection_reason = reason or "rejected_by_admin"
            self._save_transition(loan, LoanStatus.PENDING)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_REJECTED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"reason": loan.rejection_reason},
                actor_id=actor_id
            )

        effects = [NotificationEffect(
            notification_type=NotificationType.LOAN_REJECTED,
            title="Loan Rejected",
            message="Your loan request has been reviewed and could not be approved at this time.",
            recipient_id=loan.member_id,
            metadata={"loan_id": loan.id, "loan_status": loan.status.value}
        )]

        self._log(loan, "reject_loan", actor_id)
        return TransitionResult(loan=loan, effects=effects)

    def cancel_loan(self, loan_id: str, actor_id: Optional[str] = None) -> TransitionResult:
        """
        Withdraw a loan request that has not been decided yet

        Raises:
            InvalidState: loan is past guarantor and admin review
        """
        cancellable = (LoanStatus.PENDING_GUARANTORS, LoanStatus.PENDING)

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status not in cancellable:
                raise InvalidState(loan.id, loan.status.value, [s.value for s in cancellable])

            previous = loan.status
            loan.status = LoanStatus.CANCELLED
            loan.cancelled_date = datetime.now(timezone.utc)
            self._save_transition(loan, previous)

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CANCELLED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"previous_status": previous.value},
                actor_id=actor_id
            )
            guarantees = self.guarantees.list_for_loan(loan.id)

        effects = [
            NotificationEffect(
                notification_type=NotificationType.LOAN_CANCELLED,
                title="Loan Request Withdrawn",
                message=f"Loan {loan.loan_number} was withdrawn. Your guarantee is no longer needed.",
                recipient_id=g.guarantor_id,
                metadata={"loan_id": loan.id}
            )
            for g in guarantees if g.is_valid
        ]
        if previous == LoanStatus.PENDING:
            effects.append(self._admin_effect(
                NotificationType.LOAN_CANCELLED, "Loan Request Withdrawn",
                f"Loan {loan.loan_number} was withdrawn before review.",
                {"loan_id": loan.id}
            ))

        self._log(loan, "cancel_loan", actor_id)
        return TransitionResult(loan=loan, effects=effects, guarantees=guarantees)

    # Disbursement and repayment

    def disburse_loan(self, loan_id: str, actor_id: Optional[str] = None) -> TransitionResult:
        """
        Pay an approved loan out into the borrower's savings balance

        The status change and the balance credit commit together.

        Raises:
            InvalidState: loan is not approved (including already disbursed)
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.APPROVED:
                raise InvalidState(loan.id, loan.status.value, LoanStatus.APPROVED.value)

            loan.status = LoanStatus.DISBURSED
            loan.disbursed_date = datetime.now(timezone.utc)
            self._save_transition(loan, LoanStatus.APPROVED)

            transaction = self.ledger.deposit(
                loan.member_id,
                loan.amount_approved,
                description=f"Loan disbursement {loan.loan_number}",
                reference=loan.loan_number,
                recorded_by=actor_id
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_DISBURSED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "transaction_id": transaction.id,
                    "amount": loan.amount_approved,
                    "balance_after": transaction.balance_after
                },
                actor_id=actor_id
            )

        effects = [NotificationEffect(
            notification_type=NotificationType.LOAN_DISBURSED,
            title="Loan Disbursed",
            message=(f"Your loan of {format_money(loan.amount_approved)} has been disbursed to your "
                     f"account. New balance: {format_money(transaction.balance_after)}."),
            recipient_id=loan.member_id,
            metadata={"loan_id": loan.id, "loan_status": loan.status.value}
        )]

        self._log(loan, "disburse_loan", actor_id)
        return TransitionResult(loan=loan, effects=effects, transaction=transaction)

    def record_repayment(self, loan_id: str, amount, notes: str = "",
                         actor_id: Optional[str] = None) -> TransitionResult:
        """
        Record a repayment against a disbursed loan

        Interest for one month is taken first and the rest reduces the
        outstanding balance. When the balance falls to the payoff threshold
        the loan completes. Anything paid beyond interest plus the whole
        outstanding balance is credited to the borrower's savings.

        Raises:
            InvalidAmount: amount is not positive
            InvalidState: loan is not disbursed
        """
        amount = quantize(require_positive(amount))

        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            if loan.status != LoanStatus.DISBURSED:
                raise InvalidState(loan.id, loan.status.value, LoanStatus.DISBURSED.value)

            allocation = allocate_repayment(
                loan.outstanding_balance or ZERO, loan.interest_rate or ZERO, amount,
                epsilon=self.policy.money_epsilon
            )

            now = datetime.now(timezone.utc)
            repayment = Repayment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                amount=allocation.amount,
                interest_portion=allocation.interest_portion,
                principal_portion=allocation.principal_portion,
                balance_before=allocation.balance_before,
                balance_after=allocation.balance_after,
                excess_amount=allocation.excess_amount,
                notes=notes or "",
                recorded_by=actor_id
            )

            loan.amount_repaid = quantize(loan.amount_repaid + allocation.amount)
            loan.outstanding_balance = allocation.balance_after
            loan.remaining_months = max((loan.remaining_months or 0) - 1, 0)
            if allocation.completed:
                loan.status = LoanStatus.COMPLETED
                loan.outstanding_balance = ZERO
                loan.remaining_months = 0
                loan.completed_date = now
            self._save_transition(loan, LoanStatus.DISBURSED)
            self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

            transaction = None
            if allocation.excess_amount > 0:
                transaction = self.ledger.deposit(
                    loan.member_id,
                    allocation.excess_amount,
                    description=f"Loan overpayment credit {loan.loan_number}",
                    reference=loan.loan_number,
                    recorded_by=actor_id
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_REPAYMENT_RECORDED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "repayment_id": repayment.id,
                    "amount": allocation.amount,
                    "interest_portion": allocation.interest_portion,
                    "principal_portion": allocation.principal_portion,
                    "outstanding_balance": loan.outstanding_balance,
                    "excess_amount": allocation.excess_amount
                },
                actor_id=actor_id
            )
            if allocation.completed:
                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_COMPLETED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"amount_repaid": loan.amount_repaid},
                    actor_id=actor_id
                )

        effects = [NotificationEffect(
            notification_type=NotificationType.LOAN_REPAYMENT,
            title="Loan Repayment Recorded",
            message=(f"A repayment of {format_money(allocation.amount)} has been recorded. "
                     f"Outstanding balance: {format_money(loan.outstanding_balance)}"),
            recipient_id=loan.member_id,
            metadata={"loan_id": loan.id, "repayment_id": repayment.id}
        )]
        if allocation.completed:
            effects.append(NotificationEffect(
                notification_type=NotificationType.LOAN_COMPLETED,
                title="Loan Fully Repaid",
                message=f"Your loan {loan.loan_number} has been fully repaid.",
                recipient_id=loan.member_id,
                metadata={"loan_id": loan.id, "excess_credited": allocation.excess_amount}
            ))

        self._log(loan, "record_repayment", actor_id, {"amount": str(allocation.amount)})
        return TransitionResult(loan=loan, effects=effects, transaction=transaction, repayment=repayment)

    # Queries

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFound("loan", loan_id)
        return loan

    def get_loan_by_number(self, loan_number: str) -> Optional[Loan]:
        found = self.storage.find(self.loans_table, {"loan_number": loan_number})
        if found:
            return Loan.from_dict(found[0])
        return None

    def list_loans(self, member_id: Optional[str] = None,
                   status: Optional[LoanStatus] = None) -> List[Loan]:
        """List loans, most recently requested first"""
        filters = {}
        if member_id:
            filters["member_id"] = member_id
        if status:
            filters["status"] = status.value
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, filters)]
        loans.sort(key=lambda l: l.requested_date or l.created_at, reverse=True)
        return loans

    def get_guarantees(self, loan_id: str) -> List[Guarantee]:
        return self.guarantees.list_for_loan(loan_id)

    def get_pending_guarantee_requests(self, guarantor_id: str) -> List[Loan]:
        """Loans still waiting on this member's guarantee decision"""
        loans = []
        for guarantee in self.guarantees.list_for_guarantor(guarantor_id):
            if guarantee.decision != GuarantorDecision.UNDECIDED or not guarantee.is_valid:
                continue
            loan = self.get_loan(guarantee.loan_id)
            if loan and loan.status == LoanStatus.PENDING_GUARANTORS:
                loans.append(loan)
        return loans

    def get_repayments(self, loan_id: str) -> List[Repayment]:
        found = self.storage.find(self.repayments_table, {"loan_id": loan_id})
        return [Repayment.from_dict(d) for d in found]

    def get_loan_stats(self) -> Dict[str, Any]:
        """Portfolio summary: loans awaiting review, loans in repayment, total outstanding"""
        loans = [Loan.from_dict(d) for d in self.storage.load_all(self.loans_table)]
        active = [l for l in loans if l.status == LoanStatus.DISBURSED]
        return {
            "pending": sum(1 for l in loans if l.status == LoanStatus.PENDING),
            "awaiting_guarantors": sum(1 for l in loans if l.status == LoanStatus.PENDING_GUARANTORS),
            "active": len(active),
            "completed": sum(1 for l in loans if l.status == LoanStatus.COMPLETED),
            "total_outstanding": sum((l.outstanding_balance or ZERO for l in active), ZERO),
        }

    # Helpers

    def _save_transition(self, loan: Loan, expected: LoanStatus) -> None:
        """Write the loan only if its stored status is still the expected one"""
        loan.updated_at = datetime.now(timezone.utc)
        if not self.storage.compare_and_set(
            self.loans_table, loan.id, "status", expected.value, loan.to_dict()
        ):
            current = self.storage.load(self.loans_table, loan.id)
            raise InvalidState(loan.id, current.get("status") if current else None, expected.value)

    def _admin_effect(self, notification_type: NotificationType, title: str,
                      message: str, metadata: Dict[str, Any]) -> NotificationEffect:
        return NotificationEffect(
            notification_type=notification_type,
            title=title,
            message=message,
            recipient_role=self.policy.admin_role,
            metadata=metadata
        )

    def _log(self, loan: Loan, action: str, actor_id: Optional[str],
             extra: Optional[Dict[str, Any]] = None) -> None:
        log_action(
            logger, "info", f"Loan {loan.loan_number} is {loan.status.value}",
            actor_id=actor_id, action=action, resource=f"loan:{loan.id}",
            extra=dict(extra or {}, status=loan.status.value)
        )
