"""
Savings Group System

Wires storage, audit trail, members, ledger, loans and notification delivery
together. Loan transitions commit first; the notifications they return are
delivered afterwards and a delivery failure never undoes the transition.
"""

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
import logging

from .config import SavingsGroupConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .members import Member, MemberManager, MemberRole
from .ledger import LedgerManager, Transaction
from .loans import LoanManager, LoanPolicy, Loan, LoanStatus, TransitionResult
from .notifications import (
    ChannelProvider, EffectRunner, NotificationEmitter, WebhookChannelProvider
)


logger = logging.getLogger("savings_group.service")


class SavingsGroupSystem:
    """Savings group with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[SavingsGroupConfig] = None,
        providers: Optional[List[ChannelProvider]] = None
    ):
        self.config = config or get_config()

        if storage is None:
            storage = create_storage(
                self.config.use_sqlite,
                self.config.database_path,
                timeout=self.config.store_timeout_seconds
            )
        self.storage = storage

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.member_manager = MemberManager(self.storage, self.audit_trail)
        self.ledger = LedgerManager(self.storage, self.member_manager, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.member_manager, self.ledger, self.audit_trail,
            policy=LoanPolicy.from_config(self.config)
        )

        self.emitter = NotificationEmitter(self.storage, providers)
        if self.config.notification_webhook_url:
            self.emitter.register_provider(WebhookChannelProvider(
                self.config.notification_webhook_url,
                timeout=self.config.notification_timeout_seconds
            ))
        self.effect_runner = EffectRunner(self.emitter)

    def _finish(self, result: TransitionResult) -> TransitionResult:
        result.delivery = self.effect_runner.run(result.effects)
        if result.delivery.failed:
            logger.warning(
                f"{result.delivery.failed} notification(s) for loan {result.loan.loan_number} were not delivered"
            )
        return result

    # Members and savings

    def register_member(self, full_name: str, email: Optional[str] = None,
                        phone: Optional[str] = None, role: MemberRole = MemberRole.MEMBER,
                        actor_id: Optional[str] = None) -> Member:
        return self.member_manager.register_member(full_name, email, phone, role, actor_id)

    def deposit(self, member_id: str, amount, actor_id: Optional[str] = None,
                description: str = "Deposit") -> Transaction:
        return self.ledger.deposit(member_id, amount, description=description, recorded_by=actor_id)

    def withdraw(self, member_id: str, amount, actor_id: Optional[str] = None,
                 description: str = "Withdrawal") -> Transaction:
        return self.ledger.withdraw(member_id, amount, description=description, recorded_by=actor_id)

    def contribute(self, member_id: str, amount, actor_id: Optional[str] = None,
                   description: str = "Contribution") -> Transaction:
        return self.ledger.contribute(member_id, amount, description=description, recorded_by=actor_id)

    # Loan lifecycle

    def create_loan(self, member_id: str, amount, term_months: int, reason: str = "",
                    guarantors: Optional[Iterable[Any]] = None,
                    actor_id: Optional[str] = None) -> Loan:
        """Request a loan; returns it in pending_guarantors or pending"""
        result = self.loan_manager.request_loan(
            member_id, amount, term_months, reason=reason, guarantors=guarantors, actor_id=actor_id
        )
        return self._finish(result).loan

    def submit_guarantee_decision(self, loan_id: str, guarantor_id: str, accept: bool,
                                  actor_id: Optional[str] = None) -> LoanStatus:
        """Record a guarantor decision; returns the loan's resulting status"""
        result = self.loan_manager.submit_guarantee_decision(loan_id, guarantor_id, accept, actor_id)
        return self._finish(result).loan.status

    def approve_loan(self, loan_id: str, approved_amount, interest_rate=None,
                     term_months: Optional[int] = None, actor_id: Optional[str] = None) -> Loan:
        if interest_rate is None:
            interest_rate = Decimal(self.config.default_interest_rate)
        result = self.loan_manager.approve_loan(
            loan_id, approved_amount, interest_rate, term_months=term_months, actor_id=actor_id
        )
        return self._finish(result).loan

    def reject_loan(self, loan_id: str, actor_id: Optional[str] = None,
                    reason: Optional[str] = None) -> Loan:
        return self._finish(self.loan_manager.reject_loan(loan_id, actor_id, reason)).loan

    def cancel_loan(self, loan_id: str, actor_id: Optional[str] = None) -> Loan:
        return self._finish(self.loan_manager.cancel_loan(loan_id, actor_id)).loan

    def disburse_loan(self, loan_id: str, actor_id: Optional[str] = None) -> TransitionResult:
        """Disburse; the result carries the loan and the balance transaction"""
        return self._finish(self.loan_manager.disburse_loan(loan_id, actor_id))

    def record_repayment(self, loan_id: str, amount, notes: str = "",
                         actor_id: Optional[str] = None) -> TransitionResult:
        """Record a repayment; the result carries the loan and the repayment row"""
        return self._finish(self.loan_manager.record_repayment(loan_id, amount, notes, actor_id))

    # Queries

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.require_loan(loan_id)

    def list_loans(self, member_id: Optional[str] = None,
                   status: Optional[LoanStatus] = None) -> List[Loan]:
        return self.loan_manager.list_loans(member_id, status)

    def get_loan_stats(self) -> Dict[str, Any]:
        return self.loan_manager.get_loan_stats()

    def close(self) -> None:
        self.storage.close()
