"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .system import get_actor_id, get_system
from .schemas import (
    ApproveLoanRequest, CreateLoanRequest, GuaranteeDecisionRequest, RejectLoanRequest,
    RepaymentRequest, loan_response, repayment_response, transaction_response
)
from ..loans import GuarantorPledge, LoanStatus
from ..service import SavingsGroupSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Request a new loan"""
    loan = system.create_loan(
        member_id=request.member_id,
        amount=request.amount,
        term_months=request.repayment_period_months,
        reason=request.reason,
        guarantors=[GuarantorPledge(g.guarantor_id, g.amount) for g in request.guarantors],
        actor_id=actor_id
    )
    return loan_response(loan, system.loan_manager.get_guarantees(loan.id))


@router.get("")
async def list_loans(
    member_id: Optional[str] = None,
    loan_status: Optional[LoanStatus] = Query(None, alias="status"),
    system: SavingsGroupSystem = Depends(get_system)
):
    """List loans, most recently requested first"""
    loans = system.list_loans(member_id=member_id, status=loan_status)
    return {"loans": [loan_response(loan) for loan in loans]}


@router.get("/stats")
async def get_loan_stats(system: SavingsGroupSystem = Depends(get_system)):
    """Loan portfolio summary"""
    stats = system.get_loan_stats()
    stats["total_outstanding"] = str(stats["total_outstanding"])
    return stats


@router.get("/{loan_id}")
async def get_loan(loan_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """Get loan details with its guarantees and repayments"""
    loan = system.get_loan(loan_id)
    data = loan_response(loan, system.loan_manager.get_guarantees(loan.id))
    data["repayments"] = [repayment_response(r) for r in system.loan_manager.get_repayments(loan.id)]
    return data


@router.post("/{loan_id}/guarantees/{guarantor_id}")
async def submit_guarantee_decision(
    loan_id: str,
    guarantor_id: str,
    request: GuaranteeDecisionRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Accept or decline a guarantee"""
    loan_status = system.submit_guarantee_decision(loan_id, guarantor_id, request.accept, actor_id)
    return {"loan_id": loan_id, "guarantor_id": guarantor_id, "status": loan_status.value}


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    request: ApproveLoanRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Approve a loan and fix its repayment terms"""
    loan = system.approve_loan(
        loan_id,
        approved_amount=request.approved_amount,
        interest_rate=request.interest_rate,
        term_months=request.term_months,
        actor_id=actor_id
    )
    return loan_response(loan)


@router.post("/{loan_id}/reject")
async def reject_loan(
    loan_id: str,
    request: Optional[RejectLoanRequest] = None,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Reject a loan under review"""
    reason = request.reason if request else None
    return loan_response(system.reject_loan(loan_id, actor_id=actor_id, reason=reason))


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Withdraw a loan request before it is decided"""
    return loan_response(system.cancel_loan(loan_id, actor_id=actor_id))


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Pay loan funds into the borrower's savings"""
    result = system.disburse_loan(loan_id, actor_id=actor_id)
    return {
        "loan": loan_response(result.loan),
        "transaction": transaction_response(result.transaction),
        "message": "Loan disbursed successfully"
    }


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED)
async def record_repayment(
    loan_id: str,
    request: RepaymentRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Record a repayment"""
    result = system.record_repayment(loan_id, request.amount, actor_id=actor_id, notes=request.notes)
    return {
        "loan": loan_response(result.loan),
        "repayment": repayment_response(result.repayment),
        "credited": transaction_response(result.transaction) if result.transaction else None
    }
