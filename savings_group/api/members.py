"""
Member and savings endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .system import get_actor_id, get_system
from .schemas import (
    AmountRequest, CreateMemberRequest, loan_response, member_response, transaction_response
)
from ..members import MemberRole
from ..service import SavingsGroupSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_member(
    request: CreateMemberRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Register a new member"""
    try:
        role = MemberRole(request.role)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown role: {request.role}")

    try:
        member = system.register_member(
            full_name=request.full_name,
            email=request.email,
            phone=request.phone,
            role=role,
            actor_id=actor_id
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return member_response(member)


@router.get("/{member_id}")
async def get_member(member_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """Get member details and savings balance"""
    return member_response(system.member_manager.require_member(member_id))


@router.post("/{member_id}/deposit", status_code=status.HTTP_201_CREATED)
async def deposit(
    member_id: str,
    request: AmountRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Deposit savings"""
    transaction = system.deposit(member_id, request.amount, actor_id=actor_id,
                                 description=request.description or "Deposit")
    return transaction_response(transaction)


@router.post("/{member_id}/withdraw", status_code=status.HTTP_201_CREATED)
async def withdraw(
    member_id: str,
    request: AmountRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Withdraw savings"""
    transaction = system.withdraw(member_id, request.amount, actor_id=actor_id,
                                  description=request.description or "Withdrawal")
    return transaction_response(transaction)


@router.post("/{member_id}/contribute", status_code=status.HTTP_201_CREATED)
async def contribute(
    member_id: str,
    request: AmountRequest,
    system: SavingsGroupSystem = Depends(get_system),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Record a group contribution"""
    transaction = system.contribute(member_id, request.amount, actor_id=actor_id,
                                    description=request.description or "Contribution")
    return transaction_response(transaction)


@router.get("/{member_id}/transactions")
async def get_transactions(member_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """Get member's transaction history, oldest first"""
    system.member_manager.require_member(member_id)
    transactions = system.ledger.get_transactions(member_id)
    return {
        "member_id": member_id,
        "transactions": [transaction_response(t) for t in transactions]
    }


@router.get("/{member_id}/guarantee-requests")
async def get_guarantee_requests(member_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """Loans waiting on this member's guarantee decision"""
    system.member_manager.require_member(member_id)
    loans = system.loan_manager.get_pending_guarantee_requests(member_id)
    return {"loans": [loan_response(loan) for loan in loans]}
