"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..members import Member
from ..loans import Loan
from ..guarantors import Guarantee
from ..repayments import Repayment
from ..ledger import Transaction
from ..notifications import Notification


# Member schemas
class CreateMemberRequest(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = Field("member", description="Role (member, admin)")


class AmountRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None


# Loan schemas
class GuarantorPledgeModel(BaseModel):
    guarantor_id: str
    amount: str = Field(..., description="Pledged amount as string")


class CreateLoanRequest(BaseModel):
    member_id: str
    amount: str = Field(..., description="Requested amount as string")
    repayment_period_months: int
    reason: str = ""
    guarantors: List[GuarantorPledgeModel] = Field(default_factory=list)


class GuaranteeDecisionRequest(BaseModel):
    accept: bool


class ApproveLoanRequest(BaseModel):
    approved_amount: str
    interest_rate: Optional[str] = Field(None, description="Annual % as string; configured default when omitted")
    term_months: Optional[int] = None


class RejectLoanRequest(BaseModel):
    reason: Optional[str] = None


class RepaymentRequest(BaseModel):
    amount: str
    notes: str = ""


# Response helpers
def member_response(member: Member) -> Dict[str, Any]:
    return member.to_dict()


def transaction_response(transaction: Transaction) -> Dict[str, Any]:
    return transaction.to_dict()


def guarantee_response(guarantee: Guarantee) -> Dict[str, Any]:
    return guarantee.to_dict()


def repayment_response(repayment: Repayment) -> Dict[str, Any]:
    return repayment.to_dict()


def notification_response(notification: Notification) -> Dict[str, Any]:
    return notification.to_dict()


def loan_response(loan: Loan, guarantees: Optional[List[Guarantee]] = None) -> Dict[str, Any]:
    data = loan.to_dict()
    if guarantees is not None:
        data["guarantees"] = [guarantee_response(g) for g in guarantees]
    return data
