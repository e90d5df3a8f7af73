"""
Savings Group Core

Loan lifecycle engine for a group-savings association: guarantor consensus,
admin approval with amortization, disbursement into member savings and
repayment allocation, backed by Decimal money and a hash-chained audit trail.
"""

__version__ = "1.0.0"
