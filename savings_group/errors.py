"""
Error Taxonomy Module

Every error raised by the loan engine derives from SavingsGroupError, itself a
ValueError so callers validating input the usual way keep working.
"""

from decimal import Decimal
from typing import Iterable, Optional, Union


class SavingsGroupError(ValueError):
    """Base class for loan engine errors"""


class InvalidState(SavingsGroupError):
    """Operation attempted against a loan in the wrong lifecycle state"""

    def __init__(self, entity_id: str, current: Optional[str], expected: Union[str, Iterable[str]],
                 entity_type: str = "loan"):
        if isinstance(expected, str):
            expected = [expected]
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current = current
        self.expected = list(expected)
        super().__init__(
            f"{entity_type.capitalize()} {entity_id} is {current}, expected {' or '.join(self.expected)}"
        )


class InvalidAmount(SavingsGroupError):
    """Negative, zero or malformed monetary input"""


class InvalidGuarantors(SavingsGroupError):
    """Guarantor list breaks a request rule: too many, repeated, or the borrower"""


class InsufficientCoverage(SavingsGroupError):
    """Usable savings plus pledged guarantees do not cover the requested amount"""

    def __init__(self, shortfall: Decimal, message: Optional[str] = None):
        self.shortfall = shortfall
        super().__init__(message or f"Loan not fully covered. Remaining: {shortfall}")


class NotFound(SavingsGroupError):
    """Referenced member, loan or guarantee does not exist"""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} {entity_id} not found")


class DependencyFailure(SavingsGroupError):
    """Underlying store or notification call failed"""
