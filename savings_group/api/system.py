"""
Shared dependencies: the system instance and the acting member
"""

from typing import Optional

from fastapi import Header

from ..service import SavingsGroupSystem


# Global system instance, created on first use
_system: Optional[SavingsGroupSystem] = None


def get_system() -> SavingsGroupSystem:
    global _system
    if _system is None:
        _system = SavingsGroupSystem()
    return _system


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
    """Member or admin performing the request, used for audit attribution"""
    return x_actor_id
