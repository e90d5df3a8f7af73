"""
Member Management Module

Manages member records: registration, lookup and soft status changes.
Balances are only ever mutated through the ledger module.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import List, Optional
from enum import Enum
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import NotFound
from .money import ZERO


class MemberStatus(Enum):
    """Member lifecycle status (members are never hard-deleted)"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class MemberRole(Enum):
    """Role used for notification targeting"""
    MEMBER = "member"
    ADMIN = "admin"


@dataclass
class Member(StorageRecord):
    """
    Member of the savings group with savings balance
    """
    member_number: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: MemberRole = MemberRole.MEMBER
    status: MemberStatus = MemberStatus.ACTIVE
    account_balance: Decimal = ZERO
    total_contributions: Decimal = ZERO

    _enum_fields = {'role': MemberRole, 'status': MemberStatus}
    _decimal_fields = ('account_balance', 'total_contributions')

    def __post_init__(self):
        if not self.full_name or not self.full_name.strip():
            raise ValueError("Member full name is required")

        if self.email:
            email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
            if not re.match(email_pattern, self.email):
                raise ValueError("Invalid email format")

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


class MemberManager:
    """
    Manages member lifecycle
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "members"

    def register_member(
        self,
        full_name: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        role: MemberRole = MemberRole.MEMBER,
        actor_id: Optional[str] = None
    ) -> Member:
        """
        Register a new member with a zero balance

        Args:
            full_name: Member's full name
            email: Optional email address
            phone: Optional phone number
            role: Member or admin
            actor_id: Admin registering the member

        Returns:
            Created Member object
        """
        now = datetime.now(timezone.utc)

        member = Member(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            member_number=self._next_member_number(),
            full_name=full_name.strip(),
            email=email,
            phone=phone,
            role=role
        )

        with self.storage.atomic():
            self.save_member(member)
            self.audit_trail.log_event(
                event_type=AuditEventType.MEMBER_REGISTERED,
                entity_type="member",
                entity_id=member.id,
                metadata={
                    "member_number": member.member_number,
                    "full_name": member.full_name,
                    "role": member.role.value
                },
                actor_id=actor_id
            )

        return member

    def _next_member_number(self) -> str:
        sequence = self.storage.count(self.table_name) + 1
        while True:
            candidate = f"M{sequence:05d}"
            if not self.storage.find(self.table_name, {"member_number": candidate}):
                return candidate
            sequence += 1

    def get_member(self, member_id: str) -> Optional[Member]:
        """Get member by ID"""
        data = self.storage.load(self.table_name, member_id)
        if data:
            return Member.from_dict(data)
        return None

    def require_member(self, member_id: str) -> Member:
        """Get member by ID or raise NotFound"""
        member = self.get_member(member_id)
        if not member:
            raise NotFound("member", member_id)
        return member

    def get_member_by_number(self, member_number: str) -> Optional[Member]:
        """Get member by member number"""
        found = self.storage.find(self.table_name, {"member_number": member_number})
        if found:
            return Member.from_dict(found[0])
        return None

    def list_members(self, include_admins: bool = True) -> List[Member]:
        members = [Member.from_dict(data) for data in self.storage.load_all(self.table_name)]
        if not include_admins:
            members = [m for m in members if m.role != MemberRole.ADMIN]
        return members

    def list_admins(self) -> List[Member]:
        return [m for m in self.list_members() if m.role == MemberRole.ADMIN]

    def set_status(self, member_id: str, status: MemberStatus,
                   actor_id: Optional[str] = None) -> Member:
        """Change a member's soft status"""
        with self.storage.atomic():
            member = self.require_member(member_id)
            old_status = member.status
            member.status = status
            self.save_member(member)

            self.audit_trail.log_event(
                event_type=AuditEventType.MEMBER_STATUS_CHANGED,
                entity_type="member",
                entity_id=member.id,
                metadata={"old_status": old_status.value, "new_status": status.value},
                actor_id=actor_id
            )

        return member

    def save_member(self, member: Member) -> None:
        member.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, member.id, member.to_dict())
