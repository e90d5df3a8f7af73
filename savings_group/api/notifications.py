"""
Notification endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .system import get_system
from .schemas import notification_response
from ..members import MemberRole
from ..service import SavingsGroupSystem


router = APIRouter()


@router.get("/{member_id}")
async def get_notifications(member_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """In-app notifications for a member, including admin-role notifications for admins"""
    member = system.member_manager.require_member(member_id)
    role = system.config.admin_role if member.role == MemberRole.ADMIN else None
    notifications = system.emitter.get_notifications(recipient_id=member.id, recipient_role=role)
    return {
        "member_id": member.id,
        "unread": sum(1 for n in notifications if not n.read),
        "notifications": [notification_response(n) for n in notifications]
    }


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, system: SavingsGroupSystem = Depends(get_system)):
    """Mark a notification as read"""
    notification = system.emitter.mark_read(notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return notification_response(notification)
