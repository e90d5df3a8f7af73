"""
Notification Module

Loan lifecycle transitions do not notify anyone themselves: they return
NotificationEffect values describing who should be told what. The
EffectRunner delivers those effects after the transition has committed.
Delivery is best effort with a single attempt; failures are logged and never
undo the transition that produced them.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
from enum import Enum
from abc import ABC, abstractmethod
import logging
import uuid

import requests

from .storage import StorageInterface, StorageRecord, _to_storable
from .errors import DependencyFailure
from .logging_config import log_action


logger = logging.getLogger("savings_group.notifications")


class NotificationType(Enum):
    """Types of notifications"""
    LOAN_REQUEST = "loan_request"
    LOAN_GUARANTEE_REQUEST = "loan_guarantee_request"
    GUARANTOR_RESPONSE = "guarantor_response"
    LOAN_REJECTED_BY_GUARANTOR = "loan_rejected_by_guarantor"
    GUARANTORS_APPROVED = "guarantors_approved"
    GUARANTEE_CONSENSUS = "guarantee_consensus"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_CANCELLED = "loan_cancelled"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_REPAYMENT = "loan_repayment"
    LOAN_COMPLETED = "loan_completed"


class NotificationStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class NotificationEffect:
    """A notification a transition wants delivered once it has committed"""
    notification_type: NotificationType
    title: str
    message: str
    recipient_id: Optional[str] = None
    recipient_role: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.recipient_id and not self.recipient_role:
            raise ValueError("Notification needs a recipient member or role")


@dataclass
class Notification(StorageRecord):
    """Delivered (or attempted) notification, shown in-app"""
    notification_type: NotificationType
    title: str
    message: str
    recipient_id: Optional[str] = None
    recipient_role: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: NotificationStatus = NotificationStatus.PENDING
    failed_reason: Optional[str] = None
    read: bool = False

    _enum_fields = {'notification_type': NotificationType, 'status': NotificationStatus}


class ChannelProvider(ABC):
    """Abstract base class for outbound notification channels"""

    @abstractmethod
    def send(self, notification: Notification) -> None:
        """Send notification via this channel; raise on failure"""
        pass


class LogChannelProvider(ChannelProvider):
    """Writes notifications to the application log"""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def send(self, notification: Notification) -> None:
        target = notification.recipient_id or f"role:{notification.recipient_role}"
        self.log.info(f"Notification to {target}: {notification.title} | {notification.message[:100]}")


class WebhookChannelProvider(ChannelProvider):
    """POSTs notifications to an external delivery service"""

    def __init__(self, url: str, timeout: float = 2.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, notification: Notification) -> None:
        payload = {
            "notification_id": notification.id,
            "member_id": notification.recipient_id,
            "recipient_role": notification.recipient_role,
            "type": notification.notification_type.value,
            "title": notification.title,
            "message": notification.message,
            "metadata": notification.metadata,
        }
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()


class NotificationEmitter:
    """Stores notifications for in-app display and pushes them to channels"""

    def __init__(self, storage: StorageInterface,
                 providers: Optional[List[ChannelProvider]] = None):
        self.storage = storage
        self.providers = list(providers) if providers is not None else [LogChannelProvider()]
        self.table_name = "notifications"

    def register_provider(self, provider: ChannelProvider) -> None:
        self.providers.append(provider)

    def deliver(self, effect: NotificationEffect) -> Notification:
        """
        Deliver one notification through every channel

        Raises:
            DependencyFailure: if storing it or any channel fails; the record
            is still stored with status FAILED when storage itself works
        """
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            notification_type=effect.notification_type,
            title=effect.title,
            message=effect.message,
            recipient_id=effect.recipient_id,
            recipient_role=effect.recipient_role,
            metadata=_to_storable(dict(effect.metadata))
        )

        error = None
        for provider in self.providers:
            try:
                provider.send(notification)
            except Exception as e:
                # Later channels still get the notification
                if error is None:
                    error = e

        if error is None:
            notification.status = NotificationStatus.SENT
        else:
            notification.status = NotificationStatus.FAILED
            notification.failed_reason = str(error)

        try:
            self.storage.save(self.table_name, notification.id, notification.to_dict())
        except Exception as e:
            raise DependencyFailure(f"Could not store notification: {e}") from e

        if error is not None:
            raise DependencyFailure(f"Notification channel failed: {error}") from error
        return notification

    def emit(self, effect: NotificationEffect) -> bool:
        """Fire-and-forget delivery; failures are logged, never raised"""
        try:
            self.deliver(effect)
            return True
        except Exception as e:
            log_action(
                logger, "warning", f"Notification {effect.notification_type.value} not delivered: {e}",
                action="emit_notification",
                resource=f"member:{effect.recipient_id}" if effect.recipient_id else f"role:{effect.recipient_role}",
                extra={"metadata": _to_storable(dict(effect.metadata))}
            )
            return False

    def get_notifications(self, recipient_id: Optional[str] = None,
                          recipient_role: Optional[str] = None) -> List[Notification]:
        """In-app notifications for a member and/or role, newest first"""
        results = []
        if recipient_id:
            results += self.storage.find(self.table_name, {"recipient_id": recipient_id})
        if recipient_role:
            results += self.storage.find(self.table_name, {"recipient_role": recipient_role})
        notifications = [Notification.from_dict(d) for d in results]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications

    def mark_read(self, notification_id: str) -> Optional[Notification]:
        data = self.storage.load(self.table_name, notification_id)
        if not data:
            return None
        notification = Notification.from_dict(data)
        notification.read = True
        notification.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, notification.id, notification.to_dict())
        return notification


@dataclass
class EffectReport:
    delivered: int = 0
    failed: int = 0


class EffectRunner:
    """Executes the effects returned by lifecycle transitions"""

    def __init__(self, emitter: NotificationEmitter):
        self.emitter = emitter

    def run(self, effects: Iterable[NotificationEffect]) -> EffectReport:
        report = EffectReport()
        for effect in effects:
            if self.emitter.emit(effect):
                report.delivered += 1
            else:
                report.failed += 1
        return report
