from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from sqlalchemy.orm import Session

from worktrack.models.enums import ActorType, NotificationDeliveryStatus, NotificationType
from worktrack.models.notification import Notification

logger = logging.getLogger("notifications")


@dataclass(frozen=True)
class OutboundNotification:
    recipient_type: ActorType
    recipient_id: int
    type: NotificationType
    title: str
    body: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationPort(Protocol):
    def publish(self, db: Session, message: OutboundNotification) -> None: ...


class OutboxNotificationPort:
    """Adds messages to the notifications outbox in the caller's transaction.

    Delivery happens elsewhere; rows stay PENDING until a worker sends them.
    """

    def publish(self, db: Session, message: OutboundNotification) -> None:
        db.add(
            Notification(
                recipient_type=message.recipient_type,
                recipient_id=message.recipient_id,
                type=message.type,
                title=message.title,
                body=message.body,
                payload_json=message.payload or None,
                status=NotificationDeliveryStatus.PENDING,
            )
        )
        logger.info(
            "notification_enqueued",
            extra={"operation": message.type.value, "client_id": message.payload.get("client_id")},
        )


_port: NotificationPort = OutboxNotificationPort()


def get_notification_port() -> NotificationPort:
    return _port


def notify_officer(
    db: Session,
    *,
    officer_id: Optional[int],
    type: NotificationType,
    title: str,
    body: str,
    payload: Optional[dict[str, Any]] = None,
) -> None:
    if officer_id is None:
        return
    get_notification_port().publish(
        db,
        OutboundNotification(
            recipient_type=ActorType.STAFF,
            recipient_id=officer_id,
            type=type,
            title=title,
            body=body,
            payload=payload or {},
        ),
    )


def notify_client(
    db: Session,
    *,
    client_id: int,
    type: NotificationType,
    title: str,
    body: str,
    payload: Optional[dict[str, Any]] = None,
) -> None:
    get_notification_port().publish(
        db,
        OutboundNotification(
            recipient_type=ActorType.CLIENT,
            recipient_id=client_id,
            type=type,
            title=title,
            body=body,
            payload=payload or {},
        ),
    )
