"""Notification sink: in-app records plus best-effort e-mail fan-out.

Lifecycle writes never talk to this module directly while their transaction
is open. They queue messages on a ``NotificationOutbox`` and the outbox is
dispatched only after the complaint change has committed, so a delivery
failure can never roll back (or be rolled back with) the state change.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import NOTIFICATION_KINDS, Notification, User
from utils.clock import utcnow
from utils.email_service import EmailDeliveryError, mail_configured, send_notification_email
from utils.errors import NotFound

NOTIFICATION_TITLES = {
    "status_update": "Complaint status updated",
    "escalation": "Complaint escalated",
    "comment": "New comment on your complaint",
    "system": "Complaint update",
    "reminder": "Complaint reminder",
    "resolution": "Complaint resolved",
}

_executor: Optional[ThreadPoolExecutor] = None


@dataclass
class PendingNotification:
    user_id: str
    kind: str
    message: str
    related_complaint_id: Optional[str] = None
    title: Optional[str] = None
    send_email: bool = False


class NotificationOutbox:
    """Notifications queued by a write, delivered after it commits."""

    def __init__(self) -> None:
        self.pending: List[PendingNotification] = []

    def notify(
        self,
        user_id: Optional[str],
        kind: str,
        message: str,
        related_complaint_id: Optional[str] = None,
        title: Optional[str] = None,
        send_email: bool = False,
    ) -> None:
        if not user_id:
            return
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        if any(item.user_id == user_id and item.kind == kind and item.message == message for item in self.pending):
            return
        self.pending.append(
            PendingNotification(
                user_id=user_id,
                kind=kind,
                message=message,
                related_complaint_id=related_complaint_id,
                title=title,
                send_email=send_email,
            )
        )

    def dispatch(self) -> int:
        delivered = 0
        pending, self.pending = self.pending, []
        for item in pending:
            if notify(
                item.user_id,
                item.kind,
                item.message,
                related_complaint_id=item.related_complaint_id,
                title=item.title,
                send_email=item.send_email,
            ):
                delivered += 1
        return delivered


def notify(
    user_id: str,
    kind: str,
    message: str,
    related_complaint_id: Optional[str] = None,
    title: Optional[str] = None,
    send_email: bool = False,
) -> Optional[Notification]:
    """Record an in-app notification; delivery problems are logged, never raised."""
    try:
        record = Notification(
            user_id=user_id,
            title=title or NOTIFICATION_TITLES.get(kind, "Notification"),
            message=message,
            kind=kind,
            related_complaint_id=related_complaint_id,
            created_at=utcnow(),
        )
        db.session.add(record)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Notification persist failed",
            extra={"user_id": user_id, "kind": kind, "complaint_id": related_complaint_id},
        )
        return None

    current_app.logger.info(
        "Notification recorded",
        extra={"user_id": user_id, "kind": kind, "complaint_id": related_complaint_id},
    )
    if send_email:
        _queue_email(record)
    return record


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        workers = int(current_app.config.get("NOTIFY_WORKERS", 4))
        _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify")
    return _executor


def _send_email(recipient: str, subject: str, message: str, complaint_id: Optional[str]) -> None:
    try:
        send_notification_email(recipient, subject, message, complaint_id=complaint_id)
        current_app.logger.info("Notification email sent", extra={"recipient": recipient, "complaint_id": complaint_id})
    except EmailDeliveryError as exc:
        current_app.logger.warning(
            "Notification email failed",
            extra={"recipient": recipient, "complaint_id": complaint_id, "error": str(exc)},
        )


def _send_email_in_context(app, recipient: str, subject: str, message: str, complaint_id: Optional[str]) -> None:
    with app.app_context():
        _send_email(recipient, subject, message, complaint_id)


def _queue_email(record: Notification) -> None:
    if not mail_configured():
        current_app.logger.debug("Mail server not configured; email skipped", extra={"user_id": record.user_id})
        return
    user = db.session.get(User, record.user_id)
    if not user or not user.email:
        return
    if current_app.config.get("NOTIFY_ASYNC", True):
        app = current_app._get_current_object()
        _get_executor().submit(
            _send_email_in_context, app, user.email, record.title, record.message, record.related_complaint_id
        )
    else:
        _send_email(user.email, record.title, record.message, record.related_complaint_id)


def list_for_user(user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(user_id: str) -> int:
    return Notification.query.filter_by(user_id=user_id, is_read=False).count()


def mark_read(user_id: str, notification_id: str) -> Notification:
    record = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not record:
        raise NotFound("Notification not found.")
    if not record.is_read:
        record.is_read = True
        record.read_at = utcnow()
        db.session.commit()
    return record


def mark_all_read(user_id: str) -> int:
    updated = Notification.query.filter_by(user_id=user_id, is_read=False).update(
        {"is_read": True, "read_at": utcnow()}, synchronize_session=False
    )
    db.session.commit()
    return updated
