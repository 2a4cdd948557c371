from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from abaops.core.settings import settings
from abaops.db.base import utcnow
from abaops.models.enums import ADMIN_ROLES, NotificationType, Role
from abaops.models.notification import Notification
from abaops.models.user import User
from abaops.services.email import EmailSendError, send_email


logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    *,
    user_id: int,
    notif_type: NotificationType,
    title: str,
    message: str,
    payload: Optional[dict] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=notif_type,
        title=title,
        message=message,
        payload_json=payload,
    )
    db.add(notification)
    db.flush()
    return notification


def _active_users_with_roles(db: Session, roles: Sequence[Role]) -> list[User]:
    return (
        db.query(User)
        .filter(User.has_any_role(roles), User.is_active.is_(True), User.not_deleted())
        .order_by(User.id.asc())
        .all()
    )


def notify_roles(
    db: Session,
    *,
    roles: Sequence[Role],
    notif_type: NotificationType,
    title: str,
    message: str,
    payload: Optional[dict] = None,
    exclude_user_ids: Optional[Iterable[int]] = None,
) -> list[Notification]:
    exclude_set = set(exclude_user_ids or [])
    created: list[Notification] = []
    for user in _active_users_with_roles(db, roles):
        if user.id in exclude_set:
            continue
        created.append(
            create_notification(
                db,
                user_id=user.id,
                notif_type=notif_type,
                title=title,
                message=message,
                payload=payload,
            )
        )
    return created


def email_admins(db: Session, *, subject: str, html: str, text: Optional[str] = None) -> bool:
    """Best-effort admin email; returns False when delivery is unavailable or fails."""
    recipients = {user.email.lower() for user in _active_users_with_roles(db, ADMIN_ROLES) if user.email}
    recipients.update(settings.admin_notification_emails)
    if not recipients:
        return False
    try:
        send_email(to_address=sorted(recipients), subject=subject, html=html, text=text)
    except EmailSendError as exc:
        logger.warning("Admin notification email not sent: %s", exc)
        return False
    return True


def notify_admins(
    db: Session,
    *,
    notif_type: NotificationType,
    title: str,
    message: str,
    payload: Optional[dict] = None,
    exclude_user_ids: Optional[Iterable[int]] = None,
    send_email_copy: bool = False,
    email_html: Optional[str] = None,
) -> list[Notification]:
    created = notify_roles(
        db,
        roles=ADMIN_ROLES,
        notif_type=notif_type,
        title=title,
        message=message,
        payload=payload,
        exclude_user_ids=exclude_user_ids,
    )
    if send_email_copy:
        email_admins(db, subject=title, html=email_html or f"<p>{message}</p>", text=message)
    return created


def mark_read(db: Session, notification: Notification) -> Notification:
    if notification.read_at is None:
        notification.read_at = utcnow()
        db.add(notification)
        db.flush()
    return notification


def mark_all_read(db: Session, *, user_id: int) -> int:
    now = utcnow()
    unread = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .all()
    )
    for notification in unread:
        notification.read_at = now
        db.add(notification)
    db.flush()
    return len(unread)


def unread_count(db: Session, *, user_id: int) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .count()
    )
