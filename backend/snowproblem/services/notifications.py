from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import atomic
from ..exceptions import NotFoundError
from ..models import Notification

BID_RECEIVED = "bid_received"
BID_ACCEPTED = "bid_accepted"
BID_REJECTED = "bid_rejected"
JOB_STARTED = "job_started"
JOB_COMPLETED = "job_completed"
JOB_CONFIRMED = "job_confirmed"
JOB_DISPUTED = "job_disputed"
JOB_EXPIRED = "job_expired"
NEW_MESSAGE = "new_message"


def notify(
    db: AsyncSession,
    user_id: str,
    type_: str,
    title: str,
    message: str,
    data: Optional[Dict[str, Any]] = None,
) -> Notification:
    """Stage a notification in the caller's transaction; nothing is committed here."""
    notification = Notification(user_id=user_id, type=type_, title=title, message=message, data=data)
    db.add(notification)
    return notification


async def list_notifications(db: AsyncSession, user_id: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.read_at.is_(None))
    result = await db.execute(query.order_by(desc(Notification.created_at)).limit(limit))
    return list(result.scalars().all())


async def mark_read(db: AsyncSession, user_id: str, notification_id: str) -> Notification:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError(f"Notification {notification_id} not found", "NOTIFICATION_NOT_FOUND")
    if notification.read_at is None:
        async with atomic(db, "mark notification read"):
            notification.read_at = datetime.now(timezone.utc)
    return notification


async def mark_all_read(db: AsyncSession, user_id: str) -> int:
    async with atomic(db, "mark notifications read"):
        result = await db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
            .values(read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    return result.rowcount
