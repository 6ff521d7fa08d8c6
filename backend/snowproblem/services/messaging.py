from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import atomic
from ..exceptions import InvalidRequestError, PermissionDeniedError
from ..logger import logger
from ..models import Job, Message, Profile
from . import notifications
from .jobs import get_job


@dataclass(frozen=True)
class Conversation:
    job: Job
    last_message: Optional[Message]
    unread_count: int


def ensure_thread_access(user: Profile, job: Job) -> str:
    """
    Return the other party of the job's thread for `user`.

    Threads exist only between the owner and the assigned provider, and only
    once a provider has been assigned.
    """
    if job.provider_id is None:
        raise PermissionDeniedError("Messaging opens once a provider has been assigned")
    if not job.is_participant(user.id):
        raise PermissionDeniedError("Only the job owner and its assigned provider can message")
    return job.counterpart_of(user.id)


async def open_thread(db: AsyncSession, user: Profile, job_id: str) -> List[Message]:
    """List the thread oldest first and mark everything addressed to `user` as read."""
    job = await get_job(db, job_id)
    ensure_thread_access(user, job)

    async with atomic(db, "mark messages read"):
        marked = await db.execute(
            update(Message)
            .where(Message.job_id == job.id, Message.recipient_id == user.id, Message.read_at.is_(None))
            .values(read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )

    result = await db.execute(
        select(Message)
        .where(Message.job_id == job.id)
        .order_by(Message.created_at, Message.id)
        .execution_options(populate_existing=True)
    )
    messages = list(result.scalars().all())
    logger.info("Thread opened", extra={"job_id": job.id, "user_id": user.id, "marked_read": marked.rowcount})
    return messages


async def send_message(db: AsyncSession, sender: Profile, job_id: str, content: str) -> Message:
    job = await get_job(db, job_id)
    recipient_id = ensure_thread_access(sender, job)

    text = (content or "").strip()
    if not text:
        raise InvalidRequestError("Message cannot be empty")

    message = Message(
        id=str(uuid.uuid4()),
        job_id=job.id,
        sender_id=sender.id,
        recipient_id=recipient_id,
        content=text,
    )
    async with atomic(db, "send message"):
        db.add(message)
        notifications.notify(
            db,
            recipient_id,
            notifications.NEW_MESSAGE,
            f"New message from {sender.full_name or 'your contact'}",
            text[:140],
            {"job_id": job.id, "message_id": message.id},
        )
    await db.refresh(message)
    return message


async def mark_message_read(db: AsyncSession, user: Profile, message_id: str) -> None:
    async with atomic(db, "mark message read"):
        await db.execute(
            update(Message)
            .where(Message.id == message_id, Message.recipient_id == user.id, Message.read_at.is_(None))
            .values(read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )


async def list_conversations(db: AsyncSession, user: Profile) -> List[Conversation]:
    result = await db.execute(
        select(Job)
        .where(
            Job.provider_id.is_not(None),
            or_(Job.owner_id == user.id, Job.provider_id == user.id),
        )
        .order_by(desc(Job.updated_at))
    )
    jobs = list(result.scalars().all())

    conversations = []
    for job in jobs:
        last = await db.execute(
            select(Message)
            .where(Message.job_id == job.id)
            .order_by(desc(Message.created_at), desc(Message.id))
            .limit(1)
        )
        unread = await db.execute(
            select(func.count())
            .select_from(Message)
            .where(Message.job_id == job.id, Message.recipient_id == user.id, Message.read_at.is_(None))
        )
        conversations.append(
            Conversation(job=job, last_message=last.scalar_one_or_none(), unread_count=int(unread.scalar_one()))
        )
    return conversations
