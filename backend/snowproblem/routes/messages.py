"""
Messaging routes - one thread per job between owner and assigned provider
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..db import get_db
from ..models import Message as MessageModel, Profile
from ..schemas import ConversationSummary, Message, MessageCreateRequest, MessageThread
from ..auth import get_current_user
from ..services import messaging
from ..services.jobs import get_job

router = APIRouter(prefix="/messages", tags=["Messages"])


def message_to_schema(message: MessageModel) -> Message:
    return Message(
        id=message.id,
        jobId=message.job_id,
        senderId=message.sender_id,
        recipientId=message.recipient_id,
        content=message.content,
        readAt=message.read_at,
        createdAt=message.created_at,
    )


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Every job thread the caller takes part in, most recently active first"""
    conversations = await messaging.list_conversations(db, current_user)
    return [
        ConversationSummary(
            jobId=c.job.id,
            jobTitle=c.job.title,
            jobStatus=c.job.status,
            lastMessage=message_to_schema(c.last_message) if c.last_message else None,
            unreadCount=c.unread_count,
        )
        for c in conversations
    ]


@router.get("/{job_id}", response_model=MessageThread)
async def open_thread(
    job_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Read a job's thread; messages addressed to the caller are marked read"""
    job = await get_job(db, job_id)
    recipient_id = messaging.ensure_thread_access(current_user, job)
    messages = await messaging.open_thread(db, current_user, job_id)
    return MessageThread(
        jobId=job.id,
        jobTitle=job.title,
        recipientId=recipient_id,
        messages=[message_to_schema(m) for m in messages],
    )


@router.post("/{job_id}", response_model=Message, status_code=201)
async def send_message(
    job_id: str,
    request: MessageCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    message = await messaging.send_message(db, current_user, job_id, request.content)
    return message_to_schema(message)


@router.post("/read/{message_id}", status_code=204)
async def mark_message_read(
    message_id: str,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await messaging.mark_message_read(db, current_user, message_id)
