import pytest

from snowproblem.exceptions import (
    ConflictError,
    InvalidJobStateError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
)
from snowproblem.schemas import BidCreateRequest
from snowproblem.services import jobs as job_service
from snowproblem.services import messaging, notifications, reviews

from conftest import photo


async def accepted_job(db, owner, provider, make_job, make_bid):
    job = await make_job(owner)
    bid = await make_bid(job, provider, amount=40.0)
    return await job_service.accept_bid(db, owner, job.id, bid.id)


async def completed_job(db, owner, provider, make_job, make_bid):
    job = await accepted_job(db, owner, provider, make_job, make_bid)
    await job_service.start_job(db, provider, job.id)
    job, _ = await job_service.complete_job(db, provider, job.id, [photo()])
    return job


# ===== Messaging =====

@pytest.mark.asyncio
async def test_no_thread_before_a_provider_is_assigned(db, owner, make_job):
    job = await make_job(owner)
    with pytest.raises(PermissionDeniedError):
        await messaging.send_message(db, owner, job.id, "Is anyone available?")


@pytest.mark.asyncio
async def test_outsiders_cannot_read_the_thread(db, owner, provider, rival, make_job, make_bid):
    job = await accepted_job(db, owner, provider, make_job, make_bid)
    with pytest.raises(PermissionDeniedError):
        await messaging.open_thread(db, rival, job.id)


@pytest.mark.asyncio
async def test_messages_flow_between_owner_and_provider(db, owner, provider, make_job, make_bid):
    job = await accepted_job(db, owner, provider, make_job, make_bid)

    sent = await messaging.send_message(db, owner, job.id, "  Gate code is 1234  ")
    assert sent.recipient_id == provider.id
    assert sent.content == "Gate code is 1234"

    conversations = await messaging.list_conversations(db, provider)
    assert len(conversations) == 1
    assert conversations[0].unread_count == 1
    assert conversations[0].last_message.id == sent.id

    thread = await messaging.open_thread(db, provider, job.id)
    assert [m.id for m in thread] == [sent.id]
    assert thread[0].read_at is not None

    conversations = await messaging.list_conversations(db, provider)
    assert conversations[0].unread_count == 0

    types = [n.type for n in await notifications.list_notifications(db, provider.id)]
    assert notifications.NEW_MESSAGE in types


@pytest.mark.asyncio
async def test_blank_messages_are_rejected(db, owner, provider, make_job, make_bid):
    job = await accepted_job(db, owner, provider, make_job, make_bid)
    with pytest.raises(InvalidRequestError):
        await messaging.send_message(db, provider, job.id, "   ")


# ===== Reviews =====

@pytest.mark.asyncio
async def test_review_requires_completed_job(db, owner, provider, make_job, make_bid):
    job = await accepted_job(db, owner, provider, make_job, make_bid)
    with pytest.raises(InvalidJobStateError):
        await reviews.create_review(db, owner, job.id, 5)


@pytest.mark.asyncio
async def test_review_updates_provider_rating(db, owner, provider, make_job, make_bid, dummy_s3):
    job = await completed_job(db, owner, provider, make_job, make_bid)

    review = await reviews.create_review(db, owner, job.id, 4, "Fast and tidy")
    assert review.reviewee_id == provider.id

    second_job = await completed_job(db, owner, provider, make_job, make_bid)
    await reviews.create_review(db, owner, second_job.id, 5)

    await db.refresh(provider)
    assert provider.total_reviews == 2
    assert provider.rating == 4.5

    listed = await reviews.list_reviews_for(db, provider.id)
    assert len(listed) == 2


@pytest.mark.asyncio
async def test_one_review_per_reviewer_and_job(db, owner, provider, make_job, make_bid, dummy_s3):
    job = await completed_job(db, owner, provider, make_job, make_bid)
    await reviews.create_review(db, owner, job.id, 5)

    with pytest.raises(ConflictError) as exc:
        await reviews.create_review(db, owner, job.id, 1)
    assert exc.value.code == "DUPLICATE_REVIEW"

    back = await reviews.create_review(db, provider, job.id, 5, "Clear instructions")
    assert back.reviewee_id == owner.id


@pytest.mark.asyncio
async def test_outsiders_cannot_review(db, owner, provider, rival, make_job, make_bid, dummy_s3):
    job = await completed_job(db, owner, provider, make_job, make_bid)
    with pytest.raises(PermissionDeniedError):
        await reviews.create_review(db, rival, job.id, 1)


# ===== Notifications =====

@pytest.mark.asyncio
async def test_mark_notifications_read(db, owner, provider, make_job, make_bid):
    job = await make_job(owner)
    await job_service.submit_bid(
        db, provider, job.id,
        BidCreateRequest(amount=30, estimatedDurationMinutes=30),
    )

    unread = await notifications.list_notifications(db, owner.id, unread_only=True)
    assert len(unread) == 1

    marked = await notifications.mark_read(db, owner.id, unread[0].id)
    assert marked.read_at is not None
    assert await notifications.list_notifications(db, owner.id, unread_only=True) == []

    with pytest.raises(NotFoundError):
        await notifications.mark_read(db, provider.id, unread[0].id)


@pytest.mark.asyncio
async def test_mark_all_read(db, owner, provider, rival, make_job):
    job = await make_job(owner)
    for bidder in (provider, rival):
        await job_service.submit_bid(
            db, bidder, job.id,
            BidCreateRequest(amount=30, estimatedDurationMinutes=30),
        )

    assert await notifications.mark_all_read(db, owner.id) == 2
    assert await notifications.mark_all_read(db, owner.id) == 0
