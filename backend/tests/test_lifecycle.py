from datetime import datetime, timedelta, timezone

import pytest

from snowproblem.exceptions import (
    BidNotFoundError,
    ConflictError,
    InvalidJobStateError,
    InvalidRequestError,
    PermissionDeniedError,
)
from snowproblem.models import Bid, BidStatus, Job, JobStatus, PaymentStatus, Profile, UserRole
from snowproblem.services.lifecycle import (
    JobAction,
    can_transition,
    check_transition,
    plan_acceptance,
    plan_cancel,
    plan_completion,
    plan_confirmation,
    plan_dispute,
    plan_start,
    sort_bids,
)

OWNER = Profile(id="owner", role=UserRole.PROPERTY_OWNER)
PROVIDER = Profile(id="provider", role=UserRole.SERVICE_PROVIDER)
OTHER_PROVIDER = Profile(id="other", role=UserRole.SERVICE_PROVIDER)


def make_job(status=JobStatus.BIDDING, provider_id=None, accepted_bid_id=None, owner_confirmed=False) -> Job:
    return Job(
        id="job-1",
        owner_id=OWNER.id,
        provider_id=provider_id,
        status=status,
        accepted_bid_id=accepted_bid_id,
        owner_confirmed=owner_confirmed,
    )


def make_bid(bid_id="bid-1", provider_id=PROVIDER.id, amount=50.0, status=BidStatus.PENDING, created_at=None) -> Bid:
    return Bid(
        id=bid_id,
        job_id="job-1",
        provider_id=provider_id,
        amount=amount,
        status=status,
        created_at=created_at,
    )


def test_relationship_is_checked_before_state():
    job = make_job(status=JobStatus.BIDDING)
    with pytest.raises(PermissionDeniedError):
        check_transition(OTHER_PROVIDER, job, JobAction.START)


def test_start_requires_accepted_state():
    job = make_job(status=JobStatus.IN_PROGRESS, provider_id=PROVIDER.id)
    with pytest.raises(InvalidJobStateError):
        plan_start(PROVIDER, job)


def test_start_plan_expects_assigned_provider():
    plan = plan_start(PROVIDER, make_job(status=JobStatus.ACCEPTED, provider_id=PROVIDER.id))
    assert plan.expected == {"status": JobStatus.ACCEPTED, "provider_id": PROVIDER.id}
    assert plan.changes == {"status": JobStatus.IN_PROGRESS}


def test_complete_from_accepted_is_rejected():
    job = make_job(status=JobStatus.ACCEPTED, provider_id=PROVIDER.id)
    assert not can_transition(PROVIDER, job, JobAction.COMPLETE)
    with pytest.raises(InvalidJobStateError):
        plan_completion(PROVIDER, job, ["https://photos/a.png"], datetime.now(timezone.utc))


def test_completion_requires_photos():
    job = make_job(status=JobStatus.IN_PROGRESS, provider_id=PROVIDER.id)
    with pytest.raises(InvalidRequestError):
        plan_completion(PROVIDER, job, [], datetime.now(timezone.utc))


def test_completion_holds_payment():
    now = datetime.now(timezone.utc)
    job = make_job(status=JobStatus.IN_PROGRESS, provider_id=PROVIDER.id)
    plan = plan_completion(PROVIDER, job, ["https://photos/a.png"], now)
    assert plan.changes["status"] == JobStatus.COMPLETED
    assert plan.changes["payment_status"] == PaymentStatus.HELD
    assert plan.changes["after_photos"] == ["https://photos/a.png"]
    assert plan.changes["completed_at"] == now


def test_confirm_and_dispute_are_mutually_exclusive():
    confirmed = make_job(status=JobStatus.COMPLETED, provider_id=PROVIDER.id, owner_confirmed=True)
    with pytest.raises(ConflictError) as exc:
        plan_dispute(OWNER, confirmed)
    assert exc.value.code == "ALREADY_CONFIRMED"

    disputed = make_job(status=JobStatus.DISPUTED, provider_id=PROVIDER.id)
    with pytest.raises(InvalidJobStateError):
        plan_confirmation(OWNER, disputed)


def test_only_owner_confirms():
    job = make_job(status=JobStatus.COMPLETED, provider_id=PROVIDER.id)
    with pytest.raises(PermissionDeniedError):
        plan_confirmation(PROVIDER, job)
    plan = plan_confirmation(OWNER, job)
    assert plan.changes == {"owner_confirmed": True, "payment_status": PaymentStatus.RELEASED}


def test_cancel_only_before_assignment():
    plan = plan_cancel(OWNER, make_job(status=JobStatus.BIDDING))
    assert plan.changes == {"status": JobStatus.CANCELLED}

    with pytest.raises(InvalidJobStateError):
        plan_cancel(OWNER, make_job(status=JobStatus.ACCEPTED, provider_id=PROVIDER.id))


def test_owner_cannot_bid():
    job = make_job()
    assert not can_transition(OWNER, job, JobAction.SUBMIT_BID)
    assert can_transition(PROVIDER, job, JobAction.SUBMIT_BID)


def test_acceptance_rejects_other_pending_bids():
    winner = make_bid("bid-40", PROVIDER.id, 40.0)
    loser = make_bid("bid-50", OTHER_PROVIDER.id, 50.0)
    withdrawn = make_bid("bid-60", "third", 60.0, status=BidStatus.WITHDRAWN)

    plan = plan_acceptance(OWNER, make_job(), winner, [loser, winner, withdrawn])

    assert not plan.already_applied
    assert plan.provider_id == PROVIDER.id
    assert plan.amount == 40.0
    assert plan.rejected_bid_ids == ["bid-50"]
    assert plan.job.expected == {"status": JobStatus.BIDDING, "accepted_bid_id": None}
    assert plan.job.changes["final_amount"] == 40.0


def test_acceptance_is_idempotent_for_the_winning_bid():
    bid = make_bid(status=BidStatus.ACCEPTED)
    job = make_job(status=JobStatus.ACCEPTED, provider_id=PROVIDER.id, accepted_bid_id=bid.id)
    plan = plan_acceptance(OWNER, job, bid, [bid])
    assert plan.already_applied


def test_acceptance_of_another_bid_conflicts():
    job = make_job(status=JobStatus.ACCEPTED, provider_id=PROVIDER.id, accepted_bid_id="bid-1")
    other = make_bid("bid-2", OTHER_PROVIDER.id, status=BidStatus.REJECTED)
    with pytest.raises(ConflictError) as exc:
        plan_acceptance(OWNER, job, other, [other])
    assert exc.value.code == "BID_ALREADY_ACCEPTED"


def test_acceptance_of_foreign_bid():
    bid = make_bid()
    bid.job_id = "job-2"
    with pytest.raises(BidNotFoundError):
        plan_acceptance(OWNER, make_job(), bid, [])


def test_only_owner_accepts():
    with pytest.raises(PermissionDeniedError):
        plan_acceptance(PROVIDER, make_job(), make_bid(), [])


def test_sort_bids_oldest_first():
    now = datetime.now(timezone.utc)
    late = make_bid("late", created_at=now)
    early = make_bid("early", created_at=now - timedelta(minutes=5))
    assert [b.id for b in sort_bids([late, early])] == ["early", "late"]
