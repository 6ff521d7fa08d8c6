from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..exceptions import (
    BidNotFoundError,
    ConflictError,
    InvalidJobStateError,
    InvalidRequestError,
    PermissionDeniedError,
)
from ..models import REQUESTER_ROLES, Bid, BidStatus, Job, JobStatus, PaymentStatus, Profile, UserRole


class JobAction(str, enum.Enum):
    ADD_PHOTOS = "add_photos"
    SUBMIT_BID = "submit_bid"
    WITHDRAW_BID = "withdraw_bid"
    ACCEPT_BID = "accept_bid"
    START = "start"
    COMPLETE = "complete"
    CONFIRM = "confirm"
    DISPUTE = "dispute"
    CANCEL = "cancel"


# action -> (statuses the job must be in, status the job moves to)
TRANSITIONS: Dict[JobAction, Tuple[Tuple[JobStatus, ...], Optional[JobStatus]]] = {
    JobAction.ADD_PHOTOS: ((JobStatus.BIDDING,), None),
    JobAction.SUBMIT_BID: ((JobStatus.BIDDING,), None),
    JobAction.WITHDRAW_BID: ((JobStatus.BIDDING,), None),
    JobAction.ACCEPT_BID: ((JobStatus.BIDDING,), JobStatus.ACCEPTED),
    JobAction.START: ((JobStatus.ACCEPTED,), JobStatus.IN_PROGRESS),
    JobAction.COMPLETE: ((JobStatus.IN_PROGRESS,), JobStatus.COMPLETED),
    JobAction.CONFIRM: ((JobStatus.COMPLETED,), None),
    JobAction.DISPUTE: ((JobStatus.COMPLETED,), JobStatus.DISPUTED),
    JobAction.CANCEL: ((JobStatus.PENDING, JobStatus.BIDDING), JobStatus.CANCELLED),
}

OWNER_ACTIONS = frozenset({
    JobAction.ADD_PHOTOS,
    JobAction.ACCEPT_BID,
    JobAction.CONFIRM,
    JobAction.DISPUTE,
    JobAction.CANCEL,
})
ASSIGNED_PROVIDER_ACTIONS = frozenset({JobAction.START, JobAction.COMPLETE})


@dataclass(frozen=True)
class TransitionPlan:
    """
    A single compare-and-set write against one job row.

    `expected` holds the column values the row must still have when the write
    lands; `changes` holds the new values.
    """
    job_id: str
    action: JobAction
    expected: Dict[str, Any]
    changes: Dict[str, Any]


@dataclass(frozen=True)
class AcceptancePlan:
    job: TransitionPlan
    bid_id: str
    provider_id: str
    amount: float
    rejected_bid_ids: List[str] = field(default_factory=list)
    already_applied: bool = False


def _is_relationship_allowed(actor: Profile, job: Job, action: JobAction, bid: Optional[Bid]) -> bool:
    if action in OWNER_ACTIONS:
        return actor.id == job.owner_id
    if action in ASSIGNED_PROVIDER_ACTIONS:
        return job.provider_id is not None and actor.id == job.provider_id
    if action == JobAction.SUBMIT_BID:
        return actor.role == UserRole.SERVICE_PROVIDER and actor.id != job.owner_id
    if action == JobAction.WITHDRAW_BID:
        return bid is not None and bid.provider_id == actor.id
    return False


def _is_state_allowed(job: Job, action: JobAction, bid: Optional[Bid]) -> bool:
    required, _ = TRANSITIONS[action]
    if job.status not in required:
        return False
    if action in (JobAction.CONFIRM, JobAction.DISPUTE) and job.owner_confirmed:
        return False
    if action == JobAction.SUBMIT_BID and job.provider_id is not None:
        return False
    if action in (JobAction.ACCEPT_BID, JobAction.WITHDRAW_BID):
        return bid is not None and bid.job_id == job.id and bid.status == BidStatus.PENDING
    return True


def can_transition(actor: Profile, job: Job, action: JobAction, bid: Optional[Bid] = None) -> bool:
    """True when `actor` may apply `action` to `job` (and `bid`) right now."""
    return _is_relationship_allowed(actor, job, action, bid) and _is_state_allowed(job, action, bid)


def check_transition(actor: Profile, job: Job, action: JobAction, bid: Optional[Bid] = None) -> None:
    """Raising variant of can_transition; relationship is checked before state."""
    if not _is_relationship_allowed(actor, job, action, bid):
        raise PermissionDeniedError(f"Not allowed to {action.value.replace('_', ' ')} on job {job.id}")

    required, _ = TRANSITIONS[action]
    if job.status not in required:
        raise InvalidJobStateError(job.id, job.status.value, " or ".join(s.value for s in required))

    if action in (JobAction.CONFIRM, JobAction.DISPUTE) and job.owner_confirmed:
        raise ConflictError(f"Job {job.id} has already been confirmed", "ALREADY_CONFIRMED")

    if action == JobAction.SUBMIT_BID and job.provider_id is not None:
        raise ConflictError(f"Job {job.id} already has a provider", "PROVIDER_ASSIGNED")

    if action in (JobAction.ACCEPT_BID, JobAction.WITHDRAW_BID):
        if bid is None or bid.job_id != job.id:
            raise BidNotFoundError(bid.id if bid is not None else "")
        if bid.status != BidStatus.PENDING:
            raise ConflictError(f"Bid {bid.id} is already {bid.status.value}", "BID_NOT_PENDING")


def is_requester(actor: Profile) -> bool:
    return actor.role in REQUESTER_ROLES


def sort_bids(bids: Iterable[Bid]) -> List[Bid]:
    """Bids are shown oldest first."""
    return sorted(bids, key=lambda b: (b.created_at is None, b.created_at, b.id))


def plan_acceptance(actor: Profile, job: Job, bid: Bid, rival_bids: Sequence[Bid]) -> AcceptancePlan:
    """
    Decide the outcome of accepting `bid` on `job`.

    A retry with the bid that already won is reported as `already_applied`;
    any other bid after a winner exists is a conflict.
    """
    if not _is_relationship_allowed(actor, job, JobAction.ACCEPT_BID, bid):
        raise PermissionDeniedError(f"Only the job owner can accept bids on job {job.id}")

    if bid.job_id != job.id:
        raise BidNotFoundError(bid.id)

    if job.accepted_bid_id is not None:
        if job.accepted_bid_id == bid.id:
            return AcceptancePlan(
                job=TransitionPlan(job.id, JobAction.ACCEPT_BID, {}, {}),
                bid_id=bid.id,
                provider_id=bid.provider_id,
                amount=bid.amount,
                already_applied=True,
            )
        raise ConflictError(
            f"Another bid has already been accepted for job {job.id}",
            "BID_ALREADY_ACCEPTED",
        )

    check_transition(actor, job, JobAction.ACCEPT_BID, bid)

    rejected = [
        b.id
        for b in sort_bids(rival_bids)
        if b.id != bid.id and b.job_id == job.id and b.status == BidStatus.PENDING
    ]
    return AcceptancePlan(
        job=TransitionPlan(
            job_id=job.id,
            action=JobAction.ACCEPT_BID,
            expected={"status": JobStatus.BIDDING, "accepted_bid_id": None},
            changes={
                "status": JobStatus.ACCEPTED,
                "provider_id": bid.provider_id,
                "accepted_bid_id": bid.id,
                "final_amount": bid.amount,
            },
        ),
        bid_id=bid.id,
        provider_id=bid.provider_id,
        amount=bid.amount,
        rejected_bid_ids=rejected,
    )


def plan_start(actor: Profile, job: Job) -> TransitionPlan:
    check_transition(actor, job, JobAction.START)
    return TransitionPlan(
        job_id=job.id,
        action=JobAction.START,
        expected={"status": JobStatus.ACCEPTED, "provider_id": actor.id},
        changes={"status": JobStatus.IN_PROGRESS},
    )


def plan_completion(actor: Profile, job: Job, photo_urls: Sequence[str], now: datetime) -> TransitionPlan:
    check_transition(actor, job, JobAction.COMPLETE)
    if not photo_urls:
        raise InvalidRequestError("At least one completion photo is required")
    return TransitionPlan(
        job_id=job.id,
        action=JobAction.COMPLETE,
        expected={"status": JobStatus.IN_PROGRESS, "provider_id": actor.id},
        changes={
            "status": JobStatus.COMPLETED,
            "after_photos": list(photo_urls),
            "completed_at": now,
            "payment_status": PaymentStatus.HELD,
        },
    )


def plan_confirmation(actor: Profile, job: Job) -> TransitionPlan:
    check_transition(actor, job, JobAction.CONFIRM)
    return TransitionPlan(
        job_id=job.id,
        action=JobAction.CONFIRM,
        expected={"status": JobStatus.COMPLETED, "owner_confirmed": False},
        changes={"owner_confirmed": True, "payment_status": PaymentStatus.RELEASED},
    )


def plan_dispute(actor: Profile, job: Job) -> TransitionPlan:
    check_transition(actor, job, JobAction.DISPUTE)
    return TransitionPlan(
        job_id=job.id,
        action=JobAction.DISPUTE,
        expected={"status": JobStatus.COMPLETED, "owner_confirmed": False},
        changes={"status": JobStatus.DISPUTED},
    )


def plan_cancel(actor: Profile, job: Job) -> TransitionPlan:
    check_transition(actor, job, JobAction.CANCEL)
    return TransitionPlan(
        job_id=job.id,
        action=JobAction.CANCEL,
        expected={"status": job.status, "accepted_bid_id": None},
        changes={"status": JobStatus.CANCELLED},
    )
