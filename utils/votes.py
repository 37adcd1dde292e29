"""Vote ledger: one vote per identity per complaint, toggled on repeat."""
import uuid
from collections import namedtuple

from flask import current_app

from extensions import db
from models import Complaint, ComplaintVote
from utils.clock import utcnow

VoteResult = namedtuple("VoteResult", ["added", "count"])


def anonymous_identity() -> str:
    return f"anon:{uuid.uuid4()}"


def has_voted(complaint_id: str, voter_id: str) -> bool:
    return (
        db.session.query(ComplaintVote.id)
        .filter_by(complaint_id=str(complaint_id), voter_id=str(voter_id))
        .first()
        is not None
    )


def toggle(complaint: Complaint, voter_id: str, anonymous: bool = False) -> VoteResult:
    """Add the vote if absent, remove it if present.

    Runs inside the caller's transaction. The cached ``vote_count`` is written
    back to the complaint row, which bumps its version and so serializes
    concurrent toggles on one complaint.
    """
    existing = ComplaintVote.query.filter_by(complaint_id=complaint.id, voter_id=str(voter_id)).first()
    if existing:
        db.session.delete(existing)
        added = False
    else:
        db.session.add(
            ComplaintVote(
                complaint_id=complaint.id,
                voter_id=str(voter_id),
                is_anonymous=anonymous,
                created_at=utcnow(),
            )
        )
        added = True
    db.session.flush()

    count = ComplaintVote.query.filter_by(complaint_id=complaint.id).count()
    complaint.vote_count = count
    current_app.logger.info(
        "Vote toggled",
        extra={"complaint_id": complaint.id, "added": added, "count": count, "anonymous": anonymous},
    )
    return VoteResult(added=added, count=count)
