import pytest
from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from extensions import db
from models import Complaint, ComplaintVote
from tests.conftest import START, as_actor
from utils import lifecycle, votes
from utils.concurrency import run_serialized
from utils.errors import ConcurrentUpdate, NotFound
from utils.notifications import NotificationOutbox


@pytest.fixture
def complaint(citizen):
    return lifecycle.submit_complaint(
        as_actor(citizen),
        title="Overflowing garbage bins",
        description="Garbage bins near the market overflow every weekend.",
    )


def test_vote_toggles(complaint, citizen):
    actor = as_actor(citizen)
    first = lifecycle.vote(actor, complaint.id)
    assert first == votes.VoteResult(added=True, count=1)
    assert votes.has_voted(complaint.id, citizen.id)

    second = lifecycle.vote(actor, complaint.id)
    assert second == votes.VoteResult(added=False, count=0)
    assert not votes.has_voted(complaint.id, citizen.id)
    assert db.session.get(Complaint, complaint.id).vote_count == 0


def test_distinct_voters_each_count(complaint, citizen, make_user):
    neighbour = make_user("citizen")
    official = make_user("official")
    lifecycle.vote(as_actor(citizen), complaint.id)
    lifecycle.vote(as_actor(neighbour), complaint.id)
    result = lifecycle.vote(as_actor(official), complaint.id)
    assert result.count == 3
    assert ComplaintVote.query.filter_by(complaint_id=complaint.id).count() == 3


def test_anonymous_votes_always_add(complaint):
    assert lifecycle.anonymous_vote(complaint.id).count == 1
    result = lifecycle.anonymous_vote(complaint.id)
    assert result == votes.VoteResult(added=True, count=2)
    voters = [vote.voter_id for vote in ComplaintVote.query.filter_by(complaint_id=complaint.id)]
    assert len(set(voters)) == 2
    assert all(voter.startswith("anon:") for voter in voters)


def test_votes_do_not_touch_timeline(complaint, citizen):
    lifecycle.vote(as_actor(citizen), complaint.id)
    assert db.session.get(Complaint, complaint.id).timeline_length == 1


def test_vote_on_missing_complaint(app, citizen):
    with pytest.raises(NotFound):
        lifecycle.vote(as_actor(citizen), "nope")


def test_serialized_write_retries_after_conflict(app):
    calls = []

    def operation(outbox):
        calls.append(len(calls) + 1)
        if len(calls) == 1:
            raise StaleDataError("row version changed")
        return "done"

    assert run_serialized(operation) == "done"
    assert calls == [1, 2]


def test_serialized_write_gives_up(app):
    calls = []

    def operation(outbox):
        calls.append(1)
        raise StaleDataError("row version changed")

    with pytest.raises(ConcurrentUpdate) as excinfo:
        run_serialized(operation, label="vote")
    assert len(calls) == app.config["COMPLAINT_WRITE_ATTEMPTS"]
    assert excinfo.value.details == {"operation": "vote", "attempts": 3}


def test_losing_writer_notifications_are_dropped(app, citizen):
    calls = []

    def operation(outbox):
        calls.append(1)
        outbox.notify(citizen.id, "system", f"attempt {len(calls)}")
        if len(calls) == 1:
            raise StaleDataError("row version changed")
        return True

    run_serialized(operation)
    messages = [n.message for n in citizen.notifications]
    assert messages == ["attempt 2"]


def test_outbox_queues_once_and_empties_on_dispatch(app, citizen):
    outbox = NotificationOutbox()
    outbox.notify(citizen.id, "system", "Vote recorded")
    outbox.notify(citizen.id, "system", "Vote recorded")
    outbox.notify(None, "system", "Nobody to tell")
    assert outbox.dispatch() == 1
    assert outbox.pending == []
    assert outbox.dispatch() == 0
    assert [n.message for n in citizen.notifications] == ["Vote recorded"]


class TestCompetingVoters:
    """Two sessions on a file-backed database so each writer holds its own connection."""

    @pytest.fixture
    def database_url(self, tmp_path):
        return f"sqlite:///{tmp_path / 'votes.db'}"

    def test_version_collision_is_retried(self, complaint, citizen, make_user):
        complaint_id = complaint.id
        neighbour_id = make_user("citizen").id
        flushes = []

        def competing_vote(session, flush_context, instances):
            if not any(isinstance(obj, ComplaintVote) for obj in session.new):
                return
            flushes.append(len(flushes) + 1)
            if len(flushes) > 1:
                return
            # Another voter commits after this writer loaded the complaint row.
            with Session(db.engine) as other:
                other.add(
                    ComplaintVote(complaint_id=complaint_id, voter_id=neighbour_id, is_anonymous=False, created_at=START)
                )
                other.get(Complaint, complaint_id).vote_count = 1
                other.commit()

        session = db.session()
        event.listen(session, "before_flush", competing_vote)
        try:
            result = lifecycle.vote(as_actor(citizen), complaint_id)
        finally:
            event.remove(session, "before_flush", competing_vote)

        assert result == votes.VoteResult(added=True, count=2)
        assert flushes == [1, 2]
        assert ComplaintVote.query.filter_by(complaint_id=complaint_id).count() == 2
        assert db.session.get(Complaint, complaint_id).vote_count == 2
