from datetime import timedelta

import pytest

from extensions import db
from models import TimelineEntry, TimelineImmutableError
from tests.conftest import as_actor
from utils import lifecycle, timeline
from utils.errors import NotFound, ValidationFailed


@pytest.fixture
def complaint(citizen):
    return lifecycle.submit_complaint(
        as_actor(citizen),
        title="Streetlight not working",
        description="The light on the corner pole has been out for a week.",
    )


def test_submission_starts_timeline(complaint):
    entries = timeline.list_entries(complaint.id)
    assert len(entries) == 1
    first = entries[0]
    assert first.sequence == 1
    assert first.event == "submitted"
    assert first.action == "Complaint submitted"
    assert first.comment == "Initial complaint submission"
    assert first.new_status == "pending"
    assert first.progress == 0


def test_append_returns_id_and_extends_sequence(complaint, citizen):
    entry_id = timeline.append(complaint.id, citizen.id, "Citizen note", comment="Still dark tonight")
    entries = timeline.list_entries(complaint.id)
    assert [entry.sequence for entry in entries] == [1, 2]
    assert entries[-1].id == entry_id
    assert entries[-1].comment == "Still dark tonight"
    assert db.session.get(type(complaint), complaint.id).timeline_length == 2


def test_timestamps_never_go_backwards(complaint, citizen, clock):
    clock.advance(hours=2)
    timeline.append(complaint.id, citizen.id, "Later note")
    clock.advance(days=-3)
    timeline.append(complaint.id, citizen.id, "Clock skewed note")
    stamps = [entry.created_at for entry in timeline.list_entries(complaint.id)]
    assert stamps == sorted(stamps)
    assert stamps[2] == stamps[1]


def test_append_with_evidence_links_attachments(complaint, citizen):
    timeline.append(complaint.id, citizen.id, "Photo added", evidence=["pole.jpg", {"filename": "night.png"}])
    entry = timeline.list_entries(complaint.id)[-1]
    assert sorted(item.filename for item in entry.evidence) == ["night.png", "pole.jpg"]
    assert all(item.kind == "proof" for item in entry.evidence)


def test_append_rejects_evidence_without_filename(complaint, citizen):
    with pytest.raises(ValidationFailed):
        timeline.append(complaint.id, citizen.id, "Broken", evidence=[{"path": "/tmp/x"}])
    assert len(timeline.list_entries(complaint.id)) == 1


def test_unknown_complaint_raises_not_found(app, citizen):
    with pytest.raises(NotFound):
        timeline.list_entries("missing")
    with pytest.raises(NotFound):
        timeline.append("missing", citizen.id, "Note")


def test_entries_cannot_be_edited(complaint):
    entry = TimelineEntry.query.filter_by(complaint_id=complaint.id).one()
    entry.comment = "rewritten"
    with pytest.raises(TimelineImmutableError):
        db.session.commit()
    db.session.rollback()
    assert TimelineEntry.query.filter_by(complaint_id=complaint.id).one().comment == "Initial complaint submission"


def test_entries_cannot_be_deleted(complaint):
    entry = TimelineEntry.query.filter_by(complaint_id=complaint.id).one()
    db.session.delete(entry)
    with pytest.raises(TimelineImmutableError):
        db.session.commit()
    db.session.rollback()
    assert TimelineEntry.query.filter_by(complaint_id=complaint.id).count() == 1


def test_build_attachments_accepts_metadata():
    rows = timeline.build_attachments(
        [{"filename": "a.pdf", "originalName": "Report.pdf", "mimetype": "application/pdf"}],
        "attachment",
    )
    assert rows[0].original_name == "Report.pdf"
    assert rows[0].content_type == "application/pdf"
    assert timeline.build_attachments(None, "attachment") == []


def test_created_at_is_clock_time(complaint, clock):
    entry = timeline.list_entries(complaint.id)[0]
    assert entry.created_at == clock.now()
    assert complaint.created_at - entry.created_at == timedelta(0)
