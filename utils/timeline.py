"""Append-only complaint timeline."""
from datetime import datetime
from typing import Iterable, List, Optional

from extensions import db
from models import Attachment, Complaint, TimelineEntry
from utils.clock import utcnow
from utils.concurrency import run_serialized
from utils.errors import NotFound, ValidationFailed


def load_complaint(complaint_id: str) -> Complaint:
    complaint = db.session.get(Complaint, str(complaint_id)) if complaint_id else None
    if not complaint:
        raise NotFound("Complaint not found.", details={"complaint_id": complaint_id})
    return complaint


def build_attachments(references: Optional[Iterable], kind: str) -> List[Attachment]:
    """Turn opaque file references (strings or dicts) into attachment rows."""
    rows: List[Attachment] = []
    for ref in references or []:
        if isinstance(ref, str):
            ref = {"filename": ref}
        if not isinstance(ref, dict) or not ref.get("filename"):
            raise ValidationFailed("Each attachment needs a filename.")
        rows.append(
            Attachment(
                kind=kind,
                filename=str(ref["filename"])[:255],
                original_name=ref.get("original_name") or ref.get("originalName"),
                content_type=ref.get("content_type") or ref.get("mimetype"),
                storage_path=ref.get("path") or ref.get("storage_path"),
            )
        )
    return rows


def append_entry(
    complaint: Complaint,
    actor_id: Optional[str],
    event: str,
    action: str,
    comment: Optional[str] = None,
    previous_status: Optional[str] = None,
    new_status: Optional[str] = None,
    progress: Optional[int] = None,
    evidence: Optional[Iterable] = None,
    evidence_kind: str = "proof",
    now: Optional[datetime] = None,
) -> TimelineEntry:
    """Append one entry inside the caller's transaction.

    The entry takes the next sequence number and a timestamp no earlier than
    the previous entry's, and touches the complaint row so concurrent appends
    serialize on its version.
    """
    now = now or utcnow()
    stamp = max(now, complaint.last_activity_at) if complaint.last_activity_at else now
    complaint.timeline_length = (complaint.timeline_length or 0) + 1
    complaint.last_activity_at = stamp
    complaint.updated_at = stamp

    entry = TimelineEntry(
        complaint_id=complaint.id,
        sequence=complaint.timeline_length,
        event=event,
        action=action,
        actor_id=actor_id,
        comment=comment,
        previous_status=previous_status,
        new_status=new_status,
        progress=progress,
        created_at=stamp,
    )
    db.session.add(entry)
    for attachment in build_attachments(evidence, evidence_kind):
        attachment.complaint_id = complaint.id
        attachment.uploaded_at = stamp
        attachment.timeline_entry = entry
        db.session.add(attachment)
    return entry


def append(
    complaint_id: str,
    actor_id: Optional[str],
    action: str,
    comment: Optional[str] = None,
    evidence: Optional[Iterable] = None,
) -> int:
    """Record a free-form entry against a complaint and return its id."""

    def _append(outbox):
        complaint = load_complaint(complaint_id)
        entry = append_entry(complaint, actor_id, "comment", action, comment=comment, evidence=evidence)
        db.session.flush()
        return entry.id

    return run_serialized(_append, label="timeline append")


def list_entries(complaint_id: str) -> List[TimelineEntry]:
    load_complaint(complaint_id)
    return (
        TimelineEntry.query.filter_by(complaint_id=str(complaint_id))
        .order_by(TimelineEntry.sequence.asc())
        .all()
    )
