"""Complaint state machine: every mutation authorizes, validates, appends one timeline entry.

Status edges::

    pending -> in_progress -> resolved
    pending | in_progress | resolved -> closed

``closed`` is terminal for status and progress. Comments stay allowed on
every status, and citizens ask for reopening through a timeline entry rather
than a status change.
"""
from typing import Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import or_

from extensions import db
from models import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_SEVERITY,
    COMPLAINT_STATUSES,
    Complaint,
    Squad,
    User,
    Zone,
    generate_uuid,
)
from utils.authorization import Actor, authorize
from utils.classifier import suggest_category
from utils.clock import utcnow
from utils.concurrency import run_serialized
from utils.errors import InvalidProgress, InvalidTransition, NotFound, ValidationFailed
from utils.escalation import refresh_escalation, refresh_levels
from utils.timeline import append_entry, build_attachments, load_complaint
from utils.votes import VoteResult, anonymous_identity, toggle
from utils.zones import resolve, valid_point

ALLOWED_TRANSITIONS = {
    "pending": {"in_progress", "closed"},
    "in_progress": {"resolved", "closed"},
    "resolved": {"closed"},
    "closed": set(),
}

STATUS_LABELS = {
    "pending": "Pending",
    "in_progress": "In Progress",
    "resolved": "Resolved",
    "closed": "Closed",
}

TITLE_MAX = 255
DESCRIPTION_MAX = 5000
COMMENT_MAX = 2000


def _clean_text(value, field: str, max_length: int, required: bool = True) -> Optional[str]:
    text = str(value).strip() if value is not None else ""
    if required and not text:
        raise ValidationFailed(f"{field.capitalize()} is required.", details={"field": field})
    if len(text) > max_length:
        raise ValidationFailed(f"{field.capitalize()} must be at most {max_length} characters.", details={"field": field})
    return text or None


def _resolution_message(complaint: Complaint) -> str:
    return f'Your complaint "{complaint.title}" has been resolved!'


def _status_message(complaint: Complaint) -> str:
    return f'Your complaint "{complaint.title}" is now {STATUS_LABELS[complaint.status]}.'


def _parse_progress(value) -> int:
    if isinstance(value, bool):
        raise InvalidProgress("Progress must be a whole number between 0 and 100.")
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        number = int(value.strip())
    else:
        raise InvalidProgress("Progress must be a whole number between 0 and 100.", details={"progress": value})
    return max(0, min(100, number))


def _finish(complaint: Complaint, outbox) -> Complaint:
    refresh_escalation(complaint, outbox)
    return complaint


def submit_complaint(
    actor: Actor,
    title: str,
    description: str,
    category: Optional[str] = None,
    severity: Optional[str] = None,
    location: Optional[dict] = None,
    attachments: Optional[Iterable] = None,
) -> Complaint:
    authorize("submit", actor)
    title = _clean_text(title, "title", TITLE_MAX)
    description = _clean_text(description, "description", DESCRIPTION_MAX)
    suggestion = suggest_category(title, description)
    category = (category or "").strip().lower() or suggestion["category"]
    if category not in COMPLAINT_CATEGORIES:
        raise ValidationFailed("Unknown complaint category.", details={"category": category, "allowed": list(COMPLAINT_CATEGORIES)})
    severity = (severity or "").strip().lower() or "medium"
    if severity not in COMPLAINT_SEVERITY:
        raise ValidationFailed("Unknown severity level.", details={"severity": severity, "allowed": list(COMPLAINT_SEVERITY)})

    location = location or {}
    latitude = location.get("latitude", location.get("lat"))
    longitude = location.get("longitude", location.get("lng"))
    rows = build_attachments(attachments, "attachment")

    def _submit(outbox):
        now = utcnow()
        match = resolve(latitude, longitude)
        point = valid_point(latitude, longitude)
        complaint = Complaint(
            id=generate_uuid(),
            title=title,
            description=description,
            category=category,
            severity=severity,
            status="pending",
            progress=0,
            citizen_id=actor.id,
            squad_id=match.squad_id,
            zone_id=match.zone_id,
            address=_clean_text(location.get("address"), "address", 500, required=False),
            latitude=point[0],
            longitude=point[1],
            ai_suggestion=suggestion,
            escalation_level="green",
            escalation_checked_at=now,
            created_at=now,
            updated_at=now,
        )
        db.session.add(complaint)
        for row in rows:
            row.complaint_id = complaint.id
            row.uploaded_at = now
            db.session.add(row)
        append_entry(
            complaint,
            actor.id,
            "submitted",
            "Complaint submitted",
            comment="Initial complaint submission",
            new_status="pending",
            progress=0,
            now=now,
        )
        return complaint

    complaint = run_serialized(_submit, label="submit")
    current_app.logger.info(
        "Complaint submitted",
        extra={
            "complaint_id": complaint.id,
            "citizen_id": actor.id,
            "category": complaint.category,
            "zone_id": complaint.zone_id,
        },
    )
    return complaint


def add_comment(actor: Actor, complaint_id: str, comment: str, evidence: Optional[Iterable] = None) -> Complaint:
    text = _clean_text(comment, "comment", COMMENT_MAX, required=not evidence)

    def _comment(outbox):
        complaint = load_complaint(complaint_id)
        authorize("comment", actor, complaint)
        append_entry(complaint, actor.id, "comment", "Comment added", comment=text, evidence=evidence)
        if actor.id == complaint.citizen_id:
            outbox.notify(
                complaint.assigned_to,
                "comment",
                f'The citizen added a comment on "{complaint.title}".',
                related_complaint_id=complaint.id,
            )
        else:
            outbox.notify(
                complaint.citizen_id,
                "comment",
                f'A new comment was added to your complaint "{complaint.title}".',
                related_complaint_id=complaint.id,
            )
        return _finish(complaint, outbox)

    return run_serialized(_comment, label="comment")


def update_status(
    actor: Actor,
    complaint_id: str,
    new_status: Optional[str] = None,
    comment: Optional[str] = None,
    evidence: Optional[Iterable] = None,
) -> Complaint:
    """Move a complaint along one state-machine edge, or record a comment when no status is given."""
    if new_status is None:
        return add_comment(actor, complaint_id, comment, evidence=evidence)

    target = str(new_status).strip().lower()
    note = _clean_text(comment, "comment", COMMENT_MAX, required=False)

    def _update(outbox):
        complaint = load_complaint(complaint_id)
        authorize("update_status", actor, complaint)
        if target not in COMPLAINT_STATUSES:
            raise ValidationFailed("Unknown status.", details={"status": target, "allowed": list(COMPLAINT_STATUSES)})
        previous = complaint.status
        if target not in ALLOWED_TRANSITIONS[previous]:
            raise InvalidTransition(
                f"Cannot move a complaint from {STATUS_LABELS[previous]} to {STATUS_LABELS[target]}.",
                details={"from": previous, "to": target, "allowed": sorted(ALLOWED_TRANSITIONS[previous])},
            )

        complaint.status = target
        if target == "resolved":
            complaint.progress = 100
        append_entry(
            complaint,
            actor.id,
            "status_changed",
            f"Status changed from {STATUS_LABELS[previous]} to {STATUS_LABELS[target]}",
            comment=note,
            previous_status=previous,
            new_status=target,
            progress=complaint.progress,
            evidence=evidence,
            evidence_kind="resolution" if target == "resolved" else "proof",
        )
        if target == "resolved":
            outbox.notify(
                complaint.citizen_id,
                "resolution",
                _resolution_message(complaint),
                related_complaint_id=complaint.id,
                send_email=True,
            )
        else:
            outbox.notify(complaint.citizen_id, "status_update", _status_message(complaint), related_complaint_id=complaint.id)
        return _finish(complaint, outbox)

    complaint = run_serialized(_update, label="update_status")
    current_app.logger.info(
        "Complaint status changed",
        extra={"complaint_id": complaint.id, "actor_id": actor.id, "status": complaint.status},
    )
    return complaint


def update_progress(
    actor: Actor,
    complaint_id: str,
    progress,
    notes: Optional[str] = None,
    evidence: Optional[Iterable] = None,
) -> Complaint:
    """Record work progress; reaching 100 resolves the complaint, leaving 0 starts it."""
    note = _clean_text(notes, "notes", COMMENT_MAX, required=False)

    def _update(outbox):
        complaint = load_complaint(complaint_id)
        authorize("update_progress", actor, complaint)
        value = _parse_progress(progress)
        if complaint.status in ("resolved", "closed"):
            raise InvalidTransition(
                f"Progress cannot change on a {STATUS_LABELS[complaint.status].lower()} complaint.",
                details={"status": complaint.status},
            )
        if value < complaint.progress:
            raise InvalidProgress(
                f"Progress cannot go back from {complaint.progress}% to {value}%.",
                details={"current": complaint.progress, "requested": value},
            )

        previous = complaint.status
        complaint.progress = value
        if value >= 100:
            complaint.status = "resolved"
        elif value > 0 and previous == "pending":
            complaint.status = "in_progress"
        changed = complaint.status != previous

        append_entry(
            complaint,
            actor.id,
            "progress_updated",
            f"Progress updated to {value}%",
            comment=note,
            previous_status=previous if changed else None,
            new_status=complaint.status if changed else None,
            progress=value,
            evidence=evidence,
            evidence_kind="resolution" if complaint.status == "resolved" else "proof",
        )
        if complaint.status == "resolved":
            outbox.notify(
                complaint.citizen_id,
                "resolution",
                _resolution_message(complaint),
                related_complaint_id=complaint.id,
                send_email=True,
            )
        return _finish(complaint, outbox)

    complaint = run_serialized(_update, label="update_progress")
    current_app.logger.info(
        "Complaint progress updated",
        extra={"complaint_id": complaint.id, "actor_id": actor.id, "progress": complaint.progress, "status": complaint.status},
    )
    return complaint


def reassign(actor: Actor, complaint_id: str, assignee_id: str, comment: Optional[str] = None) -> Complaint:
    note = _clean_text(comment, "comment", COMMENT_MAX, required=False)

    def _reassign(outbox):
        complaint = load_complaint(complaint_id)
        authorize("reassign", actor, complaint)
        if complaint.status == "closed":
            raise InvalidTransition("Closed complaints cannot be reassigned.", details={"status": complaint.status})
        assignee = db.session.get(User, str(assignee_id)) if assignee_id else None
        if not assignee:
            raise NotFound("Assignee not found.", details={"assignee_id": assignee_id})
        if assignee.role == "citizen" or not assignee.is_active:
            raise ValidationFailed(
                "Complaints can only be assigned to active officials, supervisors or admins.",
                details={"assignee_id": assignee.id, "role": assignee.role},
            )

        previous_assignee = complaint.assigned_to
        complaint.assigned_to = assignee.id
        complaint.assigned_at = utcnow()
        if complaint.squad_id is None and assignee.squad_id is not None:
            complaint.squad_id = assignee.squad_id
        append_entry(
            complaint,
            actor.id,
            "assigned",
            f"Assigned to {assignee.full_name}",
            comment=note,
            progress=complaint.progress,
        )
        outbox.notify(
            assignee.id,
            "system",
            f'You have been assigned complaint "{complaint.title}".',
            related_complaint_id=complaint.id,
        )
        if previous_assignee and previous_assignee != assignee.id:
            outbox.notify(
                previous_assignee,
                "system",
                f'Complaint "{complaint.title}" has been reassigned to {assignee.full_name}.',
                related_complaint_id=complaint.id,
            )
        return _finish(complaint, outbox)

    complaint = run_serialized(_reassign, label="reassign")
    current_app.logger.info(
        "Complaint reassigned",
        extra={"complaint_id": complaint.id, "actor_id": actor.id, "assignee_id": complaint.assigned_to},
    )
    return complaint


def assign_zone(actor: Actor, complaint_id: str, zone_id) -> Complaint:
    """Route a complaint by hand, typically one that fell outside every zone at submission."""

    def _assign(outbox):
        complaint = load_complaint(complaint_id)
        authorize("assign_zone", actor, complaint)
        if complaint.status == "closed":
            raise InvalidTransition("Closed complaints cannot be rerouted.", details={"status": complaint.status})
        try:
            zone = db.session.get(Zone, int(zone_id))
        except (TypeError, ValueError):
            zone = None
        if not zone or not zone.is_active:
            raise NotFound("Zone not found.", details={"zone_id": zone_id})

        complaint.zone_id = zone.id
        complaint.squad_id = zone.squad_id
        append_entry(
            complaint,
            actor.id,
            "zone_assigned",
            f"Routed to zone {zone.name}",
            progress=complaint.progress,
        )
        return _finish(complaint, outbox)

    return run_serialized(_assign, label="assign_zone")


def request_reopen(actor: Actor, complaint_id: str, reason: str) -> Complaint:
    text = _clean_text(reason, "reason", COMMENT_MAX)

    def _request(outbox):
        complaint = load_complaint(complaint_id)
        authorize("request_reopen", actor, complaint)
        if complaint.status not in ("resolved", "closed"):
            raise InvalidTransition(
                "Only resolved or closed complaints can be reopened.",
                details={"status": complaint.status},
            )
        append_entry(
            complaint,
            actor.id,
            "reopen_requested",
            "Citizen requested reopening",
            comment=text,
            progress=complaint.progress,
        )
        message = f'The citizen asked to reopen complaint "{complaint.title}": {text}'
        outbox.notify(complaint.assigned_to, "system", message, related_complaint_id=complaint.id)
        squad = db.session.get(Squad, complaint.squad_id) if complaint.squad_id else None
        if squad and squad.supervisor_id:
            outbox.notify(squad.supervisor_id, "system", message, related_complaint_id=complaint.id)
        return _finish(complaint, outbox)

    return run_serialized(_request, label="request_reopen")


def vote(actor: Actor, complaint_id: str) -> VoteResult:
    def _vote(outbox):
        complaint = load_complaint(complaint_id)
        authorize("vote", actor, complaint)
        return toggle(complaint, actor.id)

    return run_serialized(_vote, label="vote")


def anonymous_vote(complaint_id: str) -> VoteResult:
    """Count a public vote under a fresh synthetic identity; it is never toggled back."""
    voter_id = anonymous_identity()

    def _vote(outbox):
        complaint = load_complaint(complaint_id)
        return toggle(complaint, voter_id, anonymous=True)

    return run_serialized(_vote, label="anonymous_vote")


def get_complaint(actor: Actor, complaint_id: str) -> Complaint:
    def _read(outbox):
        complaint = load_complaint(complaint_id)
        authorize("view", actor, complaint)
        return _finish(complaint, outbox)

    return run_serialized(_read, label="get_complaint")


def scoped_query(actor: Actor):
    """Complaints visible to ``actor``: own for citizens, assigned or squad for officials, all for elevated roles."""
    query = Complaint.query
    if actor.role == "citizen":
        return query.filter(Complaint.citizen_id == actor.id)
    if actor.role == "official":
        if actor.squad_id is not None:
            return query.filter(or_(Complaint.assigned_to == actor.id, Complaint.squad_id == actor.squad_id))
        return query.filter(Complaint.assigned_to == actor.id)
    return query


def list_complaints(
    actor: Actor,
    filters: Optional[dict] = None,
    page: int = 1,
    per_page: Optional[int] = None,
) -> Tuple[List[Complaint], int]:
    filters = filters or {}
    per_page = per_page or int(current_app.config.get("COMPLAINTS_PER_PAGE", 10))
    page = max(1, int(page or 1))
    query = scoped_query(actor)
    if filters.get("status"):
        query = query.filter(Complaint.status == filters["status"])
    if filters.get("category"):
        query = query.filter(Complaint.category == filters["category"])
    if filters.get("severity"):
        query = query.filter(Complaint.severity == filters["severity"])
    if filters.get("assigned_to") and actor.is_elevated:
        query = query.filter(Complaint.assigned_to == filters["assigned_to"])
    if filters.get("squad_id") and actor.is_elevated:
        query = query.filter(Complaint.squad_id == filters["squad_id"])

    total = query.count()
    complaints = (
        query.order_by(Complaint.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return refresh_levels(complaints, label="list_complaints"), total
