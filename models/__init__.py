"""Core data models for complaints, their timeline, routing topology, and notifications."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from sqlalchemy import event

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def _iso(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


COMPLAINT_CATEGORIES: tuple[str, ...] = (
	"sanitation",
	"roads",
	"water",
	"electricity",
	"parks",
	"traffic",
	"other",
)

COMPLAINT_SEVERITY: tuple[str, ...] = (
	"low",
	"medium",
	"high",
	"critical",
)

COMPLAINT_STATUSES: tuple[str, ...] = (
	"pending",
	"in_progress",
	"resolved",
	"closed",
)

OPEN_STATUSES: tuple[str, ...] = (
	"pending",
	"in_progress",
)

ESCALATION_LEVELS: tuple[str, ...] = (
	"green",
	"yellow",
	"red",
)

USER_ROLES: tuple[str, ...] = (
	"citizen",
	"official",
	"supervisor",
	"admin",
)

ELEVATED_ROLES: tuple[str, ...] = (
	"supervisor",
	"admin",
)

NOTIFICATION_KINDS: tuple[str, ...] = (
	"status_update",
	"escalation",
	"comment",
	"system",
	"reminder",
	"resolution",
)

ATTACHMENT_KINDS: tuple[str, ...] = (
	"attachment",
	"resolution",
	"proof",
)

TIMELINE_EVENTS: tuple[str, ...] = (
	"submitted",
	"status_changed",
	"progress_updated",
	"assigned",
	"comment",
	"zone_assigned",
	"reopen_requested",
)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
	quoted = ",".join(f"'{value}'" for value in values)
	return f"{column} IN ({quoted})"


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	role = db.Column(db.String(20), nullable=False, default="citizen", index=True)
	phone = db.Column(db.String(32), nullable=True)
	department = db.Column(db.String(120), nullable=True)
	squad_id = db.Column(db.Integer, db.ForeignKey("squads.id"), nullable=True, index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("role", USER_ROLES), name="ck_user_role_valid"),
	)

	squad = db.relationship("Squad", back_populates="members", foreign_keys=[squad_id])
	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")
	notifications = db.relationship("Notification", back_populates="user", lazy="dynamic")

	@property
	def is_elevated(self) -> bool:
		return self.role in ELEVATED_ROLES

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def summary(self) -> dict:
		return {"id": self.id, "name": self.full_name, "email": self.email, "role": self.role}


class Squad(db.Model):
	__tablename__ = "squads"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(150), nullable=False)
	code = db.Column(db.String(40), unique=True, nullable=False, index=True)
	description = db.Column(db.String(500), nullable=True)
	# Plain reference rather than a foreign key: users already point at squads.
	supervisor_id = db.Column(db.String(36), nullable=True, index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	members = db.relationship("User", back_populates="squad", foreign_keys="User.squad_id")
	zones = db.relationship("Zone", back_populates="squad", order_by="Zone.priority")

	def public_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"code": self.code,
			"description": self.description,
			"supervisor_id": self.supervisor_id,
			"is_active": self.is_active,
			"member_ids": [member.id for member in self.members],
			"zones": [zone.public_payload() for zone in self.zones],
		}


class Zone(db.Model):
	__tablename__ = "zones"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(150), nullable=False)
	city = db.Column(db.String(120), nullable=True)
	state = db.Column(db.String(120), nullable=True)
	north = db.Column(db.Float, nullable=False)
	south = db.Column(db.Float, nullable=False)
	east = db.Column(db.Float, nullable=False)
	west = db.Column(db.Float, nullable=False)
	priority = db.Column(db.Integer, nullable=False, default=100, index=True)
	squad_id = db.Column(db.Integer, db.ForeignKey("squads.id"), nullable=False, index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint("south <= north", name="ck_zone_latitude_order"),
		db.CheckConstraint("west <= east", name="ck_zone_longitude_order"),
	)

	squad = db.relationship("Squad", back_populates="zones")

	def contains(self, lat: float, lng: float) -> bool:
		return self.south <= lat <= self.north and self.west <= lng <= self.east

	def public_payload(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"city": self.city,
			"state": self.state,
			"priority": self.priority,
			"squad_id": self.squad_id,
			"bounds": {"north": self.north, "south": self.south, "east": self.east, "west": self.west},
			"is_active": self.is_active,
		}


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(20), nullable=False, index=True)
	severity = db.Column(db.String(20), nullable=False, default="medium", index=True)
	status = db.Column(db.String(20), nullable=False, default="pending", index=True)
	progress = db.Column(db.Integer, nullable=False, default=0)
	citizen_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	assigned_to = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	assigned_at = db.Column(db.DateTime, nullable=True)
	squad_id = db.Column(db.Integer, db.ForeignKey("squads.id"), nullable=True, index=True)
	zone_id = db.Column(db.Integer, db.ForeignKey("zones.id"), nullable=True, index=True)
	address = db.Column(db.String(500), nullable=True)
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	ai_suggestion = db.Column(db.JSON, nullable=True)
	vote_count = db.Column(db.Integer, nullable=False, default=0)
	timeline_length = db.Column(db.Integer, nullable=False, default=0)
	last_activity_at = db.Column(db.DateTime, nullable=True)
	escalation_level = db.Column(db.String(10), nullable=False, default="green", index=True)
	escalation_checked_at = db.Column(db.DateTime, nullable=True)
	escalated_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	version_id = db.Column(db.Integer, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("category", COMPLAINT_CATEGORIES), name="ck_complaint_category_valid"),
		db.CheckConstraint(_in_clause("severity", COMPLAINT_SEVERITY), name="ck_complaint_severity_valid"),
		db.CheckConstraint(_in_clause("status", COMPLAINT_STATUSES), name="ck_complaint_status_valid"),
		db.CheckConstraint(_in_clause("escalation_level", ESCALATION_LEVELS), name="ck_complaint_escalation_valid"),
		db.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_complaint_progress_range"),
		db.CheckConstraint("status != 'pending' OR progress = 0", name="ck_complaint_pending_progress"),
		db.Index("ix_complaints_status_created", "status", "created_at"),
	)

	# Concurrent writers to one complaint collide on this counter instead of overwriting each other.
	__mapper_args__ = {"version_id_col": version_id}

	citizen = db.relationship("User", foreign_keys=[citizen_id])
	assignee = db.relationship("User", foreign_keys=[assigned_to])
	squad = db.relationship("Squad")
	zone = db.relationship("Zone")
	timeline = db.relationship(
		"TimelineEntry",
		back_populates="complaint",
		order_by="TimelineEntry.sequence",
	)
	votes = db.relationship("ComplaintVote", back_populates="complaint", lazy="dynamic")
	attachments = db.relationship(
		"Attachment",
		back_populates="complaint",
		order_by="Attachment.uploaded_at",
	)

	@property
	def is_open(self) -> bool:
		return self.status in OPEN_STATUSES

	def location_payload(self) -> dict:
		return {"address": self.address, "latitude": self.latitude, "longitude": self.longitude}

	def escalation_payload(self) -> dict:
		return {
			"level": self.escalation_level,
			"checked_at": _iso(self.escalation_checked_at),
			"escalated_at": _iso(self.escalated_at),
		}

	def to_payload(self, include_timeline: bool = False) -> dict:
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"severity": self.severity,
			"status": self.status,
			"progress": self.progress,
			"citizen": self.citizen.summary() if self.citizen else None,
			"assignee": self.assignee.summary() if self.assignee else None,
			"assigned_at": _iso(self.assigned_at),
			"squad": {"id": self.squad.id, "name": self.squad.name, "code": self.squad.code} if self.squad else None,
			"zone_id": self.zone_id,
			"location": self.location_payload(),
			"ai_suggestion": self.ai_suggestion,
			"vote_count": self.vote_count,
			"escalation": self.escalation_payload(),
			"attachments": [item.public_payload() for item in self.attachments if item.timeline_entry_id is None],
			"created_at": _iso(self.created_at),
			"updated_at": _iso(self.updated_at),
		}
		if include_timeline:
			payload["timeline"] = [entry.public_payload() for entry in self.timeline]
		return payload

	def public_payload(self) -> dict:
		"""Citizen-safe view for the unauthenticated transparency endpoints."""
		return {
			"id": self.id,
			"title": self.title,
			"category": self.category,
			"severity": self.severity,
			"status": self.status,
			"progress": self.progress,
			"address": self.address,
			"vote_count": self.vote_count,
			"escalation_level": self.escalation_level,
			"created_at": _iso(self.created_at),
		}


class TimelineEntry(db.Model):
	__tablename__ = "complaint_timeline"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	sequence = db.Column(db.Integer, nullable=False)
	event = db.Column(db.String(30), nullable=False, index=True)
	action = db.Column(db.String(255), nullable=False)
	actor_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	comment = db.Column(db.Text, nullable=True)
	previous_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=True, index=True)
	progress = db.Column(db.Integer, nullable=True)
	created_at = db.Column(db.DateTime, nullable=False, index=True)

	__table_args__ = (
		db.UniqueConstraint("complaint_id", "sequence", name="uq_timeline_complaint_sequence"),
		db.CheckConstraint(_in_clause("event", TIMELINE_EVENTS), name="ck_timeline_event_valid"),
	)

	complaint = db.relationship("Complaint", back_populates="timeline")
	actor = db.relationship("User")
	evidence = db.relationship("Attachment", back_populates="timeline_entry", order_by="Attachment.uploaded_at")

	def public_payload(self) -> dict:
		return {
			"id": self.id,
			"sequence": self.sequence,
			"event": self.event,
			"action": self.action,
			"actor": self.actor.summary() if self.actor else None,
			"comment": self.comment,
			"previous_status": self.previous_status,
			"new_status": self.new_status,
			"progress": self.progress,
			"evidence": [item.public_payload() for item in self.evidence],
			"created_at": _iso(self.created_at),
		}


class TimelineImmutableError(RuntimeError):
	"""Raised when code tries to rewrite or remove a recorded timeline entry."""


@event.listens_for(TimelineEntry, "before_update")
def _reject_timeline_update(mapper, connection, target):
	raise TimelineImmutableError(f"Timeline entry {target.id} is append-only")


@event.listens_for(TimelineEntry, "before_delete")
def _reject_timeline_delete(mapper, connection, target):
	raise TimelineImmutableError(f"Timeline entry {target.id} cannot be deleted")


class ComplaintVote(db.Model):
	__tablename__ = "complaint_votes"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	# Either a user id or a one-shot "anon:<uuid>" identity for public votes.
	voter_id = db.Column(db.String(64), nullable=False, index=True)
	is_anonymous = db.Column(db.Boolean, nullable=False, default=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.UniqueConstraint("complaint_id", "voter_id", name="uq_vote_complaint_voter"),
	)

	complaint = db.relationship("Complaint", back_populates="votes")


class Attachment(db.Model):
	__tablename__ = "complaint_attachments"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=False, index=True)
	timeline_entry_id = db.Column(db.Integer, db.ForeignKey("complaint_timeline.id"), nullable=True, index=True)
	kind = db.Column(db.String(20), nullable=False, default="attachment")
	filename = db.Column(db.String(255), nullable=False)
	original_name = db.Column(db.String(255), nullable=True)
	content_type = db.Column(db.String(120), nullable=True)
	storage_path = db.Column(db.String(500), nullable=True)
	uploaded_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(_in_clause("kind", ATTACHMENT_KINDS), name="ck_attachment_kind_valid"),
	)

	complaint = db.relationship("Complaint", back_populates="attachments")
	timeline_entry = db.relationship("TimelineEntry", back_populates="evidence")

	def public_payload(self) -> dict:
		return {
			"id": self.id,
			"kind": self.kind,
			"filename": self.filename,
			"original_name": self.original_name,
			"content_type": self.content_type,
			"path": self.storage_path,
		}


class EscalationSettings(db.Model):
	__tablename__ = "escalation_settings"

	id = db.Column(db.Integer, primary_key=True)
	yellow_threshold_days = db.Column(db.Integer, nullable=False, default=45)
	red_threshold_days = db.Column(db.Integer, nullable=False, default=60)
	notify_email = db.Column(db.Boolean, nullable=False, default=True)
	notify_sms = db.Column(db.Boolean, nullable=False, default=False)
	auto_escalate_to = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	updated_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint("yellow_threshold_days >= 0", name="ck_escalation_yellow_positive"),
		db.CheckConstraint("red_threshold_days >= yellow_threshold_days", name="ck_escalation_threshold_order"),
	)

	def public_payload(self) -> dict:
		return {
			"yellow_threshold_days": self.yellow_threshold_days,
			"red_threshold_days": self.red_threshold_days,
			"notify_email": self.notify_email,
			"notify_sms": self.notify_sms,
			"auto_escalate_to": self.auto_escalate_to,
			"updated_by": self.updated_by,
			"updated_at": _iso(self.updated_at),
		}


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	title = db.Column(db.String(255), nullable=False)
	message = db.Column(db.Text, nullable=False)
	kind = db.Column(db.String(20), nullable=False, default="system", index=True)
	related_complaint_id = db.Column(db.String(36), db.ForeignKey("complaints.id"), nullable=True, index=True)
	is_read = db.Column(db.Boolean, nullable=False, default=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	read_at = db.Column(db.DateTime, nullable=True)

	__table_args__ = (
		db.CheckConstraint(_in_clause("kind", NOTIFICATION_KINDS), name="ck_notification_kind_valid"),
	)

	user = db.relationship("User", back_populates="notifications")

	def public_payload(self) -> dict:
		return {
			"id": self.id,
			"title": self.title,
			"message": self.message,
			"kind": self.kind,
			"related_complaint_id": self.related_complaint_id,
			"is_read": self.is_read,
			"created_at": _iso(self.created_at),
			"read_at": _iso(self.read_at),
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context_entity = db.Column(db.String(120), nullable=True)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")
