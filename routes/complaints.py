"""Complaint lifecycle JSON API: intake, status, progress, assignment, votes."""
import math

from flask import Blueprint, current_app, g, jsonify, request
from flask_wtf import FlaskForm
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from models import COMPLAINT_CATEGORIES, COMPLAINT_SEVERITY, COMPLAINT_STATUSES
from utils import lifecycle
from utils.authorization import is_allowed
from utils.classifier import suggest_category
from utils.decorators import actor_required, current_actor
from utils.errors import ValidationFailed
from utils.timeline import list_entries

complaints_bp = Blueprint("complaints", __name__, url_prefix="/api/complaints")

ACTION_OPERATIONS = ("comment", "update_status", "update_progress", "reassign", "assign_zone", "request_reopen", "vote")


class ApiForm(FlaskForm):
    class Meta:
        csrf = False


class SubmitComplaintForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=lifecycle.TITLE_MAX)])
    description = TextAreaField("Description", validators=[DataRequired(), Length(max=lifecycle.DESCRIPTION_MAX)])
    category = StringField("Category", validators=[Optional(), Length(max=20)])
    severity = StringField("Severity", validators=[Optional(), Length(max=20)])


class CommentForm(ApiForm):
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=lifecycle.COMMENT_MAX)])


class StatusForm(ApiForm):
    status = StringField("Status", validators=[Optional(), Length(max=20)])
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=lifecycle.COMMENT_MAX)])


class ProgressForm(ApiForm):
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=lifecycle.COMMENT_MAX)])


class AssigneeForm(ApiForm):
    assignee_id = StringField("Assignee", validators=[DataRequired(), Length(max=36)])
    comment = TextAreaField("Comment", validators=[Optional(), Length(max=lifecycle.COMMENT_MAX)])


class ReopenForm(ApiForm):
    reason = TextAreaField("Reason", validators=[DataRequired(), Length(max=lifecycle.COMMENT_MAX)])


class SuggestCategoryForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=lifecycle.TITLE_MAX)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=lifecycle.DESCRIPTION_MAX)])


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _validated(form_class):
    form = form_class()
    if not form.validate():
        raise ValidationFailed("Please correct the highlighted fields.", details={"fields": form.errors})
    return form


def _list_field(payload: dict, key: str):
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationFailed(f"'{key}' must be a list.", details={"field": key})
    return value


def _detail(complaint, message: str | None = None, status: int = 200):
    actor = current_actor()
    body = {
        "success": True,
        "complaint": complaint.to_payload(include_timeline=True),
        "allowed_actions": [op for op in ACTION_OPERATIONS if is_allowed(op, actor, complaint)],
    }
    if message:
        body["message"] = message
    return jsonify(body), status


@complaints_bp.route("", methods=["POST"])
@actor_required
def submit_complaint():
    form = _validated(SubmitComplaintForm)
    payload = _json_body()
    location = payload.get("location")
    if location is None:
        location = {key: payload.get(key) for key in ("address", "latitude", "longitude") if key in payload}
    if not isinstance(location, dict):
        raise ValidationFailed("'location' must be an object.", details={"field": "location"})
    complaint = lifecycle.submit_complaint(
        current_actor(),
        title=form.title.data,
        description=form.description.data,
        category=form.category.data,
        severity=form.severity.data,
        location=location,
        attachments=_list_field(payload, "attachments"),
    )
    return _detail(complaint, message="Complaint submitted", status=201)


@complaints_bp.route("", methods=["GET"])
@actor_required
def list_complaints():
    args = g.sanitized_args
    filters = {}
    for key, allowed in (("status", COMPLAINT_STATUSES), ("category", COMPLAINT_CATEGORIES), ("severity", COMPLAINT_SEVERITY)):
        value = (args.get(key) or "").strip().lower()
        if value:
            if value not in allowed:
                raise ValidationFailed(f"Unknown {key} filter.", details={key: value, "allowed": list(allowed)})
            filters[key] = value
    if args.get("assigned_to"):
        filters["assigned_to"] = args["assigned_to"]
    if args.get("squad_id", "").isdigit():
        filters["squad_id"] = int(args["squad_id"])

    page = int(args["page"]) if args.get("page", "").isdigit() else 1
    default_per_page = int(current_app.config.get("COMPLAINTS_PER_PAGE", 10))
    per_page = int(args["per_page"]) if args.get("per_page", "").isdigit() else default_per_page
    per_page = max(1, min(per_page, 100))

    complaints, total = lifecycle.list_complaints(current_actor(), filters, page=page, per_page=per_page)
    return jsonify(
        {
            "success": True,
            "complaints": [complaint.to_payload() for complaint in complaints],
            "total": total,
            "total_pages": math.ceil(total / per_page) if total else 0,
            "current_page": max(1, page),
        }
    )


@complaints_bp.route("/suggest-category", methods=["POST"])
@actor_required
def suggest():
    form = _validated(SuggestCategoryForm)
    return jsonify({"success": True, "suggestion": suggest_category(form.title.data, form.description.data or "")})


@complaints_bp.route("/<string:complaint_id>", methods=["GET"])
@actor_required
def view_complaint(complaint_id):
    complaint = lifecycle.get_complaint(current_actor(), complaint_id)
    return _detail(complaint)


@complaints_bp.route("/<string:complaint_id>/timeline", methods=["GET"])
@actor_required
def complaint_timeline(complaint_id):
    complaint = lifecycle.get_complaint(current_actor(), complaint_id)
    entries = list_entries(complaint.id)
    return jsonify({"success": True, "complaint_id": complaint.id, "timeline": [entry.public_payload() for entry in entries]})


@complaints_bp.route("/<string:complaint_id>/comments", methods=["POST"])
@actor_required
def add_comment(complaint_id):
    form = _validated(CommentForm)
    evidence = _list_field(_json_body(), "evidence")
    complaint = lifecycle.add_comment(current_actor(), complaint_id, form.comment.data, evidence=evidence)
    return _detail(complaint, message="Comment added", status=201)


@complaints_bp.route("/<string:complaint_id>/status", methods=["PUT"])
@actor_required
def update_status(complaint_id):
    form = _validated(StatusForm)
    evidence = _list_field(_json_body(), "evidence")
    complaint = lifecycle.update_status(
        current_actor(),
        complaint_id,
        new_status=form.status.data or None,
        comment=form.comment.data,
        evidence=evidence,
    )
    return _detail(complaint, message="Complaint updated")


@complaints_bp.route("/<string:complaint_id>/progress", methods=["PUT"])
@actor_required
def update_progress(complaint_id):
    form = _validated(ProgressForm)
    payload = _json_body()
    complaint = lifecycle.update_progress(
        current_actor(),
        complaint_id,
        payload.get("progress"),
        notes=form.notes.data,
        evidence=_list_field(payload, "evidence"),
    )
    return _detail(complaint, message=f"Progress updated to {complaint.progress}%")


@complaints_bp.route("/<string:complaint_id>/assignee", methods=["PUT"])
@actor_required
def reassign(complaint_id):
    form = _validated(AssigneeForm)
    complaint = lifecycle.reassign(current_actor(), complaint_id, form.assignee_id.data.strip(), comment=form.comment.data)
    return _detail(complaint, message="Complaint assigned")


@complaints_bp.route("/<string:complaint_id>/zone", methods=["PUT"])
@actor_required
def assign_zone(complaint_id):
    zone_id = _json_body().get("zone_id")
    if zone_id is None:
        raise ValidationFailed("zone_id is required.", details={"field": "zone_id"})
    complaint = lifecycle.assign_zone(current_actor(), complaint_id, zone_id)
    return _detail(complaint, message="Complaint routed")


@complaints_bp.route("/<string:complaint_id>/reopen-request", methods=["POST"])
@actor_required
def request_reopen(complaint_id):
    form = _validated(ReopenForm)
    complaint = lifecycle.request_reopen(current_actor(), complaint_id, form.reason.data)
    return _detail(complaint, message="Reopen request recorded", status=201)


@complaints_bp.route("/<string:complaint_id>/votes", methods=["POST"])
@actor_required
def toggle_vote(complaint_id):
    result = lifecycle.vote(current_actor(), complaint_id)
    return jsonify(
        {
            "success": True,
            "message": "Upvote added" if result.added else "Upvote removed",
            "voted": result.added,
            "vote_count": result.count,
        }
    )
