"""Administration endpoints: escalation thresholds and routing topology."""
from flask import Blueprint, g, jsonify, request

from models import Squad, Zone
from utils.authorization import authorize
from utils.decorators import actor_required, current_actor
from utils.errors import ValidationFailed
from utils.escalation import current_settings, update_settings
from utils.zones import load_topology

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

SETTINGS_FIELDS = ("yellow_threshold_days", "red_threshold_days", "notify_email", "notify_sms", "auto_escalate_to")


def _optional_bool(payload: dict, key: str):
    if key not in payload or payload[key] is None:
        return None
    if not isinstance(payload[key], bool):
        raise ValidationFailed(f"'{key}' must be true or false.", details={"field": key})
    return payload[key]


@admin_bp.route("/escalation-settings", methods=["GET"])
@actor_required
def get_escalation_settings():
    authorize("view_escalation_settings", current_actor())
    return jsonify({"success": True, "settings": current_settings().public_payload()})


@admin_bp.route("/escalation-settings", methods=["PUT"])
@actor_required
def put_escalation_settings():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationFailed("Expected a JSON object.")
    unknown = sorted(set(payload) - set(SETTINGS_FIELDS))
    if unknown:
        raise ValidationFailed("Unknown settings fields.", details={"fields": unknown})
    changes = {
        "yellow_threshold_days": payload.get("yellow_threshold_days"),
        "red_threshold_days": payload.get("red_threshold_days"),
        "notify_email": _optional_bool(payload, "notify_email"),
        "notify_sms": _optional_bool(payload, "notify_sms"),
    }
    if "auto_escalate_to" in payload:
        changes["auto_escalate_to"] = payload["auto_escalate_to"]
    settings = update_settings(current_actor(), **changes)
    return jsonify({"success": True, "settings": settings.public_payload()})


@admin_bp.route("/zones", methods=["GET"])
@actor_required
def list_zones():
    authorize("view_topology", current_actor())
    query = Zone.query
    if g.sanitized_args.get("include_inactive") != "true":
        query = query.filter(Zone.is_active.is_(True))
    zones = query.order_by(Zone.priority.asc(), Zone.id.asc()).all()
    return jsonify({"success": True, "zones": [zone.public_payload() for zone in zones]})


@admin_bp.route("/squads", methods=["GET"])
@actor_required
def list_squads():
    authorize("view_topology", current_actor())
    squads = Squad.query.order_by(Squad.name.asc()).all()
    return jsonify({"success": True, "squads": [squad.public_payload() for squad in squads]})


@admin_bp.route("/topology", methods=["PUT"])
@actor_required
def put_topology():
    authorize("manage_topology", current_actor())
    payload = request.get_json(silent=True)
    replace = g.sanitized_args.get("replace", "true") != "false"
    summary = load_topology(payload, replace=replace)
    return jsonify({"success": True, "loaded": summary})
