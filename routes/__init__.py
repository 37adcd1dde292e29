"""Blueprint registration, health check, and the signed-in user's notification inbox."""
from flask import Blueprint, g, jsonify
from sqlalchemy import text

from extensions import db
from utils import notifications
from utils.decorators import actor_required, current_actor
from .admin import admin_bp
from .complaints import complaints_bp
from .dashboard import dashboard_bp
from .public import public_bp

main_bp = Blueprint("main", __name__)

API_BLUEPRINTS = (main_bp, complaints_bp, public_bp, dashboard_bp, admin_bp)


@main_bp.route("/health", methods=["GET"])
def health():
    db.session.execute(text("SELECT 1"))
    return jsonify({"status": "ok"})


@main_bp.route("/api/notifications", methods=["GET"])
@actor_required
def list_notifications():
    actor = current_actor()
    unread_only = g.sanitized_args.get("unread") == "true"
    records = notifications.list_for_user(actor.id, unread_only=unread_only)
    return jsonify(
        {
            "success": True,
            "notifications": [record.public_payload() for record in records],
            "unread_count": notifications.unread_count(actor.id),
        }
    )


@main_bp.route("/api/notifications/<string:notification_id>/read", methods=["PUT"])
@actor_required
def mark_notification_read(notification_id):
    record = notifications.mark_read(current_actor().id, notification_id)
    return jsonify({"success": True, "notification": record.public_payload()})


@main_bp.route("/api/notifications/read-all", methods=["PUT"])
@actor_required
def mark_all_notifications_read():
    updated = notifications.mark_all_read(current_actor().id)
    return jsonify({"success": True, "updated": updated})
