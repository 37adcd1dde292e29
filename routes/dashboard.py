"""Role-scoped dashboard aggregates."""
from flask import Blueprint, g, jsonify

from utils import statistics
from utils.decorators import actor_required, current_actor

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.route("/stats", methods=["GET"])
@actor_required
def stats():
    return jsonify({"success": True, "stats": statistics.dashboard_stats(current_actor())})


@dashboard_bp.route("/trends", methods=["GET"])
@actor_required
def trends():
    days = g.sanitized_args.get("days", "")
    window = int(days) if days.isdigit() else None
    return jsonify({"success": True, "trends": statistics.trends(current_actor(), days=window)})


@dashboard_bp.route("/workload", methods=["GET"])
@actor_required
def workload():
    return jsonify({"success": True, "workload": statistics.workload(current_actor())})


@dashboard_bp.route("/squad-progress", methods=["GET"])
@actor_required
def squad_progress():
    return jsonify({"success": True, **statistics.squad_progress(current_actor())})


@dashboard_bp.route("/analytics", methods=["GET"])
@actor_required
def analytics():
    return jsonify({"success": True, "analytics": statistics.performance_analytics(current_actor())})
