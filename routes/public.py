"""Unauthenticated transparency endpoints: public complaint feed, anonymous votes, headline stats."""
from flask import Blueprint, current_app, g, jsonify

from models import COMPLAINT_CATEGORIES, COMPLAINT_STATUSES, Complaint
from utils.errors import RateLimited
from utils.escalation import refresh_levels
from utils.lifecycle import anonymous_vote
from utils.security import client_address, track_attempt
from utils.statistics import public_stats

public_bp = Blueprint("public", __name__, url_prefix="/api/public")


@public_bp.route("/complaints", methods=["GET"])
def public_complaints():
    args = g.sanitized_args
    limit = int(current_app.config.get("PUBLIC_MAX_COMPLAINTS", 50))
    query = Complaint.query
    category = (args.get("category") or "").lower()
    status = (args.get("status") or "").lower()
    if category in COMPLAINT_CATEGORIES:
        query = query.filter(Complaint.category == category)
    if status in COMPLAINT_STATUSES:
        query = query.filter(Complaint.status == status)
    complaints = query.order_by(Complaint.created_at.desc()).limit(limit).all()
    complaints = refresh_levels(complaints, label="public feed")
    return jsonify({"success": True, "complaints": [complaint.public_payload() for complaint in complaints]})


@public_bp.route("/complaints/<string:complaint_id>/votes", methods=["POST"])
def public_vote(complaint_id):
    limit = int(current_app.config.get("PUBLIC_VOTE_LIMIT", 30))
    address = client_address()
    if not track_attempt(f"public-vote:{address}", limit=limit):
        current_app.logger.warning("Public vote rate limit reached", extra={"client": address, "complaint_id": complaint_id})
        raise RateLimited("Vote limit reached. Try again later.")
    result = anonymous_vote(complaint_id)
    return jsonify({"success": True, "message": "Upvote added", "vote_count": result.count})


@public_bp.route("/stats", methods=["GET"])
def stats():
    return jsonify({"success": True, "stats": public_stats()})
