"""Request-level helpers that bridge Flask-Login identities and the authorization table."""
from functools import wraps

from flask import current_app, g, request
from flask_login import current_user, login_required

from extensions import db
from models import AuditLog
from utils.authorization import Actor
from utils.errors import Forbidden


def actor_required(view_func):
    """Require an authenticated user and expose it as ``g.actor``."""

    @wraps(view_func)
    @login_required
    def wrapped(*args, **kwargs):
        g.actor = Actor.from_user(current_user)
        return view_func(*args, **kwargs)

    return wrapped


def current_actor() -> Actor:
    actor = getattr(g, "actor", None)
    if actor is None:
        actor = Actor.from_user(current_user)
        g.actor = actor
    return actor


def record_denial(error: Forbidden) -> None:
    """Log and audit a rejected action; runs after the failed write rolled back."""
    user_id = current_user.id if current_user and current_user.is_authenticated else None
    current_app.logger.warning(
        "Unauthorized complaint action attempt",
        extra={"user_id": user_id, "reason": error.message, **error.details},
    )
    context = error.details.get("complaint_id") or error.details.get("operation")
    audit = AuditLog(
        user_id=user_id,
        action_type="UNAUTHORIZED_ACCESS",
        ip_address=request.remote_addr,
        user_agent=(request.headers.get("User-Agent") or "unknown")[:255],
        context_entity=str(context)[:120] if context else None,
    )
    db.session.add(audit)
    db.session.commit()
