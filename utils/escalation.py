"""Time-based escalation classification and the settings that drive it."""
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy.orm.attributes import set_committed_value

from extensions import db
from models import ESCALATION_LEVELS, OPEN_STATUSES, Complaint, EscalationSettings, User
from utils.authorization import Actor, authorize
from utils.clock import utcnow
from utils.concurrency import run_serialized
from utils.errors import InvalidConfiguration, ValidationFailed
from utils.notifications import NotificationOutbox

_UNSET = object()


def validate_thresholds(yellow, red) -> tuple[int, int]:
    try:
        yellow_days = int(yellow)
        red_days = int(red)
    except (TypeError, ValueError):
        raise InvalidConfiguration("Escalation thresholds must be whole numbers of days.") from None
    if isinstance(yellow, bool) or isinstance(red, bool) or yellow_days != yellow or red_days != red:
        raise InvalidConfiguration("Escalation thresholds must be whole numbers of days.")
    if yellow_days < 0 or red_days < 0:
        raise InvalidConfiguration(
            "Escalation thresholds cannot be negative.",
            details={"yellow_threshold_days": yellow_days, "red_threshold_days": red_days},
        )
    if yellow_days > red_days:
        raise InvalidConfiguration(
            "The yellow threshold must not exceed the red threshold.",
            details={"yellow_threshold_days": yellow_days, "red_threshold_days": red_days},
        )
    return yellow_days, red_days


def classify(created_at: datetime, now: datetime, settings) -> str:
    """Return ``green``, ``yellow`` or ``red`` from whole days elapsed since ``created_at``."""
    yellow, red = validate_thresholds(settings.yellow_threshold_days, settings.red_threshold_days)
    age_days = (now - created_at) // timedelta(days=1)
    if age_days >= red:
        return "red"
    if age_days >= yellow:
        return "yellow"
    return "green"


def current_settings() -> EscalationSettings:
    """Fetch the live settings row, creating it from configured defaults on first use."""
    settings = EscalationSettings.query.order_by(EscalationSettings.id.asc()).first()
    if settings is None:
        yellow, red = validate_thresholds(
            current_app.config.get("ESCALATION_YELLOW_DAYS", 45),
            current_app.config.get("ESCALATION_RED_DAYS", 60),
        )
        settings = EscalationSettings(
            yellow_threshold_days=yellow,
            red_threshold_days=red,
            notify_email=bool(current_app.config.get("ESCALATION_NOTIFY_EMAIL", True)),
            notify_sms=bool(current_app.config.get("ESCALATION_NOTIFY_SMS", False)),
            updated_at=utcnow(),
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def update_settings(
    actor: Actor,
    yellow_threshold_days=None,
    red_threshold_days=None,
    notify_email: Optional[bool] = None,
    notify_sms: Optional[bool] = None,
    auto_escalate_to=_UNSET,
) -> EscalationSettings:
    authorize("update_escalation_settings", actor)
    settings = current_settings()

    yellow = settings.yellow_threshold_days if yellow_threshold_days is None else yellow_threshold_days
    red = settings.red_threshold_days if red_threshold_days is None else red_threshold_days
    yellow, red = validate_thresholds(yellow, red)

    if auto_escalate_to is not _UNSET:
        if auto_escalate_to:
            target = db.session.get(User, str(auto_escalate_to))
            if not target or target.role == "citizen" or not target.is_active:
                raise ValidationFailed(
                    "Auto-escalation target must be an active official, supervisor or admin.",
                    details={"auto_escalate_to": auto_escalate_to},
                )
            settings.auto_escalate_to = target.id
        else:
            settings.auto_escalate_to = None

    settings.yellow_threshold_days = yellow
    settings.red_threshold_days = red
    if notify_email is not None:
        settings.notify_email = bool(notify_email)
    if notify_sms is not None:
        settings.notify_sms = bool(notify_sms)
    settings.updated_by = actor.id
    settings.updated_at = utcnow()
    db.session.commit()

    current_app.logger.info(
        "Escalation settings updated",
        extra={"actor_id": actor.id, "yellow": yellow, "red": red, "auto_escalate_to": settings.auto_escalate_to},
    )
    return settings


def _escalation_message(complaint: Complaint, level: str, settings: EscalationSettings) -> str:
    threshold = settings.red_threshold_days if level == "red" else settings.yellow_threshold_days
    return (
        f'Complaint "{complaint.title}" has been open for at least {threshold} days '
        f"and is now at escalation level {level.upper()}."
    )


def refresh_escalation(
    complaint: Complaint,
    outbox: Optional[NotificationOutbox] = None,
    settings: Optional[EscalationSettings] = None,
    now: Optional[datetime] = None,
) -> str:
    """Recompute the level for ``complaint`` and update the cached copy when it moved.

    The cache is swapped with a guarded UPDATE so only one reader records a
    given change and therefore only one escalation notification goes out. The
    swap does not bump the row version, so it never conflicts with lifecycle
    writes.
    """
    settings = settings or current_settings()
    now = now or utcnow()
    level = classify(complaint.created_at, now, settings)
    previous = complaint.escalation_level or "green"
    if level == previous:
        return level

    escalated_at = now if level != "green" else complaint.escalated_at
    swapped = (
        db.session.query(Complaint)
        .filter(Complaint.id == complaint.id, Complaint.escalation_level == previous)
        .update(
            {
                Complaint.escalation_level: level,
                Complaint.escalation_checked_at: now,
                Complaint.escalated_at: escalated_at,
            },
            synchronize_session=False,
        )
    )
    set_committed_value(complaint, "escalation_level", level)
    set_committed_value(complaint, "escalation_checked_at", now)
    set_committed_value(complaint, "escalated_at", escalated_at)
    if not swapped:
        return level

    rising = ESCALATION_LEVELS.index(level) > ESCALATION_LEVELS.index(previous)
    current_app.logger.info(
        "Complaint escalation level changed",
        extra={"complaint_id": complaint.id, "from": previous, "to": level},
    )
    if rising and outbox is not None and complaint.status in OPEN_STATUSES:
        message = _escalation_message(complaint, level, settings)
        for recipient in (complaint.assigned_to, settings.auto_escalate_to):
            outbox.notify(
                recipient,
                "escalation",
                message,
                related_complaint_id=complaint.id,
                send_email=settings.notify_email,
            )
    return level


def run_escalation_scan(app) -> int:
    """Refresh every open complaint; schedule via cron alongside lazy read-time refresh."""
    with app.app_context():
        outbox = NotificationOutbox()
        settings = current_settings()
        now = utcnow()
        changed = 0
        for complaint in Complaint.query.filter(Complaint.status.in_(OPEN_STATUSES)).all():
            before = complaint.escalation_level
            if refresh_escalation(complaint, outbox, settings=settings, now=now) != before:
                changed += 1
        db.session.commit()
        delivered = outbox.dispatch()
        app.logger.info("Escalation scan complete", extra={"changed": changed, "notifications": delivered})
        return changed


def refresh_levels(complaints: List[Complaint], label: str = "refresh escalation") -> List[Complaint]:
    """Bring the cached level of each listed complaint up to date before it is shown."""

    def _refresh(outbox):
        settings = current_settings()
        now = utcnow()
        for complaint in complaints:
            refresh_escalation(complaint, outbox, settings=settings, now=now)
        return complaints

    return run_serialized(_refresh, label=label)
