"""Read-only aggregates for dashboards and the public transparency page."""
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from flask import current_app

from models import (
    COMPLAINT_CATEGORIES,
    COMPLAINT_SEVERITY,
    COMPLAINT_STATUSES,
    ESCALATION_LEVELS,
    OPEN_STATUSES,
    Complaint,
    Squad,
    User,
)
from utils.authorization import Actor, authorize
from utils.clock import utcnow
from utils.escalation import classify, current_settings, refresh_levels

ROUTING_EVENTS = {"submitted", "assigned", "zone_assigned"}
PUBLIC_RECENT_DAYS = 7
TOP_VOTED_LIMIT = 10


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 2) if total else 0


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0


def _counter(keys: Iterable[str]) -> Dict[str, int]:
    return OrderedDict((key, 0) for key in keys)


def stats_scope(actor: Actor):
    """Citizens see their own complaints, officials their assigned ones, elevated roles everything."""
    authorize("view_statistics", actor)
    query = Complaint.query
    if actor.role == "citizen":
        return query.filter(Complaint.citizen_id == actor.id)
    if actor.role == "official":
        return query.filter(Complaint.assigned_to == actor.id)
    return query


def resolution_days(complaint: Complaint) -> Optional[float]:
    """Days from submission to the most recent move into ``resolved``."""
    resolved_at = None
    for entry in complaint.timeline:
        if entry.new_status == "resolved":
            resolved_at = entry.created_at
    if resolved_at is None:
        return None
    return (resolved_at - complaint.created_at).total_seconds() / 86400


def complaint_flags(complaint: Complaint, now: Optional[datetime] = None, overdue_days: Optional[int] = None) -> dict:
    now = now or utcnow()
    if overdue_days is None:
        overdue_days = int(current_app.config.get("OVERDUE_ASSIGNMENT_DAYS", 7))

    entries = list(complaint.timeline)
    no_work_started = complaint.status == "pending" and all(entry.event in ROUTING_EVENTS for entry in entries)

    assigned_at = None
    for entry in entries:
        if entry.event == "assigned":
            assigned_at = entry.created_at
    days_since_assignment = None
    overdue = False
    if assigned_at is not None:
        elapsed = now - assigned_at
        days_since_assignment = elapsed // timedelta(days=1)
        overdue = complaint.status in OPEN_STATUSES and elapsed > timedelta(days=overdue_days)

    return {
        "no_work_started": no_work_started,
        "overdue": overdue,
        "days_since_assignment": days_since_assignment,
    }


def summarize(complaints: List[Complaint], now: Optional[datetime] = None, settings=None) -> dict:
    now = now or utcnow()
    settings = settings or current_settings()
    by_status = _counter(COMPLAINT_STATUSES)
    by_category = _counter(COMPLAINT_CATEGORIES)
    by_severity = _counter(COMPLAINT_SEVERITY)
    escalation = _counter(ESCALATION_LEVELS)
    resolution_samples: List[float] = []
    in_progress_values: List[int] = []

    for complaint in complaints:
        by_status[complaint.status] = by_status.get(complaint.status, 0) + 1
        by_category[complaint.category] = by_category.get(complaint.category, 0) + 1
        by_severity[complaint.severity] = by_severity.get(complaint.severity, 0) + 1
        escalation[classify(complaint.created_at, now, settings)] += 1
        if complaint.status == "in_progress":
            in_progress_values.append(complaint.progress)
        days = resolution_days(complaint)
        if days is not None:
            resolution_samples.append(days)

    total = len(complaints)
    return {
        "total": total,
        "by_status": dict(by_status),
        "by_category": dict(by_category),
        "by_severity": dict(by_severity),
        "escalation": dict(escalation),
        "escalated": escalation["yellow"] + escalation["red"],
        "resolution_rate": _rate(len(resolution_samples), total),
        "average_resolution_days": _average(resolution_samples),
        "average_progress": _average(in_progress_values),
    }


def dashboard_stats(actor: Actor) -> dict:
    return summarize(stats_scope(actor).all())


def _workload_rows(complaints: List[Complaint], now: datetime, overdue_days: int) -> List[dict]:
    rows: Dict[str, dict] = {}
    for complaint in complaints:
        if not complaint.assigned_to:
            continue
        row = rows.setdefault(
            complaint.assigned_to,
            {
                "assignee": complaint.assignee.summary() if complaint.assignee else {"id": complaint.assigned_to},
                "total": 0,
                "by_status": dict(_counter(COMPLAINT_STATUSES)),
                "categories": {},
                "current_workload": 0,
                "overdue": 0,
                "no_work_started": 0,
                "_progress": [],
                "_resolution": [],
            },
        )
        row["total"] += 1
        row["by_status"][complaint.status] += 1
        row["categories"][complaint.category] = row["categories"].get(complaint.category, 0) + 1
        if complaint.status in OPEN_STATUSES:
            row["current_workload"] += 1
        if complaint.status == "in_progress":
            row["_progress"].append(complaint.progress)
        days = resolution_days(complaint)
        if days is not None:
            row["_resolution"].append(days)
        flags = complaint_flags(complaint, now=now, overdue_days=overdue_days)
        row["overdue"] += 1 if flags["overdue"] else 0
        row["no_work_started"] += 1 if flags["no_work_started"] else 0

    result = []
    for row in rows.values():
        progress = row.pop("_progress")
        resolution = row.pop("_resolution")
        row["average_progress"] = _average(progress)
        row["average_resolution_days"] = _average(resolution)
        row["resolution_rate"] = _rate(len(resolution), row["total"])
        result.append(row)
    result.sort(key=lambda item: (-item["current_workload"], item["assignee"].get("id") or ""))
    return result


def workload(actor: Actor) -> List[dict]:
    now = utcnow()
    overdue_days = int(current_app.config.get("OVERDUE_ASSIGNMENT_DAYS", 7))
    return _workload_rows(stats_scope(actor).all(), now, overdue_days)


def squad_progress(actor: Actor) -> dict:
    authorize("view_squad_progress", actor)
    now = utcnow()
    settings = current_settings()
    overdue_days = int(current_app.config.get("OVERDUE_ASSIGNMENT_DAYS", 7))

    squads = []
    for squad in Squad.query.order_by(Squad.name.asc()).all():
        complaints = Complaint.query.filter_by(squad_id=squad.id).all()
        summary = summarize(complaints, now=now, settings=settings)
        flags = [complaint_flags(c, now=now, overdue_days=overdue_days) for c in complaints]
        squads.append(
            {
                "squad": {"id": squad.id, "name": squad.name, "code": squad.code, "is_active": squad.is_active},
                "member_count": User.query.filter_by(squad_id=squad.id).count(),
                "summary": summary,
                "overdue": sum(1 for flag in flags if flag["overdue"]),
                "no_work_started": sum(1 for flag in flags if flag["no_work_started"]),
                "members": _workload_rows(complaints, now, overdue_days),
            }
        )
    unrouted = Complaint.query.filter(Complaint.squad_id.is_(None)).count()
    return {"squads": squads, "unrouted": unrouted}


def performance_analytics(actor: Actor) -> dict:
    """Resolution speed per department and per official, plus complaint volume per category."""
    authorize("view_performance_analytics", actor)

    categories = _counter(COMPLAINT_CATEGORIES)
    by_department: Dict[str, List[float]] = {}
    by_official: Dict[str, dict] = {}
    for complaint in Complaint.query.all():
        categories[complaint.category] = categories.get(complaint.category, 0) + 1
        if not complaint.assigned_to:
            continue
        days = resolution_days(complaint)
        if days is None:
            continue
        assignee = complaint.assignee
        department = (assignee.department if assignee else None) or "Unassigned department"
        by_department.setdefault(department, []).append(days)
        official = by_official.setdefault(
            complaint.assigned_to,
            {"official": assignee.summary() if assignee else {"id": complaint.assigned_to}, "samples": []},
        )
        official["samples"].append(days)

    departments = [
        {"department": name, "average_resolution_days": _average(samples), "resolved": len(samples)}
        for name, samples in by_department.items()
    ]
    departments.sort(key=lambda item: (item["average_resolution_days"], item["department"]))

    officials = [
        {
            "official": row["official"],
            "average_resolution_days": _average(row["samples"]),
            "resolved": len(row["samples"]),
        }
        for row in by_official.values()
    ]
    officials.sort(key=lambda item: (item["average_resolution_days"], item["official"].get("id") or ""))
    limit = int(current_app.config.get("ANALYTICS_TOP_OFFICIALS", 10))

    volume = [{"category": name, "count": count} for name, count in categories.items() if count]
    volume.sort(key=lambda item: (-item["count"], item["category"]))

    return {"departments": departments, "categories": volume, "top_officials": officials[:limit]}


def trends(actor: Actor, days: Optional[int] = None) -> List[dict]:
    """Complaints submitted per day over the trailing window, oldest first, zero-filled."""
    days = days or int(current_app.config.get("TREND_WINDOW_DAYS", 30))
    days = max(1, min(int(days), 365))
    today = utcnow().date()
    start = today - timedelta(days=days - 1)
    buckets = OrderedDict((start + timedelta(days=offset), 0) for offset in range(days))
    since = datetime.combine(start, datetime.min.time())
    for complaint in stats_scope(actor).filter(Complaint.created_at >= since).all():
        day = complaint.created_at.date()
        if day in buckets:
            buckets[day] += 1
    return [{"date": day.isoformat(), "count": count} for day, count in buckets.items()]


def public_stats() -> dict:
    now = utcnow()
    complaints = Complaint.query.all()
    by_status = _counter(COMPLAINT_STATUSES)
    by_category = _counter(COMPLAINT_CATEGORIES)
    for complaint in complaints:
        by_status[complaint.status] = by_status.get(complaint.status, 0) + 1
        by_category[complaint.category] = by_category.get(complaint.category, 0) + 1
    total = len(complaints)
    recent_since = now - timedelta(days=PUBLIC_RECENT_DAYS)
    recent_activity = sum(1 for complaint in complaints if complaint.created_at >= recent_since)
    top_voted = refresh_levels(
        Complaint.query.filter(Complaint.vote_count > 0)
        .order_by(Complaint.vote_count.desc(), Complaint.created_at.asc())
        .limit(TOP_VOTED_LIMIT)
        .all(),
        label="public stats",
    )
    return {
        "total": total,
        "resolved": by_status["resolved"],
        "in_progress": by_status["in_progress"],
        "pending": by_status["pending"],
        "closed": by_status["closed"],
        "resolution_rate": _rate(by_status["resolved"] + by_status["closed"], total),
        "by_category": dict(by_category),
        "recent_activity": recent_activity,
        "top_voted": [complaint.public_payload() for complaint in top_voted],
    }
