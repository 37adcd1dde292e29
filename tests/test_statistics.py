from datetime import timedelta

import pytest

from extensions import db
from tests.conftest import START, as_actor
from utils import lifecycle, statistics
from utils.errors import Forbidden


@pytest.fixture
def workload_set(citizen, supervisor, official, clock):
    actor = as_actor(citizen)
    fixed = lifecycle.submit_complaint(actor, title="Pothole", description="Road repair needed")
    waiting = lifecycle.submit_complaint(actor, title="Garbage pile", description="Waste not collected")
    started = lifecycle.submit_complaint(actor, title="Pipe burst", description="Water leak on the pipe")
    for complaint in (fixed, waiting, started):
        lifecycle.reassign(as_actor(supervisor), complaint.id, official.id)
    lifecycle.update_progress(as_actor(official), started.id, 40)
    clock.advance(days=2)
    lifecycle.update_progress(as_actor(official), fixed.id, 100)
    return {"fixed": fixed, "waiting": waiting, "started": started}


def test_empty_data_is_zero_safe(admin):
    actor = as_actor(admin)
    stats = statistics.dashboard_stats(actor)
    assert stats["total"] == 0
    assert stats["resolution_rate"] == 0
    assert stats["average_resolution_days"] == 0
    assert stats["average_progress"] == 0
    assert stats["escalated"] == 0
    assert statistics.workload(actor) == []
    assert statistics.squad_progress(actor) == {"squads": [], "unrouted": 0}
    assert all(bucket["count"] == 0 for bucket in statistics.trends(actor))

    public = statistics.public_stats()
    assert public["total"] == 0
    assert public["resolution_rate"] == 0
    assert public["top_voted"] == []

    analytics = statistics.performance_analytics(actor)
    assert analytics == {"departments": [], "categories": [], "top_officials": []}


def test_dashboard_summary(workload_set, admin):
    stats = statistics.dashboard_stats(as_actor(admin))
    assert stats["total"] == 3
    assert stats["by_status"] == {"pending": 1, "in_progress": 1, "resolved": 1, "closed": 0}
    assert stats["by_category"]["roads"] == 1
    assert stats["by_category"]["other"] == 0
    assert stats["resolution_rate"] == 33.33
    assert stats["average_resolution_days"] == 2.0
    assert stats["average_progress"] == 40.0
    assert stats["escalation"] == {"green": 3, "yellow": 0, "red": 0}


def test_dashboard_counts_live_escalation(workload_set, admin, clock):
    clock.advance(days=50)
    stats = statistics.dashboard_stats(as_actor(admin))
    assert stats["escalation"]["yellow"] == 3
    assert stats["escalated"] == 3


def test_scope_follows_role(workload_set, citizen, official, make_user):
    assert statistics.dashboard_stats(as_actor(citizen))["total"] == 3
    assert statistics.dashboard_stats(as_actor(official))["total"] == 3
    assert statistics.dashboard_stats(as_actor(make_user("citizen")))["total"] == 0
    assert statistics.dashboard_stats(as_actor(make_user("official")))["total"] == 0


def test_complaint_flags(workload_set, clock):
    waiting = workload_set["waiting"]
    flags = statistics.complaint_flags(waiting, overdue_days=7)
    assert flags == {"no_work_started": True, "overdue": False, "days_since_assignment": 2}

    clock.advance(days=6)
    flags = statistics.complaint_flags(waiting, overdue_days=7)
    assert flags["overdue"] is True
    assert flags["days_since_assignment"] == 8

    fixed_flags = statistics.complaint_flags(workload_set["fixed"], overdue_days=7)
    assert fixed_flags == {"no_work_started": False, "overdue": False, "days_since_assignment": 8}


def test_resolution_days_uses_last_resolution(workload_set):
    assert statistics.resolution_days(workload_set["fixed"]) == pytest.approx(2.0)
    assert statistics.resolution_days(workload_set["waiting"]) is None


def test_workload_rows(workload_set, supervisor, official, clock):
    clock.advance(days=6)
    rows = statistics.workload(as_actor(supervisor))
    assert len(rows) == 1
    row = rows[0]
    assert row["assignee"]["id"] == official.id
    assert row["total"] == 3
    assert row["current_workload"] == 2
    assert row["overdue"] == 2
    assert row["no_work_started"] == 1
    assert row["resolution_rate"] == 33.33
    assert row["average_progress"] == 40.0


def test_squad_progress_requires_elevated_role(official, citizen):
    for user in (official, citizen):
        with pytest.raises(Forbidden):
            statistics.squad_progress(as_actor(user))


def test_squad_progress_groups_by_squad(citizen, supervisor, make_squad, make_zone):
    squad = make_squad("NORTH")
    make_zone(squad, "North Ward", north=10, south=0, east=10, west=0)
    lifecycle.submit_complaint(
        as_actor(citizen), title="Tree fallen", description="Tree down in park", location={"lat": 5, "lng": 5}
    )
    lifecycle.submit_complaint(as_actor(citizen), title="Loud music", description="Every night")
    report = statistics.squad_progress(as_actor(supervisor))
    assert report["unrouted"] == 1
    assert report["squads"][0]["squad"]["code"] == "NORTH"
    assert report["squads"][0]["summary"]["total"] == 1
    assert report["squads"][0]["no_work_started"] == 1


def test_performance_analytics_requires_elevated_role(official, citizen):
    for user in (official, citizen):
        with pytest.raises(Forbidden):
            statistics.performance_analytics(as_actor(user))


def test_performance_analytics_ranks_departments_and_officials(
    workload_set, citizen, supervisor, official, other_official, clock
):
    official.department = "Roads"
    other_official.department = "Water Works"
    db.session.commit()
    quick = lifecycle.submit_complaint(as_actor(citizen), title="Leaking hydrant", description="Water leak on the pipe")
    lifecycle.reassign(as_actor(supervisor), quick.id, other_official.id)
    clock.advance(days=1)
    lifecycle.update_progress(as_actor(other_official), quick.id, 100)

    analytics = statistics.performance_analytics(as_actor(supervisor))
    assert analytics["departments"] == [
        {"department": "Water Works", "average_resolution_days": 1.0, "resolved": 1},
        {"department": "Roads", "average_resolution_days": 2.0, "resolved": 1},
    ]
    assert analytics["categories"] == [
        {"category": "water", "count": 2},
        {"category": "roads", "count": 1},
        {"category": "sanitation", "count": 1},
    ]
    assert [row["official"]["id"] for row in analytics["top_officials"]] == [other_official.id, official.id]
    assert analytics["top_officials"][1]["average_resolution_days"] == 2.0


def test_performance_analytics_without_department(workload_set, admin, official):
    analytics = statistics.performance_analytics(as_actor(admin))
    assert analytics["departments"] == [
        {"department": "Unassigned department", "average_resolution_days": 2.0, "resolved": 1}
    ]
    assert analytics["top_officials"][0]["official"]["id"] == official.id


def test_trends_are_zero_filled(workload_set, admin, clock):
    series = statistics.trends(as_actor(admin), days=7)
    assert len(series) == 7
    assert series[-1]["date"] == clock.now().date().isoformat()
    counts = {bucket["date"]: bucket["count"] for bucket in series}
    assert counts[START.date().isoformat()] == 3
    assert sum(counts.values()) == 3
    assert len(statistics.trends(as_actor(admin), days=1000)) == 365


def test_public_stats(workload_set, supervisor, make_user):
    lifecycle.update_status(as_actor(supervisor), workload_set["waiting"].id, "closed")
    lifecycle.vote(as_actor(make_user("citizen")), workload_set["started"].id)
    public = statistics.public_stats()
    assert public["total"] == 3
    assert public["resolved"] == 1
    assert public["closed"] == 1
    assert public["resolution_rate"] == 66.67
    assert public["recent_activity"] == 3
    assert [item["id"] for item in public["top_voted"]] == [workload_set["started"].id]


def test_public_recent_activity_window(workload_set, clock):
    clock.advance(days=10)
    assert statistics.public_stats()["recent_activity"] == 0
    assert START + timedelta(days=12) == clock.now()


def test_public_stats_refresh_top_voted_levels(workload_set, make_user, clock):
    lifecycle.vote(as_actor(make_user("citizen")), workload_set["started"].id)
    clock.advance(days=61)
    top = statistics.public_stats()["top_voted"]
    assert [item["escalation_level"] for item in top] == ["red"]
