from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from extensions import db
from models import Complaint, EscalationSettings, Notification
from tests.conftest import START, as_actor
from utils import escalation, lifecycle
from utils.errors import Forbidden, InvalidConfiguration, ValidationFailed


def thresholds(yellow=45, red=60):
    return SimpleNamespace(yellow_threshold_days=yellow, red_threshold_days=red)


@pytest.fixture
def assigned_complaint(citizen, official, supervisor):
    complaint = lifecycle.submit_complaint(
        as_actor(citizen),
        title="Water pipe leak",
        description="Water leaking from the main supply pipe.",
    )
    return lifecycle.reassign(as_actor(supervisor), complaint.id, official.id)


def escalation_notices(user_id):
    return Notification.query.filter_by(user_id=user_id, kind="escalation").all()


def test_classify_default_thresholds():
    created = datetime(2024, 1, 1)
    assert escalation.classify(created, created + timedelta(days=10), thresholds()) == "green"
    assert escalation.classify(created, created + timedelta(days=46), thresholds()) == "yellow"
    assert escalation.classify(created, created + timedelta(days=61), thresholds()) == "red"


def test_classify_counts_whole_days():
    created = datetime(2024, 1, 1, 12, 0)
    assert escalation.classify(created, created + timedelta(days=44, hours=23), thresholds()) == "green"
    assert escalation.classify(created, created + timedelta(days=45), thresholds()) == "yellow"
    assert escalation.classify(created, created + timedelta(days=60), thresholds()) == "red"


def test_classify_is_monotonic_in_age():
    created = datetime(2024, 1, 1)
    order = {"green": 0, "yellow": 1, "red": 2}
    levels = [order[escalation.classify(created, created + timedelta(days=day), thresholds(5, 9))] for day in range(20)]
    assert levels == sorted(levels)


def test_equal_thresholds_skip_yellow():
    created = datetime(2024, 1, 1)
    assert escalation.classify(created, created + timedelta(days=30), thresholds(30, 30)) == "red"


@pytest.mark.parametrize("yellow,red", [(61, 60), (-1, 60), ("soon", 60), (1.5, 60), (True, 60)])
def test_invalid_thresholds_rejected(yellow, red):
    with pytest.raises(InvalidConfiguration):
        escalation.validate_thresholds(yellow, red)


def test_settings_created_from_config(app):
    settings = escalation.current_settings()
    assert settings.yellow_threshold_days == 45
    assert settings.red_threshold_days == 60
    assert EscalationSettings.query.count() == 1


def test_only_admin_updates_settings(supervisor, official):
    for user in (supervisor, official):
        with pytest.raises(Forbidden):
            escalation.update_settings(as_actor(user), yellow_threshold_days=10)


def test_admin_updates_thresholds(admin, official):
    settings = escalation.update_settings(
        as_actor(admin),
        yellow_threshold_days=10,
        red_threshold_days=20,
        notify_sms=True,
        auto_escalate_to=official.id,
    )
    assert (settings.yellow_threshold_days, settings.red_threshold_days) == (10, 20)
    assert settings.notify_sms is True
    assert settings.auto_escalate_to == official.id
    assert settings.updated_by == admin.id


def test_invalid_update_leaves_settings_untouched(admin):
    with pytest.raises(InvalidConfiguration):
        escalation.update_settings(as_actor(admin), yellow_threshold_days=70)
    db.session.rollback()
    settings = escalation.current_settings()
    assert (settings.yellow_threshold_days, settings.red_threshold_days) == (45, 60)


def test_auto_escalation_target_must_be_staff(admin, citizen):
    with pytest.raises(ValidationFailed):
        escalation.update_settings(as_actor(admin), auto_escalate_to=citizen.id)


def test_levels_follow_age_on_read(assigned_complaint, supervisor, clock):
    actor = as_actor(supervisor)
    clock.advance(days=46)
    assert lifecycle.get_complaint(actor, assigned_complaint.id).escalation_level == "yellow"
    clock.advance(days=15)
    assert lifecycle.get_complaint(actor, assigned_complaint.id).escalation_level == "red"


def test_each_rise_notifies_assignee_once(assigned_complaint, supervisor, official, clock):
    actor = as_actor(supervisor)
    clock.advance(days=46)
    lifecycle.get_complaint(actor, assigned_complaint.id)
    lifecycle.get_complaint(actor, assigned_complaint.id)
    notices = escalation_notices(official.id)
    assert len(notices) == 1
    assert "YELLOW" in notices[0].message

    clock.advance(days=15)
    lifecycle.get_complaint(actor, assigned_complaint.id)
    lifecycle.list_complaints(actor)
    assert len(escalation_notices(official.id)) == 2


def test_auto_escalate_target_is_notified(assigned_complaint, admin, supervisor, clock):
    escalation.update_settings(as_actor(admin), auto_escalate_to=supervisor.id)
    clock.advance(days=46)
    lifecycle.get_complaint(as_actor(admin), assigned_complaint.id)
    assert len(escalation_notices(supervisor.id)) == 1


def test_closed_complaints_are_classified_without_notice(assigned_complaint, supervisor, official, clock):
    lifecycle.update_status(as_actor(supervisor), assigned_complaint.id, "closed")
    clock.advance(days=61)
    complaint = lifecycle.get_complaint(as_actor(supervisor), assigned_complaint.id)
    assert complaint.escalation_level == "red"
    assert escalation_notices(official.id) == []


def test_escalation_refresh_does_not_add_timeline_entries(assigned_complaint, supervisor, clock):
    before = assigned_complaint.timeline_length
    clock.advance(days=61)
    complaint = lifecycle.get_complaint(as_actor(supervisor), assigned_complaint.id)
    assert complaint.timeline_length == before
    assert complaint.escalated_at == START + timedelta(days=61)


def test_lowering_thresholds_escalates_existing_complaints(assigned_complaint, admin, supervisor, clock):
    clock.advance(days=3)
    escalation.update_settings(as_actor(admin), yellow_threshold_days=1, red_threshold_days=2)
    assert lifecycle.get_complaint(as_actor(supervisor), assigned_complaint.id).escalation_level == "red"


def test_scan_updates_open_complaints(app, assigned_complaint, official, clock):
    clock.advance(days=50)
    assert escalation.run_escalation_scan(app) == 1
    db.session.expire_all()
    assert db.session.get(Complaint, assigned_complaint.id).escalation_level == "yellow"
    assert len(escalation_notices(official.id)) == 1
    assert escalation.run_escalation_scan(app) == 0
