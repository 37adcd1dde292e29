import uuid
from datetime import datetime

import pytest
from flask import g
from flask.testing import FlaskClient

from app import create_app
from extensions import db
from models import Squad, User, Zone
from utils.authorization import Actor
from utils.clock import FixedClock
from utils.security import reset_attempts

START = datetime(2024, 1, 1, 9, 0, 0)


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def database_url():
    return "sqlite://"


@pytest.fixture
def app(clock, database_url, tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("TEST_DATABASE_URL", database_url)
    application = create_app("testing", clock=clock)
    ctx = application.app_context()
    ctx.push()
    yield application
    db.session.remove()
    db.drop_all()
    ctx.pop()
    reset_attempts()


class IdentityClient(FlaskClient):
    """Requests reuse the test's app context, so drop the identity cached by the previous one."""

    def open(self, *args, **kwargs):
        g.pop("_login_user", None)
        g.pop("actor", None)
        return super().open(*args, **kwargs)


@pytest.fixture
def client(app):
    app.test_client_class = IdentityClient
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(role="citizen", name=None, squad=None, email=None, is_active=True):
        user = User(
            full_name=name or f"{role.title()} {uuid.uuid4().hex[:4]}",
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.org",
            role=role,
            squad_id=squad.id if squad else None,
            is_active=is_active,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_squad(app):
    def _make(code="NORTH", name=None, supervisor=None):
        squad = Squad(code=code, name=name or f"{code.title()} Squad", supervisor_id=supervisor.id if supervisor else None)
        db.session.add(squad)
        db.session.commit()
        return squad

    return _make


@pytest.fixture
def make_zone(app):
    def _make(squad, name="Zone", north=10.0, south=0.0, east=10.0, west=0.0, priority=100, is_active=True):
        zone = Zone(
            squad_id=squad.id,
            name=name,
            north=north,
            south=south,
            east=east,
            west=west,
            priority=priority,
            is_active=is_active,
        )
        db.session.add(zone)
        db.session.commit()
        return zone

    return _make


@pytest.fixture
def citizen(make_user):
    return make_user("citizen", name="Asha Citizen")


@pytest.fixture
def official(make_user):
    return make_user("official", name="Ravi Official")


@pytest.fixture
def other_official(make_user):
    return make_user("official", name="Meera Official")


@pytest.fixture
def supervisor(make_user):
    return make_user("supervisor", name="Sunil Supervisor")


@pytest.fixture
def admin(make_user):
    return make_user("admin", name="Anita Admin")


def as_actor(user) -> Actor:
    return Actor.from_user(user)


def auth(user) -> dict:
    return {"X-User-Id": user.id}
