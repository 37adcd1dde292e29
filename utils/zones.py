"""Geographic routing: map a coordinate pair to the zone and squad responsible for it."""
import json
import math
from collections import namedtuple
from typing import Optional

from flask import current_app

from extensions import db
from models import Squad, User, Zone
from utils.errors import InvalidConfiguration

ZoneMatch = namedtuple("ZoneMatch", ["zone_id", "squad_id", "zone_name"])


class _Unresolved:
    """Degraded-success result: no zone contains the point."""

    zone_id = None
    squad_id = None
    zone_name = None

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNRESOLVED"


UNRESOLVED = _Unresolved()


def _coerce_coordinate(value, low: float, high: float) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or not low <= number <= high:
        return None
    return number


def valid_point(lat, lng) -> tuple[Optional[float], Optional[float]]:
    latitude = _coerce_coordinate(lat, -90.0, 90.0)
    longitude = _coerce_coordinate(lng, -180.0, 180.0)
    if latitude is None or longitude is None:
        return None, None
    return latitude, longitude


def resolve(lat, lng):
    """Return the first active zone (by priority, then id) whose box contains the point."""
    latitude, longitude = valid_point(lat, lng)
    if latitude is None:
        if lat is not None or lng is not None:
            current_app.logger.warning("Coordinates out of range; zone left unresolved", extra={"lat": lat, "lng": lng})
        return UNRESOLVED

    zones = (
        Zone.query.join(Squad, Zone.squad_id == Squad.id)
        .filter(Zone.is_active.is_(True), Squad.is_active.is_(True))
        .order_by(Zone.priority.asc(), Zone.id.asc())
        .all()
    )
    for zone in zones:
        if zone.contains(latitude, longitude):
            return ZoneMatch(zone_id=zone.id, squad_id=zone.squad_id, zone_name=zone.name)
    current_app.logger.info("No zone contains coordinates", extra={"lat": latitude, "lng": longitude})
    return UNRESOLVED


def _bounds(raw: dict, zone_name: str) -> dict:
    bounds = raw.get("bounds") or raw
    values = {}
    for key, low, high in (("north", -90, 90), ("south", -90, 90), ("east", -180, 180), ("west", -180, 180)):
        number = _coerce_coordinate(bounds.get(key), low, high)
        if number is None:
            raise InvalidConfiguration(f"Zone '{zone_name}' has a missing or invalid '{key}' bound.")
        values[key] = number
    if values["south"] > values["north"] or values["west"] > values["east"]:
        raise InvalidConfiguration(f"Zone '{zone_name}' has an inverted bounding box.", details=values)
    return values


def _priority(value, zone_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidConfiguration(f"Zone '{zone_name}' has a non-numeric priority.") from None


def _user_by_email(email: Optional[str]) -> Optional[User]:
    if not email:
        return None
    return User.query.filter_by(email=email.strip().lower()).first()


def load_topology(payload: dict, replace: bool = True) -> dict:
    """Load squads, their rosters and zones from a topology document.

    Squads are matched by code. With ``replace`` set, zones of the listed
    squads are rebuilt and squads missing from the document are deactivated.
    Existing complaints keep the zone they were routed to at submission.
    The document is applied all-or-nothing.
    """
    try:
        summary = _apply_topology(payload, replace)
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    current_app.logger.info("Topology loaded", extra=summary)
    return summary


def _apply_topology(payload: dict, replace: bool) -> dict:
    if not isinstance(payload, dict) or not isinstance(payload.get("squads"), list):
        raise InvalidConfiguration("Topology must contain a 'squads' list.")

    seen_codes = set()
    zone_count = 0
    for raw_squad in payload["squads"]:
        code = (raw_squad.get("code") or "").strip().upper() if isinstance(raw_squad, dict) else ""
        if not code:
            raise InvalidConfiguration("Every squad needs a code.")
        if code in seen_codes:
            raise InvalidConfiguration(f"Squad code '{code}' appears more than once.")
        seen_codes.add(code)

        squad = Squad.query.filter_by(code=code).first()
        if squad is None:
            squad = Squad(code=code, name=raw_squad.get("name") or code)
            db.session.add(squad)
        squad.name = raw_squad.get("name") or squad.name
        squad.description = raw_squad.get("description")
        squad.is_active = bool(raw_squad.get("is_active", True))
        db.session.flush()

        supervisor = _user_by_email(raw_squad.get("supervisor_email"))
        squad.supervisor_id = supervisor.id if supervisor else None
        for email in raw_squad.get("member_emails") or []:
            member = _user_by_email(email)
            if member is None:
                current_app.logger.warning("Topology member not found", extra={"squad": code, "email": email})
                continue
            member.squad_id = squad.id

        if replace:
            for zone in list(squad.zones):
                zone.is_active = False
        for index, raw_zone in enumerate(raw_squad.get("zones") or []):
            name = raw_zone.get("name") or f"{code}-{index + 1}"
            values = _bounds(raw_zone, name)
            zone = Zone.query.filter_by(squad_id=squad.id, name=name).first()
            if zone is None:
                zone = Zone(squad_id=squad.id, name=name, **values)
                db.session.add(zone)
            else:
                for key, value in values.items():
                    setattr(zone, key, value)
            zone.city = raw_zone.get("city")
            zone.state = raw_zone.get("state")
            zone.priority = _priority(raw_zone.get("priority", 100), name)
            zone.is_active = True
            zone_count += 1

    if replace:
        for squad in Squad.query.filter(Squad.code.notin_(list(seen_codes))).all():
            squad.is_active = False
    db.session.flush()
    return {"squads": len(seen_codes), "zones": zone_count}


def load_topology_file(path: str, replace: bool = True) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError) as exc:
        raise InvalidConfiguration(f"Unable to read topology file: {exc}") from exc
    return load_topology(payload, replace=replace)
