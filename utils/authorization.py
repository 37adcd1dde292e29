"""Single authorization table for every complaint operation.

``POLICY[operation][role]`` names an ownership predicate and the reason shown
when it fails. Roles missing from an operation's row are denied.
"""
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from models import ELEVATED_ROLES, USER_ROLES
from utils.errors import Forbidden


@dataclass(frozen=True)
class Actor:
    id: Optional[str]
    role: str
    squad_id: Optional[int] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=str(user.id), role=(user.role or "").lower(), squad_id=user.squad_id)

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


def _any(actor: Actor, complaint) -> bool:
    return True


def _deny(actor: Actor, complaint) -> bool:
    return False


def _owner(actor: Actor, complaint) -> bool:
    return complaint is not None and complaint.citizen_id == actor.id


def _assignee(actor: Actor, complaint) -> bool:
    return complaint is not None and complaint.assigned_to is not None and complaint.assigned_to == actor.id


def _assignee_or_squad(actor: Actor, complaint) -> bool:
    if _assignee(actor, complaint):
        return True
    return complaint is not None and actor.squad_id is not None and complaint.squad_id == actor.squad_id


def _assignee_or_unrouted(actor: Actor, complaint) -> bool:
    return _assignee(actor, complaint) or (complaint is not None and complaint.zone_id is None)


PREDICATES: Dict[str, Callable[[Actor, object], bool]] = {
    "any": _any,
    "deny": _deny,
    "owner": _owner,
    "assignee": _assignee,
    "assignee_or_squad": _assignee_or_squad,
    "assignee_or_unrouted": _assignee_or_unrouted,
}

Rule = Tuple[str, str]

_ELEVATED_ANY: Rule = ("any", "")

POLICY: Dict[str, Dict[str, Rule]] = {
    "submit": {
        "citizen": ("any", ""),
        "official": ("deny", "Only citizens can submit complaints."),
        "supervisor": ("deny", "Only citizens can submit complaints."),
        "admin": ("deny", "Only citizens can submit complaints."),
    },
    "view": {
        "citizen": ("owner", "You can only view complaints you submitted."),
        "official": ("assignee_or_squad", "You can only view complaints assigned to you or your squad."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "comment": {
        "citizen": ("owner", "You can only comment on complaints you submitted."),
        "official": ("assignee_or_squad", "You can only comment on complaints assigned to you or your squad."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "update_status": {
        "citizen": ("deny", "Citizens cannot change complaint status. Add a comment or request reopening instead."),
        "official": ("assignee", "Only the assigned official may change the status of this complaint."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "update_progress": {
        "citizen": ("deny", "Citizens cannot update complaint progress."),
        "official": ("assignee", "Only the assigned official may update progress."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "reassign": {
        "citizen": ("deny", "Only supervisors and admins can reassign complaints."),
        "official": ("deny", "Only supervisors and admins can reassign complaints."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "assign_zone": {
        "citizen": ("deny", "Citizens cannot route complaints to a zone."),
        "official": ("assignee_or_unrouted", "Officials can only route unrouted complaints or complaints assigned to them."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "request_reopen": {
        "citizen": ("owner", "Only the citizen who submitted this complaint can request reopening."),
        "official": ("deny", "Only the citizen who submitted this complaint can request reopening."),
        "supervisor": ("deny", "Only the citizen who submitted this complaint can request reopening."),
        "admin": ("deny", "Only the citizen who submitted this complaint can request reopening."),
    },
    "vote": {role: ("any", "") for role in USER_ROLES},
    "view_statistics": {role: ("any", "") for role in USER_ROLES},
    "view_squad_progress": {
        "citizen": ("deny", "Squad progress is available to supervisors and admins only."),
        "official": ("deny", "Squad progress is available to supervisors and admins only."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "view_performance_analytics": {
        "citizen": ("deny", "Performance analytics are available to supervisors and admins only."),
        "official": ("deny", "Performance analytics are available to supervisors and admins only."),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "view_escalation_settings": {
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
    "update_escalation_settings": {
        "admin": ("any", ""),
    },
    "manage_topology": {
        "admin": ("any", ""),
    },
    "view_topology": {
        "official": ("any", ""),
        "supervisor": _ELEVATED_ANY,
        "admin": _ELEVATED_ANY,
    },
}

_DEFAULT_DENIAL = "Your role is not allowed to perform this action."


def is_allowed(operation: str, actor: Actor, complaint=None) -> bool:
    predicate_name, _reason = POLICY[operation].get(actor.role, ("deny", _DEFAULT_DENIAL))
    return PREDICATES[predicate_name](actor, complaint)


def authorize(operation: str, actor: Actor, complaint=None) -> None:
    """Raise ``Forbidden`` with an actionable reason unless the table allows the call."""
    predicate_name, reason = POLICY[operation].get(actor.role, ("deny", _DEFAULT_DENIAL))
    if PREDICATES[predicate_name](actor, complaint):
        return
    details = {"operation": operation, "role": actor.role}
    if complaint is not None:
        details["complaint_id"] = complaint.id
    raise Forbidden(reason or _DEFAULT_DENIAL, details=details)
