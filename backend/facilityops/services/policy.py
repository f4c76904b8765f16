from __future__ import annotations
from typing import List, Set
from flask_jwt_extended import get_jwt, get_jwt_identity
from facilityops.errors import Forbidden


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    return all(c in perms for c in codes)


def current_user_id() -> int:
    return int(get_jwt_identity())


def company_scope() -> List[int]:
    claims = get_jwt()
    return [c for c in (claims.get('company_ids') or []) if isinstance(c, int)]


def assert_company_access(company_id: int):
    scope = company_scope()
    if not scope:
        return  # No scoping
    if company_id not in scope:
        raise Forbidden('Company access denied')


# --- Lifecycle authority ---

def _require_active(actor):
    if not actor.is_system and not actor.is_active:
        raise Forbidden('Membership suspended')


def _require_manager(actor, issue):
    if not actor.is_manager:
        raise Forbidden('Facility manager or company admin required')
    if not actor.covers_facility(issue.facility_id):
        raise Forbidden('Facility outside manager scope')


def _require_assigned_contractor(actor, issue):
    if not actor.is_contractor or issue.assigned_to is None or issue.assigned_to != actor.user_id:
        raise Forbidden('Only the assigned contractor may perform this action')


def authorize(event: str, actor, issue):
    """Raise Forbidden unless actor may apply event to issue.

    Tenant binding is checked first: an actor resolved for another company never passes.
    """
    from facilityops.services.lifecycle import Event
    event = Event(event)
    if not actor.is_system and actor.company_id != issue.company_id:
        raise Forbidden('Actor is not a member of the issue company')
    _require_active(actor)
    if event in (Event.ASSIGN, Event.APPROVE):
        _require_manager(actor, issue)
    elif event in (Event.ACCEPT, Event.REJECT, Event.AWAIT_PARTS, Event.RESUME, Event.COMPLETE):
        _require_assigned_contractor(actor, issue)
    elif event == Event.ESCALATE:
        if not (actor.is_system or actor.is_admin):
            raise Forbidden('Only the system or a company admin may escalate')
    elif event == Event.START_WORK:
        if not actor.is_admin:
            _require_assigned_contractor(actor, issue)
    return True


def authorize_create(actor, company_id: int, facility_id: int):
    if actor.company_id != company_id:
        raise Forbidden('Actor is not a member of the company')
    _require_active(actor)
    if not actor.covers_facility(facility_id):
        raise Forbidden('Facility outside manager scope')
    return True
