"""Test seeding utilities to reduce duplication.

Every test that needs people gets a fresh company (next free company id) so tests never
see each other's issues, metrics or notifications.
"""
from dataclasses import dataclass
from typing import Iterable, Optional
from sqlalchemy import func, select
from facilityops import get_db
from facilityops.models.membership import CompanyMember


def next_company_id() -> int:
    session = get_db()
    current = session.execute(select(func.max(CompanyMember.company_id))).scalar()
    return (current or 0) + 1


def ensure_member(company_id: int, user_id: int, role: str, name: Optional[str] = None,
                  status: str = CompanyMember.STATUS_ACTIVE, facility_ids: Iterable[int] = (),
                  email: Optional[str] = None, phone: Optional[str] = None) -> CompanyMember:
    """Idempotently ensure a membership exists; updates role/status if it already does."""
    session = get_db()
    m = session.query(CompanyMember).filter_by(company_id=company_id, user_id=user_id).one_or_none()
    if not m:
        m = CompanyMember(company_id=company_id, user_id=user_id)
        session.add(m)
    m.role = role
    m.status = status
    m.name = name or f'user-{user_id}'
    m.email = email
    m.phone = phone
    m.facility_ids = list(facility_ids)
    session.commit()
    return m


@dataclass
class CompanySeed:
    company_id: int
    admin: int
    manager: int
    contractor: int
    contractor2: int


def seed_company(manager_facilities: Iterable[int] = ()) -> CompanySeed:
    """New company with an admin, a facility manager and two contractors."""
    cid = next_company_id()
    base = cid * 100
    ensure_member(cid, base + 1, CompanyMember.ROLE_COMPANY_ADMIN, 'Dana Admin', email='admin@example.com')
    ensure_member(cid, base + 2, CompanyMember.ROLE_FACILITY_MANAGER, 'Sam Manager', facility_ids=manager_facilities,
                  email='sam@example.com', phone='+1 555 0102')
    ensure_member(cid, base + 3, CompanyMember.ROLE_CONTRACTOR, 'Acme HVAC', email='ops@acme.test')
    ensure_member(cid, base + 4, CompanyMember.ROLE_CONTRACTOR, 'Bolt Electric', email='jobs@bolt.test')
    return CompanySeed(company_id=cid, admin=base + 1, manager=base + 2, contractor=base + 3, contractor2=base + 4)


__all__ = ['next_company_id', 'ensure_member', 'seed_company', 'CompanySeed']
