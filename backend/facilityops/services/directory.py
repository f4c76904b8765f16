from __future__ import annotations
"""Identity / role lookups for the lifecycle engine.

Answers "who is this user inside this company": role, contractor standing and facility
scope. Backed by the company_members table.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from sqlalchemy import select
from facilityops.models.membership import CompanyMember

SYSTEM_USER_ID = 0
ROLE_SYSTEM = 'system'


@dataclass(frozen=True)
class Actor:
    user_id: int
    company_id: Optional[int]
    role: str
    status: str = CompanyMember.STATUS_ACTIVE
    name: str = ''
    email: Optional[str] = None
    phone: Optional[str] = None
    facility_ids: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_system(self) -> bool:
        return self.role == ROLE_SYSTEM

    @property
    def is_active(self) -> bool:
        return self.status == CompanyMember.STATUS_ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == CompanyMember.ROLE_COMPANY_ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role in (CompanyMember.ROLE_COMPANY_ADMIN, CompanyMember.ROLE_FACILITY_MANAGER)

    @property
    def is_contractor(self) -> bool:
        return self.role == CompanyMember.ROLE_CONTRACTOR

    def covers_facility(self, facility_id: Optional[int]) -> bool:
        if self.role != CompanyMember.ROLE_FACILITY_MANAGER or not self.facility_ids:
            return True
        return facility_id in self.facility_ids


def system_actor(company_id: Optional[int] = None) -> Actor:
    return Actor(user_id=SYSTEM_USER_ID, company_id=company_id, role=ROLE_SYSTEM, name='System')


def _to_actor(member: CompanyMember) -> Actor:
    return Actor(
        user_id=member.user_id,
        company_id=member.company_id,
        role=member.role,
        status=member.status,
        name=member.name,
        email=member.email,
        phone=member.phone,
        facility_ids=tuple(member.facility_ids or ()),
    )


class MembershipDirectory:
    def __init__(self, session):
        self.session = session

    def resolve(self, user_id: int, company_id: int) -> Optional[Actor]:
        member = self.session.execute(
            select(CompanyMember).where(CompanyMember.company_id == company_id, CompanyMember.user_id == user_id)
        ).scalar_one_or_none()
        return _to_actor(member) if member else None

    def company_admins(self, company_id: int) -> List[Actor]:
        rows = self.session.execute(
            select(CompanyMember).where(
                CompanyMember.company_id == company_id,
                CompanyMember.role == CompanyMember.ROLE_COMPANY_ADMIN,
                CompanyMember.status == CompanyMember.STATUS_ACTIVE,
            ).order_by(CompanyMember.user_id.asc())
        ).scalars().all()
        return [_to_actor(m) for m in rows]


__all__ = ['Actor', 'MembershipDirectory', 'system_actor', 'SYSTEM_USER_ID', 'ROLE_SYSTEM']
