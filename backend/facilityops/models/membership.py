from __future__ import annotations
from typing import Optional, List
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, JSON, UniqueConstraint, DateTime, text

Base = declarative_base()


class CompanyMember(Base):
    """A user's binding to a company: tenant role plus contractor standing.

    Profile fields (name, email, phone) are the current values; issues copy them into
    a frozen reporter snapshot at creation time.
    """
    __tablename__ = 'company_members'
    ROLE_COMPANY_ADMIN = 'company_admin'
    ROLE_FACILITY_MANAGER = 'facility_manager'
    ROLE_CONTRACTOR = 'contractor'
    ALL_ROLES = (ROLE_COMPANY_ADMIN, ROLE_FACILITY_MANAGER, ROLE_CONTRACTOR)
    STATUS_ACTIVE = 'active'
    STATUS_SUSPENDED = 'suspended'
    ALL_STATUSES = (STATUS_ACTIVE, STATUS_SUSPENDED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(128))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    # facility managers may be limited to a subset of facilities; empty means all
    facility_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    updated_at: Mapped[str] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'), server_onupdate=text('CURRENT_TIMESTAMP'))

    __table_args__ = (UniqueConstraint('company_id', 'user_id', name='uq_company_member'),)


__all__ = ['Base', 'CompanyMember']
