from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, DateTime, UniqueConstraint, func
from .membership import Base


class VendorMetrics(Base):
    """Running performance statistics for one contractor inside one company.

    Written only by the vendor metrics accumulator; never deleted.
    """
    __tablename__ = 'vendor_metrics'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    contractor_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    avg_response_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    avg_completion_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    response_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delayed_jobs_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint('company_id', 'contractor_id', name='uq_vendor_metrics_pair'),)


class VendorMetricFold(Base):
    """Ledger of folds already applied; one row per (issue, dimension)."""
    __tablename__ = 'vendor_metric_folds'
    DIMENSION_RESPONSE = 'response'
    DIMENSION_COMPLETION = 'completion'
    DIMENSION_DELAY = 'delay'
    ALL_DIMENSIONS = (DIMENSION_RESPONSE, DIMENSION_COMPLETION, DIMENSION_DELAY)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    issue_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contractor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    dimension: Mapped[str] = mapped_column(String(16), nullable=False)
    sample: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint('issue_id', 'dimension', name='uq_fold_issue_dimension'),)


__all__ = ['VendorMetrics', 'VendorMetricFold']
