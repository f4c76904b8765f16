from __future__ import annotations
"""Record stores: point reads plus version-checked (compare-and-swap) writes.

A write only lands if the row still carries the version (and, for issues, the status)
the caller read. Callers commit or roll back; the stores never do.
"""
import logging
from typing import Any, Dict, Optional
from sqlalchemy import select, update
from facilityops.models.issue import Issue
from facilityops.models.vendor_metrics import VendorMetrics
from facilityops.errors import NotFound, Conflict

logger = logging.getLogger(__name__)


def _plain(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: getattr(v, 'value', v) for k, v in values.items()}


class IssueStore:
    def __init__(self, session):
        self.session = session

    def get(self, issue_id: int) -> Issue:
        issue = self.session.get(Issue, issue_id, populate_existing=True)
        if not issue:
            raise NotFound('Issue not found')
        return issue

    def compare_and_swap(self, issue: Issue, changes: Dict[str, Any]) -> Issue:
        """Apply changes iff the stored row still has issue.status and issue.version.

        Raises Conflict when another writer got there first.
        """
        expected_status, expected_version = issue.status, issue.version
        stmt = (
            update(Issue)
            .where(Issue.id == issue.id, Issue.status == expected_status, Issue.version == expected_version)
            .values(**_plain(changes), version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            logger.warning('CAS conflict on issue %s (expected status=%s version=%s)', issue.id, expected_status, expected_version)
            raise Conflict('Issue was modified concurrently; re-fetch and retry')
        self.session.refresh(issue)
        return issue


class VendorMetricsStore:
    def __init__(self, session):
        self.session = session

    def get(self, company_id: int, contractor_id: int) -> Optional[VendorMetrics]:
        return self.session.execute(
            select(VendorMetrics)
            .where(VendorMetrics.company_id == company_id, VendorMetrics.contractor_id == contractor_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_or_create(self, company_id: int, contractor_id: int) -> VendorMetrics:
        metrics = self.get(company_id, contractor_id)
        if metrics is None:
            metrics = VendorMetrics(
                company_id=company_id, contractor_id=contractor_id,
                avg_response_minutes=None, avg_completion_minutes=None,
                response_count=0, completion_count=0, delayed_jobs_count=0, total_jobs=0, version=1,
            )
            self.session.add(metrics)
            self.session.flush()
        return metrics

    def compare_and_swap(self, metrics: VendorMetrics, values: Dict[str, Any]) -> bool:
        """Version-checked write; False (nothing written) when the row moved on."""
        result = self.session.execute(
            update(VendorMetrics)
            .where(VendorMetrics.id == metrics.id, VendorMetrics.version == metrics.version)
            .values(**values, version=metrics.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.refresh(metrics)
        return True


__all__ = ['IssueStore', 'VendorMetricsStore']
