from __future__ import annotations
"""Vendor Metrics Accumulator.

Folds one issue sample at a time into a contractor's running statistics:

    newAvg = round((oldAvg * oldCount + sample) / (oldCount + 1))

Each (issue, dimension) pair is folded at most once; the `vendor_metric_folds` ledger is
the idempotency record, so a replayed or retried request cannot double-count. The row
update is a version-checked read-modify-write retried a bounded number of times.
"""
import logging
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import select
from facilityops.models.vendor_metrics import VendorMetrics, VendorMetricFold
from facilityops.services.store import VendorMetricsStore
from facilityops.utils.durations import round_half_up
from facilityops.errors import Conflict

logger = logging.getLogger(__name__)

DEFAULT_CAS_ATTEMPTS = 5


def incremental_mean(old_avg: Optional[int], old_count: int, sample: int) -> Tuple[int, int]:
    """Return (new_avg, new_count). A missing old average counts as 0."""
    new_count = (old_count or 0) + 1
    new_avg = round_half_up(((old_avg or 0) * (old_count or 0) + sample) / new_count)
    return new_avg, new_count


def fold_values(metrics: VendorMetrics, dimension: str, sample: Optional[int]) -> Dict[str, Any]:
    """Column values after folding sample into metrics; {} when nothing changes."""
    if dimension == VendorMetricFold.DIMENSION_RESPONSE:
        if sample is None:
            return {}
        avg, count = incremental_mean(metrics.avg_response_minutes, metrics.response_count, sample)
        return {'avg_response_minutes': avg, 'response_count': count}
    if dimension == VendorMetricFold.DIMENSION_COMPLETION:
        values: Dict[str, Any] = {'total_jobs': (metrics.total_jobs or 0) + 1}
        if sample is not None:
            avg, count = incremental_mean(metrics.avg_completion_minutes, metrics.completion_count, sample)
            values.update({'avg_completion_minutes': avg, 'completion_count': count})
        return values
    if dimension == VendorMetricFold.DIMENSION_DELAY:
        return {'delayed_jobs_count': (metrics.delayed_jobs_count or 0) + 1}
    raise ValueError(f'Unknown vendor metric dimension {dimension}')


class VendorMetricsAccumulator:
    def __init__(self, session, max_attempts: int = DEFAULT_CAS_ATTEMPTS):
        self.session = session
        self.store = VendorMetricsStore(session)
        self.max_attempts = max(1, int(max_attempts))

    def already_folded(self, issue_id: int, dimension: str) -> bool:
        return self.session.execute(
            select(VendorMetricFold.id).where(VendorMetricFold.issue_id == issue_id, VendorMetricFold.dimension == dimension)
        ).first() is not None

    def fold(self, company_id: int, contractor_id: Optional[int], issue_id: int, dimension: str,
             sample: Optional[int]) -> Optional[VendorMetrics]:
        """Fold sample for (issue, dimension) into the contractor's row.

        Returns the updated VendorMetrics, or None when there is nothing to fold (no
        contractor, no sample, or the pair was already folded). Does not commit.
        """
        if contractor_id is None:
            return None
        if self.already_folded(issue_id, dimension):
            logger.info('Skipping duplicate %s fold for issue %s', dimension, issue_id)
            return None
        for attempt in range(1, self.max_attempts + 1):
            metrics = self.store.get_or_create(company_id, contractor_id)
            values = fold_values(metrics, dimension, sample)
            if not values:
                return None
            if self.store.compare_and_swap(metrics, values):
                break
            logger.warning('Vendor metrics CAS miss for contractor %s (attempt %s/%s)', contractor_id, attempt, self.max_attempts)
        else:
            raise Conflict('Vendor metrics were modified concurrently; retry the request')
        self.session.add(VendorMetricFold(
            issue_id=issue_id, company_id=company_id, contractor_id=contractor_id,
            dimension=dimension, sample=sample,
        ))
        # the unique (issue_id, dimension) constraint is the backstop against a racing fold
        self.session.flush()
        return metrics


def vendor_metrics_dict(metrics: VendorMetrics) -> Dict[str, Any]:
    return {
        'company_id': metrics.company_id,
        'contractor_id': metrics.contractor_id,
        'avg_response_minutes': metrics.avg_response_minutes,
        'avg_completion_minutes': metrics.avg_completion_minutes,
        'response_count': metrics.response_count,
        'completion_count': metrics.completion_count,
        'delayed_jobs_count': metrics.delayed_jobs_count,
        'total_jobs': metrics.total_jobs,
        'version': metrics.version,
    }


__all__ = ['incremental_mean', 'fold_values', 'VendorMetricsAccumulator', 'vendor_metrics_dict', 'DEFAULT_CAS_ATTEMPTS']
