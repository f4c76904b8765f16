from __future__ import annotations
"""Per-issue execution durations.

Always recomputed from the issue's own timestamps, never patched: calling it twice on the
same state yields the same value, so the stored copy can be verified at any time.
"""
import logging
from typing import Any, Mapping

from facilityops.models.issue import ExecutionMetrics
from facilityops.utils.durations import diff_minutes

logger = logging.getLogger(__name__)


def compute_execution_metrics(timestamps: Mapping[str, Any]) -> ExecutionMetrics:
    ts = timestamps
    execution_start = ts.get('accepted_at') or ts.get('responded_at') or ts.get('assigned_at')
    return ExecutionMetrics(
        response_minutes=diff_minutes(ts.get('assigned_at'), ts.get('responded_at')),
        execution_minutes=diff_minutes(execution_start, ts.get('completed_at')),
        total_minutes=diff_minutes(ts.get('created_at'), ts.get('completed_at')),
        approval_minutes=diff_minutes(ts.get('completed_at'), ts.get('approved_at')),
    )


def metrics_for_issue(issue) -> ExecutionMetrics:
    return compute_execution_metrics(issue.timestamps())


def verify_execution_metrics(issue):
    """Compare the stored metrics with a from-scratch recomputation.

    Returns (stored, recomputed, consistent).
    """
    stored = issue.metrics
    recomputed = metrics_for_issue(issue)
    consistent = stored == recomputed
    if not consistent:
        logger.warning('Execution metrics drift on issue %s: stored=%s recomputed=%s', issue.id, stored, recomputed)
    return stored, recomputed, consistent


def flag_negative_durations(issue_id, metrics: ExecutionMetrics):
    negative = metrics.negative_fields()
    if negative:
        logger.warning('Issue %s has negative durations %s; check its timestamps', issue_id, ', '.join(negative))
    return negative


__all__ = ['compute_execution_metrics', 'metrics_for_issue', 'verify_execution_metrics', 'flag_negative_durations']
