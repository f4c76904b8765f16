from __future__ import annotations
from flask import Blueprint, request, g
from sqlalchemy import func, select
from facilityops import get_db
from facilityops.decorators.auth import require_permissions
from facilityops.errors import Forbidden
from facilityops.models.issue import Issue
from facilityops.services.directory import MembershipDirectory
from facilityops.services.policy import assert_company_access
from facilityops.services.sla import SlaStatus, evaluate
from facilityops.utils.durations import round_half_up, utcnow, to_utc
from facilityops.utils.listing import cached_list_response, cached_item_response, page_window
from facilityops.utils.validation import require_int

rpt_bp = Blueprint('reports', __name__)


def _company_from_args() -> int:
    company_id = require_int(request.args.get('company_id'), 'company_id')
    assert_company_access(company_id)
    actor = MembershipDirectory(get_db()).resolve(g.user_id, company_id)
    if actor is None or not actor.is_manager:
        raise Forbidden('Facility manager or company admin required')
    return company_id


def _mean(values):
    values = [v for v in values if v is not None]
    return round_half_up(sum(values) / len(values)) if values else None


def sla_summary(issues, now):
    """Compliance figures over a company's issues as of `now`.

    compliance_pct only counts finished issues that had a deadline; open overdue issues
    are reported separately since their outcome is not known yet.
    """
    counts = {s.value: 0 for s in SlaStatus}
    response, execution, negative = [], [], []
    for issue in issues:
        counts[evaluate(issue, now).value] += 1
        metrics = issue.metrics
        response.append(metrics.response_minutes)
        execution.append(metrics.execution_minutes)
        if metrics.negative_fields():
            negative.append(issue.id)
    scored = counts[SlaStatus.ON_TIME.value] + counts[SlaStatus.DELAYED.value]
    return {
        'total_issues': len(issues),
        'sla_status_counts': counts,
        'on_time_count': counts[SlaStatus.ON_TIME.value],
        'delayed_count': counts[SlaStatus.DELAYED.value],
        'overdue_open_count': counts[SlaStatus.OVERDUE.value],
        'compliance_pct': round(100.0 * counts[SlaStatus.ON_TIME.value] / scored, 2) if scored else None,
        'avg_response_minutes': _mean(response),
        'avg_execution_minutes': _mean(execution),
        # data-quality flag: timestamps out of order somewhere in these issues
        'negative_duration_issue_ids': negative,
    }


def _latest_update(company_id: int):
    latest = get_db().execute(
        select(func.max(Issue.updated_at)).where(Issue.company_id == company_id)
    ).scalar_one_or_none()
    return to_utc(latest)


@rpt_bp.route('/sla', methods=['GET', 'HEAD'])
@require_permissions('RPT.READ')
def sla_report():
    company_id = _company_from_args()
    issues = get_db().query(Issue).filter(Issue.company_id == company_id).all()
    body = {'id': company_id, 'company_id': company_id, 'as_of': utcnow().replace(microsecond=0).isoformat()}
    body.update(sla_summary(issues, utcnow()))
    return cached_item_response(body, _latest_update(company_id))


@rpt_bp.route('/issues', methods=['GET', 'HEAD'])
@require_permissions('RPT.READ')
def issue_status_report():
    """Issue counts per status and priority for one company."""
    session = get_db()
    company_id = _company_from_args()
    q = (
        session.query(Issue.status, Issue.priority, func.count(Issue.id))
        .filter(Issue.company_id == company_id)
        .group_by(Issue.status, Issue.priority)
    )
    rows = [
        {'id': f'{status}:{priority}', 'status': status, 'priority': priority, 'count': int(count)}
        for status, priority, count in q.all()
    ]
    rows.sort(key=lambda r: (r['status'], r['priority']))
    limit, offset = page_window()
    return cached_list_response(rows[offset:offset + limit], len(rows), limit, offset, _latest_update(company_id))
