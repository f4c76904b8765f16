from __future__ import annotations
from flask import Blueprint, request, g
from facilityops import get_db
from facilityops.decorators.auth import require_permissions
from facilityops.errors import Forbidden, NotFound
from facilityops.models.membership import CompanyMember
from facilityops.models.vendor_metrics import VendorMetrics
from facilityops.services.directory import MembershipDirectory
from facilityops.services.policy import assert_company_access
from facilityops.services.store import VendorMetricsStore
from facilityops.services.vendor_metrics import vendor_metrics_dict
from facilityops.utils.listing import apply_pagination, cached_list_response, cached_item_response
from facilityops.utils.sorting import apply_multi_sort
from facilityops.utils.validation import require_int

vendors_bp = Blueprint('vendors', __name__)

VENDOR_SORTS = {
    'contractor_id': VendorMetrics.contractor_id,
    'avg_response_minutes': VendorMetrics.avg_response_minutes,
    'avg_completion_minutes': VendorMetrics.avg_completion_minutes,
    'delayed_jobs_count': VendorMetrics.delayed_jobs_count,
    'total_jobs': VendorMetrics.total_jobs,
    'updated_at': VendorMetrics.updated_at,
}
# fewest delays first, then fastest completion
DEFAULT_RANKING = 'delayed_jobs_count,avg_completion_minutes,avg_response_minutes'


def _vendor_json(metrics: VendorMetrics, name=None):
    body = vendor_metrics_dict(metrics)
    body['id'] = metrics.contractor_id
    body['name'] = name
    body['delay_rate'] = round(metrics.delayed_jobs_count / metrics.total_jobs, 4) if metrics.total_jobs else None
    return body


def _caller(company_id: int):
    assert_company_access(company_id)
    actor = MembershipDirectory(get_db()).resolve(g.user_id, company_id)
    if actor is None or not actor.is_active:
        raise Forbidden('Not a member of this company')
    return actor


@vendors_bp.route('/metrics', methods=['GET', 'HEAD'])
@require_permissions('VENDOR.READ')
def vendor_ranking():
    session = get_db()
    company_id = require_int(request.args.get('company_id'), 'company_id')
    _caller(company_id)
    q = (
        session.query(VendorMetrics, CompanyMember.name)
        .outerjoin(CompanyMember, (CompanyMember.company_id == VendorMetrics.company_id)
                   & (CompanyMember.user_id == VendorMetrics.contractor_id))
        .filter(VendorMetrics.company_id == company_id)
    )
    q = apply_multi_sort(q, request.args.get('sort'), VENDOR_SORTS, VendorMetrics.contractor_id, default=DEFAULT_RANKING)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((m.updated_at for m, _ in rows if m.updated_at), default=None)
    return cached_list_response([_vendor_json(m, name) for m, name in rows], total, limit, offset, latest_ts)


@vendors_bp.route('/<int:contractor_id>/metrics', methods=['GET', 'HEAD'])
@require_permissions('VENDOR.READ', 'ISSUE.RESPOND', any_of=True)
def contractor_metrics(contractor_id: int):
    session = get_db()
    company_id = require_int(request.args.get('company_id'), 'company_id')
    actor = _caller(company_id)
    if actor.is_contractor and actor.user_id != contractor_id:
        raise Forbidden('Contractors may only view their own metrics')
    contractor = MembershipDirectory(session).resolve(contractor_id, company_id)
    if contractor is None or not contractor.is_contractor:
        raise NotFound('Contractor not found')
    metrics = VendorMetricsStore(session).get(company_id, contractor_id)
    if metrics is None:
        # no folded jobs yet
        metrics = VendorMetrics(
            company_id=company_id, contractor_id=contractor_id, avg_response_minutes=None,
            avg_completion_minutes=None, response_count=0, completion_count=0,
            delayed_jobs_count=0, total_jobs=0, version=0,
        )
    return cached_item_response(_vendor_json(metrics, contractor.name), metrics.updated_at)
