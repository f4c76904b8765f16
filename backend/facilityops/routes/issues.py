from __future__ import annotations
from flask import Blueprint, request, current_app, g
from facilityops.decorators.auth import require_permissions
from facilityops.decorators.audit import audit_log
from facilityops.utils.listing import cached_list_response, cached_item_response, apply_pagination, page_window
from facilityops.utils.filters import apply_filters
from facilityops.utils.sorting import apply_multi_sort
from facilityops.utils.durations import isoformat_z, utcnow
from facilityops.utils.validation import require_int
from facilityops.services.policy import assert_company_access
from facilityops.services.directory import MembershipDirectory
from facilityops.services.engine import IssueEngine
from facilityops.services.store import IssueStore
from facilityops.services.sla import evaluate
from facilityops.services.audit import activity_for, audit_dict
from facilityops.services.vendor_metrics import vendor_metrics_dict
from facilityops.errors import Forbidden
from facilityops.models.issue import Issue, IssueStatus, Priority, TaskType, TIMESTAMP_FIELDS
from facilityops import get_db

issues_bp = Blueprint('issues', __name__)

ISSUE_FILTERS = {
    'status': {'choices': list(IssueStatus), 'op': lambda q, v: q.filter(Issue.status == v)},
    'priority': {'choices': list(Priority), 'op': lambda q, v: q.filter(Issue.priority == v)},
    'task_type': {'choices': list(TaskType), 'op': lambda q, v: q.filter(Issue.task_type == v)},
    'facility_id': {'coerce': int, 'op': lambda q, v: q.filter(Issue.facility_id == v)},
    'assigned_to': {'coerce': int, 'op': lambda q, v: q.filter(Issue.assigned_to == v)},
}

ISSUE_SORTS = {
    'id': Issue.id,
    'created_at': Issue.created_at,
    'updated_at': Issue.updated_at,
    'priority': Issue.priority,
    'status': Issue.status,
    'sla_deadline': Issue.sla_deadline,
}


def _engine() -> IssueEngine:
    return IssueEngine.from_config(get_db(), current_app.config)


def _member(company_id: int):
    """The caller's membership in company_id; 403 when outside the token scope or not a member."""
    assert_company_access(company_id)
    actor = MembershipDirectory(get_db()).resolve(g.user_id, company_id)
    if actor is None:
        raise Forbidden('Not a member of this company')
    return actor


def _readable_issue(issue_id: int) -> Issue:
    issue = IssueStore(get_db()).get(issue_id)
    actor = _member(issue.company_id)
    if actor.is_contractor and issue.assigned_to != actor.user_id:
        raise Forbidden('Issue is not assigned to you')
    if not actor.covers_facility(issue.facility_id):
        raise Forbidden('Facility outside manager scope')
    return issue


def _scoped_issue(issue_id: int) -> Issue:
    issue = IssueStore(get_db()).get(issue_id)
    assert_company_access(issue.company_id)
    return issue


def issue_dict(issue: Issue, now=None):
    body = {
        'id': issue.id,
        'company_id': issue.company_id,
        'facility_id': issue.facility_id,
        'equipment_id': issue.equipment_id,
        'task_type': issue.task_type,
        'title': issue.title,
        'description': issue.description,
        'priority': issue.priority,
        'suggested_priority': issue.suggested_priority,
        'status': issue.status,
        'reported_by': issue.reported_by,
        'assigned_to': issue.assigned_to,
        'contractor_response': issue.contractor_response,
        'completion': issue.completion,
        'execution_metrics': issue.metrics.to_dict(),
        'rating': issue.rating,
        'feedback': issue.feedback,
        'sla_status': evaluate(issue, now or utcnow()).value,
        'version': issue.version,
        'updated_at': isoformat_z(issue.updated_at),
    }
    for name in TIMESTAMP_FIELDS + ('escalated_at', 'sla_deadline'):
        body[name] = isoformat_z(getattr(issue, name))
    return body


def _prefetch_issue(issue_id):
    issue = get_db().get(Issue, issue_id, populate_existing=True)
    return {'status': issue.status, 'assigned_to': issue.assigned_to} if issue else None


def _outcome_json(outcome):
    body = issue_dict(outcome.issue)
    if outcome.vendor_metrics is not None:
        body['vendor_metrics'] = vendor_metrics_dict(outcome.vendor_metrics)
    return body


def _payload():
    return request.get_json(silent=True) or {}


@issues_bp.route('', methods=['GET', 'HEAD'])
@require_permissions('ISSUE.READ')
def list_issues():
    session = get_db()
    company_id = require_int(request.args.get('company_id'), 'company_id')
    actor = _member(company_id)
    q = session.query(Issue).filter(Issue.company_id == company_id)
    if actor.is_contractor:
        q = q.filter(Issue.assigned_to == actor.user_id)
    elif actor.facility_ids and not actor.is_admin:
        q = q.filter(Issue.facility_id.in_(actor.facility_ids))
    q = apply_filters(q, ISSUE_FILTERS, request.args)
    q = apply_multi_sort(q, request.args.get('sort'), ISSUE_SORTS, Issue.id, default='-created_at')
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    now = utcnow()
    latest_ts = max((r.updated_at for r in rows if r.updated_at), default=None)
    return cached_list_response([issue_dict(r, now) for r in rows], total, limit, offset, latest_ts)


@issues_bp.post('')
@require_permissions('ISSUE.CREATE')
@audit_log('ISSUE.CREATE', entity='Issue', entity_id_key='id', meta_keys=['status', 'priority', 'facility_id', 'assigned_to'])
def create_issue():
    data = _payload()
    company_id = require_int(data.get('company_id'), 'company_id')
    assert_company_access(company_id)
    issue = _engine().create_issue(
        g.user_id,
        company_id=company_id,
        facility_id=data.get('facility_id'),
        title=data.get('title'),
        description=data.get('description'),
        priority=data.get('priority'),
        suggested_priority=data.get('suggested_priority'),
        task_type=data.get('task_type', TaskType.EQUIPMENT.value),
        equipment_id=data.get('equipment_id'),
        contractor_id=data.get('contractor_id'),
    )
    return issue_dict(issue), 201


@issues_bp.route('/<int:issue_id>', methods=['GET', 'HEAD'])
@require_permissions('ISSUE.READ')
def get_issue(issue_id: int):
    issue = _readable_issue(issue_id)
    return cached_item_response(issue_dict(issue), issue.updated_at)


def _transition_audit(action):
    return audit_log(
        action, entity='Issue', entity_id_key='id', entity_id_arg='issue_id',
        diff_keys=['status', 'assigned_to'], pre_fetch=lambda a, kw: _prefetch_issue(kw.get('issue_id')),
        meta_builder=lambda data, rv, a, kw: {'status': data.get('status'), 'version': data.get('version')},
    )


@issues_bp.post('/<int:issue_id>/assign')
@require_permissions('ISSUE.ASSIGN')
@_transition_audit('ISSUE.ASSIGN')
def assign_issue(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().assign_issue(g.user_id, issue_id, data.get('contractor_id'), data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/respond')
@require_permissions('ISSUE.RESPOND')
@_transition_audit('ISSUE.RESPOND')
def respond_to_issue(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().respond_to_issue(
        g.user_id, issue_id, data.get('decision'),
        reason=data.get('reason'), proposed_cost=data.get('proposed_cost'),
        proposal=data.get('proposal'), attachments=data.get('attachments'),
        expected_version=data.get('expected_version'),
    )
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/awaiting-parts')
@require_permissions('ISSUE.EXECUTE')
@_transition_audit('ISSUE.AWAITING_PARTS')
def set_awaiting_parts(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().set_awaiting_parts(g.user_id, issue_id, note=data.get('note'),
                                           expected_version=data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/resume')
@require_permissions('ISSUE.EXECUTE')
@_transition_audit('ISSUE.RESUME')
def resume_work(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().resume_work(g.user_id, issue_id, expected_version=data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/complete')
@require_permissions('ISSUE.EXECUTE')
@_transition_audit('ISSUE.COMPLETE')
def complete_issue(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().complete_issue(
        g.user_id, issue_id,
        execution_report=data.get('execution_report'),
        final_cost=data.get('final_cost'),
        work_performed=data.get('work_performed'),
        parts_used=data.get('parts_used'),
        proof_documents=data.get('proof_documents'),
        attachments=data.get('attachments'),
        expected_version=data.get('expected_version'),
    )
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/approve')
@require_permissions('ISSUE.APPROVE')
@_transition_audit('ISSUE.APPROVE')
def approve_issue(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().approve_issue(g.user_id, issue_id, rating=data.get('rating'), feedback=data.get('feedback'),
                                      expected_version=data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/escalate')
@require_permissions('ISSUE.ESCALATE')
@_transition_audit('ISSUE.ESCALATE')
def escalate_issue(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().escalate_issue(g.user_id, issue_id, reason=data.get('reason'),
                                       expected_version=data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.post('/<int:issue_id>/start')
@require_permissions('ISSUE.EXECUTE', 'ISSUE.ESCALATE', any_of=True)
@_transition_audit('ISSUE.START_WORK')
def start_work(issue_id: int):
    data = _payload()
    _scoped_issue(issue_id)
    outcome = _engine().start_work(g.user_id, issue_id, expected_version=data.get('expected_version'))
    return _outcome_json(outcome)


@issues_bp.get('/<int:issue_id>/metrics')
@require_permissions('ISSUE.READ')
def issue_metrics(issue_id: int):
    issue = _readable_issue(issue_id)
    stored, recomputed, consistent = _engine().verify_execution_metrics(issue.id)
    return {
        'id': issue.id,
        'stored': stored.to_dict(),
        'recomputed': recomputed.to_dict(),
        'consistent': consistent,
        'negative_fields': recomputed.negative_fields(),
        'sla_status': evaluate(issue, utcnow()).value,
        'sla_deadline': isoformat_z(issue.sla_deadline),
    }


@issues_bp.get('/<int:issue_id>/activity')
@require_permissions('ISSUE.READ')
def issue_activity(issue_id: int):
    issue = _readable_issue(issue_id)
    limit, offset = page_window()
    rows = activity_for('Issue', issue.id, limit=limit, offset=offset)
    return {'data': [audit_dict(r) for r in rows]}


@issues_bp.post('/sla/sweep')
@require_permissions('ISSUE.ESCALATE')
@audit_log('ISSUE.SLA.SWEEP', entity='Company', entity_id_key='company_id', meta_keys=['escalated'])
def sla_sweep():
    data = _payload()
    company_id = require_int(data.get('company_id'), 'company_id')
    actor = _member(company_id)
    if not actor.is_admin:
        raise Forbidden('Company admin required')
    escalated = _engine().escalate_overdue(company_id=company_id)
    return {'company_id': company_id, 'escalated': [i.id for i in escalated]}
