from sqlalchemy import select
from facilityops import get_db
from facilityops.models.audit import AuditLog
from tests.test_utils_seed import seed_company
from tests.test_lifecycle_helpers import jwt_headers


def _audits(issue_id):
    session = get_db()
    return session.execute(
        select(AuditLog).where(AuditLog.entity == 'Issue', AuditLog.entity_id == str(issue_id)).order_by(AuditLog.id)
    ).scalars().all()


def test_issue_transitions_are_audited_with_status_diff(client):
    seed = seed_company()
    mgr = jwt_headers(seed.manager, role='facility_manager')
    con = jwt_headers(seed.contractor, role='contractor')
    resp = client.post('/issues', json={
        'company_id': seed.company_id, 'facility_id': 3, 'title': 'Lift stuck', 'description': 'Between floors',
        'priority': 'high', 'equipment_id': 5,
    }, headers=mgr)
    issue_id = resp.get_json()['id']
    client.post(f'/issues/{issue_id}/assign', json={'contractor_id': seed.contractor}, headers=mgr)
    client.post(f'/issues/{issue_id}/respond', json={'decision': 'accepted'}, headers=con)

    logs = _audits(issue_id)
    assert [log.action for log in logs] == ['ISSUE.CREATE', 'ISSUE.ASSIGN', 'ISSUE.RESPOND']
    assert logs[0].meta['priority'] == 'high'
    assert logs[1].actor_user_id == seed.manager
    assert logs[1].meta['changes']['status'] == {'before': 'created', 'after': 'assigned'}
    assert logs[1].meta['changes']['assigned_to'] == {'before': None, 'after': seed.contractor}
    assert logs[2].actor_user_id == seed.contractor
    assert 'ISSUE.RESPOND' in logs[2].perms_snapshot['perms']


def test_failed_transition_is_not_audited(client):
    seed = seed_company()
    mgr = jwt_headers(seed.manager, role='facility_manager')
    resp = client.post('/issues', json={
        'company_id': seed.company_id, 'facility_id': 3, 'title': 'Lift stuck', 'description': 'Between floors',
        'priority': 'high', 'equipment_id': 5,
    }, headers=mgr)
    issue_id = resp.get_json()['id']
    resp = client.post(f'/issues/{issue_id}/approve', json={}, headers=mgr)
    assert resp.status_code == 400
    assert [log.action for log in _audits(issue_id)] == ['ISSUE.CREATE']


def test_activity_endpoint_lists_audit_trail(client):
    seed = seed_company()
    mgr = jwt_headers(seed.manager, role='facility_manager')
    resp = client.post('/issues', json={
        'company_id': seed.company_id, 'facility_id': 3, 'title': 'Lift stuck', 'description': 'Between floors',
        'priority': 'medium', 'equipment_id': 5, 'contractor_id': seed.contractor,
    }, headers=mgr)
    issue_id = resp.get_json()['id']
    resp = client.get(f'/issues/{issue_id}/activity', headers=mgr)
    assert resp.status_code == 200
    rows = resp.get_json()['data']
    assert [r['action'] for r in rows] == ['ISSUE.CREATE']
    assert rows[0]['meta']['assigned_to'] == seed.contractor
