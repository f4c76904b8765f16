from tests.test_utils_seed import seed_company
from tests.test_lifecycle_helpers import jwt_headers, make_engine, open_issue


def test_assignee_receives_notification(client):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    h = jwt_headers(seed.contractor, role='contractor')
    resp = client.get('/notifications', headers=h)
    assert resp.status_code == 200
    rows = [n for n in resp.get_json()['data'] if n['issue_id'] == issue.id]
    assert len(rows) == 1
    assert rows[0]['type'] == 'issue_assigned'
    assert rows[0]['read'] is False
    assert f'#{issue.id}' in rows[0]['message']


def test_mark_read_and_unread_filter(client):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    h = jwt_headers(seed.contractor, role='contractor')
    unread = client.get(f'/notifications?unread=true&company_id={seed.company_id}', headers=h).get_json()['data']
    assert len(unread) == 1
    resp = client.post(f"/notifications/{unread[0]['id']}/read", headers=h)
    assert resp.status_code == 200
    assert resp.get_json()['read'] is True
    unread = client.get(f'/notifications?unread=true&company_id={seed.company_id}', headers=h).get_json()['data']
    assert unread == []


def test_cannot_read_someone_elses_notification(client):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    mine = client.get(f'/notifications?company_id={seed.company_id}',
                      headers=jwt_headers(seed.contractor, role='contractor')).get_json()['data']
    resp = client.post(f"/notifications/{mine[0]['id']}/read", headers=jwt_headers(seed.contractor2, role='contractor'))
    assert resp.status_code == 404


def test_actor_is_not_notified_of_own_action(client):
    seed = seed_company()
    engine = make_engine()
    issue = open_issue(engine, seed)
    engine.assign_issue(seed.manager, issue.id, seed.contractor)
    rows = client.get(f'/notifications?company_id={seed.company_id}',
                      headers=jwt_headers(seed.manager, role='facility_manager')).get_json()['data']
    assert rows == []
