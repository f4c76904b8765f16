def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_missing_token_is_rejected(client):
    resp = client.get('/issues?company_id=1')
    assert resp.status_code == 401


def test_health(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}


def test_internal_error_shape(client, monkeypatch):
    from tests.test_utils_seed import seed_company
    from tests.test_lifecycle_helpers import jwt_headers
    import facilityops.routes.reports as reports_mod
    seed = seed_company()

    def boom(*a, **k):
        raise RuntimeError('explode')

    monkeypatch.setattr(reports_mod, 'sla_summary', boom)
    headers = jwt_headers(seed.admin, role='company_admin')
    resp = client.get(f'/reports/sla?company_id={seed.company_id}', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
