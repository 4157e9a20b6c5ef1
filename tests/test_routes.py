import io
import json

from conftest import _login, certificate_data
from models import ActivityLog, LogAction


def _create(client, **overrides):
    r = client.post('/api/certificates', json=certificate_data(**overrides))
    assert r.status_code == 201, r.get_json()
    return r.get_json()['certificate']


def test_health(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.get_json()['database'] == 'ok'


def test_login_rejects_bad_password(client):
    r = _login(client, 'staff@acme.example', 'wrong')
    assert r.status_code == 401
    assert r.get_json()['success'] is False


def test_api_requires_login(client):
    r = client.post('/api/certificates', json=certificate_data())
    assert r.status_code == 401


def test_create_and_verify_flow(client):
    assert _login(client, 'staff@acme.example').status_code == 200
    cert = _create(client, recipientName='Jane Doe')
    token = cert['verification_id']
    assert len(token) == 16
    assert cert['verification_url'].endswith(f'/verify/{token}')

    client.post('/logout')
    r = client.get(f'/api/verify/certificate/{token}')
    assert r.status_code == 200
    body = r.get_json()['certificate']
    assert body['recipient_name'] == 'Jane Doe'
    assert body['integrity'] == 'intact'
    assert 'recipient_email' not in body
    assert 'id' not in body

    page = client.get(f'/verify/{token}')
    assert page.status_code == 200


def test_camel_case_payload_accepted(client):
    _login(client, 'staff@acme.example')
    r = client.post('/api/certificates', json={
        'title': 'Certificate of Completion',
        'recipientName': 'Jane Doe',
        'recipientEmail': 'jane@example.com',
        'issueDate': '2024-01-01',
        'type': 'course',
    })
    assert r.status_code == 201
    assert r.get_json()['certificate']['certificate_type'] == 'course'


def test_validation_error_is_400(client):
    _login(client, 'staff@acme.example')
    r = client.post('/api/certificates', json=certificate_data(issue_date='2024-06-01', expiry_date='2024-01-01'))
    assert r.status_code == 400
    body = r.get_json()
    assert body['success'] is False
    assert 'expiry_date' in body['errors']


def test_foreign_institution_is_403(client, seed):
    _login(client, 'staff@other.example')
    r = client.post('/api/certificates', json=certificate_data(institution_id=seed.acme_id))
    assert r.status_code == 403


def test_unknown_token_is_404(client):
    assert client.get('/api/verify/certificate/neverIssued00000').status_code == 404
    assert client.get('/verify/neverIssued00000').status_code == 404
    assert client.get('/api/verify/certificate/neverIssued00000/download').status_code == 404
    assert client.get('/api/verify/lookup?id=%27%20OR%201=1').status_code == 404
    assert client.get('/api/verify/lookup').status_code == 400


def test_lookup_accepts_both_identifiers(client):
    _login(client, 'staff@acme.example')
    cert = _create(client)
    a = client.get(f"/api/verify/lookup?id={cert['verification_id']}").get_json()['certificate']
    b = client.get(f"/api/verify/lookup?id={cert['id']}").get_json()['certificate']
    assert a == b


def test_multipart_upload_and_download(client):
    _login(client, 'staff@acme.example')
    content = b'%PDF-1.4 institution supplied diploma'
    form = dict(certificate_data())
    form['file'] = (io.BytesIO(content), 'diploma.pdf', 'application/pdf')
    r = client.post('/api/certificates', data=form, content_type='multipart/form-data')
    assert r.status_code == 201
    cert = r.get_json()['certificate']
    assert cert['artifact_kind'] == 'upload'

    d = client.get(f"/api/verify/certificate/{cert['verification_id']}/download")
    assert d.status_code == 200
    assert d.data == content
    assert 'attachment' in d.headers['Content-Disposition']

    own = client.get(f"/api/certificates/{cert['id']}/artifact")
    assert own.data == content


def test_multipart_design_json(client):
    _login(client, 'staff@acme.example')
    form = dict(certificate_data())
    form['design'] = json.dumps({'accent_color': '#10b981', 'show_border': 'false'})
    r = client.post('/api/certificates', data=form, content_type='multipart/form-data')
    assert r.status_code == 201
    cert = r.get_json()['certificate']
    assert cert['artifact_kind'] == 'png'
    assert cert['design']['show_border'] is False


def test_verify_upload(client):
    _login(client, 'staff@acme.example')
    cert = _create(client)
    pdf = client.get(f"/api/certificates/{cert['id']}/artifact").data
    client.post('/logout')

    r = client.post('/api/verify/upload', data={'file': (io.BytesIO(pdf), 'certificate.pdf')},
                    content_type='multipart/form-data')
    assert r.status_code == 200
    assert r.get_json()['certificate']['verification_id'] == cert['verification_id']

    r = client.post('/api/verify/upload', data={'file': (io.BytesIO(b'%PDF-forged'), 'certificate.pdf')},
                    content_type='multipart/form-data')
    assert r.status_code == 404
    r = client.post('/api/verify/upload', data={}, content_type='multipart/form-data')
    assert r.status_code == 400


def test_update_and_revoke(client):
    _login(client, 'staff@acme.example')
    cert = _create(client)
    r = client.patch(f"/api/certificates/{cert['id']}", json={'title': 'Renamed'})
    assert r.status_code == 200
    assert r.get_json()['certificate']['title'] == 'Renamed'

    r = client.put(f"/api/certificates/{cert['id']}", json={'verificationId': 'forgedToken00000'})
    assert r.status_code == 400

    r = client.patch(f"/api/certificates/{cert['id']}", json={'status': 'REVOKED'})
    assert r.status_code == 200
    verified = client.get(f"/api/verify/certificate/{cert['verification_id']}").get_json()['certificate']
    assert verified['status'] == 'REVOKED'
    assert verified['valid'] is False


def test_other_institution_cannot_read_or_update(client):
    _login(client, 'staff@acme.example')
    cert = _create(client)
    client.post('/logout')
    _login(client, 'staff@other.example')
    assert client.get(f"/api/certificates/{cert['id']}").status_code == 403
    assert client.patch(f"/api/certificates/{cert['id']}", json={'title': 'x'}).status_code == 403
    assert client.patch('/api/certificates/does-not-exist', json={'title': 'x'}).status_code == 403


def test_list_and_recipient_views(client):
    _login(client, 'staff@acme.example')
    _create(client)
    _create(client, recipient_email='someone@example.com')
    listed = client.get('/api/certificates').get_json()['certificates']
    assert len(listed) == 2
    client.post('/logout')

    _login(client, 'jane@example.com')
    mine = client.get('/api/user/certificates').get_json()['certificates']
    assert len(mine) == 1
    assert mine[0]['recipient_email'] == 'jane@example.com'


def test_admin_logs_and_stats(client):
    _login(client, 'staff@acme.example')
    cert = _create(client)
    client.get(f"/api/verify/certificate/{cert['verification_id']}")
    client.get('/api/verify/certificate/neverIssued00000')

    # staff cannot read the activity log
    assert client.get('/api/admin/logs').status_code == 403
    client.post('/logout')

    _login(client, 'admin@example.com')
    r = client.get('/api/admin/logs?category=VERIFICATION')
    assert r.status_code == 200
    body = r.get_json()
    assert body['pagination']['total'] == 2
    assert {log['status'] for log in body['logs']} == {'SUCCESS', 'FAILURE'}

    r = client.get('/api/admin/logs?limit=1&page=2')
    assert len(r.get_json()['logs']) == 1

    assert client.get('/api/admin/logs?start_date=yesterday').status_code == 400

    stats = client.get('/api/admin/logs/stats').get_json()['stats']
    assert stats['verifications'] == {'total': 2, 'successful': 1, 'failed': 1}
    assert stats['today'] >= 4
    assert len(stats['daily_activity']) == 7
    assert stats['by_category']['CERTIFICATE'] == 1


def test_login_and_create_are_logged(app, client):
    _login(client, 'staff@acme.example')
    _create(client)
    with app.app_context():
        actions = [row.action for row in ActivityLog.query.order_by(ActivityLog.log_id).all()]
    assert actions[:2] == [LogAction.LOGIN, LogAction.CREATE]


def test_unexpected_error_returns_json(client, monkeypatch, caplog):
    import routes
    from sqlalchemy.exc import OperationalError

    def broken(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('database is locked'))

    monkeypatch.setattr(routes, 'list_certificates', broken)
    _login(client, 'staff@acme.example')
    r = client.get('/api/certificates')
    assert r.status_code == 500
    assert r.get_json() == {'success': False, 'message': 'An internal error occurred'}
    assert any('Unhandled error' in rec.getMessage() for rec in caplog.records)
    # the session is usable again after the rollback
    assert client.get('/health').status_code == 200


def test_plain_user_cannot_list_institution_certificates(client):
    _login(client, 'jane@example.com')
    r = client.get('/api/certificates')
    assert r.status_code == 403


def test_template_endpoints_and_create_from_template(client, seed):
    _login(client, 'staff@acme.example')
    r = client.post('/api/institution/certificate-templates', json={
        'institutionId': seed.acme_id,
        'templateData': {'id': 'classic', 'name': 'Classic', 'design': {'border_color': '#aa0000'}},
    })
    assert r.status_code == 200, r.get_json()
    template_id = r.get_json()['template']['template_id']

    listed = client.get(f'/api/institution/certificate-templates?institutionId={seed.acme_id}').get_json()
    assert [t['key'] for t in listed['templates']] == ['classic']

    cert = _create(client, templateId=template_id)
    assert cert['artifact_kind'] == 'png'
    assert cert['design']['border_color'] == '#aa0000'

    client.post('/logout')
    _login(client, 'staff@other.example')
    r = client.get(f'/api/institution/certificate-templates?institution_id={seed.acme_id}')
    assert r.status_code == 403


def test_institution_stats_endpoint(client, seed):
    _login(client, 'staff@acme.example')
    _create(client)
    body = client.get('/api/analytics/institution').get_json()
    assert body['success'] is True
    assert body['institution_id'] == seed.acme_id
    assert body['total_certificates'] == 1
    assert body['member_count'] == 1
    assert len(body['certificates_by_month']) == 6

    client.post('/logout')
    _login(client, 'jane@example.com')
    assert client.get('/api/analytics/institution').status_code == 403
