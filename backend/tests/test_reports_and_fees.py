from fastapi.testclient import TestClient

from app.main import app
from helpers import signup, create_post, buy, set_status

client = TestClient(app)


def test_post_and_user_reports():
    seller, sh = signup(client, 'seller@example.com', name='Seller')
    reporter, rh = signup(client, 'reporter@example.com', name='Reporter')
    post = create_post(client, sh)

    r = client.post('/api/reports', json={'type': 'POST', 'postId': post['id'], 'reason': 'fake tickets'}, headers=rh)
    assert r.status_code == 201
    assert r.json()['report']['seller_id'] == seller['id']
    r = client.post('/api/reports', json={'type': 'POST', 'postId': post['id'], 'reason': 'again'}, headers=rh)
    assert r.status_code == 409
    r = client.post('/api/reports', json={'type': 'POST', 'postId': 999, 'reason': 'x'}, headers=rh)
    assert r.status_code == 404

    r = client.post('/api/reports', json={'type': 'USER', 'sellerId': reporter['id'], 'reason': 'me'}, headers=rh)
    assert r.status_code == 400
    r = client.post('/api/reports', json={'type': 'USER', 'sellerId': 999, 'reason': 'ghost'}, headers=rh)
    assert r.status_code == 404
    r = client.post('/api/reports', json={'type': 'USER', 'sellerId': seller['id'], 'reason': 'rude'}, headers=rh)
    assert r.status_code == 201

    summary = client.get('/api/seller-reports', params={'sellerId': seller['id']}).json()
    assert summary['hasReports'] is True
    assert summary['count'] == 2
    assert summary['severity'] == 'medium'
    assert summary['reasons'] == ['rude', 'fake tickets']
    assert summary['status'] == 'PENDING'
    assert summary['lastReportDate'] is not None

    clean = client.get('/api/seller-reports', params={'sellerId': reporter['id']}).json()
    assert clean == {'success': True, 'hasReports': False, 'count': 0, 'severity': 'low', 'reasons': [],
                     'status': None, 'lastReportDate': None, 'reports': []}


def test_report_severity_high():
    seller, sh = signup(client, 'seller@example.com')
    post = create_post(client, sh)
    for i in range(5):
        _, h = signup(client, f'r{i}@example.com')
        client.post('/api/reports', json={'postId': post['id'], 'reason': f'reason {i}'}, headers=h)
    summary = client.get('/api/seller-reports', params={'sellerId': seller['id']}).json()
    assert summary['count'] == 5
    assert summary['severity'] == 'high'


def test_admin_report_moderation():
    seller, sh = signup(client, 'seller@example.com')
    _, rh = signup(client, 'reporter@example.com')
    _, admin = signup(client, 'admin@example.com', name='Admin')
    post = create_post(client, sh)
    report = client.post('/api/reports', json={'postId': post['id'], 'reason': 'spam'}, headers=rh).json()['report']

    assert client.get('/api/admin/reports', headers=rh).status_code == 403
    r = client.patch(f"/api/admin/reports/{report['id']}", json={'status': 'approved'}, headers=admin)
    assert r.status_code == 200
    assert r.json()['report']['status'] == 'APPROVED'
    assert client.patch(f"/api/admin/reports/{report['id']}", json={'status': 'maybe'}, headers=admin).status_code == 400
    assert client.patch('/api/admin/reports/999', json={'status': 'REJECTED'}, headers=admin).status_code == 404
    assert len(client.get('/api/admin/reports', params={'status': 'APPROVED'}, headers=admin).json()['reports']) == 1
    assert client.get('/api/seller-reports', params={'sellerId': seller['id']}).json()['status'] == 'APPROVED'


def test_unpaid_fees_block_posting_until_marked_paid():
    seller, sh = signup(client, 'seller@example.com')
    buyer, bh = signup(client, 'buyer@example.com')
    _, admin = signup(client, 'admin@example.com', name='Admin')
    post = create_post(client, sh, ticketPrice=123456)
    purchase = buy(client, bh, post['id'])

    empty = client.get('/api/unpaid-fees', headers=sh).json()
    assert empty['hasUnpaidFees'] is False and empty['count'] == 0 and empty['oldestDueDate'] is None

    set_status(client, sh, purchase['order_number'], 'COMPLETED')
    set_status(client, bh, purchase['order_number'], 'CONFIRMED')

    fees = client.get('/api/unpaid-fees', headers=sh).json()
    assert fees['hasUnpaidFees'] is True
    assert fees['count'] == 1
    assert fees['totalAmount'] == 12346
    assert fees['unpaidFees'][0]['order_number'] == purchase['order_number']
    assert fees['oldestDueDate'] is not None

    r = client.post('/api/posts', json={'title': 'another'}, headers=sh)
    assert r.status_code == 403
    body = r.json()
    assert body['code'] == 'UNPAID_FEES'
    assert body['unpaidFees']['totalAmount'] == 12346

    assert client.get('/api/unpaid-fees', params={'userId': seller['id']}, headers=bh).status_code == 403
    assert client.get('/api/unpaid-fees', params={'userId': seller['id']}, headers=admin).json()['count'] == 1
    assert len(client.get('/api/admin/fees', params={'paid': False}, headers=admin).json()['fees']) == 1

    assert client.post('/api/mark-fee-paid', json={'purchaseId': purchase['id']}, headers=sh).status_code == 403
    assert client.post('/api/mark-fee-paid', json={'purchaseId': 999}, headers=admin).status_code == 404
    r = client.post('/api/mark-fee-paid', json={'purchaseId': purchase['id']}, headers=admin)
    assert r.status_code == 200
    assert r.json()['purchase']['is_fee_paid'] is True

    assert client.get('/api/unpaid-fees', headers=sh).json()['hasUnpaidFees'] is False
    assert client.get('/api/admin/fees', params={'paid': True}, headers=admin).json()['fees'][0]['fee_amount'] == 12346
    create_post(client, sh, title='another')
