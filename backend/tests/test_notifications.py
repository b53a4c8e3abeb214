from fastapi.testclient import TestClient

from app.main import app
from helpers import signup

client = TestClient(app)


def test_admin_creates_and_user_reads_notifications():
    user, uh = signup(client, 'user@example.com')
    _, other = signup(client, 'other@example.com')
    _, admin = signup(client, 'admin@example.com', name='Admin')

    r = client.post('/api/notifications', json={'userId': user['id'], 'message': 'welcome'}, headers=uh)
    assert r.status_code == 403
    r = client.post('/api/notifications', json={'userId': user['id'], 'message': 'welcome'}, headers=admin)
    assert r.status_code == 201
    first = r.json()['notification']
    assert first['type'] == 'SYSTEM'
    client.post('/api/notifications', json={'userId': user['id'], 'message': 'second', 'type': 'PROPOSAL'},
                headers=admin)
    r = client.post('/api/notifications', json={'userId': user['id'], 'message': 'x', 'type': 'WRONG'}, headers=admin)
    assert r.status_code == 400
    r = client.post('/api/notifications', json={'userId': 424242, 'message': 'x'}, headers=admin)
    assert r.status_code == 404

    body = client.get('/api/notifications', headers=uh).json()
    assert [n['message'] for n in body['notifications']] == ['second', 'welcome']
    assert body['unreadCount'] == 2

    r = client.post('/api/notifications/mark-read', json={'notificationId': first['id']}, headers=other)
    assert r.status_code == 403
    r = client.post('/api/notifications/mark-read', json={'notificationId': 9999}, headers=uh)
    assert r.status_code == 404
    r = client.post('/api/notifications/mark-read', json={'notificationId': first['id']}, headers=uh)
    assert r.status_code == 200
    assert r.json()['notification']['is_read'] is True
    assert client.get('/api/notifications', headers=uh).json()['unreadCount'] == 1

    r = client.post('/api/notifications/mark-all-read', headers=uh)
    assert r.json()['count'] == 1
    assert client.get('/api/notifications', headers=uh).json()['unreadCount'] == 0
