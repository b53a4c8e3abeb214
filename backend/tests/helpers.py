"""Shared request helpers for the API tests."""


def signup(client, email, name="Tester", password="pass1234", phone="010-1234-5678"):
    """Register and log in; returns `(user, headers)` and drops session cookies."""
    payload = {'email': email, 'password': password, 'name': name}
    if phone:
        payload['phoneNumber'] = phone
    r = client.post('/api/auth/register', json=payload)
    assert r.status_code == 201, r.text
    r = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert r.status_code == 200, r.text
    client.cookies.clear()
    body = r.json()
    return body['user'], {'Authorization': f"Bearer {body['token']}"}


def create_post(client, headers, **fields):
    payload = {'title': 'BTS concert', 'content': 'two seats, floor A', 'ticketPrice': 50000}
    payload.update(fields)
    r = client.post('/api/posts', json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()['post']


def buy(client, headers, post_id, **fields):
    payload = {'postId': post_id}
    payload.update(fields)
    r = client.post('/api/ticket-purchase', json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()['purchase']


def set_status(client, headers, order_number, status):
    return client.post(f'/api/purchase/{order_number}', json={'status': status}, headers=headers)
