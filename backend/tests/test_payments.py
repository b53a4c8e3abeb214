import re

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.utils.payment_webhook import map_status, parse_webhook
from helpers import signup, create_post

client = TestClient(app)


def _initiate():
    _, sh = signup(client, 'seller@example.com')
    _, bh = signup(client, 'buyer@example.com')
    post = create_post(client, sh)
    r = client.post('/api/payment/initiate', json={'postId': str(post['id']), 'amount': '50000',
                                                   'phoneNumber': '010-1234-5678', 'selectedSeats': ['B3']},
                    headers=bh)
    assert r.status_code == 200, r.text
    return r.json()['paymentId'], bh, post


def test_initiate_creates_pending_payment():
    payment_id, _, _ = _initiate()
    assert re.match(r'^order_\d+_\d{1,3}$', payment_id)
    r = client.get('/api/payment/status', params={'payment_id': payment_id})
    assert r.status_code == 200
    body = r.json()
    assert body['payment_id'] == payment_id
    assert body['status'] == 'PENDING'
    assert body['transaction_id'] is None


def test_initiate_rejects_non_numeric_values():
    _, sh = signup(client, 'seller@example.com')
    post = create_post(client, sh)
    _, bh = signup(client, 'buyer@example.com')
    r = client.post('/api/payment/initiate', json={'postId': post['id'], 'amount': 'lots'}, headers=bh)
    assert r.status_code == 400
    assert r.json()['error'] == 'amount must be a number'
    r = client.post('/api/payment/initiate', json={'postId': 'abc', 'amount': 100}, headers=bh)
    assert r.status_code == 400
    r = client.post('/api/payment/initiate', json={'postId': 999, 'amount': 100}, headers=bh)
    assert r.status_code == 404
    r = client.post('/api/payment/initiate', json={'postId': post['id']}, headers=bh)
    assert r.status_code == 400


@pytest.mark.parametrize('event_type,status', [
    ('Transaction.Paid', 'DONE'),
    ('Transaction.Failed', 'FAILED'),
    ('Transaction.Cancelled', 'CANCELLED'),
    ('Transaction.PartialCancelled', 'CANCELLED'),
    ('Transaction.Ready', 'PENDING'),
])
def test_webhook_updates_payment(event_type, status):
    payment_id, _, _ = _initiate()
    r = client.post('/api/payment/webhook', json={'paymentId': payment_id, 'txId': 'tx-1', 'type': event_type})
    assert r.status_code == 200
    assert r.json()['status'] == status
    body = client.get('/api/payment/status', params={'payment_id': payment_id}).json()
    assert body['status'] == status
    assert body['transaction_id'] == 'tx-1'
    assert body['updated_at'] is not None


def test_webhook_alternate_keys_and_errors():
    payment_id, _, _ = _initiate()
    r = client.post('/api/payment/webhook', json={'data': {'paymentId': payment_id, 'transactionId': 'tx-9'}})
    assert r.status_code == 200
    assert r.json()['status'] == 'DONE'

    assert client.post('/api/payment/webhook', json={'type': 'Transaction.Paid'}).status_code == 400
    r = client.post('/api/payment/webhook', json={'payment_id': 'order_1_1', 'type': 'Transaction.Paid'})
    assert r.status_code == 404
    assert client.get('/api/payment/status').status_code == 400
    assert client.get('/api/payment/status', params={'payment_id': 'nope'}).status_code == 404


def test_map_status_rules():
    assert map_status(None) == 'DONE'
    assert map_status('Transaction.Failed', 'done') == 'DONE'
    assert map_status('Transaction.Paid', 'weird') == 'DONE'
    assert map_status('Something') == 'PENDING'


def test_parse_webhook_key_precedence():
    event = parse_webhook({'paymentId': 'p1', 'id': 'p2', 'tx_id': 't1', 'transaction_type': 'Transaction.Failed'})
    assert event.payment_id == 'p1'
    assert event.transaction_id == 't1'
    assert event.transaction_type == 'Transaction.Failed'
    assert event.status == 'FAILED'
    assert parse_webhook({'id': 'p3', 'status': 'CANCELLED'}).status == 'CANCELLED'
