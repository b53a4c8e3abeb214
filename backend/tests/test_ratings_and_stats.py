from fastapi.testclient import TestClient

from app.main import app
from helpers import signup, create_post, buy, set_status

client = TestClient(app)


def _completed_purchase(sh, bh, **post_fields):
    post = create_post(client, sh, **post_fields)
    purchase = buy(client, bh, post['id'])
    assert set_status(client, sh, purchase['order_number'], 'COMPLETED').status_code == 200
    return purchase


def test_rating_rules():
    seller, sh = signup(client, 'seller@example.com', name='Seller')
    buyer, bh = signup(client, 'buyer@example.com', name='Buyer')
    post = create_post(client, sh)
    pending = buy(client, bh, post['id'])

    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 5}, headers=bh)
    assert r.status_code == 400

    set_status(client, sh, pending['order_number'], 'COMPLETED')
    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 5}, headers=sh)
    assert r.status_code == 403
    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 6}, headers=bh)
    assert r.status_code == 400
    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': True}, headers=bh)
    assert r.status_code == 400
    r = client.post('/api/ratings', json={'transactionId': pending['id']}, headers=bh)
    assert r.status_code == 400
    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 4, 'comment': 'x' * 501},
                    headers=bh)
    assert r.status_code == 400
    r = client.post('/api/ratings', json={'transactionId': 999, 'rating': 4}, headers=bh)
    assert r.status_code == 404

    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 4, 'comment': 'smooth'},
                    headers=bh)
    assert r.status_code == 201
    assert r.json()['rating']['seller_id'] == seller['id']
    r = client.post('/api/ratings', json={'transactionId': pending['id'], 'rating': 5}, headers=bh)
    assert r.status_code == 409


def test_confirmed_purchases_show_review_state():
    seller, sh = signup(client, 'seller@example.com', name='Seller')
    _, bh = signup(client, 'buyer@example.com', name='Buyer')
    first = _completed_purchase(sh, bh, title='first show', eventVenue='Olympic Hall')
    second = _completed_purchase(sh, bh, title='second show')
    _completed_purchase(sh, bh, title='not confirmed yet')
    for p in (first, second):
        assert set_status(client, bh, p['order_number'], 'CONFIRMED').status_code == 200
    client.post('/api/ratings', json={'transactionId': first['id'], 'rating': 5}, headers=bh)

    r = client.get('/api/confirmed-purchases', headers=bh)
    assert r.status_code == 200
    items = {p['order_number']: p for p in r.json()['purchases']}
    assert set(items) == {first['order_number'], second['order_number']}
    assert items[first['order_number']]['reviewSubmitted'] is True
    assert items[first['order_number']]['title'] == 'first show'
    assert items[first['order_number']]['venue'] == 'Olympic Hall'
    assert items[first['order_number']]['seller'] == 'Seller'
    assert items[second['order_number']]['reviewSubmitted'] is False
    assert items[second['order_number']]['status'] == 'CONFIRMED'

    assert client.get('/api/confirmed-purchases', headers=sh).json()['purchases'] == []
    assert client.get('/api/confirmed-purchases').status_code == 401


def test_seller_rating_summary():
    seller, sh = signup(client, 'seller@example.com', name='Seller')
    _, b1 = signup(client, 'b1@example.com', name='Buyer One')
    _, b2 = signup(client, 'b2@example.com', name='Buyer Two')
    p1 = _completed_purchase(sh, b1, title='one')
    p2 = _completed_purchase(sh, b2, title='two')
    client.post('/api/ratings', json={'transactionId': p1['id'], 'rating': 5}, headers=b1)
    client.post('/api/ratings', json={'transactionId': p2['id'], 'rating': 4, 'comment': 'ok'}, headers=b2)

    r = client.get('/api/seller-rating', params={'sellerId': seller['id']})
    body = r.json()
    assert body['averageRating'] == 4.5
    assert body['totalRatings'] == 2
    assert body['recentReviews'][0]['comment'] == 'ok'
    assert body['recentReviews'][0]['reviewer']['name'] == 'Buyer Two'
    assert client.get('/api/seller-rating').status_code == 400

    empty = client.get('/api/seller-rating', params={'sellerId': 12345}).json()
    assert empty['averageRating'] == 0.0 and empty['totalRatings'] == 0


def test_cancellation_stats_and_seller_profile():
    seller, sh = signup(client, 'seller@example.com', name='Seller')
    _, bh = signup(client, 'buyer@example.com')

    assert client.get(f"/api/stats/cancellation/{seller['id']}").json()['cancellation_ticketing_rate'] == 0

    p1 = _completed_purchase(sh, bh, title='one')
    for title in ('two', 'three'):
        post = create_post(client, sh, title=title)
        p = buy(client, bh, post['id'])
        set_status(client, bh, p['order_number'], 'CANCELLED')
    _completed_purchase(sh, bh, title='four')
    create_post(client, sh, title='still for sale')
    # confirming leaves a fee due, which blocks new posts by this seller
    assert set_status(client, bh, p1['order_number'], 'CONFIRMED').status_code == 200

    stats = client.get(f"/api/stats/cancellation/{seller['id']}").json()
    assert stats['confirmed_count'] == 1
    assert stats['cancelled_count'] == 2
    assert stats['cancellation_ticketing_rate'] == 66.7

    profile = client.get(f"/api/seller/{seller['id']}").json()
    assert profile['seller']['name'] == 'Seller'
    assert profile['successfulSales'] == 2
    assert profile['cancellationStats'] == {
        'confirmed_count': 1, 'cancelled_count': 2, 'cancellation_ticketing_rate': 66.7,
    }
    titles = sorted(p['title'] for p in profile['activeListings'])
    assert titles == ['still for sale', 'three', 'two']
    assert client.get('/api/seller/9999').status_code == 404
