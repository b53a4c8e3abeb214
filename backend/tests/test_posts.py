from fastapi.testclient import TestClient

from app.main import app
from helpers import signup, create_post, buy

client = TestClient(app)


def test_create_list_and_get_post():
    seller, headers = signup(client, 'seller@example.com', name='Seller')
    post = create_post(client, headers, content='x' * 300)
    assert post['status'] == 'ACTIVE'
    assert post['category'] == 'TICKET_SALE'
    assert post['author']['name'] == 'Seller'

    r = client.get('/api/posts')
    assert r.status_code == 200
    body = r.json()
    assert body['pagination'] == {
        'totalCount': 1, 'totalPages': 1, 'currentPage': 1, 'pageSize': 10, 'hasMore': False,
    }
    assert len(body['posts'][0]['content']) == 203  # 200 chars + ellipsis

    r = client.get(f"/api/posts/{post['id']}")
    assert r.status_code == 200
    assert r.json()['post']['view_count'] == 1
    assert len(r.json()['post']['content']) == 300
    r = client.get(f"/api/posts/{post['id']}")
    assert r.json()['post']['view_count'] == 2


def test_create_post_requires_auth_and_title():
    client.cookies.clear()
    assert client.post('/api/posts', json={'title': 'x'}).status_code == 401
    _, headers = signup(client, 'writer@example.com')
    r = client.post('/api/posts', json={'title': '   '}, headers=headers)
    assert r.status_code == 400
    r = client.post('/api/posts', json={'title': 'ok', 'category': 'NOPE'}, headers=headers)
    assert r.status_code == 400


def test_pagination_filters_and_order():
    _, h1 = signup(client, 'a@example.com', name='Alice')
    bob, h2 = signup(client, 'b@example.com', name='Bobby')
    for i in range(3):
        create_post(client, h1, title=f'alice post {i}')
    create_post(client, h2, title='bob wants tickets', category='TICKET_REQUEST')

    r = client.get('/api/posts', params={'page': 1, 'limit': 2})
    body = r.json()
    assert [p['title'] for p in body['posts']] == ['bob wants tickets', 'alice post 2']
    assert body['pagination']['totalCount'] == 4
    assert body['pagination']['totalPages'] == 2
    assert body['pagination']['hasMore'] is True
    assert body['posts'][0]['proposalCount'] == 0
    assert 'proposalCount' not in body['posts'][1]

    r = client.get('/api/posts', params={'category': 'TICKET_REQUEST'})
    assert [p['title'] for p in r.json()['posts']] == ['bob wants tickets']
    r = client.get('/api/posts', params={'author_id': bob['id']})
    assert r.json()['pagination']['totalCount'] == 1
    r = client.get('/api/posts', params={'search': 'ALICE POST 1'})
    assert [p['title'] for p in r.json()['posts']] == ['alice post 1']


def test_update_and_delete_permissions():
    _, owner = signup(client, 'owner@example.com')
    _, other = signup(client, 'other@example.com')
    _, admin = signup(client, 'admin@example.com', name='Admin')
    post = create_post(client, owner)

    r = client.put(f"/api/posts/{post['id']}", json={'title': 'hacked'}, headers=other)
    assert r.status_code == 403
    r = client.put(f"/api/posts/{post['id']}", json={'ticketPrice': 70000}, headers=owner)
    assert r.status_code == 200
    assert r.json()['post']['ticket_price'] == 70000
    assert r.json()['post']['title'] == 'BTS concert'

    assert client.delete(f"/api/posts/{post['id']}", headers=other).status_code == 403
    assert client.delete(f"/api/posts/{post['id']}", headers=admin).status_code == 200
    assert client.get(f"/api/posts/{post['id']}").status_code == 404
    assert client.get('/api/posts').json()['pagination']['totalCount'] == 0


def test_post_with_purchase_in_progress_cannot_be_deleted():
    _, seller = signup(client, 'seller@example.com')
    _, buyer = signup(client, 'buyer@example.com')
    post = create_post(client, seller)
    buy(client, buyer, post['id'])
    r = client.delete(f"/api/posts/{post['id']}", headers=seller)
    assert r.status_code == 400
    assert r.json()['error'] == 'post has a purchase in progress'


def test_search_only_active_titles():
    _, seller = signup(client, 'seller@example.com')
    _, buyer = signup(client, 'buyer@example.com')
    create_post(client, seller, title='IU Concert Seoul', content='y' * 150)
    held = create_post(client, seller, title='IU concert Busan')
    create_post(client, seller, title='Baseball', content='iu concert mentioned only in content')
    buy(client, buyer, held['id'])

    r = client.get('/api/search', params={'query': 'iu concert'})
    assert r.status_code == 200
    posts = r.json()['posts']
    assert [p['title'] for p in posts] == ['IU Concert Seoul']
    assert len(posts[0]['content']) == 103
