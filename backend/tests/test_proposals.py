from fastapi.testclient import TestClient

from app.main import app
from helpers import signup, create_post

client = TestClient(app)


def _proposal(headers, post_id, price=80000, section='A'):
    return client.post(f'/api/ticket-requests/{post_id}/proposals', json={
        'selectedSectionId': section, 'selectedSectionName': f'Section {section}', 'proposedPrice': price,
        'maxPrice': 100000, 'message': 'I have these',
    }, headers=headers)


def test_proposal_flow():
    requester, rh = signup(client, 'requester@example.com', name='Requester')
    s1, h1 = signup(client, 's1@example.com', name='Seller One')
    _, h2 = signup(client, 's2@example.com', name='Seller Two')
    request_post = create_post(client, rh, title='Need 2 tickets', category='TICKET_REQUEST')

    r = _proposal(h1, request_post['id'])
    assert r.status_code == 201
    first = r.json()['proposal']
    assert first['status'] == 'PENDING'
    assert isinstance(first['id'], int)
    assert first['proposed_price'] == 80000
    assert first['section_id'] == 'A'
    assert first['requester_id'] == requester['id']
    assert _proposal(h1, request_post['id']).status_code == 409
    assert _proposal(rh, request_post['id']).status_code == 400
    second = _proposal(h2, request_post['id'], price=75000, section='B').json()['proposal']

    notes = client.get('/api/notifications', headers=rh).json()['notifications']
    assert [n['type'] for n in notes] == ['PROPOSAL', 'PROPOSAL']

    listed = client.get(f"/api/ticket-requests/{request_post['id']}/proposals").json()['proposals']
    assert [p['id'] for p in listed] == [second['id'], first['id']]
    assert listed[1]['proposer']['name'] == 'Seller One'

    mine = client.get('/api/my-ticket-requests', headers=rh).json()['requests']
    assert mine[0]['proposalCount'] == 2

    assert client.post(f"/api/proposals/{first['id']}/accept", headers=h1).status_code == 403
    r = client.post(f"/api/proposals/{first['id']}/accept", headers=rh)
    assert r.status_code == 200
    assert r.json()['proposal']['status'] == 'ACCEPTED'

    statuses = {p['id']: p['status'] for p in
                client.get(f"/api/ticket-requests/{request_post['id']}/proposals").json()['proposals']}
    assert statuses == {first['id']: 'ACCEPTED', second['id']: 'REJECTED'}
    assert client.get(f"/api/posts/{request_post['id']}").json()['post']['status'] == 'IN_PROGRESS'
    assert client.post(f"/api/proposals/{second['id']}/accept", headers=rh).status_code == 400


def test_proposals_need_a_ticket_request():
    _, rh = signup(client, 'requester@example.com')
    _, sh = signup(client, 'seller@example.com')
    sale = create_post(client, rh)
    assert _proposal(sh, sale['id']).status_code == 404
    assert _proposal(sh, 999).status_code == 404
    assert client.get(f"/api/ticket-requests/{sale['id']}/proposals").status_code == 404
    assert client.post('/api/proposals/999/accept', headers=rh).status_code == 404
