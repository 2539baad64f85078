import io
import json
import os
from datetime import datetime, timedelta

from PIL import Image

from conftest import make_user, login
from test_drafts import create_draft, add_players, knock_out
from pokerleague.models import FeedItem
from pokerleague.realtime import FEED_ITEM, FEED_DELETED, REACTIONS_UPDATED


def png_upload(size=(800, 600)):
    buf = io.BytesIO()
    Image.new('RGB', size, 'red').save(buf, format='PNG')
    buf.seek(0)
    return buf


def post_message(client, tid, text):
    return client.post(f'/api/tournament-drafts/{tid}/feed', json={'message_text': text})


def test_posting_requires_login(client, session):
    make_user(session, 'td@example.com', role_name='director')
    login(client, 'td@example.com')
    tid = create_draft(client)['id']
    client.get('/logout')
    resp = post_message(client, tid, 'hello')
    assert resp.status_code == 401
    # reading the feed is public
    assert client.get(f'/api/tournament-drafts/{tid}/feed').status_code == 200


def test_message_validation(client, director):
    tid = create_draft(client)['id']
    assert post_message(client, tid, '   ').status_code == 400
    assert post_message(client, tid, 'x' * 501).status_code == 400
    resp = post_message(client, tid, 'x' * 500)
    assert resp.status_code == 201
    assert resp.get_json()['author_name'] == 'Tina Director'


def test_feed_merges_messages_and_knockouts(app, client, director):
    tid = create_draft(client)['id']
    ids = add_players(client, tid, 'Alice', 'Bob', 'Cara')
    queue = app.extensions['broadcaster'].subscribe(tid)

    post_message(client, tid, 'shuffle up and deal')
    event, payload = queue.get_nowait()
    assert event == FEED_ITEM
    assert json.loads(payload)['data']['message_text'] == 'shuffle up and deal'

    knock_out(client, tid, ids['Bob'], 'Alice')
    client.post(f'/api/tournament-drafts/{tid}/td-message', json={'message_text': 'Break for 10'})

    items = client.get(f'/api/tournament-drafts/{tid}/feed').get_json()['items']
    by_type = {i['item_type']: i for i in items}
    assert set(by_type) == {'message', 'knockout', 'td_message'}
    ko = by_type['knockout']
    assert ko['id'] == f"ko-{ids['Bob']}"
    assert ko['eliminated_player_name'] == 'Bob'
    assert ko['hitman_name'] == 'Alice'
    assert ko['ko_position'] == 1
    assert ko['reactions'] == {'heart': 0, 'diamond': 0, 'club': 0, 'spade': 0}
    assert items[0]['item_type'] == 'td_message'


def test_feed_pagination(client, director, session):
    tid = create_draft(client)['id']
    start = datetime(2026, 3, 5, 19, 0)
    for i in range(5):
        session.add(FeedItem(tournament_draft_id=tid, item_type='checkin',
                             message_text=f'player {i} checked in', created_at=start + timedelta(minutes=i)))
    session.add(FeedItem(tournament_draft_id=tid, item_type='message', message_text='always here',
                         created_at=start))
    session.commit()

    page = client.get(f'/api/tournament-drafts/{tid}/feed?limit=2').get_json()
    checkins = [i['message_text'] for i in page['items'] if i['item_type'] == 'checkin']
    assert checkins == ['player 4 checked in', 'player 3 checked in']
    assert any(i['message_text'] == 'always here' for i in page['items'])
    assert page['hasMore'] is True

    page = client.get(f"/api/tournament-drafts/{tid}/feed?limit=2&before={page['nextCursor']}").get_json()
    checkins = [i['message_text'] for i in page['items'] if i['item_type'] == 'checkin']
    assert checkins == ['player 2 checked in', 'player 1 checked in']

    page = client.get(f"/api/tournament-drafts/{tid}/feed?limit=2&before={page['nextCursor']}").get_json()
    assert [i['message_text'] for i in page['items'] if i['item_type'] == 'checkin'] == ['player 0 checked in']
    assert page['hasMore'] is False
    assert page['nextCursor'] is None

    assert client.get(f'/api/tournament-drafts/{tid}/feed?before=yesterday').status_code == 400


def test_td_message_needs_moderation(client, session):
    make_user(session, 'p@example.com')
    login(client, 'p@example.com')
    assert client.post('/api/tournament-drafts/1/td-message', json={'message_text': 'hi'}).status_code == 403


def test_only_messages_can_be_deleted(app, client, director, session):
    tid = create_draft(client)['id']
    msg = post_message(client, tid, 'typo').get_json()
    checkin = FeedItem(tournament_draft_id=tid, item_type='checkin', message_text='x checked in')
    session.add(checkin)
    session.commit()

    assert client.delete(f'/api/tournament-drafts/{tid}/feed/{checkin.id}').status_code == 400
    queue = app.extensions['broadcaster'].subscribe(tid)
    assert client.delete(f"/api/tournament-drafts/{tid}/feed/{msg['id']}").status_code == 200
    event, payload = queue.get_nowait()
    assert event == FEED_DELETED
    assert client.delete(f"/api/tournament-drafts/{tid}/feed/{msg['id']}").status_code == 404


def test_photo_upload(app, client, director):
    tid = create_draft(client)['id']
    resp = client.post(
        f'/api/tournament-drafts/{tid}/feed/photo',
        data={'photo': (png_upload((2400, 1200)), 'table.jpg'), 'caption': 'Final table'},
        content_type='multipart/form-data',
    )
    assert resp.status_code == 201
    item = resp.get_json()
    assert item['item_type'] == 'photo'
    assert item['message_text'] == 'Final table'
    path = os.path.join(app.config['MEDIA_STORAGE_DIR'], item['photo_path'])
    with Image.open(path) as stored:
        assert stored.format == 'PNG'
        assert max(stored.size) == 1600
    assert client.get(f"/media/{item['photo_path']}").status_code == 200

    bad = client.post(
        f'/api/tournament-drafts/{tid}/feed/photo',
        data={'photo': (io.BytesIO(b'not an image'), 'x.png')},
        content_type='multipart/form-data',
    )
    assert bad.status_code == 400


def test_reactions_are_limited_per_suit(app, client, director):
    tid = create_draft(client)['id']
    msg = post_message(client, tid, 'nice hand').get_json()
    url = f"/api/tournament-drafts/{tid}/feed/{msg['id']}/reactions"
    queue = app.extensions['broadcaster'].subscribe(tid)

    body = client.post(url, json={'reaction_type': 'heart', 'count': 5}).get_json()
    assert body['added'] == 5
    assert body['reactions']['heart'] == 5
    assert body['balance']['heart'] == 8
    event, _ = queue.get_nowait()
    assert event == REACTIONS_UPDATED

    body = client.post(url, json={'reaction_type': 'heart', 'count': 20}).get_json()
    assert body['added'] == 8
    assert body['userReactions']['heart'] == 13
    assert body['balance']['heart'] == 0

    resp = client.post(url, json={'reaction_type': 'heart'})
    assert resp.status_code == 400
    assert resp.get_json()['balance']['heart'] == 0
    assert resp.get_json()['balance']['spade'] == 13

    assert client.post(url, json={'reaction_type': 'joker'}).status_code == 400
    assert client.post(url, json={'reaction_type': 'spade', 'count': 0}).status_code == 400

    details = client.get(f'{url}/details').get_json()
    assert details == [{'user_id': details[0]['user_id'], 'user_name': 'Tina Director',
                        'reaction_type': 'heart', 'count': 13}]
    balance = client.get(f'/api/tournament-drafts/{tid}/reactions/balance').get_json()
    assert balance['balance'] == {'heart': 0, 'diamond': 13, 'club': 13, 'spade': 13}


def test_reacting_to_knockouts(client, director):
    tid = create_draft(client)['id']
    ids = add_players(client, tid, 'Alice', 'Bob')
    knock_out(client, tid, ids['Bob'], 'Alice')
    url = f"/api/tournament-drafts/{tid}/feed/ko-{ids['Bob']}/reactions"
    assert client.post(url, json={'reaction_type': 'club', 'count': 2}).get_json()['added'] == 2
    assert client.get(url).get_json()['reactions']['club'] == 2

    feed = client.get(f'/api/tournament-drafts/{tid}/feed').get_json()['items']
    assert feed[0]['reactions']['club'] == 2
    assert feed[0]['userReactions']['club'] == 2

    assert client.post(f"/api/tournament-drafts/{tid}/feed/ko-{ids['Alice']}/reactions",
                       json={'reaction_type': 'club'}).status_code == 404
    assert client.get(f'/api/tournament-drafts/{tid}/feed/12345/reactions').status_code == 404


def test_stream_endpoint(client, director):
    tid = create_draft(client)['id']
    resp = client.get(f'/api/tournaments/{tid}/stream', buffered=False)
    assert resp.status_code == 200
    assert resp.mimetype == 'text/event-stream'
    first = next(iter(resp.response))
    assert first.startswith(b'event: connected')
    resp.close()


def test_gameview(client, director):
    tid = create_draft(client)['id']
    ids = add_players(client, tid, 'Alice', 'Bob', 'Cara')
    knock_out(client, tid, ids['Bob'], 'Alice')
    client.post(f'/api/tournament-drafts/{tid}/td-message', json={'message_text': 'Final two tables'})
    token = client.post(f'/api/tournaments/{tid}/checkin-token').get_json()['token']

    view = client.get(f'/api/gameview/{token}').get_json()
    assert view['playersRemaining'] == 2
    assert view['totalPlayers'] == 3
    assert view['remaining'] == ['Alice', 'Cara']
    assert view['knockouts'][0]['name'] == 'Bob'
    assert view['latestTdMessage']['message_text'] == 'Final two tables'
