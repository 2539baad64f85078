import io
import json
import os

from PIL import Image

from conftest import make_user, login
from pokerleague.models import User, Role, Player


def jpeg_upload(size=(1024, 768)):
    buf = io.BytesIO()
    Image.new('RGB', size, 'blue').save(buf, format='JPEG')
    buf.seek(0)
    return buf


def test_user_crud(session):
    role_player = session.query(Role).filter_by(name='player').first()
    # create
    u = User(email='test@example.com', name='Test', role=role_player)
    u.set_password('secret')
    session.add(u)
    session.commit()

    fetched = session.query(User).filter_by(email='test@example.com').one()
    assert fetched.check_password('secret')
    assert not fetched.check_password('wrong')

    # modify
    fetched.name = 'Updated'
    session.commit()
    assert session.get(User, fetched.id).name == 'Updated'

    # delete
    session.delete(fetched)
    session.commit()
    assert session.query(User).count() == 0


def test_default_role_levels(session):
    levels = {r.name: r.level for r in session.query(Role).all()}
    assert levels == {'admin': 0, 'director': 100, 'dealer': 300, 'player': 500}


def test_only_directors_integrate(session):
    roles = {r.name: json.loads(r.permissions) for r in session.query(Role).all()}
    assert roles['director'].get('tournaments.integrate')
    assert not roles['dealer'].get('tournaments.integrate')
    assert roles['dealer'].get('tournaments.manage')
    assert not roles['player'].get('tournaments.manage')


def test_user_permission_overrides(session):
    user = make_user(session, 'override@example.com', role_name='dealer')
    user.permission_overrides = json.dumps({'tournaments.integrate': 'allow', 'feed.moderate': 'deny'})
    session.commit()

    fetched = session.query(User).filter_by(email='override@example.com').one()
    assert fetched.has_permission('tournaments.integrate')
    assert not fetched.has_permission('feed.moderate')
    assert fetched.has_permission('feed.post')


def test_register_claims_existing_player(client, session):
    player = Player(name='Alice Moreno')
    session.add(player)
    session.commit()
    resp = client.post('/register', data={
        'email': 'Alice@Example.com', 'name': 'alice moreno',
        'password': 'secret', 'password_confirm': 'secret',
    })
    assert resp.status_code == 302
    user = session.query(User).filter_by(email='alice@example.com').one()
    assert user.player_uid == player.uid
    assert user.role.name == 'player'


def test_register_creates_player(client, session):
    client.post('/register', data={
        'email': 'new@example.com', 'name': 'Newcomer',
        'password': 'secret', 'password_confirm': 'secret',
    })
    user = session.query(User).filter_by(email='new@example.com').one()
    assert user.player.name == 'Newcomer'

    resp = client.post('/register', data={
        'email': 'other@example.com', 'name': 'Other',
        'password': 'secret', 'password_confirm': 'nope',
    })
    assert resp.status_code == 302
    assert session.query(User).filter_by(email='other@example.com').first() is None


def test_login(client, session):
    make_user(session, 'p@example.com')
    assert login(client, 'p@example.com', 'wrong').status_code == 200
    assert login(client, 'p@example.com').status_code == 302


def test_profile_update_and_password(client, session):
    player = Player(name='Alice Moreno')
    session.add(player)
    session.commit()
    user = make_user(session, 'alice@example.com')
    user.player_uid = player.uid
    session.commit()
    login(client, 'alice@example.com')

    body = client.put('/api/profile', json={'nickname': 'Ace', 'favorite_hand': 'AKs', 'bio': 'Grinder'}).get_json()
    assert body['player']['nickname'] == 'Ace'
    assert body['player']['favorite_hand'] == 'AKs'
    assert user.display_name() == 'Ace'
    assert client.put('/api/profile', json={'favorite_hand': 'x' * 21}).status_code == 400

    resp = client.post('/api/profile/password', json={'current_password': 'bad', 'new_password': 'another'})
    assert resp.status_code == 400
    resp = client.post('/api/profile/password', json={'current_password': 'secret', 'new_password': '123'})
    assert resp.status_code == 400
    resp = client.post('/api/profile/password', json={'current_password': 'secret', 'new_password': 'another'})
    assert resp.get_json() == {'success': True}
    assert user.check_password('another')


def test_profile_requires_login(client):
    assert client.get('/api/profile').status_code == 401


def test_profile_photo(app, client, session):
    player = Player(name='Alice Moreno')
    session.add(player)
    session.commit()
    user = make_user(session, 'alice@example.com')
    login(client, 'alice@example.com')

    resp = client.post('/api/profile/photo', data={'photo': (jpeg_upload(), 'me.jpg')}, content_type='multipart/form-data')
    assert resp.status_code == 404  # no league player linked yet

    user.player_uid = player.uid
    session.commit()
    resp = client.post('/api/profile/photo', data={'photo': (jpeg_upload(), 'me.jpg')}, content_type='multipart/form-data')
    assert resp.status_code == 200
    filename = resp.get_json()['photo_path']
    with Image.open(os.path.join(app.config['MEDIA_STORAGE_DIR'], filename)) as stored:
        assert stored.size == (512, 384)
    assert player.photo_path == filename


def test_player_search(client, session):
    session.add_all([Player(name='Alice Moreno', nickname='Ace'), Player(name='Bob')])
    session.commit()
    assert [p['name'] for p in client.get('/api/players/search?q=ace').get_json()['results']] == ['Alice Moreno']
    assert client.get('/api/players/search').get_json() == {'results': []}


def test_nickname_admin(client, session):
    player = Player(name='Bob')
    session.add(player)
    session.commit()
    make_user(session, 'p@example.com')
    login(client, 'p@example.com')
    assert client.put(f'/api/admin/players/{player.uid}/nickname', json={'nickname': 'B'}).status_code == 403

    make_user(session, 'td@example.com', role_name='director')
    login(client, 'td@example.com')
    resp = client.put(f'/api/admin/players/{player.uid}/nickname', json={'nickname': 'Big Bob'})
    assert resp.get_json()['nickname'] == 'Big Bob'
    assert client.put('/api/admin/players/missing/nickname', json={'nickname': 'x'}).status_code == 404


def test_role_assignment_respects_levels(client, session):
    target = make_user(session, 'p@example.com')
    director = make_user(session, 'td@example.com', role_name='director')
    director.permission_overrides = json.dumps({'users.manage': 'allow'})
    session.commit()
    login(client, 'td@example.com')

    resp = client.put(f'/api/admin/users/{target.id}/role', json={'role': 'dealer'})
    assert resp.get_json() == {'id': target.id, 'role': 'dealer'}
    assert client.put(f'/api/admin/users/{target.id}/role', json={'role': 'admin'}).status_code == 403
    assert client.put(f'/api/admin/users/{target.id}/role', json={'role': 'boss'}).status_code == 400
    assert client.put('/api/admin/users/999/role', json={'role': 'dealer'}).status_code == 404
