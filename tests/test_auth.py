from datetime import timedelta

import email_service
from conftest import auth
from extensions import db
from models import User, utcnow


def register(client, email='new@example.com', user_type='customer'):
    return client.post('/api/auth/register', json={
        'full_name': 'New Person',
        'email': email,
        'password': 'secret123',
        'user_type': user_type,
    })


def test_register_sends_code_and_blocks_login_until_confirmed(app, client, monkeypatch):
    sent = []
    monkeypatch.setattr('auth_routes.send_confirmation_email', lambda email, code: sent.append((email, code)) or True)

    response = register(client)
    assert response.status_code == 201
    assert sent and sent[0][0] == 'new@example.com'

    response = client.post('/api/auth/login', json={'email': 'new@example.com', 'password': 'secret123'})
    assert response.status_code == 401
    assert response.get_json()['requires_confirmation'] is True

    code = sent[0][1]
    response = client.get(f'/api/auth/confirm?email=new@example.com&code={code}')
    assert response.status_code == 200

    response = client.post('/api/auth/login', json={'email': 'new@example.com', 'password': 'secret123'})
    assert response.status_code == 200
    assert response.get_json()['token']


def test_wrong_confirmation_code(client, monkeypatch):
    monkeypatch.setattr('auth_routes.send_confirmation_email', lambda email, code: True)
    register(client)
    response = client.get('/api/auth/confirm?email=new@example.com&code=000000x')
    assert response.status_code == 400


def test_cannot_self_register_as_admin(client):
    response = register(client, user_type='admin')
    assert response.status_code == 400


def test_duplicate_email(client, customer):
    response = register(client, email=customer.email)
    assert response.status_code == 400


def test_send_confirmation_email_without_key_returns_false(app):
    with app.app_context():
        assert email_service.send_confirmation_email('a@example.com', '123456') is False


def test_invalid_credentials(client, customer):
    response = client.post('/api/auth/login', json={'email': customer.email, 'password': 'wrong'})
    assert response.status_code == 401


def test_banned_user_cannot_log_in_or_use_token(app, client, customer):
    with app.app_context():
        db.session.get(User, customer.id).is_banned = True
        db.session.commit()

    response = client.post('/api/auth/login', json={'email': customer.email, 'password': 'secret123'})
    assert response.status_code == 403
    assert client.get('/api/auth/me', headers=auth(customer.token)).status_code == 401


def test_suspended_user_blocked_until_suspension_ends(app, client, customer):
    with app.app_context():
        user = db.session.get(User, customer.id)
        user.is_suspended = True
        user.suspension_end_time = utcnow() + timedelta(hours=5)
        db.session.commit()

    response = client.post('/api/auth/login', json={'email': customer.email, 'password': 'secret123'})
    assert response.status_code == 403
    assert response.get_json()['suspension_end_time']

    with app.app_context():
        db.session.get(User, customer.id).suspension_end_time = utcnow() - timedelta(minutes=1)
        db.session.commit()

    response = client.post('/api/auth/login', json={'email': customer.email, 'password': 'secret123'})
    assert response.status_code == 200
    assert response.get_json()['user']['is_suspended'] is False


def test_me_requires_token(client):
    assert client.get('/api/auth/me').status_code == 401
    assert client.get('/api/auth/me', headers=auth('garbage')).status_code == 401


def test_update_theme(client, customer):
    response = client.patch('/api/auth/me', json={'theme': 'dark'}, headers=auth(customer.token))
    assert response.status_code == 200
    assert response.get_json()['user']['theme'] == 'dark'

    response = client.patch('/api/auth/me', json={'theme': 'neon'}, headers=auth(customer.token))
    assert response.status_code == 400


def test_phone_verification(app, client, customer):
    response = client.post('/api/auth/phone/send-otp', json={'phone': '03001234567'}, headers=auth(customer.token))
    assert response.status_code == 200

    with app.app_context():
        code = db.session.get(User, customer.id).phone_otp

    response = client.post('/api/auth/phone/verify-otp', json={'code': '1'}, headers=auth(customer.token))
    assert response.status_code == 400

    response = client.post('/api/auth/phone/verify-otp', json={'code': code}, headers=auth(customer.token))
    assert response.status_code == 200
    assert response.get_json()['user']['phone_verified'] is True


def test_confirmation_code_discarded_after_repeated_misses(app, client, monkeypatch):
    sent = []
    monkeypatch.setattr('auth_routes.send_confirmation_email', lambda email, code: sent.append(code) or True)
    register(client)
    code = sent[-1]

    for _ in range(app.config['MAX_CODE_ATTEMPTS']):
        response = client.get('/api/auth/confirm?email=new@example.com&code=wrong1')
        assert response.status_code == 400
    assert 'Too many incorrect attempts' in response.get_json()['message']

    response = client.get(f'/api/auth/confirm?email=new@example.com&code={code}')
    assert response.status_code == 400
    assert 'token' not in response.get_json()

    client.post('/api/auth/resend-confirmation', json={'email': 'new@example.com'})
    response = client.get(f'/api/auth/confirm?email=new@example.com&code={sent[-1]}')
    assert response.status_code == 200
    assert response.get_json()['token']


def test_phone_code_discarded_after_repeated_misses(app, client, customer):
    client.post('/api/auth/phone/send-otp', json={'phone': '03001234567'}, headers=auth(customer.token))
    with app.app_context():
        code = db.session.get(User, customer.id).phone_otp

    for _ in range(app.config['MAX_CODE_ATTEMPTS']):
        client.post('/api/auth/phone/verify-otp', json={'code': 'nope'}, headers=auth(customer.token))

    response = client.post('/api/auth/phone/verify-otp', json={'code': code}, headers=auth(customer.token))
    assert response.status_code == 400
    with app.app_context():
        user = db.session.get(User, customer.id)
        assert user.phone_otp is None
        assert user.phone_verified is False
