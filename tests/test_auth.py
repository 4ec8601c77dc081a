"""
Authentication tests for LawnMates
Tests registration, session login/logout and profile edits
"""
import json

import pytest


def _register(client, **overrides):
    payload = {
        'username': 'greenthumb',
        'email': 'Green@Example.com',
        'password': 'Secure123',
        'role': 'landscaper',
        'full_name': 'Green Thumb',
    }
    payload.update(overrides)
    return client.post('/api/auth/register', json=payload)


class TestRegistration:
    """Test user registration flows"""

    def test_register_success_starts_session(self, client):
        response = _register(client)

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['user']['email'] == 'green@example.com'
        assert data['user']['role'] == 'landscaper'
        assert 'password_hash' not in data['user']

        me = client.get('/api/auth/me')
        assert me.status_code == 200
        assert me.get_json()['user']['username'] == 'greenthumb'

    def test_register_duplicate(self, client, landscaper):
        response = _register(client, email=landscaper.email)
        assert response.status_code == 409

    @pytest.mark.parametrize('password', ['short1', 'longenoughbutnodigits', '1234567890'])
    def test_register_weak_password(self, client, password):
        response = _register(client, password=password)
        assert response.status_code == 400
        assert response.get_json()['field'] == 'password'

    def test_register_invalid_email(self, client):
        assert _register(client, email='not-an-email').status_code == 400

    def test_cannot_self_register_admin(self, client):
        response = _register(client, role='admin')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'role'

    def test_missing_fields_listed(self, client):
        response = client.post('/api/auth/register', json={'username': 'x'})
        assert response.status_code == 400
        assert set(response.get_json()['fields']) == {'email', 'password', 'role'}


class TestLogin:

    def test_login_and_logout(self, client, owner):
        response = client.post('/api/auth/login', json={'email': owner.email, 'password': 'TestPass123'})
        assert response.status_code == 200
        assert client.get('/api/auth/me').status_code == 200

        assert client.post('/api/auth/logout').status_code == 200
        assert client.get('/api/auth/me').status_code == 401

    def test_wrong_password(self, client, owner):
        response = client.post('/api/auth/login', json={'email': owner.email, 'password': 'nope12345'})
        assert response.status_code == 401
        assert response.get_json()['error'] == 'INVALID_CREDENTIALS'

    def test_unknown_email(self, client):
        response = client.post('/api/auth/login', json={'email': 'ghost@example.com', 'password': 'x1234567'})
        assert response.status_code == 401

    def test_malformed_body(self, client):
        response = client.post('/api/auth/login', data='{oops', content_type='application/json')
        assert response.status_code == 400


class TestProfile:

    def test_public_profile_hides_private_fields(self, client_for, owner, landscaper):
        user = client_for(owner).get(f'/api/users/{landscaper.id}').get_json()['user']
        assert 'email' not in user
        assert 'stripe_connect_id' not in user

    def test_update_profile(self, client_for, landscaper):
        response = client_for(landscaper).put('/api/users/profile', json={
            'bio': 'Ten years of hedges', 'stripe_connect_id': 'acct_new',
        })

        assert response.status_code == 200
        user = response.get_json()['user']
        assert user['bio'] == 'Ten years of hedges'
        assert user['stripe_connect_id'] == 'acct_new'

    def test_profile_fields_must_be_strings(self, client_for, owner):
        response = client_for(owner).put('/api/users/profile', json={'bio': 5})
        assert response.status_code == 400

    def test_security_headers(self, client):
        response = client.get('/api/health')
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Request-ID']

    def test_avatar_url_not_escaped(self, client_for, owner):
        avatar = 'https://cdn.example.com/a.png?size=64&v=2'
        response = client_for(owner).put('/api/users/profile', json={'avatar': avatar})

        assert response.status_code == 200
        assert response.get_json()['user']['avatar'] == avatar

    def test_avatar_with_markup_rejected(self, client_for, owner):
        response = client_for(owner).put('/api/users/profile', json={'avatar': '"><img src=x>'})
        assert response.status_code == 400
        assert response.get_json()['field'] == 'avatar'
