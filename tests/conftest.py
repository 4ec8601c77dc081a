"""
Pytest configuration and fixtures for LawnMates backend tests
"""
import pytest
from datetime import datetime, timedelta, timezone

from flask import g

from lawnmates import create_app, db
from lawnmates.models import Job, JobStatus, Property, User, UserRole
from lawnmates.realtime import Channel
from lawnmates.services import get_services


class FakeSocket:
    """In-memory stand-in for a simple-websocket connection"""

    def __init__(self, fail_on_send=False):
        self.connected = True
        self.sent = []
        self.close_reason = None
        self.fail_on_send = fail_on_send

    def send(self, data):
        if self.fail_on_send:
            raise OSError('broken pipe')
        self.sent.append(data)

    def close(self, reason=None, message=None):
        self.connected = False
        self.close_reason = reason


@pytest.fixture(scope='function')
def app():
    """Create application instance for testing, with a fresh schema per test"""
    app = create_app('testing')

    # Requests reuse the app context pushed below, so g (and the user
    # Flask-Login caches on it) would otherwise leak between test clients.
    @app.before_request
    def _forget_cached_user():
        g.pop('_login_user', None)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Anonymous test client"""
    return app.test_client()


@pytest.fixture
def services(app):
    return get_services(app)


@pytest.fixture
def client_for(app):
    """Factory: a test client logged in as the given user"""
    def _client_for(user):
        test_client = app.test_client()
        with test_client.session_transaction() as sess:
            sess['_user_id'] = str(user.id)
            sess['_fresh'] = True
        return test_client

    return _client_for


@pytest.fixture
def fetch(app):
    """Re-read an entity from the database, bypassing the identity map"""
    def _fetch(model, entity_id):
        db.session.expire_all()
        return db.session.get(model, entity_id)

    return _fetch


@pytest.fixture
def user_factory(app):
    """Factory for creating test users"""
    counter = {'n': 0}

    def _create_user(role=UserRole.PROPERTY_OWNER, **kwargs):
        counter['n'] += 1
        n = counter['n']
        defaults = {
            'username': f'{role.value}_{n}',
            'email': f'{role.value}_{n}@example.com',
            'full_name': f'Test {role.value.replace("_", " ").title()} {n}',
            'role': role,
        }
        defaults.update(kwargs)

        user = User(**defaults)
        user.set_password('TestPass123')
        db.session.add(user)
        db.session.commit()
        return user

    return _create_user


@pytest.fixture
def owner(user_factory):
    return user_factory(UserRole.PROPERTY_OWNER)


@pytest.fixture
def landscaper(user_factory):
    return user_factory(UserRole.LANDSCAPER, stripe_connect_id='acct_test_landscaper')


@pytest.fixture
def other_landscaper(user_factory):
    return user_factory(UserRole.LANDSCAPER, stripe_connect_id='acct_test_other')


@pytest.fixture
def admin(user_factory):
    return user_factory(UserRole.ADMIN)


@pytest.fixture
def test_property(owner):
    prop = Property(
        owner_id=owner.id,
        address='12 Maple Street',
        city='Toronto',
        state='ON',
        zip_code='M4B 1B3',
        size=4000,
    )
    db.session.add(prop)
    db.session.commit()
    return prop


@pytest.fixture
def job_factory(owner, test_property):
    """Factory for jobs in any status (written directly, bypassing transitions)"""
    def _create_job(status=JobStatus.POSTED, landscaper=None, price=4500, **kwargs):
        defaults = {
            'owner_id': owner.id,
            'property_id': test_property.id,
            'title': 'Lawn mowing',
            'description': 'Front and back lawn, edging included',
            'price': price,
            'status': status,
            'landscaper_id': landscaper.id if landscaper else None,
            'start_date': datetime.now(timezone.utc) + timedelta(days=2),
        }
        defaults.update(kwargs)
        job = Job(**defaults)
        db.session.add(job)
        db.session.commit()
        return job

    return _create_job


@pytest.fixture
def posted_job(job_factory):
    return job_factory()


@pytest.fixture
def fake_socket():
    """Factory for fake websocket connections"""
    return FakeSocket


@pytest.fixture
def open_channel(services):
    """Factory: a registered channel, identified as ``user`` when given"""
    def _open_channel(user=None, **socket_kwargs):
        channel = Channel(FakeSocket(**socket_kwargs), remote_addr='127.0.0.1')
        services.registry.register(channel)
        if user is not None:
            services.registry.identify(channel, user.id)
        return channel

    return _open_channel
