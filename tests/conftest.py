"""
Pytest configuration and fixtures
"""
import itertools
import pytest
from flask_jwt_extended import create_access_token
from app import create_app
from extensions import db, socketio
from config import Config
from models.user import User, UserSession
from models.job import Job
from models.attempt import Attempt


class TestConfig(Config):
    """Test configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {}  # Override pool settings for SQLite
    JWT_SECRET_KEY = 'test-secret-key-for-testing-only'
    REDIS_ENABLED = False
    LOG_LEVEL = 'WARNING'
    PROCTORING_LOCK_WAIT = 5
    DEBUG = False


@pytest.fixture(scope='function')
def app():
    """Create application for testing"""
    app = create_app(TestConfig)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client"""
    return app.test_client()


_emails = itertools.count(1)


@pytest.fixture
def make_user(app):
    """Factory: make_user(role='candidate') -> committed User"""
    def _make(role='candidate', name=None):
        n = next(_emails)
        user = User(
            email=f'{role}{n}@example.com',
            name=name or f'{role.title()} {n}',
            company='Test Company',
            role=role
        )
        user.set_password('TestPassword123!')
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def make_job(app):
    def _make(owner, title='Backend Engineer'):
        job = Job(user_id=owner.id, title=title)
        db.session.add(job)
        db.session.commit()
        return job
    return _make


@pytest.fixture
def make_attempt(app):
    def _make(candidate, job):
        attempt = Attempt(candidate_id=candidate.id, job_id=job.id)
        db.session.add(attempt)
        db.session.commit()
        return attempt
    return _make


@pytest.fixture
def headers_for(app):
    """Factory: JWT + session token headers for a user"""
    def _headers(user):
        access_token = create_access_token(identity=str(user.id))
        session = UserSession(
            user_id=user.id,
            device_info='pytest',
            ip_address='127.0.0.1'
        )
        db.session.add(session)
        db.session.commit()
        return {
            'Authorization': f'Bearer {access_token}',
            'X-Session-Token': session.session_token,
            'Content-Type': 'application/json'
        }
    return _headers


@pytest.fixture
def recruiter(make_user):
    return make_user('recruiter')


@pytest.fixture
def candidate(make_user):
    return make_user('candidate')


@pytest.fixture
def job(make_job, recruiter):
    return make_job(recruiter)


@pytest.fixture
def attempt(make_attempt, candidate, job):
    return make_attempt(candidate, job)


@pytest.fixture
def candidate_headers(headers_for, candidate):
    return headers_for(candidate)


@pytest.fixture
def recruiter_headers(headers_for, recruiter):
    return headers_for(recruiter)


@pytest.fixture
def socket_client(app):
    """Factory: authenticated Socket.IO test client for a user (or raw auth payload)"""
    clients = []

    def _connect(user=None, auth=None):
        if auth is None and user is not None:
            auth = {'token': create_access_token(identity=str(user.id))}
        test_client = socketio.test_client(app, auth=auth)
        clients.append(test_client)
        return test_client

    yield _connect

    for test_client in clients:
        if test_client.is_connected():
            test_client.disconnect()


@pytest.fixture
def started_session(client, attempt, candidate_headers):
    """A proctoring session initialized through the API"""
    response = client.post('/api/proctoring/init', json={
        'attemptId': attempt.id,
        'webcamEnabled': True
    }, headers=candidate_headers)
    assert response.status_code == 201
    return attempt
