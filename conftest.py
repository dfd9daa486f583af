import os
import tempfile
import uuid

import pytest

# Configure the app before it is imported: Config reads the environment at import time.
test_db_path = os.path.join(tempfile.gettempdir(), f'lawn_roster_test_{uuid.uuid4().hex[:8]}.db')
os.environ['DATABASE_URL'] = f'sqlite:///{test_db_path}'
os.environ['AUTO_SEED'] = 'False'
os.environ['MAIL_SUPPRESS_SEND'] = 'True'
os.environ['CACHE_TYPE'] = 'NullCache'
os.environ['SECRET_KEY'] = 'test-secret'
os.environ['ASSISTANCE_EMAIL'] = 'organiser@roster.org'
os.environ.pop('MAIL_TEST_RECIPIENT', None)
os.environ.pop('REDIS_URL', None)

from app import app as flask_app, db, User, MowingSession  # noqa: E402

flask_app.config['TESTING'] = True


@pytest.fixture
def app():
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def admin(app):
    user = User(name='Roster Admin', email='admin@roster.org', is_admin=True)
    user.set_password('admin123')
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def volunteers(app):
    people = [
        User(name='Alice', email='alice@roster.org', phone='021 000 001'),
        User(name='Bob', email='bob@roster.org'),
        User(name='Carol', email='carol@roster.org'),
    ]
    db.session.add_all(people)
    db.session.commit()
    return people


def make_session(date_str, user=None, confirmed=False):
    s = MowingSession(date=date_str, user_id=user.id if user else None, confirmed=confirmed)
    db.session.add(s)
    db.session.commit()
    return s


def login(client, name, password=None):
    payload = {'name': name}
    if password is not None:
        payload['password'] = password
    return client.post('/api/auth/login', json=payload)
