from types import SimpleNamespace

import pytest

from app import create_app
from certificate import Caller
from models import db, Institution, InstitutionUser, User, UserRole

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'PUBLIC_BASE_URL': 'https://certs.example.org/',
    'ANCHOR_BACKEND': 'ledger-stub',
    'NOTIFY_RECIPIENTS': False,
    'MAIL_SUPPRESS_SEND': True,
}

PASSWORD = 'pass123'


def _login(client, email, password=PASSWORD):
    return client.post('/login', data={
        'email': email,
        'password': password
    })


@pytest.fixture()
def app():
    app = create_app(dict(TEST_CONFIG))
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def seed(app):
    """Two institutions, a staff member for each, an admin and a plain user."""
    with app.app_context():
        acme = Institution(name='Acme University', email='registrar@acme.example')
        other = Institution(name='Other College', email='office@other.example')
        db.session.add_all([acme, other])
        db.session.flush()

        admin = User(name='Admin', email='admin@example.com', role=UserRole.ADMIN)
        staff = User(name='Acme Registrar', email='staff@acme.example', role=UserRole.INSTITUTION)
        other_staff = User(name='Other Registrar', email='staff@other.example', role=UserRole.INSTITUTION)
        plain = User(name='Jane Doe', email='jane@example.com', role=UserRole.USER)
        for u in (admin, staff, other_staff, plain):
            u.set_password(PASSWORD)
        db.session.add_all([admin, staff, other_staff, plain])
        db.session.flush()

        db.session.add_all([
            InstitutionUser(user_id=staff.user_id, institution_id=acme.institution_id),
            InstitutionUser(user_id=other_staff.user_id, institution_id=other.institution_id),
        ])
        db.session.commit()

        return SimpleNamespace(
            acme_id=acme.institution_id,
            other_id=other.institution_id,
            admin=Caller(admin.user_id, UserRole.ADMIN, None, 'Admin', 'admin@example.com'),
            staff=Caller(staff.user_id, UserRole.INSTITUTION, acme.institution_id, 'Acme Registrar',
                         'staff@acme.example'),
            other_staff=Caller(other_staff.user_id, UserRole.INSTITUTION, other.institution_id,
                               'Other Registrar', 'staff@other.example'),
            plain=Caller(plain.user_id, UserRole.USER, None, 'Jane Doe', 'jane@example.com'),
        )


@pytest.fixture()
def ctx(app, seed):
    with app.app_context():
        yield app


@pytest.fixture()
def client(app, seed):
    return app.test_client()


def certificate_data(**overrides):
    data = {
        'title': 'Certificate of Completion',
        'recipient_name': 'Jane Doe',
        'recipient_email': 'jane@example.com',
        'issue_date': '2024-01-01',
    }
    data.update(overrides)
    return data
