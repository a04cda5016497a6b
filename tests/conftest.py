import pytest
from werkzeug.security import generate_password_hash

from app.casahub import create_app
from app.casahub.auth import _login_attempts
from app.casahub.db import session_scope
from app.casahub.models import Base, Role, User
from app.casahub.rbac import USER_ROLE_KEY
from scripts.init_db import seed_defaults

CSRF_TOKEN = "test-csrf-token"
ADMIN_EMAIL = "admin@example.com"
MEMBER_EMAIL = "member@example.com"
PASSWORD = "pw1234"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    _login_attempts.clear()

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        seed_defaults(s, admin_email=ADMIN_EMAIL, admin_password=PASSWORD)
        member = User(email=MEMBER_EMAIL, name="Member", password_hash=generate_password_hash(PASSWORD), is_active=True)
        member.roles.append(s.query(Role).filter(Role.key == USER_ROLE_KEY).one())
        s.add(member)

    yield app
    engine.dispose()


def _signed_in(app, email):
    client = app.test_client()
    r = client.post("/auth/login", data={"email": email, "password": PASSWORD})
    assert r.status_code == 302
    # Login resets the session; plant a known token for the POSTs that follow.
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF_TOKEN
    return client


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def admin_client(app):
    return _signed_in(app, ADMIN_EMAIL)


@pytest.fixture()
def member_client(app):
    return _signed_in(app, MEMBER_EMAIL)
