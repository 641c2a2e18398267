import pytest
from werkzeug.security import generate_password_hash

from app.djtquest import create_app
from app.djtquest.auth import login_throttle
from app.djtquest.db import session_scope
from app.djtquest.models import Base, Role, User
from scripts.init_db import seed_roles_and_permissions


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("CSRF_ENABLED", "1")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    for k in ("XP_ADJUST_ALLOWED_EMAILS", "XP_ADJUST_ALLOWED_MATRICULAS", "DEFAULT_USER_PASSWORD"):
        monkeypatch.delenv(k, raising=False)
    login_throttle.reset()

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    with session_scope(app) as s:
        seed_roles_and_permissions(s)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def make_user(app, email, *, roles=(), password="pw", **fields) -> int:
    """Create an active user with the given role keys; returns its id."""
    with session_scope(app) as s:
        fields.setdefault("is_active", True)
        u = User(email=email, password_hash=generate_password_hash(password), **fields)
        for key in roles:
            u.roles.append(s.query(Role).filter(Role.key == key).one())
        s.add(u)
        s.flush()
        return u.id


def login(client, email, password="pw"):
    """Log in and attach the session's CSRF token to every later request."""
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    client.environ_base["HTTP_X_CSRF_TOKEN"] = r.json["csrf_token"]
    return r.json["user"]


def get_user(app, user_id) -> User:
    with session_scope(app) as s:
        return s.get(User, user_id)
