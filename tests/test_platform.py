import pytest

from app.djtquest import create_app
from app.djtquest.auth import LoginThrottle
from app.djtquest.config import load_config
from app.djtquest.storage import LocalStorage, StorageError, storage_from_config


def test_config_defaults_and_lists(monkeypatch):
    for k in ("STORAGE_BACKEND", "S3_REGION", "DEFAULT_USER_PASSWORD", "CSRF_ENABLED", "ENV"):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("XP_ADJUST_ALLOWED_EMAILS", " Chefe@CPFL.com.br, ,outro@cpfl.com.br")
    cfg = load_config()
    assert cfg["STORAGE_BACKEND"] == "local"
    assert cfg["S3_REGION"] == "sa-east-1"
    assert cfg["DEFAULT_USER_PASSWORD"] == "123456"
    assert cfg["CSRF_ENABLED"] is True
    assert cfg["SESSION_COOKIE_SECURE"] is False
    assert cfg["XP_ADJUST_ALLOWED_EMAILS"] == ("chefe@cpfl.com.br", "outro@cpfl.com.br")

    monkeypatch.setenv("CSRF_ENABLED", "off")
    assert load_config()["CSRF_ENABLED"] is False


def test_production_refuses_sqlite_and_default_secret(monkeypatch, tmp_path):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    monkeypatch.setenv("SECRET_KEY", "change-me")
    with pytest.raises(RuntimeError) as exc:
        create_app()
    assert "Postgres" in str(exc.value)
    assert "SECRET_KEY" in str(exc.value)


def test_login_throttle_window():
    throttle = LoginThrottle(limit=2, window_seconds=60)
    assert throttle.hit("10.0.0.1")
    assert throttle.hit("10.0.0.1")
    assert not throttle.hit("10.0.0.1")
    assert throttle.hit("10.0.0.2")
    throttle.forget("10.0.0.1")
    assert throttle.hit("10.0.0.1")


def test_local_storage_roundtrip_and_bad_keys(tmp_path):
    st = LocalStorage(root=tmp_path)
    st.put_bytes("forum/1/20260901/a_b.png", b"png")
    assert st.exists("forum/1/20260901/a_b.png")
    with st.open("forum/1/20260901/a_b.png") as fh:
        assert fh.read() == b"png"
    with pytest.raises(StorageError):
        st.put_bytes("../escape.txt", b"x")
    with pytest.raises(StorageError):
        st.open("forum/1/missing.png")
    assert st.delete_many(["forum/1/20260901/a_b.png", "nunca/existiu"]) == []
    assert not st.exists("forum/1/20260901/a_b.png")


def test_storage_from_config(tmp_path):
    st = storage_from_config({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path)})
    assert isinstance(st, LocalStorage)
    assert st.root == tmp_path
    with pytest.raises(StorageError):
        storage_from_config({"STORAGE_BACKEND": "ftp"})
    with pytest.raises(StorageError):
        storage_from_config({"STORAGE_BACKEND": "s3", "S3_BUCKET": ""})


def test_store_uploads_removes_written_files_when_a_write_fails(tmp_path):
    from app.djtquest.attachments import store_uploads

    writes = []

    class FlakyStorage(LocalStorage):
        def put_bytes(self, key, data, *, content_type=None):
            writes.append(key)
            if len(writes) == 2:
                raise StorageError("disco cheio")
            super().put_bytes(key, data, content_type=content_type)

    st = FlakyStorage(root=tmp_path)
    with pytest.raises(StorageError):
        store_uploads(st, module="forum", user_id=7, files=[("a.png", b"png", "image/png"), ("b.png", b"png", "image/png")])
    assert len(writes) == 2
    assert not any(p.is_file() for p in tmp_path.rglob("*"))


def test_grant_role_script_accepts_aliases(app):
    from conftest import get_user, make_user
    from app.djtquest.rbac import role_keys
    from scripts.grant_role import grant

    uid = make_user(app, "fulano@cpfl.com.br", matricula="601234")
    lines = grant("601234", ["coordenador", "content_curator", "coordenador_djtx"], database_url=app.config["DATABASE_URL"])
    assert lines == ["granted coordenador_djtx to fulano@cpfl.com.br", "granted content_curator to fulano@cpfl.com.br"]
    assert role_keys(get_user(app, uid)) == {"coordenador_djtx", "content_curator"}
    assert grant("fulano@cpfl.com.br", "coordenador", database_url=app.config["DATABASE_URL"]) == [
        "fulano@cpfl.com.br already has coordenador_djtx"
    ]
    with pytest.raises(SystemExit):
        grant("fulano@cpfl.com.br", ["dono"], database_url=app.config["DATABASE_URL"])
