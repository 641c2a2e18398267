from conftest import login, make_user


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_requires_login(client):
    r = client.get("/api/quiz/challenges")
    assert r.status_code == 401
    assert r.json["error"] == "Unauthorized"


def test_login_me_and_logout(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",), name="Ana")
    user = login(client, "ana@cpfl.com.br")
    assert user["email"] == "ana@cpfl.com.br"
    assert user["tier"]["code"] == "EX-1"

    r = client.get("/auth/me")
    assert r.status_code == 200
    assert r.json["user"]["roles"] == ["colaborador"]

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401


def test_login_by_matricula(app, client):
    make_user(app, "bia@cpfl.com.br", matricula="601234")
    r = client.post("/auth/login", json={"login": "601-234", "password": "pw"})
    assert r.status_code == 200


def test_login_wrong_password(app, client):
    make_user(app, "caio@cpfl.com.br")
    r = client.post("/auth/login", json={"email": "caio@cpfl.com.br", "password": "nope"})
    assert r.status_code == 401


def test_login_rate_limited(app, client):
    make_user(app, "dani@cpfl.com.br")
    for _ in range(5):
        client.post("/auth/login", json={"email": "dani@cpfl.com.br", "password": "nope"})
    r = client.post("/auth/login", json={"email": "dani@cpfl.com.br", "password": "pw"})
    assert r.status_code == 429


def test_mutation_requires_csrf(app, client):
    make_user(app, "edu@cpfl.com.br")
    login(client, "edu@cpfl.com.br")
    token = client.environ_base.pop("HTTP_X_CSRF_TOKEN")

    r = client.post("/api/notifications/read", json={})
    assert r.status_code == 400
    assert "CSRF" in r.json["error"]

    r = client.post("/api/notifications/read", json={}, headers={"X-CSRF-Token": token})
    assert r.status_code == 200


def test_change_password_rules(app, client):
    make_user(app, "fabi@cpfl.com.br", password="123456", must_change_password=True)
    login(client, "fabi@cpfl.com.br", "123456")

    r = client.post("/auth/change-password", json={"current_password": "123456", "new_password": "fraca"})
    assert r.status_code == 400
    assert r.json["errors"]

    r = client.post(
        "/auth/change-password",
        json={"current_password": "123456", "new_password": "Forte1234", "confirm_password": "Forte1234"},
    )
    assert r.status_code == 200
    assert client.get("/auth/me").json["user"]["must_change_password"] is False


def test_upload_returns_reference(app, client):
    from io import BytesIO

    uid = make_user(app, "gabi@cpfl.com.br")
    login(client, "gabi@cpfl.com.br")
    r = client.post(
        "/api/uploads",
        data={"file": (BytesIO(b"%PDF-1.4 fake"), "nota fiscal.pdf"), "module": "finance"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    att = r.json["attachments"][0]
    assert att["kind"] == "pdf"
    assert att["filename"] == "nota_fiscal.pdf"
    assert att["storage_key"].startswith(f"finance/{uid}/")


def test_upload_requires_known_module(app, client):
    from io import BytesIO

    make_user(app, "gabi@cpfl.com.br")
    login(client, "gabi@cpfl.com.br")
    r = client.post(
        "/api/uploads",
        data={"file": (BytesIO(b"abc"), "a.txt"), "module": "quiz"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert client.post("/api/uploads", data={"module": "forum"}, content_type="multipart/form-data").status_code == 400


def test_upload_batch_is_all_or_nothing(app, client):
    from io import BytesIO
    from pathlib import Path

    make_user(app, "gabi@cpfl.com.br")
    login(client, "gabi@cpfl.com.br")
    r = client.post(
        "/api/uploads",
        data={"file": [(BytesIO(b"abc"), "a.pdf"), (BytesIO(b""), "b.pdf")], "module": "finance"},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    root = Path(app.config["STORAGE_ROOT"]) / "finance"
    assert not root.exists() or not any(p.is_file() for p in root.rglob("*"))
