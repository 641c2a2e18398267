from datetime import datetime, timedelta

from app.djtquest.db import session_scope
from app.djtquest.models import AuditEvent, User
from app.djtquest.modules.registration.models import PendingRegistration
from app.djtquest.modules.registration.service import DUPLICATE_NOTE, ReviewScope, in_scope, review_scope
from conftest import get_user, login, make_user


def _signup(client, **overrides):
    payload = {
        "name": "Carla Dias",
        "email": "Carla@CPFL.com.br",
        "matricula": "4567",
        "sigla_area": "djtb-cub",
        "operational_base": "Cubatão",
        "telefone": "(13) 99123-4567",
        "date_of_birth": "1990-05-02",
    }
    payload.update(overrides)
    return client.post("/api/registration", json=payload)


def _switch(client, email):
    client.post("/auth/logout")
    login(client, email)


def test_register_and_refresh_pending(app, client):
    r = _signup(client)
    assert r.status_code == 201
    assert r.json["already_pending"] is False
    rid = r.json["id"]

    r = _signup(client, name="Carla D. Souza")
    assert r.status_code == 200
    assert r.json == {"success": True, "id": rid, "already_pending": True}
    with session_scope(app) as s:
        reg = s.get(PendingRegistration, rid)
        assert reg.name == "Carla D. Souza"
        assert reg.email == "carla@cpfl.com.br"
        assert reg.sigla_area == "DJTB-CUB"
        assert reg.telefone == "+55 13 99123-4567"


def test_register_rejects_older_duplicates(app, client):
    with session_scope(app) as s:
        old = PendingRegistration(
            name="Carla", email="carla@cpfl.com.br", sigla_area="DJTB-CUB", operational_base="Cubatão",
            created_at=datetime.utcnow() - timedelta(days=2),
        )
        newer = PendingRegistration(
            name="Carla", email="carla@cpfl.com.br", sigla_area="DJTB-CUB", operational_base="Cubatão",
            created_at=datetime.utcnow() - timedelta(days=1),
        )
        s.add_all([old, newer])
        s.flush()
        old_id, newer_id = old.id, newer.id

    r = _signup(client)
    assert r.json["id"] == newer_id
    with session_scope(app) as s:
        old = s.get(PendingRegistration, old_id)
        assert old.status == "rejected"
        assert old.review_notes == DUPLICATE_NOTE
        assert s.get(PendingRegistration, newer_id).status == "pending"


def test_register_validation(app, client):
    r = client.post("/api/registration", json={"email": "nao-e-email"})
    assert r.status_code == 400
    assert "Nome é obrigatório." in r.json["errors"]
    assert "Email inválido." in r.json["errors"]
    assert "Equipe/Sigla é obrigatória." in r.json["errors"]

    r = _signup(client, sigla_area="XPTO", telefone="123", date_of_birth="02/05/1990")
    assert set(r.json["errors"]) == {"Equipe/Sigla inválida.", "Telefone inválido.", "Data de nascimento inválida (use AAAA-MM-DD)."}

    assert _signup(client, operational_base="").status_code == 400
    r = _signup(client, email="visita@gmail.com", sigla_area="Externo", operational_base="", matricula="")
    assert r.status_code == 201
    with session_scope(app) as s:
        reg = s.get(PendingRegistration, r.json["id"])
        assert (reg.sigla_area, reg.operational_base) == ("CONVIDADOS", "CONVIDADOS")


def test_register_existing_account_conflict(app, client):
    make_user(app, "carla@cpfl.com.br")
    r = _signup(client)
    assert r.status_code == 409
    assert r.json["code"] == "already_has_account"

    make_user(app, "outro@cpfl.com.br", matricula="999")
    r = _signup(client, email="novo@cpfl.com.br", matricula="999")
    assert r.status_code == 409


def test_options_are_public(client):
    r = client.get("/api/registration/options")
    assert r.status_code == 200
    assert "DJTB-CUB" in r.json["teams"]
    assert r.json["guest_team_id"] == "CONVIDADOS"


def test_in_scope_rules():
    guest = ReviewScope("lider_equipe", "DJTB-CUB", "DJTB-CUB", "DJTB")
    assert in_scope("CONVIDADOS", guest)
    assert in_scope("djtb-cub", guest)
    assert not in_scope("DJTB-STO", guest)
    assert not in_scope("", guest)

    coord = ReviewScope("coordenador_djtx", "DJTB-STO", "DJTB-STO", "DJTB")
    assert in_scope("DJTB-CUB", coord)
    assert not in_scope("DJTV-ITA", coord)

    division = ReviewScope("gerente_divisao_djtx", None, None, "DJTV")
    assert in_scope("DJTV-ITA", division)
    assert not in_scope("DJTB", division)
    assert not in_scope("DJTB", ReviewScope("gerente_divisao_djtx", None, None, None))

    assert in_scope("DJTB-STO", ReviewScope("gerente_djt", None, None, None))
    assert not in_scope("DJTB-STO", ReviewScope(None, "DJTB-STO", None, None))


def test_review_scope_uses_highest_role_and_derives_org(app):
    make_user(app, "lider@cpfl.com.br", roles=("lider_equipe", "coordenador_djtx"), team_id="DJTB-CUB")
    make_user(app, "flag@cpfl.com.br", is_leader=True, operational_base="djtv ita")
    with session_scope(app) as s:
        scope = review_scope(s.query(User).filter(User.email == "lider@cpfl.com.br").one())
        assert scope == ReviewScope("coordenador_djtx", "DJTB-CUB", "DJTB-CUB", "DJTB")
        scope = review_scope(s.query(User).filter(User.email == "flag@cpfl.com.br").one())
        assert scope == ReviewScope("lider_equipe", "DJTV-ITA", "DJTV-ITA", "DJTV")


def test_pending_list_is_scoped(app, client):
    make_user(app, "lider@cpfl.com.br", roles=("lider_equipe",), team_id="DJTB-CUB")
    make_user(app, "ger@cpfl.com.br", roles=("gerente_divisao_djtx",), division_id="DJTV")
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    _signup(client)
    _signup(client, email="davi@cpfl.com.br", matricula="", sigla_area="DJTV-ITA", operational_base="Itapetininga")
    _signup(client, email="visita@gmail.com", matricula="", sigla_area="CONVIDADOS")

    login(client, "lider@cpfl.com.br")
    emails = {r["email"] for r in client.get("/api/registration/pending").json["registrations"]}
    assert emails == {"carla@cpfl.com.br", "visita@gmail.com"}

    _switch(client, "ger@cpfl.com.br")
    emails = {r["email"] for r in client.get("/api/registration/pending").json["registrations"]}
    assert emails == {"davi@cpfl.com.br", "visita@gmail.com"}

    _switch(client, "ana@cpfl.com.br")
    r = client.get("/api/registration/pending")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "registrations.review"


def test_approve_creates_user(app, client):
    make_user(app, "lider@cpfl.com.br", roles=("lider_equipe",), team_id="DJTB-CUB")
    rid = _signup(client).json["id"]
    other = _signup(client, email="davi@cpfl.com.br", matricula="", sigla_area="DJTV-ITA", operational_base="Ita").json["id"]
    no_dob = _signup(client, email="eva@cpfl.com.br", matricula="", date_of_birth="").json["id"]

    login(client, "lider@cpfl.com.br")
    assert client.post(f"/api/registration/{other}/approve", json={}).status_code == 403
    assert client.post(f"/api/registration/{no_dob}/approve", json={}).status_code == 400

    r = client.post(f"/api/registration/{rid}/approve", json={"notes": "ok"})
    assert r.status_code == 200
    user = r.json["user"]
    assert user["roles"] == ["colaborador"]
    assert (user["division_id"], user["coord_id"], user["team_id"]) == ("DJTB", "DJTB-CUB", "DJTB-CUB")
    assert user["operational_base"] == "Cubatão"
    assert user["must_change_password"] is True
    assert user["needs_profile_completion"] is True
    assert user["phone"] == "+55 13 99123-4567"
    assert get_user(app, r.json["userId"]).matricula == "4567"

    assert client.post(f"/api/registration/{rid}/approve", json={}).status_code == 404
    with session_scope(app) as s:
        reg = s.get(PendingRegistration, rid)
        assert (reg.status, reg.created_user_id, reg.review_notes) == ("approved", r.json["userId"], "ok")
        assert s.query(AuditEvent).filter(AuditEvent.action == "registration.approve").count() == 1

    client.post("/auth/logout")
    me = login(client, "carla@cpfl.com.br", password="123456")
    assert me["must_change_password"] is True


def test_approve_guest_with_curator_role(app, client):
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    rid = _signup(client, email="visita@gmail.com", matricula="").json["id"]
    login(client, "admin@cpfl.com.br")
    r = client.post(f"/api/registration/{rid}/approve", json={"force_guest": True, "assign_content_curator": True})
    user = r.json["user"]
    assert user["roles"] == ["content_curator", "invited"]
    assert user["team_id"] == "CONVIDADOS"
    assert user["operational_base"] == "CONVIDADOS"
    assert user["division_id"] is None


def test_approve_conflicts_with_existing_account(app, client):
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    rid = _signup(client).json["id"]
    make_user(app, "outra@cpfl.com.br", matricula="4567")
    login(client, "admin@cpfl.com.br")
    r = client.post(f"/api/registration/{rid}/approve", json={})
    assert r.status_code == 409
    assert r.json["code"] == "already_has_account"


def test_reject(app, client):
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    rid = _signup(client).json["id"]
    login(client, "admin@cpfl.com.br")
    r = client.post(f"/api/registration/{rid}/reject", json={"notes": "Matrícula não confere"})
    assert r.json["registration"]["status"] == "rejected"
    assert r.json["registration"]["review_notes"] == "Matrícula não confere"
    assert client.get("/api/registration/pending").json["registrations"] == []
    everything = client.get("/api/registration/pending?status=all").json["registrations"]
    assert [x["id"] for x in everything] == [rid]
