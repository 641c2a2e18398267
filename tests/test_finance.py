from io import BytesIO

from openpyxl import load_workbook

from app.djtquest.db import session_scope
from app.djtquest.modules.finance.models import FinanceRequest
from app.djtquest.modules.finance.service import format_cents_brl, parse_brl_to_cents
from app.djtquest.storage import storage_from_config
from conftest import login, make_user


def _upload(client, name="recibo.pdf", module="finance"):
    r = client.post(
        "/api/uploads",
        data={"file": (BytesIO(b"%PDF-1.4 recibo"), name), "module": module},
        content_type="multipart/form-data",
    )
    assert r.status_code == 201
    return r.json["attachments"][0]


def _payload(**overrides):
    payload = {
        "company": "CPFL Piratininga",
        "training_operational": "Sim",
        "request_kind": "Reembolso",
        "coordination": "Santos",
        "date_start": "2026-09-01",
        "date_end": "",
        "description": "Deslocamento para treinamento em Cubatão.",
        "items": [
            {"expense_type": "Transporte", "amount": "12,50"},
            {"expense_type": "Almoço", "amount": "30"},
        ],
    }
    payload.update(overrides)
    return payload


def test_parse_brl_to_cents():
    assert parse_brl_to_cents("123,45") == 12345
    assert parse_brl_to_cents("123.45") == 12345
    assert parse_brl_to_cents("1.234,56") == 123456
    assert parse_brl_to_cents("1,234.56") == 123456
    assert parse_brl_to_cents("1.234") == 123400
    assert parse_brl_to_cents("R$ 10") == 1000
    assert parse_brl_to_cents("0,1") == 10
    assert parse_brl_to_cents(7) == 700
    assert parse_brl_to_cents("") is None
    assert parse_brl_to_cents("abc") is None
    assert parse_brl_to_cents("-5") is None
    assert format_cents_brl(123456) == "1234,56"
    assert format_cents_brl(5) == "0,05"
    assert format_cents_brl(None) == ""


def test_create_request_with_items_and_attachment(app, client):
    uid = make_user(app, "ana@cpfl.com.br", roles=("colaborador",), name="Ana Souza", matricula="123")
    login(client, "ana@cpfl.com.br")
    att = _upload(client)

    r = client.post("/api/finance/requests", json=_payload(attachments=[{**att, "item_idx": 1}]))
    assert r.status_code == 201
    req = r.json["request"]
    assert req["protocol"].startswith("FIN-")
    assert req["protocol"].endswith(f"-{req['id']:06d}")
    assert req["expense_type"] == "Múltiplos"
    assert req["amount_cents"] == 4250
    assert req["date_end"] == "2026-09-01"
    assert req["status"] == "Enviado"
    assert req["created_by_name"] == "Ana Souza"
    assert [i["amount_cents"] for i in req["items"]] == [1250, 3000]
    assert req["attachments"][0]["item_id"] == req["items"][1]["id"]
    assert [h["to_status"] for h in req["history"]] == ["Enviado"]

    items = client.get("/api/finance/requests").json["items"]
    assert [i["id"] for i in items] == [req["id"]]
    with session_scope(app) as s:
        assert s.get(FinanceRequest, req["id"]).created_by == uid


def test_create_request_validation(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    make_user(app, "beto@cpfl.com.br", roles=("colaborador",))
    login(client, "beto@cpfl.com.br")
    foreign = _upload(client)

    client.post("/auth/logout")
    login(client, "ana@cpfl.com.br")
    r = client.post("/api/finance/requests", json=_payload(date_end="2026-08-01"))
    assert r.status_code == 400
    assert "Envie pelo menos 1 anexo." in r.json["errors"]
    assert "Data Fim deve ser >= Data Início." in r.json["errors"]

    r = client.post("/api/finance/requests", json=_payload(attachments=[foreign]))
    assert r.status_code == 400
    assert "Anexo não pertence ao usuário." in r.json["errors"]

    r = client.post("/api/finance/requests", json=_payload(attachments=[_upload(client, module="sepbook")]))
    assert "Anexo não pertence ao usuário." in r.json["errors"]

    bad_item = _payload(items=[{"expense_type": "Adiantamento", "amount": "10"}], attachments=[_upload(client)])
    r = client.post("/api/finance/requests", json=bad_item)
    assert r.status_code == 400


def test_advance_request_needs_no_attachment(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    login(client, "ana@cpfl.com.br")
    r = client.post(
        "/api/finance/requests",
        json=_payload(request_kind="Adiantamento", items=None, expense_type="Transporte", amount=""),
    )
    assert r.status_code == 201
    assert r.json["request"]["expense_type"] == "Adiantamento"
    assert r.json["request"]["amount_cents"] is None


def test_guest_has_no_finance_access(app, client):
    make_user(app, "visita@gmail.com", roles=("invited",))
    login(client, "visita@gmail.com")
    assert client.get("/api/finance/requests").status_code == 403


def test_cancel_and_delete_own_request(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    login(client, "ana@cpfl.com.br")
    att = _upload(client)
    first = client.post("/api/finance/requests", json=_payload(attachments=[att])).json["request"]["id"]
    second = client.post("/api/finance/requests", json=_payload(attachments=[_upload(client)])).json["request"]["id"]

    r = client.post(f"/api/finance/requests/{first}/cancel")
    assert r.json["request"]["status"] == "Cancelado"
    assert r.json["request"]["last_observation"] == "Cancelado pelo usuário"
    assert client.post(f"/api/finance/requests/{first}/cancel").status_code == 409

    client.post("/auth/logout")
    login(client, "coord@cpfl.com.br")
    assert client.get(f"/api/finance/requests/{second}").json["request"]["analyst_viewed_at"]

    client.post("/auth/logout")
    login(client, "ana@cpfl.com.br")
    assert client.delete(f"/api/finance/requests/{second}").status_code == 409

    third = client.post("/api/finance/requests", json=_payload(attachments=[_upload(client, "outro.pdf")])).json
    key = third["request"]["attachments"][0]["storage_key"]
    r = client.delete(f"/api/finance/requests/{third['request']['id']}")
    assert r.status_code == 200
    assert r.json["storage_delete_failed"] == []
    assert not storage_from_config(app.config).exists(key)


def test_admin_list_status_and_export(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",), name="Ana Souza")
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    login(client, "ana@cpfl.com.br")
    rid = client.post("/api/finance/requests", json=_payload(attachments=[_upload(client)])).json["request"]["id"]
    client.post(
        "/api/finance/requests",
        json=_payload(company="CPFL Santa Cruz", attachments=[_upload(client)], date_start="2026-10-05"),
    )
    assert client.get("/api/finance/admin/requests").status_code == 403

    client.post("/auth/logout")
    login(client, "coord@cpfl.com.br")
    listing = client.get("/api/finance/admin/requests?company=CPFL+Santa+Cruz").json
    assert listing["total"] == 1
    assert client.get("/api/finance/admin/requests?q=ana").json["total"] == 2
    assert client.get("/api/finance/admin/requests?date_start_to=2026-09-30").json["total"] == 1
    r = client.get("/api/finance/admin/requests?date_start_from=2026-10-01&date_start_to=2026-09-01")
    assert r.status_code == 400

    assert client.post(f"/api/finance/admin/requests/{rid}/status", json={"status": "Pago"}).status_code == 400
    r = client.post(
        f"/api/finance/admin/requests/{rid}/status",
        json={"status": "Em Análise", "observation": "Conferindo comprovantes"},
    )
    req = r.json["request"]
    assert req["status"] == "Em Análise"
    assert req["last_observation"] == "Conferindo comprovantes"
    assert [(h["from_status"], h["to_status"]) for h in req["history"]] == [(None, "Enviado"), ("Enviado", "Em Análise")]

    r = client.get("/api/finance/admin/requests/export?format=csv&status=Em+An%C3%A1lise")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    lines = r.data.decode("utf-8-sig").splitlines()
    assert lines[0].startswith("Protocolo,Data,Empresa")
    assert len(lines) == 2
    assert "42,50" in lines[1]

    r = client.get("/api/finance/admin/requests/export?format=xlsx")
    ws = load_workbook(BytesIO(r.data)).active
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][0] == "Protocolo"
    assert len(rows) == 3

    assert client.get("/api/finance/admin/requests/export?format=pdf").status_code == 400


def test_admin_purge(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    login(client, "ana@cpfl.com.br")
    req = client.post("/api/finance/requests", json=_payload(attachments=[_upload(client)])).json["request"]
    key = req["attachments"][0]["storage_key"]
    assert storage_from_config(app.config).exists(key)

    client.post("/auth/logout")
    login(client, "coord@cpfl.com.br")
    assert client.delete(f"/api/finance/admin/requests/{req['id']}").status_code == 403

    client.post("/auth/logout")
    login(client, "admin@cpfl.com.br")
    r = client.delete(f"/api/finance/admin/requests/{req['id']}")
    assert r.status_code == 200
    assert not storage_from_config(app.config).exists(key)
    with session_scope(app) as s:
        assert s.get(FinanceRequest, req["id"]) is None
