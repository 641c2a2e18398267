from app.djtquest.db import session_scope
from app.djtquest.models import AuditEvent, Notification
from app.djtquest.models import User
from app.djtquest.modules.gamification.service import apply_xp
from app.djtquest.modules.gamification.tiers import (
    compute_tier_from_xp,
    get_next_tier_level,
    tier_summary,
    xp_needed_to_advance_tier_steps,
)
from conftest import get_user, login, make_user


def test_compute_tier_stays_in_track():
    assert compute_tier_from_xp("EX-1", 0) == "EX-1"
    assert compute_tier_from_xp("EX-1", 299) == "EX-1"
    assert compute_tier_from_xp("EX-1", 300) == "EX-2"
    assert compute_tier_from_xp("EX-3", 5000) == "EX-5"
    assert compute_tier_from_xp("FO-4", 450) == "FO-2"
    assert compute_tier_from_xp("garbage", 800) == "EX-3"


def test_xp_needed_to_advance():
    assert xp_needed_to_advance_tier_steps("EX-1", 100, 1) == 200
    assert xp_needed_to_advance_tier_steps("EX-1", 100, 2) == 600
    assert xp_needed_to_advance_tier_steps("EX-5", 2000, 1) == 0


def test_tier_summary_and_next():
    summary = tier_summary("EX-2", 500)
    assert summary["name"] == "Executor Seguro"
    assert summary["progress"] == 50
    assert summary["next"]["code"] == "EX-3"
    assert summary["next"]["xp_needed"] == 200
    assert summary["next_track"] == "FO"
    assert get_next_tier_level("GU-5", 9999) is None
    assert tier_summary("GU-5", 9999)["can_request_progression"] is True


def test_apply_xp_floors_at_zero():
    u = User(email="x@cpfl.com.br", password_hash="x", xp=100, tier="EX-1")
    assert apply_xp(u, 250) == 350
    assert u.tier == "EX-2"
    assert apply_xp(u, -1000) == 0
    assert u.tier == "EX-1"


def test_xp_adjust_requires_allowlist(app, client):
    target = make_user(app, "alvo@cpfl.com.br", matricula="1001", xp=500, tier="EX-2")
    make_user(app, "chefe@cpfl.com.br", roles=("admin",))
    login(client, "chefe@cpfl.com.br")
    r = client.post("/api/admin/xp-adjust", json={"user_id": target, "action": "reset"})
    assert r.status_code == 403


def test_xp_adjust_set_and_reset(app, client):
    target = make_user(app, "alvo@cpfl.com.br", matricula="1001", xp=500, tier="EX-2")
    make_user(app, "rodrigonasc@cpfl.com.br")
    login(client, "rodrigonasc@cpfl.com.br")

    r = client.post("/api/admin/xp-adjust", json={"matricula": "1001", "action": "set", "xp": 1250.7})
    assert r.status_code == 200
    assert r.json["user"]["new_xp"] == 1250
    assert r.json["user"]["new_tier"] == "EX-4"

    r = client.post("/api/admin/xp-adjust", json={"user_id": target, "action": "zerar", "reason": "teste"})
    assert r.status_code == 200
    assert get_user(app, target).xp == 0

    r = client.post("/api/admin/xp-adjust", json={"user_id": target, "action": "dobrar"})
    assert r.status_code == 400


def test_xp_adjust_extra_allowlist_from_env(app, client):
    app.config["XP_ADJUST_ALLOWED_EMAILS"] = ("extra@cpfl.com.br",)
    target = make_user(app, "alvo@cpfl.com.br", xp=10)
    make_user(app, "extra@cpfl.com.br")
    login(client, "extra@cpfl.com.br")
    r = client.post("/api/admin/xp-adjust", json={"user_id": target, "action": "set", "xp": 42})
    assert r.status_code == 200


def test_tiers_catalogue(client):
    r = client.get("/api/admin/tiers")
    assert r.status_code == 200
    assert [t["code"] for t in r.json["EX"]] == ["EX-1", "EX-2", "EX-3", "EX-4", "EX-5"]


def test_tier_progression_requires_level_five(app, client):
    make_user(app, "jovem@cpfl.com.br", xp=800, tier="EX-3")
    login(client, "jovem@cpfl.com.br")
    r = client.post("/api/admin/tier-progression", json={})
    assert r.status_code == 400


def test_tier_progression_at_top_track_is_refused(app, client):
    make_user(app, "topo@cpfl.com.br", xp=3000, tier="GU-5")
    login(client, "topo@cpfl.com.br")
    r = client.post("/api/admin/tier-progression", json={})
    assert r.status_code == 400
    assert "máximo" in r.json["error"]


def test_tier_progression_request_notifies_coordinators(app, client):
    player = make_user(app, "veterano@cpfl.com.br", name="Veterano", xp=1900, tier="EX-5")
    coord = make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    login(client, "veterano@cpfl.com.br")

    r = client.post("/api/admin/tier-progression", json={})
    assert r.status_code == 201
    assert r.json["request"]["current_tier"] == "EX-5"
    assert r.json["request"]["target_tier"] == "FO-1"
    assert r.json["request"]["status"] == "pending"

    # One open request at a time.
    assert client.post("/api/admin/tier-progression", json={}).status_code == 409

    with session_scope(app) as s:
        to_coord = s.query(Notification).filter(Notification.user_id == coord).one()
        assert to_coord.type == "tier_progression_request"
        assert "Veterano solicitou progressão de EX-5 para FO-1" in to_coord.message
        to_player = s.query(Notification).filter(Notification.user_id == player).one()
        assert to_player.type == "tier_progression_pending"
        assert "Formador" in to_player.message
        assert s.query(AuditEvent).filter(AuditEvent.action == "tier.progression.request").count() == 1
    assert get_user(app, player).tier == "EX-5"


def test_tier_progression_approve_moves_to_next_track(app, client):
    player = make_user(app, "veterano@cpfl.com.br", xp=2300, tier="FO-5")
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    login(client, "veterano@cpfl.com.br")
    request_id = client.post("/api/admin/tier-progression", json={}).json["request"]["id"]

    # Players cannot review their own request.
    r = client.post(f"/api/admin/tier-progression/{request_id}/review", json={"action": "approve"})
    assert r.status_code == 403

    login(client, "coord@cpfl.com.br")
    r = client.get("/api/admin/tier-progression")
    assert [row["id"] for row in r.json["requests"]] == [request_id]

    r = client.post(f"/api/admin/tier-progression/{request_id}/review", json={"action": "approve", "notes": "ok"})
    assert r.status_code == 200
    assert r.json["request"]["status"] == "approved"
    u = get_user(app, player)
    assert u.tier == "GU-1"
    assert u.xp == 2300

    r = client.post(f"/api/admin/tier-progression/{request_id}/review", json={"action": "reject"})
    assert r.status_code == 409
    assert client.get("/api/admin/tier-progression").json["requests"] == []

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "tier.progression.approve").one()
        assert ev.entity_id == str(request_id)
        assert s.query(Notification).filter(
            Notification.user_id == player, Notification.type == "tier_progression_approved"
        ).count() == 1


def test_tier_progression_reject_keeps_tier(app, client):
    player = make_user(app, "veterano@cpfl.com.br", xp=1900, tier="EX-5")
    make_user(app, "gerente@cpfl.com.br", roles=("gerente_djt",))
    login(client, "veterano@cpfl.com.br")
    request_id = client.post("/api/admin/tier-progression", json={}).json["request"]["id"]

    login(client, "gerente@cpfl.com.br")
    r = client.post(f"/api/admin/tier-progression/{request_id}/review", json={"action": "talvez"})
    assert r.status_code == 400
    r = client.post(f"/api/admin/tier-progression/{request_id}/review", json={"action": "reject", "notes": "Ainda não."})
    assert r.status_code == 200
    assert get_user(app, player).tier == "EX-5"
    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "tier.progression.reject").one()
        assert ev.reason == "Ainda não."
