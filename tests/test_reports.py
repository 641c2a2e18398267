from datetime import date, datetime

from app.djtquest.db import session_scope
from app.djtquest.modules.finance.models import FinanceRequest
from app.djtquest.modules.forum.models import ForumTopic
from app.djtquest.modules.quiz.models import Challenge, QuizAttempt
from conftest import login, make_user


def _seed(app):
    ana = make_user(app, "ana@cpfl.com.br", team_id="DJTB-CUB", tier="FO-2", xp=500)
    beto = make_user(app, "beto@cpfl.com.br", team_id="DJTB-STO", xp=100)
    make_user(app, "carla@cpfl.com.br", team_id="DJTV-ITA", xp=300)
    make_user(app, "inativo@cpfl.com.br", team_id="DJTB-CUB", xp=900, is_active=False)
    with session_scope(app) as s:
        published = Challenge(title="Quiz NR10", type="quiz", quiz_workflow_status="PUBLISHED")
        s.add_all([published, Challenge(title="Rascunho", type="quiz", quiz_workflow_status="DRAFT")])
        s.flush()
        s.add_all(
            [
                QuizAttempt(user_id=ana, challenge_id=published.id, submitted_at=datetime.utcnow()),
                QuizAttempt(user_id=beto, challenge_id=published.id),
            ]
        )
        s.add(
            FinanceRequest(
                company="CPFL Piratininga",
                request_kind="Adiantamento",
                expense_type="Adiantamento",
                coordination="Santos",
                date_start=date(2026, 9, 1),
                description="Adiantamento de viagem",
                status="Aprovado",
            )
        )
        s.add_all([ForumTopic(title="Aberto", status="open"), ForumTopic(title="Fechado", status="closed")])
        return published.id


def test_overview_requires_permission(app, client):
    make_user(app, "lider@cpfl.com.br", roles=("lider_equipe",))
    login(client, "lider@cpfl.com.br")
    r = client.get("/api/reports/overview")
    assert r.status_code == 403
    assert r.json["missing_permission"] == "reports.view"


def test_overview_counters(app, client):
    quiz_id = _seed(app)
    make_user(app, "gerente@cpfl.com.br", roles=("gerente_djt",))
    login(client, "gerente@cpfl.com.br")

    data = client.get("/api/reports/overview").json
    assert data["users"]["total"] == 4
    assert data["users"]["by_tier_prefix"] == {"FO": 1, "EX": 3}
    assert data["users"]["by_team"] == {"DJTB-CUB": 1, "DJTB-STO": 1, "DJTV-ITA": 1, "(sem equipe)": 1}
    assert data["quizzes"]["by_workflow_status"] == {"PUBLISHED": 1, "DRAFT": 1}
    assert data["quizzes"]["published_completions"] == [{"challenge_id": quiz_id, "title": "Quiz NR10", "completed": 1}]
    assert data["finance"]["by_status"] == {"Aprovado": 1}
    assert data["forum"] == {"open": 1, "closed": 1}


def test_ranking_by_team_scope(app, client):
    _seed(app)
    login(client, "ana@cpfl.com.br")

    items = client.get("/api/reports/ranking").json["items"]
    assert [i["xp"] for i in items] == [500, 300, 100]
    assert items[0]["position"] == 1

    items = client.get("/api/reports/ranking?team=djtb").json["items"]
    assert [i["team_id"] for i in items] == ["DJTB-CUB", "DJTB-STO"]
    assert len(client.get("/api/reports/ranking?limit=1").json["items"]) == 1
