from datetime import datetime

from app.djtquest.db import session_scope
from app.djtquest.models import AuditEvent, Notification, User
from app.djtquest.modules.quiz.models import Challenge, QuizAttempt, QuizOption, QuizQuestion, UserQuizAnswer
from app.djtquest.modules.quiz.service import MILHAO_LADDER_TOTAL, milhao_xp_for_level
from conftest import get_user, login, make_user


def make_quiz(app, *, title="Quiz de EPI", xp_values=(10, 10), xp_reward=50, workflow="PUBLISHED", owner_id=None, **fields):
    """Returns (challenge_id, [(question_id, correct_option_id, wrong_option_id), ...])."""
    with session_scope(app) as s:
        quiz = Challenge(
            title=title,
            type="quiz",
            status=fields.pop("status", "active"),
            xp_reward=xp_reward,
            quiz_workflow_status=workflow,
            owner_id=owner_id,
            created_by=owner_id,
            published_at=datetime.utcnow() if workflow == "PUBLISHED" else None,
            **fields,
        )
        for i, xp in enumerate(xp_values):
            q = QuizQuestion(question_text=f"Pergunta número {i + 1}?", xp_value=xp, order_index=i)
            q.options.append(QuizOption(option_text="Certa", is_correct=True, explanation="Porque sim."))
            q.options.append(QuizOption(option_text="Errada", is_correct=False))
            quiz.questions.append(q)
        s.add(quiz)
        s.flush()
        return quiz.id, [(q.id, q.options[0].id, q.options[1].id) for q in quiz.questions]


def answer(client, question_id, option_id, **extra):
    return client.post("/api/quiz/answer", json={"question_id": question_id, "option_id": option_id, **extra})


def test_milhao_ladder_scaling():
    assert MILHAO_LADDER_TOTAL == 22500
    assert milhao_xp_for_level(0, 1000) == 4
    assert milhao_xp_for_level(9, 1000) == 444
    assert milhao_xp_for_level(0, 22500) == 100
    assert milhao_xp_for_level(3, 0) == 0


def test_regular_quiz_completion_bonus(app, client):
    uid = make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    cid, qs = make_quiz(app)
    login(client, "ana@cpfl.com.br")

    r = answer(client, qs[0][0], qs[0][1])
    assert r.status_code == 200
    assert r.json["isCorrect"] is True
    assert r.json["xpEarned"] == 10
    assert r.json["isCompleted"] is False
    assert r.json["answerKeyRestricted"] is True

    r = answer(client, qs[1][0], qs[1][2])
    assert r.json["isCorrect"] is False
    assert r.json["isCompleted"] is True
    assert r.json["endedReason"] == "completed"
    assert r.json["completionBonusEarned"] == 40
    assert r.json["totalXpEarned"] == 50
    assert r.json["profileXpAfter"] == 50
    assert get_user(app, uid).xp == 50

    with session_scope(app) as s:
        n = s.query(Notification).filter(Notification.user_id == uid).one()
        assert n.type == "quiz_completed"

    state = client.get(f"/api/quiz/{cid}/state").json
    assert state["attempt"]["completed"] is True
    assert state["current_index"] == 2
    assert "is_correct" not in state["questions"][0]["options"][0]


def test_replayed_answer_credits_nothing(app, client):
    uid = make_user(app, "ana@cpfl.com.br")
    _, qs = make_quiz(app, xp_values=(10, 20, 30), xp_reward=0)
    login(client, "ana@cpfl.com.br")

    answer(client, qs[0][0], qs[0][1])
    r = answer(client, qs[0][0], qs[0][2])
    assert r.json["alreadyAnswered"] is True
    assert r.json["isCorrect"] is True
    assert r.json["xpApplied"] is False
    assert get_user(app, uid).xp == 10


def test_closed_and_unpublished_quizzes(app, client):
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    _, closed_qs = make_quiz(app, status="closed")
    draft_id, draft_qs = make_quiz(app, workflow="DRAFT")
    login(client, "ana@cpfl.com.br")

    r = answer(client, closed_qs[0][0], closed_qs[0][1])
    assert r.status_code == 400

    assert client.get(f"/api/quiz/{draft_id}/state").status_code == 404
    assert answer(client, draft_qs[0][0], draft_qs[0][1]).status_code == 404

    items = client.get("/api/quiz/challenges").json["items"]
    assert items == []


def test_option_must_belong_to_question(app, client):
    make_user(app, "ana@cpfl.com.br")
    _, qs = make_quiz(app)
    login(client, "ana@cpfl.com.br")
    r = answer(client, qs[0][0], qs[1][1])
    assert r.status_code == 400


def test_curator_sees_answer_key(app, client):
    make_user(app, "cura@cpfl.com.br", roles=("content_curator",))
    _, qs = make_quiz(app)
    login(client, "cura@cpfl.com.br")
    r = answer(client, qs[0][0], qs[0][2])
    assert r.json["answerKeyRestricted"] is False
    assert r.json["correctOptionId"] == qs[0][1]
    assert r.json["explanation"] == "Porque sim."


def test_milhao_run_ends_on_wrong_answer_and_reset(app, client):
    uid = make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    cid, qs = make_quiz(app, title="Quiz do Milhão", xp_values=(10, 10, 10), xp_reward=1000)

    login(client, "ana@cpfl.com.br")
    state = client.get(f"/api/quiz/{cid}/state").json
    assert state["milhao"]["target_total_xp"] == 1000
    assert [lvl["xp"] for lvl in state["milhao"]["levels"]] == [4, 9, 13]

    r = answer(client, qs[0][0], qs[0][1])
    assert r.json["xpEarned"] == 4
    assert r.json["bestScoreAfter"] == 4
    r = answer(client, qs[1][0], qs[1][2])
    assert r.json["isCompleted"] is True
    assert r.json["endedReason"] == "wrong"
    assert get_user(app, uid).xp == 4
    assert answer(client, qs[2][0], qs[2][1]).status_code == 400

    with session_scope(app) as s:
        assert s.query(Notification).filter(Notification.user_id == uid).one().type == "quiz_finished"

    client.post("/auth/logout")
    login(client, "admin@cpfl.com.br")
    r = client.post("/api/quiz/reset-attempt", json={"user_id": uid, "challenge_id": cid, "reason": "nova chance"})
    assert r.status_code == 200
    assert r.json["xp_reverted"] == 4
    assert r.json["xp_after"] == 0
    with session_scope(app) as s:
        attempt = s.query(QuizAttempt).filter(QuizAttempt.user_id == uid).one()
        assert attempt.submitted_at is None and attempt.best_score == 0
        assert s.query(AuditEvent).filter(AuditEvent.action == "quiz.reset_attempt").count() == 1

    client.post("/auth/logout")
    login(client, "ana@cpfl.com.br")
    for qid, correct, _ in qs:
        r = answer(client, qid, correct)
    assert r.json["endedReason"] == "completed"
    assert r.json["bestScoreAfter"] == 26
    assert get_user(app, uid).xp == 26


def test_milhao_tier_steps_target(app, client):
    make_user(app, "ana@cpfl.com.br", xp=100, tier="EX-1")
    cid, _ = make_quiz(app, title="Quiz do Milhao", xp_values=(10, 10), reward_mode="tier_steps", reward_tier_steps=1)
    login(client, "ana@cpfl.com.br")
    state = client.get(f"/api/quiz/{cid}/state").json
    assert state["milhao"]["target_total_xp"] == 200


def test_milhao_skip_rules(app, client):
    make_user(app, "ana@cpfl.com.br")
    _, qs = make_quiz(app, title="Quiz do Milhão", xp_values=(10, 10, 10), xp_reward=1000)
    _, regular = make_quiz(app)
    login(client, "ana@cpfl.com.br")

    assert client.post("/api/quiz/skip", json={"question_id": regular[0][0]}).status_code == 400
    assert client.post("/api/quiz/skip", json={"question_id": qs[2][0]}).status_code == 400

    r = client.post("/api/quiz/skip", json={"question_id": qs[0][0]})
    assert r.status_code == 200
    assert r.json["nextIndex"] == 1

    r = client.post("/api/quiz/skip", json={"question_id": qs[1][0]})
    assert r.status_code == 400


def test_reset_requires_permission(app, client):
    uid = make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    cid, _ = make_quiz(app)
    login(client, "ana@cpfl.com.br")
    r = client.post("/api/quiz/reset-attempt", json={"user_id": uid, "challenge_id": cid})
    assert r.status_code == 403
    assert r.json["missing_permission"] == "quiz.reset"


def test_challenge_status_update(app, client):
    make_user(app, "coord@cpfl.com.br", roles=("coordenador_djtx",))
    make_user(app, "ana@cpfl.com.br", roles=("colaborador",))
    cid, _ = make_quiz(app)

    login(client, "ana@cpfl.com.br")
    assert client.post(f"/api/quiz/challenges/{cid}/status", json={"status": "closed"}).status_code == 403

    client.post("/auth/logout")
    login(client, "coord@cpfl.com.br")
    r = client.post(f"/api/quiz/challenges/{cid}/status", json={"status": "cancelled"})
    assert r.status_code == 200
    assert r.json["challenge"]["status"] == "canceled"
    assert client.post(f"/api/quiz/challenges/{cid}/status", json={"status": "paused"}).status_code == 400


def test_delete_challenge_rules(app, client):
    owner = make_user(app, "autor@cpfl.com.br", roles=("colaborador",), studio_access=True)
    make_user(app, "outro@cpfl.com.br", roles=("colaborador",))
    draft_id, _ = make_quiz(app, workflow="DRAFT", owner_id=owner)
    published_id, _ = make_quiz(app, owner_id=owner)

    login(client, "outro@cpfl.com.br")
    assert client.delete(f"/api/quiz/challenges/{draft_id}").status_code == 403

    client.post("/auth/logout")
    login(client, "autor@cpfl.com.br")
    assert client.delete(f"/api/quiz/challenges/{published_id}").status_code == 403
    assert client.delete(f"/api/quiz/challenges/{draft_id}").status_code == 200
    with session_scope(app) as s:
        assert s.get(Challenge, draft_id) is None
        assert s.query(QuizQuestion).filter(QuizQuestion.challenge_id == draft_id).count() == 0


def test_milhao_tier_steps_target_zero_pays_nothing(app, client):
    uid = make_user(app, "ana@cpfl.com.br", xp=2000, tier="EX-5")
    cid, qs = make_quiz(app, title="Quiz do Milhão", xp_values=(10, 10), reward_mode="tier_steps", reward_tier_steps=1)
    login(client, "ana@cpfl.com.br")
    state = client.get(f"/api/quiz/{cid}/state").json
    assert state["milhao"]["target_total_xp"] == 0
    assert [lvl["xp"] for lvl in state["milhao"]["levels"]] == [0, 0]

    r = answer(client, qs[0][0], qs[0][1])
    assert r.json["isCorrect"] is True
    assert r.json["xpEarned"] == 0
    assert get_user(app, uid).xp == 2000


def test_used_help_marks_attempt(app, client):
    uid = make_user(app, "ana@cpfl.com.br")
    _, qs = make_quiz(app)
    login(client, "ana@cpfl.com.br")
    assert answer(client, qs[0][0], qs[0][1], used_help=True).status_code == 200
    with session_scope(app) as s:
        assert s.query(QuizAttempt).filter(QuizAttempt.user_id == uid).one().help_used is True
        assert s.query(UserQuizAnswer).filter(UserQuizAnswer.user_id == uid).one().used_help is True


def test_reset_completed_quiz_reverts_at_least_the_reward(app, client):
    uid = make_user(app, "ana@cpfl.com.br")
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    cid, qs = make_quiz(app, xp_values=(10, 10), xp_reward=50)
    login(client, "ana@cpfl.com.br")
    answer(client, qs[0][0], qs[0][1])
    answer(client, qs[1][0], qs[1][1])
    assert get_user(app, uid).xp == 50

    client.post("/auth/logout")
    login(client, "admin@cpfl.com.br")
    r = client.post("/api/quiz/reset-attempt", json={"user_id": uid, "challenge_id": cid})
    assert r.status_code == 200
    # Attempt score is 20; the completion bonus brought the credit up to the quiz reward.
    assert r.json["xp_estimated_total"] == 50
    assert r.json["xp_reverted"] == 50
    assert r.json["warnings"] == []
    assert get_user(app, uid).xp == 0


def test_reset_revert_is_capped_at_current_xp(app, client):
    uid = make_user(app, "ana@cpfl.com.br")
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    cid, qs = make_quiz(app, xp_values=(10, 10), xp_reward=50)
    login(client, "ana@cpfl.com.br")
    answer(client, qs[0][0], qs[0][1])
    answer(client, qs[1][0], qs[1][1])
    with session_scope(app) as s:
        s.get(User, uid).xp = 15

    client.post("/auth/logout")
    login(client, "admin@cpfl.com.br")
    r = client.post("/api/quiz/reset-attempt", json={"user_id": uid, "challenge_id": cid})
    assert r.status_code == 200
    assert r.json["xp_estimated_total"] == 50
    assert r.json["xp_reverted"] == 15
    assert r.json["xp_after"] == 0
    assert r.json["warnings"] == ["XP revertido limitado ao XP atual do usuário (15)."]


def test_reset_without_attempt_removes_answers(app, client):
    uid = make_user(app, "ana@cpfl.com.br", xp=10)
    make_user(app, "admin@cpfl.com.br", roles=("admin",))
    cid, qs = make_quiz(app, xp_values=(10, 10), xp_reward=50)
    with session_scope(app) as s:
        s.add(
            UserQuizAnswer(
                user_id=uid,
                challenge_id=cid,
                question_id=qs[0][0],
                selected_option_id=qs[0][1],
                is_correct=True,
                xp_earned=10,
                used_help=False,
            )
        )

    login(client, "admin@cpfl.com.br")
    r = client.post("/api/quiz/reset-attempt", json={"user_id": uid, "challenge_id": cid})
    assert r.status_code == 200
    assert r.json["xp_reverted"] == 10
    assert r.json["warnings"] == ["Nenhuma tentativa registrada; apenas as respostas foram removidas."]
    with session_scope(app) as s:
        assert s.query(UserQuizAnswer).filter(UserQuizAnswer.user_id == uid).count() == 0
        assert s.query(QuizAttempt).filter(QuizAttempt.user_id == uid).count() == 0
