from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

from app.djtquest.audit import record_event
from app.djtquest.errors import Forbidden, NotFound, ValidationError
from app.djtquest.modules.gamification.service import apply_xp
from app.djtquest.modules.gamification.tiers import xp_needed_to_advance_tier_steps
from app.djtquest.modules.quiz.models import Challenge, QuizAttempt, QuizOption, QuizQuestion, UserQuizAnswer
from app.djtquest.notifications import notify
from app.djtquest.rbac import can_curate, can_manage_users, can_see_answer_key, is_admin

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User

logger = logging.getLogger(__name__)

MILHAO_LADDER = (100, 200, 300, 400, 500, 1000, 2000, 3000, 5000, 10000)
MILHAO_LADDER_TOTAL = sum(MILHAO_LADDER)
MILHAO_DEFAULT_TOTAL = 1000
MILHAO_MIN_TOTAL = 100
MILHAO_MAX_TOTAL = 5000

CLOSED_STATUSES = frozenset({"closed", "canceled", "cancelled"})
CHALLENGE_STATUSES = ("active", "closed", "canceled")

_MILHAO_RE = re.compile(r"milh(ã|a)o", re.IGNORECASE)


def is_milhao(challenge: Challenge) -> bool:
    return bool(_MILHAO_RE.search(challenge.title or ""))


def milhao_xp_for_level(index: int, target_total: int) -> int:
    """XP of ladder level `index` (0-based) when the whole ladder is scaled to `target_total`."""
    if target_total <= 0:
        return 0
    i = max(0, min(len(MILHAO_LADDER) - 1, int(index)))
    return max(1, round(MILHAO_LADDER[i] * target_total / MILHAO_LADDER_TOTAL))


def resolve_milhao_target(user: "User", challenge: Challenge, attempt: QuizAttempt | None, *, store: bool = True) -> int:
    """
    XP the full Milhão ladder is worth for this user.
    In tier_steps mode the value is frozen on the attempt the first time it is computed, so
    answers given later in the run are not re-scaled by XP gained earlier in it.
    """
    if challenge.reward_mode == "tier_steps":
        if attempt is not None and attempt.reward_total_xp_target is not None:
            target = int(attempt.reward_total_xp_target)
        else:
            steps = max(1, min(5, int(challenge.reward_tier_steps or 1)))
            target = xp_needed_to_advance_tier_steps(user.tier, user.xp, steps)
            if store and attempt is not None:
                attempt.reward_total_xp_target = target
    else:
        target = int(challenge.xp_reward or 0)
        if target <= 0:
            target = MILHAO_DEFAULT_TOTAL
    clamped = max(0, min(MILHAO_MAX_TOTAL, target))
    return max(MILHAO_MIN_TOTAL, clamped) if clamped > 0 else 0


def _get_challenge(s: "Session", challenge_id) -> Challenge:
    try:
        challenge = s.get(Challenge, int(challenge_id))
    except (TypeError, ValueError):
        challenge = None
    if challenge is None:
        raise NotFound("Quiz não encontrado.")
    return challenge


def _ensure_playable(user: "User", challenge: Challenge) -> None:
    """Unpublished quizzes are only reachable by curators and their authors (preview)."""
    if challenge.type == "quiz" and challenge.quiz_workflow_status != "PUBLISHED":
        if not (can_curate(user) or user.id in {challenge.owner_id, challenge.created_by}):
            raise NotFound("Quiz não encontrado.")


def _get_or_create_attempt(s: "Session", user: "User", challenge: Challenge) -> QuizAttempt:
    attempt = (
        s.query(QuizAttempt)
        .filter(QuizAttempt.user_id == user.id, QuizAttempt.challenge_id == challenge.id)
        .one_or_none()
    )
    if attempt is None:
        attempt = QuizAttempt(user_id=user.id, challenge_id=challenge.id, started_at=datetime.utcnow())
        s.add(attempt)
        s.flush()
    return attempt


def _answers(s: "Session", user_id: int, challenge_id: int) -> list[UserQuizAnswer]:
    return (
        s.query(UserQuizAnswer)
        .filter(UserQuizAnswer.user_id == user_id, UserQuizAnswer.challenge_id == challenge_id)
        .all()
    )


def _max_score(challenge: Challenge, target: int | None) -> int:
    if target is not None:
        return sum(milhao_xp_for_level(i, target) for i in range(len(challenge.questions)))
    return sum(int(q.xp_value or 0) for q in challenge.questions)


def _finalize(attempt: QuizAttempt, *, score: int, max_score: int, reason: str) -> None:
    attempt.submitted_at = datetime.utcnow()
    attempt.score = score
    attempt.max_score = max_score
    attempt.ended_reason = reason


def _position(challenge: Challenge, question: QuizQuestion) -> int:
    for i, q in enumerate(challenge.questions):
        if q.id == question.id:
            return i
    return 0


def quiz_state(s: "Session", user: "User", challenge_id) -> dict:
    challenge = _get_challenge(s, challenge_id)
    _ensure_playable(user, challenge)
    attempt = (
        s.query(QuizAttempt)
        .filter(QuizAttempt.user_id == user.id, QuizAttempt.challenge_id == challenge.id)
        .one_or_none()
    )
    answered = {a.question_id for a in _answers(s, user.id, challenge.id)}
    questions = list(challenge.questions)
    current_index = next((i for i, q in enumerate(questions) if q.id not in answered), len(questions))
    milhao = is_milhao(challenge)

    out: dict = {
        "challenge": {
            "id": challenge.id,
            "title": challenge.title,
            "description": challenge.description,
            "status": challenge.status,
            "xp_reward": challenge.xp_reward,
            "reward_mode": challenge.reward_mode,
            "reward_tier_steps": challenge.reward_tier_steps,
            "is_milhao": milhao,
        },
        "questions": [
            {
                "id": q.id,
                "question_text": q.question_text,
                "difficulty_level": q.difficulty_level,
                "xp_value": q.xp_value,
                "order_index": q.order_index,
                "options": [{"id": o.id, "option_text": o.option_text} for o in q.options],
            }
            for q in questions
        ],
        "answered_question_ids": sorted(answered),
        "current_index": current_index,
        "attempt": {
            "started_at": attempt.started_at.isoformat() if attempt and attempt.started_at else None,
            "submitted_at": attempt.submitted_at.isoformat() if attempt and attempt.submitted_at else None,
            "help_used": bool(attempt and attempt.help_used),
            "skip_used": bool(attempt and attempt.skip_used),
            "score": attempt.score if attempt else 0,
            "best_score": attempt.best_score if attempt else 0,
            "ended_reason": attempt.ended_reason if attempt else None,
            "completed": bool(attempt and attempt.submitted_at),
        },
        "milhao": None,
    }
    if milhao:
        target = resolve_milhao_target(user, challenge, attempt, store=False)
        out["milhao"] = {
            "target_total_xp": target,
            "levels": [
                {"level": i + 1, "xp": milhao_xp_for_level(i, target)}
                for i in range(min(len(questions), len(MILHAO_LADDER)))
            ],
        }
    return out


def submit_answer(s: "Session", user: "User", payload: dict) -> dict:
    try:
        question_id = int(payload.get("question_id"))
        option_id = int(payload.get("option_id"))
    except (TypeError, ValueError):
        raise ValidationError("question_id e option_id são obrigatórios.")
    used_help = bool(payload.get("used_help"))

    question = s.get(QuizQuestion, question_id)
    if question is None:
        raise NotFound("Pergunta não encontrada.")
    option = s.get(QuizOption, option_id)
    if option is None:
        raise NotFound("Alternativa não encontrada.")
    if option.question_id != question.id:
        raise ValidationError("Alternativa não pertence a esta pergunta.")

    challenge = question.challenge
    _ensure_playable(user, challenge)
    milhao = is_milhao(challenge)
    total_questions = len(challenge.questions)

    existing = (
        s.query(UserQuizAnswer)
        .filter(UserQuizAnswer.user_id == user.id, UserQuizAnswer.question_id == question.id)
        .one_or_none()
    )
    if existing is not None:
        return _already_answered(s, user, challenge, existing, milhao=milhao, total_questions=total_questions)

    if (challenge.status or "").lower() in CLOSED_STATUSES:
        raise ValidationError("Quiz encerrado para novas respostas.")

    attempt = _get_or_create_attempt(s, user, challenge)
    if attempt.submitted_at is not None:
        raise ValidationError("Tentativa já finalizada para este quiz.")

    idx = _position(challenge, question)
    target = resolve_milhao_target(user, challenge, attempt) if milhao else None
    is_correct = bool(option.is_correct)
    if not is_correct:
        xp = 0
    elif milhao:
        xp = milhao_xp_for_level(idx, target or 0)
    else:
        xp = int(question.xp_value or 0)

    s.add(
        UserQuizAnswer(
            user_id=user.id,
            challenge_id=challenge.id,
            question_id=question.id,
            selected_option_id=option.id,
            is_correct=is_correct,
            xp_earned=xp,
            used_help=used_help,
        )
    )
    if used_help:
        attempt.help_used = True
    s.flush()

    answers = _answers(s, user.id, challenge.id)
    total_so_far = sum(int(a.xp_earned or 0) for a in answers)

    best_before = best_after = None
    if milhao:
        best_before = int(attempt.best_score or 0)
        xp_awarded_now = max(0, total_so_far - best_before)
        best_after = max(best_before, total_so_far)
        attempt.best_score = best_after
    else:
        xp_awarded_now = xp
    if xp_awarded_now:
        apply_xp(user, xp_awarded_now)

    ended_reason = None
    bonus = 0
    if milhao and not is_correct:
        ended_reason = "wrong"
    elif len(answers) >= total_questions:
        ended_reason = "completed"

    if ended_reason:
        if ended_reason == "completed" and not milhao:
            bonus = max(0, int(challenge.xp_reward or 0) - total_so_far)
            if bonus:
                apply_xp(user, bonus)
        _finalize(
            attempt,
            score=int(attempt.best_score or 0) if milhao else total_so_far,
            max_score=_max_score(challenge, target),
            reason=ended_reason,
        )
        total = total_so_far + bonus
        if ended_reason == "wrong":
            notify(
                s,
                user_id=user.id,
                type="quiz_finished",
                title="Quiz do Milhão encerrado",
                message=f"Você encerrou o Quiz do Milhão no nível {idx + 1}. Total acumulado: {total} XP.",
                metadata={"challenge_id": challenge.id, "total_xp": total, "reached_level": idx + 1},
            )
        else:
            metadata = {"challenge_id": challenge.id, "total_xp": total}
            if milhao:
                metadata["reached_level"] = idx + 1
            notify(
                s,
                user_id=user.id,
                type="quiz_completed",
                title="✅ Quiz Concluído!",
                message=f"Você completou o quiz e ganhou {total} XP total!",
                metadata=metadata,
            )
        logger.info("quiz finished user=%s challenge=%s reason=%s total=%s", user.id, challenge.id, ended_reason, total)

    out = {
        "success": True,
        "isCorrect": is_correct,
        "xpEarned": xp_awarded_now + bonus,
        "isCompleted": ended_reason is not None,
        "endedReason": ended_reason,
        "totalXpEarned": total_so_far + bonus,
        "completionBonusEarned": bonus,
        "xpApplied": (xp_awarded_now + bonus) > 0,
        "profileXpAfter": user.xp,
    }
    if milhao:
        out["bestScoreBefore"] = best_before
        out["bestScoreAfter"] = best_after
    out.update(_answer_key(user, challenge, question, is_correct=is_correct, selected=option))
    return out


def _already_answered(
    s: "Session",
    user: "User",
    challenge: Challenge,
    existing: UserQuizAnswer,
    *,
    milhao: bool,
    total_questions: int,
) -> dict:
    """Replaying an answered question credits nothing new, but still settles a run left half-finalized."""
    attempt = _get_or_create_attempt(s, user, challenge)
    answers = _answers(s, user.id, challenge.id)
    total_so_far = sum(int(a.xp_earned or 0) for a in answers)

    delta = 0
    if milhao:
        best = int(attempt.best_score or 0)
        delta = max(0, total_so_far - best)
        if delta:
            apply_xp(user, delta)
            attempt.best_score = best + delta

    bonus = 0
    completed = len(answers) >= total_questions
    if completed and attempt.submitted_at is None:
        if not milhao:
            bonus = max(0, int(challenge.xp_reward or 0) - total_so_far)
            if bonus:
                apply_xp(user, bonus)
        target = resolve_milhao_target(user, challenge, attempt) if milhao else None
        _finalize(
            attempt,
            score=int(attempt.best_score or 0) if milhao else total_so_far,
            max_score=_max_score(challenge, target),
            reason="completed",
        )

    question = next((q for q in challenge.questions if q.id == existing.question_id), None)
    out = {
        "success": True,
        "alreadyAnswered": True,
        "isCorrect": bool(existing.is_correct),
        "xpEarned": delta if milhao else int(existing.xp_earned or 0) + bonus,
        "isCompleted": attempt.submitted_at is not None,
        "endedReason": attempt.ended_reason,
        "totalXpEarned": total_so_far + bonus,
        "completionBonusEarned": bonus,
        "xpApplied": (delta + bonus) > 0,
        "profileXpAfter": user.xp,
    }
    if question is not None:
        selected = s.get(QuizOption, existing.selected_option_id) if existing.selected_option_id else None
        out.update(_answer_key(user, challenge, question, is_correct=bool(existing.is_correct), selected=selected))
    return out


def _answer_key(user: "User", challenge: Challenge, question: QuizQuestion, *, is_correct: bool, selected) -> dict:
    if not can_see_answer_key(user, owner_id=challenge.owner_id, created_by=challenge.created_by):
        return {"answerKeyRestricted": True}
    correct = next((o for o in question.options if o.is_correct), None)
    explanation = (correct.explanation if correct else None) or (selected.explanation if selected else None)
    out: dict = {"answerKeyRestricted": False, "explanation": explanation}
    if not is_correct and correct is not None:
        out["correctOptionId"] = correct.id
    return out


def skip_question(s: "Session", user: "User", payload: dict) -> dict:
    try:
        question_id = int(payload.get("question_id"))
    except (TypeError, ValueError):
        raise ValidationError("question_id é obrigatório.")
    question = s.get(QuizQuestion, question_id)
    if question is None:
        raise NotFound("Pergunta não encontrada.")
    challenge = question.challenge
    _ensure_playable(user, challenge)
    if not is_milhao(challenge):
        raise ValidationError("Pular pergunta só é permitido no Quiz do Milhão.")
    if (challenge.status or "").lower() in CLOSED_STATUSES:
        raise ValidationError("Quiz encerrado para novas respostas.")

    attempt = _get_or_create_attempt(s, user, challenge)
    if attempt.submitted_at is not None:
        raise ValidationError("Tentativa já finalizada para este quiz.")
    if attempt.skip_used:
        raise ValidationError("Você já usou o pulo neste quiz.")
    idx = _position(challenge, question)
    if idx >= len(challenge.questions) - 1:
        raise ValidationError("Não é possível pular a última pergunta.")
    answered = (
        s.query(UserQuizAnswer)
        .filter(UserQuizAnswer.user_id == user.id, UserQuizAnswer.question_id == question.id)
        .one_or_none()
    )
    if answered is not None:
        raise ValidationError("Pergunta já respondida.")

    # Pin the ladder scale before the skip so the rest of the run keeps it.
    resolve_milhao_target(user, challenge, attempt)
    s.add(
        UserQuizAnswer(
            user_id=user.id,
            challenge_id=challenge.id,
            question_id=question.id,
            selected_option_id=None,
            is_correct=False,
            xp_earned=0,
            used_help=True,
            skipped=True,
        )
    )
    attempt.skip_used = True
    attempt.help_used = True
    return {"success": True, "skipped": True, "nextIndex": idx + 1}


def reset_attempt(s: "Session", actor: "User", payload: dict) -> dict:
    from app.djtquest.models import User

    challenge = _get_challenge(s, payload.get("challenge_id"))
    try:
        target = s.get(User, int(payload.get("user_id")))
    except (TypeError, ValueError):
        raise ValidationError("user_id inválido.")
    if target is None:
        raise NotFound("Usuário não encontrado.")

    attempt = (
        s.query(QuizAttempt)
        .filter(QuizAttempt.user_id == target.id, QuizAttempt.challenge_id == challenge.id)
        .one_or_none()
    )
    answers = _answers(s, target.id, challenge.id)
    if attempt is None and not answers:
        raise NotFound("Nenhuma tentativa encontrada para este usuário.")

    milhao = is_milhao(challenge)
    warnings: list[str] = []
    if attempt is not None and int(attempt.score or 0) > 0:
        estimate = int(attempt.score)
    else:
        estimate = sum(int(a.xp_earned or 0) for a in answers)
    if milhao and attempt is not None:
        # Best-of credit: the profile holds the best run, not the sum of this one.
        estimate = int(attempt.best_score or 0)
    likely_completed = bool(attempt and attempt.submitted_at) or len(answers) >= len(challenge.questions)
    if likely_completed and not milhao:
        estimate = max(estimate, int(challenge.xp_reward or 0))

    revert = min(estimate, int(target.xp or 0))
    if revert < estimate:
        warnings.append(f"XP revertido limitado ao XP atual do usuário ({target.xp}).")
    if attempt is None:
        warnings.append("Nenhuma tentativa registrada; apenas as respostas foram removidas.")
    if revert:
        apply_xp(target, -revert)

    for a in answers:
        s.delete(a)
    if attempt is not None:
        attempt.started_at = datetime.utcnow()
        attempt.submitted_at = None
        attempt.score = 0
        attempt.max_score = 0
        attempt.best_score = 0
        attempt.help_used = False
        attempt.skip_used = False
        attempt.reward_total_xp_target = None
        attempt.ended_reason = None

    record_event(
        s,
        actor=actor,
        action="quiz.reset_attempt",
        entity_type="QuizAttempt",
        entity_id=f"{target.id}:{challenge.id}",
        reason=str(payload.get("reason") or "").strip()[:512] or None,
        metadata={"xp_reverted": revert, "xp_estimated_total": estimate, "answers_deleted": len(answers)},
    )
    logger.info("quiz.reset_attempt user=%s challenge=%s reverted=%s by=%s", target.id, challenge.id, revert, actor.id)
    return {
        "success": True,
        "user_id": target.id,
        "challenge_id": challenge.id,
        "xp_reverted": revert,
        "xp_estimated_total": estimate,
        "xp_after": target.xp,
        "warnings": warnings,
    }


def update_challenge_status(s: "Session", actor: "User", challenge_id, payload: dict) -> dict:
    if not can_manage_users(actor):
        raise Forbidden("Sem permissão para alterar o status do desafio.")
    challenge = _get_challenge(s, challenge_id)
    status = str(payload.get("status") or "").strip().lower()
    if status == "cancelled":
        status = "canceled"
    if status not in CHALLENGE_STATUSES:
        raise ValidationError("Status inválido (use active, closed ou canceled).")
    previous = challenge.status
    challenge.status = status
    record_event(
        s,
        actor=actor,
        action="challenge.status",
        entity_type="Challenge",
        entity_id=str(challenge.id),
        metadata={"from": previous, "to": status},
    )
    return {"id": challenge.id, "status": challenge.status, "previous_status": previous}


def delete_challenge(s: "Session", actor: "User", challenge_id) -> None:
    challenge = _get_challenge(s, challenge_id)
    is_owner = actor.id in {challenge.owner_id, challenge.created_by}
    if not (is_admin(actor) or (is_owner and challenge.quiz_workflow_status != "PUBLISHED")):
        raise Forbidden("Sem permissão para excluir este desafio.")

    s.query(UserQuizAnswer).filter(UserQuizAnswer.challenge_id == challenge.id).delete(synchronize_session=False)
    s.query(QuizAttempt).filter(QuizAttempt.challenge_id == challenge.id).delete(synchronize_session=False)
    record_event(
        s,
        actor=actor,
        action="challenge.delete",
        entity_type="Challenge",
        entity_id=str(challenge.id),
        metadata={"title": challenge.title, "workflow_status": challenge.quiz_workflow_status},
    )
    s.delete(challenge)


def list_playable(s: "Session", user: "User") -> list[dict]:
    """Published, open quizzes with the caller's attempt status."""
    challenges = (
        s.query(Challenge)
        .filter(Challenge.type == "quiz", Challenge.quiz_workflow_status == "PUBLISHED")
        .filter(Challenge.status == "active")
        .order_by(Challenge.published_at.desc(), Challenge.id.desc())
        .all()
    )
    attempts = {
        a.challenge_id: a
        for a in s.query(QuizAttempt).filter(QuizAttempt.user_id == user.id).all()
    }
    out = []
    for c in challenges:
        a = attempts.get(c.id)
        out.append(
            {
                "id": c.id,
                "title": c.title,
                "description": c.description,
                "xp_reward": c.xp_reward,
                "reward_mode": c.reward_mode,
                "chas_dimension": c.chas_dimension,
                "question_count": len(c.questions),
                "is_milhao": is_milhao(c),
                "completed": bool(a and a.submitted_at),
                "score": a.score if a else 0,
            }
        )
    return out
