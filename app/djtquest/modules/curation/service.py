from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.djtquest.audit import record_event
from app.djtquest.constants import CHAS_DIMENSIONS
from app.djtquest.errors import Conflict, Forbidden, NotFound, ValidationError
from app.djtquest.modules.curation.parsers import parse_question_file, rows_to_question_payloads, read_csv_rows
from app.djtquest.modules.quiz.models import Challenge, QuizCurationComment, QuizOption, QuizQuestion, QuizVersion
from app.djtquest.rbac import can_access_studio, can_curate

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User

logger = logging.getLogger(__name__)

WORKFLOW_STATUSES = ("DRAFT", "SUBMITTED", "APPROVED", "REJECTED", "PUBLISHED")
CHALLENGE_TYPES = ("quiz", "forum", "mentoria", "inspecao", "atitude")
REWARD_MODES = ("fixed_xp", "tier_steps")
QUIZ_FIXED_XP = (10, 20, 30, 50)

# difficulty key -> (canonical level, xp)
DIFFICULTY_XP = {
    "basico": ("basica", 10),
    "basica": ("basica", 10),
    "intermediario": ("intermediaria", 20),
    "intermediaria": ("intermediaria", 20),
    "avancado": ("avancada", 30),
    "avancada": ("avancada", 30),
    "especialista": ("especialista", 50),
}

_UPDATABLE_FIELDS = ("title", "description", "theme", "chas_dimension", "xp_reward", "reward_mode", "reward_tier_steps")
_REWARD_KEYS = ("reward_mode", "xp_reward", "reward_tier_steps")


# ---------- Validation ----------
def validate_challenge_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """
    Collect every problem with a challenge payload. With partial=True only the keys
    present in the payload are checked (PATCH semantics).
    """
    errors: list[str] = []

    def present(key: str) -> bool:
        return not partial or key in payload

    title = str(payload.get("title") or "").strip()
    if present("title") and not (3 <= len(title) <= 100):
        errors.append("Título deve ter entre 3 e 100 caracteres.")

    ctype = str(payload.get("type") or "quiz").strip().lower()
    if present("type") and ctype not in CHALLENGE_TYPES:
        errors.append("Tipo de desafio inválido.")

    mode = str(payload.get("reward_mode") or "fixed_xp").strip()
    if present("reward_mode") and mode not in REWARD_MODES:
        errors.append("Modo de recompensa inválido.")

    if mode == "tier_steps" and (present("reward_mode") or present("reward_tier_steps")):
        try:
            steps = int(payload.get("reward_tier_steps"))
        except (TypeError, ValueError):
            steps = 0
        if not 1 <= steps <= 5:
            errors.append("Avanço de patamar deve ser entre 1 e 5.")
    elif mode == "fixed_xp" and ctype == "quiz" and (present("reward_mode") or present("xp_reward")):
        try:
            xp = int(payload.get("xp_reward"))
        except (TypeError, ValueError):
            xp = -1
        if xp not in QUIZ_FIXED_XP:
            errors.append("XP do quiz deve ser 10, 20, 30 ou 50.")

    if present("campaign_id") and ctype != "quiz" and not str(payload.get("campaign_id") or "").strip():
        errors.append("Campanha é obrigatória para este tipo de desafio.")

    theme = payload.get("theme")
    if theme not in (None, "") and not (3 <= len(str(theme).strip()) <= 100):
        errors.append("Tema deve ter entre 3 e 100 caracteres.")

    chas = payload.get("chas_dimension")
    if present("chas_dimension") and str(chas or "C").strip().upper() not in CHAS_DIMENSIONS:
        errors.append("Dimensão CHAS inválida.")
    return errors


def validate_question_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    text = str(payload.get("question_text") or "").strip()
    if not 10 <= len(text) <= 500:
        errors.append("Pergunta deve ter entre 10 e 500 caracteres.")
    options = payload.get("options")
    if not isinstance(options, list) or not 2 <= len(options) <= 5:
        errors.append("A pergunta deve ter entre 2 e 5 alternativas.")
        return errors
    correct = 0
    for i, opt in enumerate(options, start=1):
        if not isinstance(opt, dict):
            errors.append(f"Alternativa {i} inválida.")
            continue
        opt_text = str(opt.get("option_text") or "").strip()
        if not 1 <= len(opt_text) <= 200:
            errors.append(f"Alternativa {i} deve ter entre 1 e 200 caracteres.")
        if len(str(opt.get("explanation") or "")) > 500:
            errors.append(f"Explicação da alternativa {i} deve ter no máximo 500 caracteres.")
        if opt.get("is_correct") is True or str(opt.get("is_correct")).lower() == "true":
            correct += 1
    if correct != 1:
        errors.append("Marque exatamente uma alternativa correta.")
    difficulty = str(payload.get("difficulty_level") or "basica").strip().lower()
    if difficulty not in DIFFICULTY_XP:
        errors.append("Dificuldade inválida.")
    return errors


# ---------- Permissions ----------
def _is_owner(user: "User", quiz: Challenge) -> bool:
    return user.id in {quiz.owner_id, quiz.created_by}


def _require_studio(user: "User") -> None:
    if not can_access_studio(user):
        raise Forbidden()


def _get_quiz(s: "Session", quiz_id) -> Challenge:
    try:
        quiz = s.get(Challenge, int(quiz_id))
    except (TypeError, ValueError):
        quiz = None
    if quiz is None:
        raise NotFound("Quiz não encontrado.")
    if quiz.type != "quiz":
        raise ValidationError("Desafio não é um quiz.")
    return quiz


def _prepare_edit(s: "Session", actor: "User", quiz: Challenge, *, reason_prefix: str = "edit") -> None:
    """
    Enforce who may change a quiz in its current state and snapshot non-draft content first.
    REJECTED quizzes edited by their owner start a new draft iteration.
    """
    _require_studio(actor)
    status = quiz.quiz_workflow_status
    if status == "DRAFT":
        if not (_is_owner(actor, quiz) or can_curate(actor)):
            raise Forbidden()
    elif status == "REJECTED":
        if not _is_owner(actor, quiz):
            raise Forbidden()
        snapshot_quiz_version(s, quiz, actor, f"{reason_prefix}:REJECTED")
        quiz.quiz_workflow_status = "DRAFT"
        quiz.approved_at = None
        quiz.approved_by = None
    else:
        if not can_curate(actor):
            raise Forbidden()
        snapshot_quiz_version(s, quiz, actor, f"{reason_prefix}:{status}")


# ---------- Serialization ----------
def challenge_dict(quiz: Challenge) -> dict:
    def iso(v):
        return v.isoformat() if v else None

    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "type": quiz.type,
        "status": quiz.status,
        "xp_reward": quiz.xp_reward,
        "reward_mode": quiz.reward_mode,
        "reward_tier_steps": quiz.reward_tier_steps,
        "campaign_id": quiz.campaign_id,
        "theme": quiz.theme,
        "chas_dimension": quiz.chas_dimension,
        "quiz_workflow_status": quiz.quiz_workflow_status,
        "owner_id": quiz.owner_id,
        "created_by": quiz.created_by,
        "submitted_at": iso(quiz.submitted_at),
        "approved_at": iso(quiz.approved_at),
        "approved_by": quiz.approved_by,
        "published_at": iso(quiz.published_at),
        "published_by": quiz.published_by,
        "created_at": iso(quiz.created_at),
        "updated_at": iso(quiz.updated_at),
    }


def question_dict(q: QuizQuestion) -> dict:
    return {
        "id": q.id,
        "question_text": q.question_text,
        "difficulty_level": q.difficulty_level,
        "xp_value": q.xp_value,
        "order_index": q.order_index,
        "options": [
            {"id": o.id, "option_text": o.option_text, "is_correct": o.is_correct, "explanation": o.explanation}
            for o in q.options
        ],
    }


# ---------- Versioning ----------
def snapshot_quiz_version(s: "Session", quiz: Challenge, actor: "User | None", reason: str | None) -> QuizVersion:
    current = (
        s.query(func.max(QuizVersion.version_number)).filter(QuizVersion.challenge_id == quiz.id).scalar()
    )
    snapshot = {"challenge": challenge_dict(quiz), "questions": [question_dict(q) for q in quiz.questions]}
    version = QuizVersion(
        challenge_id=quiz.id,
        version_number=int(current or 0) + 1,
        reason=(reason or "")[:128] or None,
        snapshot_json=json.dumps(snapshot, sort_keys=True, ensure_ascii=False),
        created_by=actor.id if actor else None,
    )
    s.add(version)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="quiz.version.snapshot",
        entity_type="Challenge",
        entity_id=str(quiz.id),
        reason=version.reason,
        metadata={"version_number": version.version_number},
    )
    return version


def list_quiz_versions(s: "Session", actor: "User", quiz_id) -> list[dict]:
    _require_studio(actor)
    quiz = _get_quiz(s, quiz_id)
    versions = (
        s.query(QuizVersion)
        .filter(QuizVersion.challenge_id == quiz.id)
        .order_by(QuizVersion.version_number.desc())
        .all()
    )
    return [
        {
            "id": v.id,
            "version_number": v.version_number,
            "reason": v.reason,
            "created_by": v.created_by,
            "created_at": v.created_at.isoformat() if v.created_at else None,
            "snapshot": json.loads(v.snapshot_json),
        }
        for v in versions
    ]


# ---------- Quiz CRUD ----------
def create_quiz(s: "Session", actor: "User", payload: dict) -> Challenge:
    _require_studio(actor)
    # Title is always required; reward fields are checked only when sent, so a draft may start without XP.
    check = {k: payload[k] for k in _UPDATABLE_FIELDS if k in payload}
    check.update(type="quiz", title=payload.get("title"))
    errors = validate_challenge_payload(check, partial=True)
    if errors:
        raise ValidationError(errors)

    title = str(payload.get("title") or "").strip()
    chas = str(payload.get("chas_dimension") or "C").strip().upper()
    mode = str(payload.get("reward_mode") or "fixed_xp").strip()
    quiz = Challenge(
        title=title,
        description=str(payload["description"]) if payload.get("description") else None,
        type="quiz",
        status="active",
        xp_reward=int(payload.get("xp_reward") or 0) if mode == "fixed_xp" else 0,
        reward_mode=mode,
        reward_tier_steps=int(payload["reward_tier_steps"]) if mode == "tier_steps" else None,
        theme=str(payload.get("theme") or "").strip() or None,
        chas_dimension=chas,
        quiz_workflow_status="DRAFT",
        owner_id=actor.id,
        created_by=actor.id,
    )
    s.add(quiz)
    s.flush()
    record_event(
        s,
        actor=actor,
        action="quiz.create",
        entity_type="Challenge",
        entity_id=str(quiz.id),
        metadata={"title": quiz.title, "created_as_curator": can_curate(actor)},
    )
    return quiz


def update_quiz(s: "Session", actor: "User", quiz_id, payload: dict) -> Challenge:
    quiz = _get_quiz(s, quiz_id)
    updates = {k: payload[k] for k in _UPDATABLE_FIELDS if k in payload}
    if not updates:
        raise ValidationError("Nenhuma alteração informada.")
    check = {"type": quiz.type, **updates}
    if any(k in updates for k in _REWARD_KEYS):
        check.update({k: updates.get(k, getattr(quiz, k)) for k in _REWARD_KEYS})
    errors = validate_challenge_payload(check, partial=True)
    if errors:
        raise ValidationError(errors)

    _prepare_edit(s, actor, quiz)
    before = challenge_dict(quiz)
    if "title" in updates:
        quiz.title = str(updates["title"]).strip()
    if "description" in updates:
        quiz.description = str(updates["description"]) if updates["description"] else None
    if "theme" in updates:
        quiz.theme = str(updates["theme"] or "").strip() or None
    if "chas_dimension" in updates:
        quiz.chas_dimension = str(updates["chas_dimension"] or "C").strip().upper()
    if "reward_mode" in updates:
        quiz.reward_mode = str(updates["reward_mode"]).strip()
    if "xp_reward" in updates:
        quiz.xp_reward = int(updates["xp_reward"] or 0)
    if "reward_tier_steps" in updates:
        quiz.reward_tier_steps = int(updates["reward_tier_steps"]) if updates["reward_tier_steps"] else None

    record_event(
        s,
        actor=actor,
        action="quiz.update",
        entity_type="Challenge",
        entity_id=str(quiz.id),
        metadata={"before": {k: before[k] for k in updates}, "after": {k: challenge_dict(quiz)[k] for k in updates}},
    )
    return quiz


def get_quiz(s: "Session", actor: "User", quiz_id) -> dict:
    _require_studio(actor)
    quiz = _get_quiz(s, quiz_id)
    if not (can_curate(actor) or _is_owner(actor, quiz)):
        raise Forbidden()
    comments = (
        s.query(QuizCurationComment)
        .filter(QuizCurationComment.challenge_id == quiz.id)
        .order_by(QuizCurationComment.id.asc())
        .all()
    )
    return {
        "quiz": challenge_dict(quiz),
        "questions": [question_dict(q) for q in quiz.questions],
        "comments": [
            {
                "id": c.id,
                "author_id": c.author_id,
                "kind": c.kind,
                "message": c.message,
                "created_at": c.created_at.isoformat() if c.created_at else None,
            }
            for c in comments
        ],
    }


def list_quizzes(s: "Session", actor: "User", *, status: str | None = None) -> list[dict]:
    _require_studio(actor)
    q = s.query(Challenge).filter(Challenge.type == "quiz")
    if can_curate(actor):
        if status:
            wanted = str(status).strip().upper()
            if wanted not in WORKFLOW_STATUSES:
                raise ValidationError("Status inválido.")
            q = q.filter(Challenge.quiz_workflow_status == wanted)
    else:
        q = q.filter((Challenge.owner_id == actor.id) | (Challenge.created_by == actor.id))
    items = q.order_by(Challenge.updated_at.desc(), Challenge.id.desc()).all()
    return [{**challenge_dict(c), "question_count": len(c.questions)} for c in items]


def pending_counts(s: "Session", actor: "User") -> dict:
    if not can_curate(actor):
        raise Forbidden()
    rows = (
        s.query(Challenge.quiz_workflow_status, func.count(Challenge.id))
        .filter(Challenge.type == "quiz")
        .filter(Challenge.quiz_workflow_status.in_(("SUBMITTED", "APPROVED")))
        .group_by(Challenge.quiz_workflow_status)
        .all()
    )
    counts = {k: int(n) for k, n in rows}
    return {"submitted": counts.get("SUBMITTED", 0), "approved": counts.get("APPROVED", 0)}


# ---------- Workflow ----------
def submit_quiz(s: "Session", actor: "User", quiz_id) -> Challenge:
    _require_studio(actor)
    quiz = _get_quiz(s, quiz_id)
    if not (_is_owner(actor, quiz) or can_curate(actor)):
        raise Forbidden()
    if quiz.quiz_workflow_status not in ("DRAFT", "REJECTED"):
        raise Conflict(f"Quiz em {quiz.quiz_workflow_status} não pode ser enviado.")
    if not quiz.questions:
        raise ValidationError("Adicione pelo menos uma pergunta antes de enviar.")
    bad = [
        i + 1 for i, q in enumerate(quiz.questions) if sum(1 for o in q.options if o.is_correct) != 1
    ]
    if bad:
        raise ValidationError([f"Pergunta {n} deve ter exatamente uma alternativa correta." for n in bad])
    quiz.quiz_workflow_status = "SUBMITTED"
    quiz.submitted_at = datetime.utcnow()
    record_event(s, actor=actor, action="quiz.submit", entity_type="Challenge", entity_id=str(quiz.id))
    return quiz


def unsubmit_quiz(s: "Session", actor: "User", quiz_id) -> Challenge:
    quiz = _get_quiz(s, quiz_id)
    if not _is_owner(actor, quiz):
        raise Forbidden()
    if quiz.quiz_workflow_status != "SUBMITTED":
        raise Conflict("Apenas quizzes enviados podem voltar para rascunho.")
    snapshot_quiz_version(s, quiz, actor, "unsubmit")
    quiz.quiz_workflow_status = "DRAFT"
    quiz.submitted_at = None
    record_event(s, actor=actor, action="quiz.unsubmit", entity_type="Challenge", entity_id=str(quiz.id))
    return quiz


def review_quiz(s: "Session", actor: "User", quiz_id, payload: dict) -> Challenge:
    if not can_curate(actor):
        raise Forbidden()
    quiz = _get_quiz(s, quiz_id)
    if quiz.quiz_workflow_status != "SUBMITTED":
        raise Conflict("Apenas quizzes enviados podem ser revisados.")
    decision = str(payload.get("decision") or "").strip().upper()
    if decision not in ("APPROVED", "REJECTED"):
        raise ValidationError("Decisão inválida (APPROVED ou REJECTED).")
    message = str(payload.get("message") or "").strip()
    if decision == "REJECTED" and len(message) < 5:
        raise ValidationError("Informe o motivo da reprovação (mínimo 5 caracteres).")

    if message:
        s.add(QuizCurationComment(challenge_id=quiz.id, author_id=actor.id, kind="review", message=message[:4000]))
    quiz.quiz_workflow_status = decision
    if decision == "APPROVED":
        quiz.approved_at = datetime.utcnow()
        quiz.approved_by = actor.id
    action = "quiz.review.approve" if decision == "APPROVED" else "quiz.review.reject"
    record_event(s, actor=actor, action=action, entity_type="Challenge", entity_id=str(quiz.id), reason=message or None)
    return quiz


def publish_quiz(s: "Session", actor: "User", quiz_id) -> Challenge:
    if not can_curate(actor):
        raise Forbidden()
    quiz = _get_quiz(s, quiz_id)
    if quiz.quiz_workflow_status != "APPROVED":
        raise Conflict("Apenas quizzes aprovados podem ser publicados.")
    snapshot_quiz_version(s, quiz, actor, "publish")
    now = datetime.utcnow()
    quiz.quiz_workflow_status = "PUBLISHED"
    quiz.published_at = now
    quiz.published_by = actor.id
    quiz.status = "active"
    record_event(s, actor=actor, action="quiz.publish", entity_type="Challenge", entity_id=str(quiz.id))
    logger.info("quiz published id=%s by=%s", quiz.id, actor.id)
    return quiz


def republish_quiz(s: "Session", actor: "User", quiz_id) -> Challenge:
    if not can_curate(actor):
        raise Forbidden()
    quiz = _get_quiz(s, quiz_id)
    if quiz.quiz_workflow_status != "PUBLISHED":
        raise Conflict("Apenas quizzes publicados podem ser republicados.")
    snapshot_quiz_version(s, quiz, actor, "republish")
    quiz.published_at = datetime.utcnow()
    quiz.published_by = actor.id
    record_event(s, actor=actor, action="quiz.republish", entity_type="Challenge", entity_id=str(quiz.id))
    return quiz


# ---------- Questions ----------
def _add_question(s: "Session", quiz: Challenge, payload: dict) -> QuizQuestion:
    level, xp = DIFFICULTY_XP[str(payload.get("difficulty_level") or "basica").strip().lower()]
    current = s.query(func.max(QuizQuestion.order_index)).filter(QuizQuestion.challenge_id == quiz.id).scalar()
    question = QuizQuestion(
        challenge_id=quiz.id,
        question_text=str(payload.get("question_text")).strip(),
        difficulty_level=level,
        xp_value=xp,
        order_index=int(current) + 1 if current is not None else 0,
    )
    for opt in payload["options"]:
        question.options.append(
            QuizOption(
                option_text=str(opt.get("option_text")).strip(),
                is_correct=opt.get("is_correct") is True or str(opt.get("is_correct")).lower() == "true",
                explanation=str(opt.get("explanation") or "").strip() or None,
            )
        )
    quiz.questions.append(question)
    s.flush()
    return question


def create_question(s: "Session", actor: "User", quiz_id, payload: dict) -> QuizQuestion:
    quiz = _get_quiz(s, quiz_id)
    errors = validate_question_payload(payload)
    if errors:
        raise ValidationError(errors)
    _prepare_edit(s, actor, quiz, reason_prefix="question.create")
    question = _add_question(s, quiz, payload)
    record_event(
        s,
        actor=actor,
        action="quiz.question.create",
        entity_type="QuizQuestion",
        entity_id=str(question.id),
        metadata={"challenge_id": quiz.id, "difficulty_level": question.difficulty_level},
    )
    return question


def delete_question(s: "Session", actor: "User", question_id) -> None:
    try:
        question = s.get(QuizQuestion, int(question_id))
    except (TypeError, ValueError):
        question = None
    if question is None:
        raise NotFound("Pergunta não encontrada.")
    quiz = question.challenge
    _prepare_edit(s, actor, quiz, reason_prefix="question.delete")
    record_event(
        s,
        actor=actor,
        action="quiz.question.delete",
        entity_type="QuizQuestion",
        entity_id=str(question.id),
        metadata={"challenge_id": quiz.id, "question_text": question.question_text[:200]},
    )
    quiz.questions.remove(question)
    s.flush()


def import_questions(
    s: "Session",
    actor: "User",
    quiz_id,
    *,
    filename: str | None = None,
    file_bytes: bytes | None = None,
    csv_text: str | None = None,
) -> dict:
    """
    Bulk-add questions from a CSV/XLSX file (or pasted CSV text).
    Valid rows are inserted; invalid rows come back as per-row errors.
    """
    quiz = _get_quiz(s, quiz_id)
    try:
        if file_bytes is not None:
            parsed, row_errors = parse_question_file(filename or "", file_bytes)
        elif csv_text:
            parsed, row_errors = rows_to_question_payloads(read_csv_rows(csv_text))
        else:
            raise ValidationError("Envie um arquivo CSV/XLSX ou o texto CSV.")
    except ValueError as e:
        raise ValidationError(str(e))

    errors = [{"row": e.row_number, "error": e.message} for e in row_errors]
    valid: list[dict] = []
    for row_number, payload in parsed:
        problems = validate_question_payload(payload)
        if problems:
            errors.append({"row": row_number, "error": "; ".join(problems)})
        else:
            valid.append(payload)

    _prepare_edit(s, actor, quiz, reason_prefix="import")
    created = [_add_question(s, quiz, p) for p in valid]
    errors.sort(key=lambda e: e["row"])
    record_event(
        s,
        actor=actor,
        action="quiz.import",
        entity_type="Challenge",
        entity_id=str(quiz.id),
        metadata={"filename": filename, "created": len(created), "errors": len(errors)},
    )
    logger.info("quiz.import quiz=%s created=%s errors=%s", quiz.id, len(created), len(errors))
    return {"created": len(created), "question_ids": [q.id for q in created], "errors": errors}
