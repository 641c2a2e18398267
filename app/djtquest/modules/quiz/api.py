from __future__ import annotations

from flask import Blueprint, jsonify

from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.quiz.service import (
    delete_challenge,
    list_playable,
    quiz_state,
    reset_attempt,
    skip_question,
    submit_answer,
    update_challenge_status,
)
from app.djtquest.rbac import require_login, require_permission

bp = Blueprint("quiz", __name__)


# ---------- Play ----------
@bp.get("/challenges")
@require_login
def challenges_list():
    s = db_session()
    return jsonify({"items": list_playable(s, current_user())})


@bp.get("/<int:challenge_id>/state")
@require_login
def state(challenge_id: int):
    s = db_session()
    out = quiz_state(s, current_user(), challenge_id)
    return jsonify(out)


@bp.post("/answer")
@require_login
def answer():
    s = db_session()
    out = submit_answer(s, current_user(), json_body())
    s.commit()
    return jsonify(out)


@bp.post("/skip")
@require_login
def skip():
    s = db_session()
    out = skip_question(s, current_user(), json_body())
    s.commit()
    return jsonify(out)


# ---------- Admin ----------
@bp.post("/reset-attempt")
@require_permission("quiz.reset")
def reset():
    s = db_session()
    out = reset_attempt(s, current_user(), json_body())
    s.commit()
    return jsonify(out)


@bp.post("/challenges/<int:challenge_id>/status")
@require_login
def challenge_status(challenge_id: int):
    s = db_session()
    out = update_challenge_status(s, current_user(), challenge_id, json_body())
    s.commit()
    return jsonify({"success": True, "challenge": out})


@bp.delete("/challenges/<int:challenge_id>")
@require_login
def challenge_delete(challenge_id: int):
    s = db_session()
    delete_challenge(s, current_user(), challenge_id)
    s.commit()
    return jsonify({"success": True})
