from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.errors import ValidationError
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.curation.service import (
    challenge_dict,
    create_question,
    create_quiz,
    delete_question,
    get_quiz,
    import_questions,
    list_quiz_versions,
    list_quizzes,
    pending_counts,
    publish_quiz,
    question_dict,
    republish_quiz,
    review_quiz,
    submit_quiz,
    unsubmit_quiz,
    update_quiz,
)
from app.djtquest.rbac import require_login

bp = Blueprint("curation", __name__)


# ---------- Quizzes ----------
@bp.get("/quizzes")
@require_login
def quizzes_list():
    s = db_session()
    items = list_quizzes(s, current_user(), status=request.args.get("status"))
    return jsonify({"items": items})


@bp.post("/quizzes")
@require_login
def quizzes_create():
    s = db_session()
    quiz = create_quiz(s, current_user(), json_body())
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)}), 201


@bp.get("/quizzes/<int:quiz_id>")
@require_login
def quizzes_get(quiz_id: int):
    s = db_session()
    return jsonify(get_quiz(s, current_user(), quiz_id))


@bp.patch("/quizzes/<int:quiz_id>")
@require_login
def quizzes_update(quiz_id: int):
    s = db_session()
    quiz = update_quiz(s, current_user(), quiz_id, json_body())
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


@bp.get("/quizzes/<int:quiz_id>/versions")
@require_login
def quizzes_versions(quiz_id: int):
    s = db_session()
    return jsonify({"items": list_quiz_versions(s, current_user(), quiz_id)})


@bp.get("/pending-counts")
@require_login
def quizzes_pending_counts():
    s = db_session()
    return jsonify(pending_counts(s, current_user()))


# ---------- Workflow ----------
@bp.post("/quizzes/<int:quiz_id>/submit")
@require_login
def quizzes_submit(quiz_id: int):
    s = db_session()
    quiz = submit_quiz(s, current_user(), quiz_id)
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


@bp.post("/quizzes/<int:quiz_id>/unsubmit")
@require_login
def quizzes_unsubmit(quiz_id: int):
    s = db_session()
    quiz = unsubmit_quiz(s, current_user(), quiz_id)
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


@bp.post("/quizzes/<int:quiz_id>/review")
@require_login
def quizzes_review(quiz_id: int):
    s = db_session()
    quiz = review_quiz(s, current_user(), quiz_id, json_body())
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


@bp.post("/quizzes/<int:quiz_id>/publish")
@require_login
def quizzes_publish(quiz_id: int):
    s = db_session()
    quiz = publish_quiz(s, current_user(), quiz_id)
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


@bp.post("/quizzes/<int:quiz_id>/republish")
@require_login
def quizzes_republish(quiz_id: int):
    s = db_session()
    quiz = republish_quiz(s, current_user(), quiz_id)
    s.commit()
    return jsonify({"success": True, "quiz": challenge_dict(quiz)})


# ---------- Questions ----------
@bp.post("/quizzes/<int:quiz_id>/questions")
@require_login
def questions_create(quiz_id: int):
    s = db_session()
    question = create_question(s, current_user(), quiz_id, json_body())
    s.commit()
    return jsonify({"success": True, "question": question_dict(question)}), 201


@bp.delete("/questions/<int:question_id>")
@require_login
def questions_delete(question_id: int):
    s = db_session()
    delete_question(s, current_user(), question_id)
    s.commit()
    return jsonify({"success": True})


@bp.post("/quizzes/<int:quiz_id>/import")
@require_login
def questions_import(quiz_id: int):
    s = db_session()
    f = request.files.get("file")
    if f is not None and f.filename:
        result = import_questions(s, current_user(), quiz_id, filename=f.filename, file_bytes=f.read())
    else:
        csv_text = str(json_body().get("csv") or "")
        if not csv_text.strip():
            raise ValidationError("Envie um arquivo CSV/XLSX ou o texto CSV.")
        result = import_questions(s, current_user(), quiz_id, csv_text=csv_text)
    s.commit()
    return jsonify({"success": True, **result})
