from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.forum.service import (
    close_topic,
    create_post,
    create_topic,
    get_topic,
    list_topics,
    moderate,
    post_dict,
    toggle_like,
    topic_dict,
)
from app.djtquest.rbac import require_login

bp = Blueprint("forum", __name__)


@bp.get("/topics")
@require_login
def topics_list():
    s = db_session()
    topics = list_topics(s, status=request.args.get("status"), limit=request.args.get("limit"))
    return jsonify({"items": [topic_dict(t) for t in topics]})


@bp.post("/topics")
@require_login
def topics_create():
    s = db_session()
    topic = create_topic(s, current_user(), json_body())
    s.commit()
    return jsonify({"success": True, "topic": topic_dict(topic)}), 201


@bp.get("/topics/<int:topic_id>")
@require_login
def topics_get(topic_id: int):
    s = db_session()
    return jsonify(get_topic(s, current_user(), topic_id))


@bp.post("/topics/<int:topic_id>/posts")
@require_login
def posts_create(topic_id: int):
    s = db_session()
    post = create_post(s, current_user(), topic_id, json_body())
    s.commit()
    return jsonify({"success": True, "post": post_dict(post)}), 201


@bp.post("/posts/<int:post_id>/like")
@require_login
def posts_like(post_id: int):
    s = db_session()
    out = toggle_like(s, current_user(), post_id, json_body().get("action") or "like")
    s.commit()
    return jsonify({"success": True, **out})


@bp.post("/moderate")
@require_login
def moderate_post():
    s = db_session()
    out = moderate(s, current_user(), json_body())
    s.commit()
    return jsonify({"success": True, **out})


@bp.post("/topics/<int:topic_id>/close")
@require_login
def topics_close(topic_id: int):
    s = db_session()
    topic = close_topic(s, current_user(), topic_id)
    s.commit()
    return jsonify({"success": True, "topic": topic_dict(topic)})
