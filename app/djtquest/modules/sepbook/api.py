from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.sepbook.service import (
    add_comment,
    create_post,
    edit_post,
    feed,
    list_comments,
    list_likes,
    mark_mentions_read,
    mentions_inbox,
    moderate,
    post_dict,
    react,
    trending_tags,
)
from app.djtquest.rbac import require_login

bp = Blueprint("sepbook", __name__)


# ---------- Posts ----------
@bp.post("/posts")
@require_login
def posts_create():
    s = db_session()
    user = current_user()
    post = create_post(s, user, json_body())
    s.commit()
    return jsonify({"success": True, "post": post_dict(post, author=user, has_liked=False)}), 201


@bp.get("/feed")
@require_login
def posts_feed():
    s = db_session()
    items = feed(s, current_user(), limit=request.args.get("limit"), tag=request.args.get("tag"))
    return jsonify({"items": items})


@bp.patch("/posts/<int:post_id>")
@require_login
def posts_edit(post_id: int):
    s = db_session()
    user = current_user()
    post = edit_post(s, user, post_id, json_body())
    s.commit()
    return jsonify({"success": True, "post": post_dict(post, author=user)})


# ---------- Comments / likes ----------
@bp.get("/posts/<int:post_id>/comments")
@require_login
def comments_list(post_id: int):
    s = db_session()
    return jsonify({"items": list_comments(s, post_id)})


@bp.post("/posts/<int:post_id>/comments")
@require_login
def comments_create(post_id: int):
    s = db_session()
    out = add_comment(s, current_user(), post_id, json_body())
    s.commit()
    return jsonify({"success": True, **out}), 201


@bp.get("/posts/<int:post_id>/likes")
@require_login
def likes_list(post_id: int):
    s = db_session()
    return jsonify({"items": list_likes(s, post_id)})


@bp.post("/posts/<int:post_id>/react")
@require_login
def posts_react(post_id: int):
    s = db_session()
    out = react(s, current_user(), post_id, json_body().get("action") or "like")
    s.commit()
    return jsonify({"success": True, **out})


# ---------- Moderation ----------
@bp.post("/moderate")
@require_login
def moderate_post():
    s = db_session()
    out = moderate(s, current_user(), json_body())
    s.commit()
    return jsonify({"success": True, **out})


# ---------- Mentions / tags ----------
@bp.get("/mentions")
@require_login
def mentions_list():
    s = db_session()
    unread_only = (request.args.get("unread") or "").strip() in ("1", "true")
    items = mentions_inbox(s, current_user(), unread_only=unread_only, limit=request.args.get("limit"))
    return jsonify({"items": items})


@bp.post("/mentions/read")
@require_login
def mentions_read():
    s = db_session()
    raw_ids = json_body().get("ids")
    ids = [int(i) for i in raw_ids if str(i).isdigit()] if isinstance(raw_ids, list) else None
    count = mark_mentions_read(s, current_user(), ids)
    s.commit()
    return jsonify({"success": True, "updated": count})


@bp.get("/tags")
@require_login
def tags():
    s = db_session()
    return jsonify({"items": trending_tags(s, sample=request.args.get("sample"), limit=request.args.get("limit"))})
