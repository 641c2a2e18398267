from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING

from app.djtquest.attachments import normalize_attachment_refs
from app.djtquest.audit import record_event
from app.djtquest.constants import CHAS_DIMENSIONS, ROLE_ADMIN, ROLE_COORDENADOR, ROLE_GERENTE_DIVISAO, ROLE_GERENTE_DJT
from app.djtquest.errors import Conflict, Forbidden, NotFound, ValidationError
from app.djtquest.mentions import extract_hashtags, extract_mentions, resolve_mentions
from app.djtquest.modules.forum.models import ForumMention, ForumPost, ForumPostLike, ForumTopic
from app.djtquest.notifications import notify
from app.djtquest.rbac import has_any_role
from app.djtquest.utils import clamp_limit

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User

logger = logging.getLogger(__name__)

MAX_POST_CHARS = 8000
EDIT_ROLES = (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR)
DELETE_TOPIC_ROLES = (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO)
MODERATION_ACTIONS = ("delete_post", "delete_topic", "clear_topic", "update_topic", "update_post")
_TOPIC_UPDATABLE = ("title", "description", "chas_dimension", "status")


def can_edit_forum(user: "User") -> bool:
    return has_any_role(user, *EDIT_ROLES)


def can_delete_topic(user: "User") -> bool:
    return has_any_role(user, *DELETE_TOPIC_ROLES)


def _get_topic(s: "Session", topic_id) -> ForumTopic:
    try:
        topic = s.get(ForumTopic, int(topic_id))
    except (TypeError, ValueError):
        topic = None
    if topic is None:
        raise NotFound("Tópico não encontrado.")
    return topic


def _get_post(s: "Session", post_id) -> ForumPost:
    try:
        post = s.get(ForumPost, int(post_id))
    except (TypeError, ValueError):
        post = None
    if post is None:
        raise NotFound("Post não encontrado.")
    return post


def _chas(raw) -> str:
    chas = str(raw or "C").strip().upper()
    if chas not in CHAS_DIMENSIONS:
        raise ValidationError("Dimensão CHAS inválida.")
    return chas


# ---------- Serialization ----------
def topic_dict(t: ForumTopic) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "chas_dimension": t.chas_dimension,
        "status": t.status,
        "created_by": t.created_by,
        "summary": json.loads(t.summary) if t.summary else None,
        "closed_at": t.closed_at.isoformat() if t.closed_at else None,
        "closed_by": t.closed_by,
        "post_count": len(t.posts),
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def post_dict(p: ForumPost, *, liked_ids: set[int] | None = None) -> dict:
    return {
        "id": p.id,
        "topic_id": p.topic_id,
        "user_id": p.user_id,
        "parent_post_id": p.parent_post_id,
        "content": p.content,
        "attachments": json.loads(p.attachments_json) if p.attachments_json else [],
        "tags": json.loads(p.tags_json) if p.tags_json else [],
        "likes_count": p.likes_count,
        "has_liked": p.id in liked_ids if liked_ids is not None else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


# ---------- Topics ----------
def create_topic(s: "Session", user: "User", payload: dict) -> ForumTopic:
    title = str(payload.get("title") or "").strip()
    if len(title) < 3:
        raise ValidationError("Título deve ter pelo menos 3 caracteres.")
    topic = ForumTopic(
        title=title[:255],
        description=str(payload.get("description") or "").strip() or None,
        chas_dimension=_chas(payload.get("chas_dimension")),
        status="open",
        created_by=user.id,
    )
    s.add(topic)
    s.flush()
    record_event(s, actor=user, action="forum.topic.create", entity_type="ForumTopic", entity_id=str(topic.id))
    return topic


def list_topics(s: "Session", *, status: str | None = None, limit=None) -> list[ForumTopic]:
    q = s.query(ForumTopic)
    if status in ("open", "closed"):
        q = q.filter(ForumTopic.status == status)
    return q.order_by(ForumTopic.updated_at.desc(), ForumTopic.id.desc()).limit(clamp_limit(limit, 50, 200)).all()


def get_topic(s: "Session", user: "User", topic_id) -> dict:
    topic = _get_topic(s, topic_id)
    post_ids = [p.id for p in topic.posts]
    liked = set()
    if post_ids:
        liked = {
            pid
            for (pid,) in s.query(ForumPostLike.post_id)
            .filter(ForumPostLike.user_id == user.id, ForumPostLike.post_id.in_(post_ids))
            .all()
        }
    posts = sorted(topic.posts, key=lambda p: (p.created_at, p.id))
    return {"topic": topic_dict(topic), "posts": [post_dict(p, liked_ids=liked) for p in posts]}


# ---------- Posts ----------
def _sync_mentions(s: "Session", post: ForumPost, author: "User", *, notify_new: bool = True) -> list[int]:
    users = resolve_mentions(s, extract_mentions(post.content), author.id)
    existing = {
        m.mentioned_user_id: m for m in s.query(ForumMention).filter(ForumMention.post_id == post.id).all()
    }
    wanted = {u.id for u in users}
    for uid, m in existing.items():
        if uid not in wanted:
            s.delete(m)
    new_ids = []
    for u in users:
        if u.id in existing:
            continue
        s.add(ForumMention(post_id=post.id, mentioned_user_id=u.id))
        new_ids.append(u.id)
        if notify_new:
            notify(
                s,
                user_id=u.id,
                type="forum_mention",
                title="Você foi mencionado no fórum",
                message=f"{author.display_name} mencionou você em um post.",
                metadata={"topic_id": post.topic_id, "post_id": post.id},
            )
    return new_ids


def create_post(s: "Session", user: "User", topic_id, payload: dict) -> ForumPost:
    topic = _get_topic(s, topic_id)
    if topic.status != "open":
        raise Conflict("Tópico encerrado.")
    content = str(payload.get("content") or "").strip()
    if not content:
        raise ValidationError("Conteúdo é obrigatório.")
    if len(content) > MAX_POST_CHARS:
        raise ValidationError(f"Conteúdo excede {MAX_POST_CHARS} caracteres.")
    parent_id = payload.get("parent_post_id")
    if parent_id not in (None, ""):
        parent = _get_post(s, parent_id)
        if parent.topic_id != topic.id:
            raise ValidationError("Post pai não pertence a este tópico.")
        parent_id = parent.id
    else:
        parent_id = None
    attachments = normalize_attachment_refs(payload.get("attachments"), module="forum", user_id=user.id)

    post = ForumPost(
        topic_id=topic.id,
        user_id=user.id,
        parent_post_id=parent_id,
        content=content,
        attachments_json=json.dumps(attachments, ensure_ascii=False) if attachments else None,
        tags_json=json.dumps(extract_hashtags(content)),
    )
    s.add(post)
    s.flush()
    mentioned = _sync_mentions(s, post, user)
    topic.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="forum.post.create",
        entity_type="ForumPost",
        entity_id=str(post.id),
        metadata={"topic_id": topic.id, "mentions": mentioned},
    )
    return post


def toggle_like(s: "Session", user: "User", post_id, action: str) -> dict:
    post = _get_post(s, post_id)
    action = str(action or "like").strip().lower()
    if action not in ("like", "unlike"):
        raise ValidationError("Ação inválida (like ou unlike).")
    existing = (
        s.query(ForumPostLike)
        .filter(ForumPostLike.post_id == post.id, ForumPostLike.user_id == user.id)
        .one_or_none()
    )
    if action == "like" and existing is None:
        s.add(ForumPostLike(post_id=post.id, user_id=user.id))
    elif action == "unlike" and existing is not None:
        s.delete(existing)
    s.flush()
    post.likes_count = s.query(ForumPostLike).filter(ForumPostLike.post_id == post.id).count()
    return {"post_id": post.id, "liked": action == "like", "likes_count": post.likes_count}


# ---------- Moderation ----------
def moderate(s: "Session", user: "User", payload: dict) -> dict:
    from app.djtquest.models import User

    action = str(payload.get("action") or "").strip()
    if action not in MODERATION_ACTIONS:
        raise ValidationError("Ação de moderação inválida.")
    editor = can_edit_forum(user)
    result: dict = {"action": action}

    if action in ("delete_post", "update_post"):
        post = _get_post(s, payload.get("post_id"))
        if not (editor or post.user_id == user.id):
            raise Forbidden()
        entity_type, entity_id = "ForumPost", post.id
        if action == "delete_post":
            topic = post.topic
            topic.posts.remove(post)
        else:
            content = str(payload.get("content") or "").strip()
            if not content or len(content) > MAX_POST_CHARS:
                raise ValidationError("Conteúdo inválido.")
            post.content = content
            post.tags_json = json.dumps(extract_hashtags(content))
            s.flush()
            # Mentions belong to the post author, not to the moderator who edited it.
            author = s.get(User, post.user_id) if post.user_id else None
            _sync_mentions(s, post, author or user)
            result["post"] = post_dict(post)
    else:
        topic = _get_topic(s, payload.get("topic_id"))
        entity_type, entity_id = "ForumTopic", topic.id
        if action == "delete_topic":
            if not can_delete_topic(user):
                raise Forbidden()
            s.delete(topic)
        elif not editor:
            raise Forbidden()
        elif action == "clear_topic":
            result["deleted_posts"] = len(topic.posts)
            topic.posts.clear()
        else:
            updates = {k: payload[k] for k in _TOPIC_UPDATABLE if k in payload}
            if not updates:
                raise ValidationError("Nenhuma alteração informada.")
            if "title" in updates:
                title = str(updates["title"] or "").strip()
                if len(title) < 3:
                    raise ValidationError("Título deve ter pelo menos 3 caracteres.")
                topic.title = title[:255]
            if "description" in updates:
                topic.description = str(updates["description"] or "").strip() or None
            if "chas_dimension" in updates:
                topic.chas_dimension = _chas(updates["chas_dimension"])
            if "status" in updates:
                status = str(updates["status"] or "").strip().lower()
                if status not in ("open", "closed"):
                    raise ValidationError("Status inválido.")
                topic.status = status
            result["topic"] = topic_dict(topic)

    record_event(
        s,
        actor=user,
        action=f"forum.{action}",
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=str(payload.get("reason") or "").strip()[:512] or None,
    )
    return result


def build_compendium(topic: ForumTopic) -> dict:
    """Deterministic summary of a topic's discussion, stored when the topic closes."""
    posts = sorted(topic.posts, key=lambda p: (p.created_at, p.id))
    tags = Counter()
    for p in posts:
        tags.update(json.loads(p.tags_json) if p.tags_json else [])
    top_liked = sorted(posts, key=lambda p: (-int(p.likes_count or 0), p.id))[:3]
    return {
        "post_count": len(posts),
        "participants": len({p.user_id for p in posts if p.user_id is not None}),
        "top_hashtags": [{"tag": t, "count": n} for t, n in sorted(tags.items(), key=lambda kv: (-kv[1], kv[0]))[:10]],
        "top_posts": [
            {
                "post_id": p.id,
                "user_id": p.user_id,
                "likes_count": p.likes_count,
                "excerpt": p.content if len(p.content) <= 280 else p.content[:277] + "...",
            }
            for p in top_liked
        ],
        "first_post_at": posts[0].created_at.isoformat() if posts else None,
        "last_post_at": posts[-1].created_at.isoformat() if posts else None,
    }


def close_topic(s: "Session", user: "User", topic_id) -> ForumTopic:
    topic = _get_topic(s, topic_id)
    if not (can_edit_forum(user) or topic.created_by == user.id):
        raise Forbidden()
    if topic.status == "closed":
        raise Conflict("Tópico já encerrado.")
    compendium = build_compendium(topic)
    topic.summary = json.dumps(compendium, ensure_ascii=False, sort_keys=True)
    topic.status = "closed"
    topic.closed_at = datetime.utcnow()
    topic.closed_by = user.id
    record_event(
        s,
        actor=user,
        action="forum.topic.close",
        entity_type="ForumTopic",
        entity_id=str(topic.id),
        metadata={"post_count": compendium["post_count"], "participants": compendium["participants"]},
    )
    logger.info("forum topic closed id=%s posts=%s", topic.id, compendium["post_count"])
    return topic
