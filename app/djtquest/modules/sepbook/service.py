from __future__ import annotations

import json
import logging
from collections import Counter
from typing import TYPE_CHECKING

from app.djtquest.attachments import normalize_attachment_refs
from app.djtquest.audit import record_event
from app.djtquest.constants import MANAGER_ROLES
from app.djtquest.errors import Forbidden, NotFound, ValidationError
from app.djtquest.mentions import extract_hashtags, extract_mentions, resolve_mentions
from app.djtquest.modules.gamification.service import apply_xp
from app.djtquest.modules.sepbook.models import SepbookComment, SepbookLike, SepbookMention, SepbookPost
from app.djtquest.notifications import notify
from app.djtquest.rbac import role_keys
from app.djtquest.utils import clamp_limit, normalize_hashtag

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User

logger = logging.getLogger(__name__)

MAX_POST_CHARS = 4000
MAX_COMMENT_CHARS = 2000
MAX_ATTACHMENTS = 12
POST_XP = 5
RICH_COMMENT_XP = 1
RICH_COMMENT_MIN_CHARS = 30


def can_moderate_sepbook(user: "User") -> bool:
    return bool(role_keys(user) & MANAGER_ROLES)


def _get_post(s: "Session", post_id) -> SepbookPost:
    try:
        post = s.get(SepbookPost, int(post_id))
    except (TypeError, ValueError):
        post = None
    if post is None:
        raise NotFound("Post não encontrado.")
    return post


def _authors(s: "Session", user_ids) -> dict:
    from app.djtquest.models import User

    ids = {i for i in user_ids if i is not None}
    if not ids:
        return {}
    return {u.id: u for u in s.query(User).filter(User.id.in_(ids)).all()}


def _author_dict(u) -> dict | None:
    if u is None:
        return None
    return {"id": u.id, "name": u.display_name, "team_id": u.team_id, "tier": u.tier}


def post_dict(p: SepbookPost, *, author=None, has_liked: bool | None = None) -> dict:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "author": _author_dict(author),
        "content": p.content,
        "attachments": json.loads(p.attachments_json) if p.attachments_json else [],
        "has_media": p.has_media,
        "tags": json.loads(p.tags_json) if p.tags_json else [],
        "location": (
            {"label": p.location_label, "lat": p.location_lat, "lng": p.location_lng}
            if p.location_label or p.location_lat is not None
            else None
        ),
        "like_count": p.like_count,
        "comment_count": p.comment_count,
        "has_liked": has_liked,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


def _parse_location(payload: dict) -> tuple[str | None, float | None, float | None]:
    label = str(payload.get("location_label") or "").strip()[:255] or None
    lat, lng = payload.get("location_lat"), payload.get("location_lng")
    if lat in (None, "") and lng in (None, ""):
        return label, None, None
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        raise ValidationError("Localização inválida.")
    if not (-90 <= lat_f <= 90 and -180 <= lng_f <= 180):
        raise ValidationError("Localização fora do intervalo válido.")
    return label, lat_f, lng_f


def _add_mentions(s: "Session", author: "User", text: str, *, post_id: int, comment_id: int | None = None) -> list[int]:
    users = resolve_mentions(s, extract_mentions(text), author.id)
    for u in users:
        s.add(SepbookMention(post_id=post_id, comment_id=comment_id, mentioned_user_id=u.id))
        notify(
            s,
            user_id=u.id,
            type="sepbook_mention",
            title="Você foi mencionado no SEPBook",
            message=f"{author.display_name} mencionou você.",
            metadata={"post_id": post_id, "comment_id": comment_id},
        )
    return [u.id for u in users]


# ---------- Posts ----------
def create_post(s: "Session", user: "User", payload: dict) -> SepbookPost:
    content = str(payload.get("content") or "").strip()
    if len(content) > MAX_POST_CHARS:
        raise ValidationError(f"Conteúdo excede {MAX_POST_CHARS} caracteres.")
    attachments = normalize_attachment_refs(
        payload.get("attachments"), module="sepbook", user_id=user.id, max_items=MAX_ATTACHMENTS
    )
    if not content and not attachments:
        raise ValidationError("Conteúdo ou mídia obrigatórios.")
    label, lat, lng = _parse_location(payload)

    post = SepbookPost(
        user_id=user.id,
        content=content,
        attachments_json=json.dumps(attachments, ensure_ascii=False) if attachments else None,
        has_media=bool(attachments),
        tags_json=json.dumps(extract_hashtags(content)),
        location_label=label,
        location_lat=lat,
        location_lng=lng,
    )
    s.add(post)
    s.flush()
    mentioned = _add_mentions(s, user, content, post_id=post.id)
    apply_xp(user, POST_XP)
    record_event(
        s,
        actor=user,
        action="sepbook.post.create",
        entity_type="SepbookPost",
        entity_id=str(post.id),
        metadata={"attachments": len(attachments), "mentions": mentioned},
    )
    return post


def feed(s: "Session", user: "User", *, limit=None, tag: str | None = None) -> list[dict]:
    n = clamp_limit(limit, 50, 50)
    q = s.query(SepbookPost)
    wanted = normalize_hashtag(tag)
    if wanted:
        # Tags live in a JSON text column; match the quoted element.
        escaped = wanted.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        q = q.filter(SepbookPost.tags_json.like(f'%"{escaped}"%', escape="\\"))
    posts = q.order_by(SepbookPost.created_at.desc(), SepbookPost.id.desc()).limit(n).all()
    authors = _authors(s, (p.user_id for p in posts))
    liked: set[int] = set()
    if posts:
        liked = {
            pid
            for (pid,) in s.query(SepbookLike.post_id)
            .filter(SepbookLike.user_id == user.id, SepbookLike.post_id.in_([p.id for p in posts]))
            .all()
        }
    return [post_dict(p, author=authors.get(p.user_id), has_liked=p.id in liked) for p in posts]


def edit_post(s: "Session", user: "User", post_id, payload: dict) -> SepbookPost:
    post = _get_post(s, post_id)
    if post.user_id != user.id:
        raise Forbidden()
    content = str(payload.get("content") or "").strip()
    if len(content) > MAX_POST_CHARS:
        raise ValidationError(f"Conteúdo excede {MAX_POST_CHARS} caracteres.")
    if not content and not post.attachments_json:
        raise ValidationError("Conteúdo ou mídia obrigatórios.")
    post.content = content
    post.tags_json = json.dumps(extract_hashtags(content))
    record_event(s, actor=user, action="sepbook.post.edit", entity_type="SepbookPost", entity_id=str(post.id))
    return post


# ---------- Comments ----------
def list_comments(s: "Session", post_id) -> list[dict]:
    post = _get_post(s, post_id)
    comments = (
        s.query(SepbookComment)
        .filter(SepbookComment.post_id == post.id)
        .order_by(SepbookComment.created_at.asc(), SepbookComment.id.asc())
        .limit(100)
        .all()
    )
    authors = _authors(s, (c.user_id for c in comments))
    return [
        {
            "id": c.id,
            "post_id": c.post_id,
            "user_id": c.user_id,
            "author": _author_dict(authors.get(c.user_id)),
            "content": c.content,
            "created_at": c.created_at.isoformat() if c.created_at else None,
        }
        for c in comments
    ]


def _recount_comments(s: "Session", post: SepbookPost) -> None:
    s.flush()
    post.comment_count = s.query(SepbookComment).filter(SepbookComment.post_id == post.id).count()


def add_comment(s: "Session", user: "User", post_id, payload: dict) -> dict:
    post = _get_post(s, post_id)
    text = str(payload.get("content") or payload.get("text") or "").strip()
    if len(text) < 2:
        raise ValidationError("Comentário deve ter pelo menos 2 caracteres.")
    if len(text) > MAX_COMMENT_CHARS:
        raise ValidationError(f"Comentário excede {MAX_COMMENT_CHARS} caracteres.")
    comment = SepbookComment(post_id=post.id, user_id=user.id, content=text)
    s.add(comment)
    s.flush()
    mentions = extract_mentions(text)
    _add_mentions(s, user, text, post_id=post.id, comment_id=comment.id)
    _recount_comments(s, post)

    xp_awarded = 0
    if len(text) >= RICH_COMMENT_MIN_CHARS and extract_hashtags(text) and mentions:
        xp_awarded = RICH_COMMENT_XP
        apply_xp(user, xp_awarded)
    return {
        "comment": {
            "id": comment.id,
            "post_id": post.id,
            "user_id": user.id,
            "content": comment.content,
            "created_at": comment.created_at.isoformat() if comment.created_at else None,
        },
        "comment_count": post.comment_count,
        "xp_awarded": xp_awarded,
    }


# ---------- Likes ----------
def list_likes(s: "Session", post_id) -> list[dict]:
    post = _get_post(s, post_id)
    likes = (
        s.query(SepbookLike)
        .filter(SepbookLike.post_id == post.id)
        .order_by(SepbookLike.created_at.desc())
        .limit(120)
        .all()
    )
    authors = _authors(s, (l.user_id for l in likes))
    return [
        {**(_author_dict(authors.get(l.user_id)) or {"id": l.user_id}), "liked_at": l.created_at.isoformat()}
        for l in likes
    ]


def react(s: "Session", user: "User", post_id, action: str) -> dict:
    post = _get_post(s, post_id)
    action = str(action or "like").strip().lower()
    if action not in ("like", "unlike"):
        raise ValidationError("Ação inválida (like ou unlike).")
    existing = (
        s.query(SepbookLike).filter(SepbookLike.post_id == post.id, SepbookLike.user_id == user.id).one_or_none()
    )
    if action == "like" and existing is None:
        s.add(SepbookLike(post_id=post.id, user_id=user.id))
    elif action == "unlike" and existing is not None:
        s.delete(existing)
    s.flush()
    post.like_count = s.query(SepbookLike).filter(SepbookLike.post_id == post.id).count()
    return {"post_id": post.id, "liked": action == "like", "like_count": post.like_count}


# ---------- Moderation ----------
def moderate(s: "Session", user: "User", payload: dict) -> dict:
    action = str(payload.get("action") or "").strip()
    moderator = can_moderate_sepbook(user)
    if action == "delete_post":
        post = _get_post(s, payload.get("post_id"))
        if not (moderator or post.user_id == user.id):
            raise Forbidden()
        entity_type, entity_id = "SepbookPost", post.id
        s.delete(post)
        out: dict = {"deleted_post_id": entity_id}
    elif action == "delete_comment":
        try:
            comment = s.get(SepbookComment, int(payload.get("comment_id")))
        except (TypeError, ValueError):
            comment = None
        if comment is None:
            raise NotFound("Comentário não encontrado.")
        if not (moderator or comment.user_id == user.id):
            raise Forbidden()
        post = _get_post(s, comment.post_id)
        entity_type, entity_id = "SepbookComment", comment.id
        s.delete(comment)
        _recount_comments(s, post)
        out = {"deleted_comment_id": entity_id, "comment_count": post.comment_count}
    else:
        raise ValidationError("Ação de moderação inválida.")
    record_event(
        s,
        actor=user,
        action=f"sepbook.{action}",
        entity_type=entity_type,
        entity_id=str(entity_id),
        metadata={"as_moderator": moderator},
    )
    return out


# ---------- Mentions ----------
def mentions_inbox(s: "Session", user: "User", *, unread_only: bool = False, limit=None) -> list[dict]:
    q = s.query(SepbookMention).filter(SepbookMention.mentioned_user_id == user.id)
    if unread_only:
        q = q.filter(SepbookMention.is_read.is_(False))
    mentions = q.order_by(SepbookMention.created_at.desc(), SepbookMention.id.desc()).limit(clamp_limit(limit, 50, 200)).all()
    posts = {
        p.id: p
        for p in s.query(SepbookPost).filter(SepbookPost.id.in_({m.post_id for m in mentions} or {0})).all()
    }
    authors = _authors(s, (p.user_id for p in posts.values()))
    out = []
    for m in mentions:
        p = posts.get(m.post_id)
        out.append(
            {
                "id": m.id,
                "post_id": m.post_id,
                "comment_id": m.comment_id,
                "is_read": m.is_read,
                "excerpt": (p.content[:200] if p else None),
                "author": _author_dict(authors.get(p.user_id)) if p else None,
                "created_at": m.created_at.isoformat() if m.created_at else None,
            }
        )
    return out


def mark_mentions_read(s: "Session", user: "User", ids: list[int] | None = None) -> int:
    q = s.query(SepbookMention).filter(
        SepbookMention.mentioned_user_id == user.id, SepbookMention.is_read.is_(False)
    )
    if ids:
        q = q.filter(SepbookMention.id.in_(ids))
    count = 0
    for m in q.all():
        m.is_read = True
        count += 1
    return count


def trending_tags(s: "Session", *, sample=None, limit=None) -> list[dict]:
    n_posts = clamp_limit(sample, 200, 1000)
    rows = (
        s.query(SepbookPost.tags_json)
        .order_by(SepbookPost.created_at.desc(), SepbookPost.id.desc())
        .limit(n_posts)
        .all()
    )
    counts: Counter = Counter()
    for (tags_json,) in rows:
        counts.update(json.loads(tags_json) if tags_json else [])
    top = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[: clamp_limit(limit, 20, 100)]
    return [{"tag": t, "count": c} for t, c in top]
