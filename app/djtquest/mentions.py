"""
@mention and #hashtag handling shared by the forum and SEPBook.
"""
from __future__ import annotations

import re
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.djtquest.models import User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

MAX_MENTIONS = 40

_MENTION_RE = re.compile(r"@([A-Za-z0-9_.-]+@[A-Za-z0-9_.-]+|[A-Za-z0-9_.-]+)")
_HASHTAG_RE = re.compile(r"#([A-Za-z0-9_.-]+)")
_TRAILING_PUNCT_RE = re.compile(r"[.,;:!?_-]+$")


def _dedupe(values) -> list[str]:
    out: list[str] = []
    for v in values:
        if v and v not in out:
            out.append(v)
    return out


def extract_mentions(text) -> list[str]:
    """'oi @joao.silva, veja @ana@cpfl.com.br.' -> ['joao.silva', 'ana@cpfl.com.br']"""
    handles = (_TRAILING_PUNCT_RE.sub("", m.group(1)).lower() for m in _MENTION_RE.finditer(str(text or "")))
    return _dedupe(handles)


def extract_hashtags(text) -> list[str]:
    tags = (_TRAILING_PUNCT_RE.sub("", m.group(1)).lower() for m in _HASHTAG_RE.finditer(str(text or "")))
    return _dedupe(tags)


def resolve_mentions(s: "Session", handles: list[str], author_id: int | None) -> list[User]:
    """
    Map handles to active users. A handle matches a full e-mail or the local part of one.
    The author never mentions themself; at most MAX_MENTIONS users come back.
    """
    if not handles:
        return []
    conditions = []
    for h in handles[:MAX_MENTIONS * 2]:
        if "@" in h:
            conditions.append(func.lower(User.email) == h)
        else:
            escaped = h.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            conditions.append(func.lower(User.email).like(f"{escaped}@%", escape="\\"))
    users = s.query(User).filter(User.is_active.is_(True)).filter(or_(*conditions)).order_by(User.id.asc()).all()
    out: list[User] = []
    for u in users:
        if u.id == author_id or u in out:
            continue
        out.append(u)
        if len(out) >= MAX_MENTIONS:
            break
    return out
