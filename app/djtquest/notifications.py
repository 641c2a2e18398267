from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app.djtquest.models import Notification


def notify(
    s: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Notification:
    n = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
    )
    s.add(n)
    return n


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "metadata": json.loads(n.metadata_json) if n.metadata_json else None,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def list_notifications(s: Session, user_id: int, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = s.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read_at.is_(None))
    return q.order_by(Notification.id.desc()).limit(limit).all()


def mark_read(s: Session, user_id: int, ids: list[int] | None = None) -> int:
    q = s.query(Notification).filter(Notification.user_id == user_id, Notification.read_at.is_(None))
    if ids:
        q = q.filter(Notification.id.in_(ids))
    now = datetime.utcnow()
    count = 0
    for n in q.all():
        n.read_at = now
        count += 1
    return count
