"""
Append-only audit trail.

Services call `record_event` inside their own session so the event commits (or rolls back)
together with the change it describes.
"""
from __future__ import annotations

import json
from typing import Any

from flask import g, has_app_context, has_request_context, request
from sqlalchemy.orm import Session

from app.djtquest.models import AuditEvent, User


def _request_origin() -> tuple[str | None, str | None]:
    """(request_id, client_ip) for the current request; both None in scripts and tests."""
    rid = g.get("request_id") if has_app_context() else None
    if not has_request_context():
        return rid, None
    forwarded = (request.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
    return rid, forwarded or request.remote_addr


def _encode_metadata(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    return json.dumps(metadata, sort_keys=True, ensure_ascii=False, default=str)


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: int | str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    rid, client_ip = _request_origin()
    event = AuditEvent(
        request_id=request_id or rid,
        actor_user_id=actor.id if actor is not None else None,
        actor_user_email=actor.email if actor is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        reason=reason,
        metadata_json=_encode_metadata(metadata),
        client_ip=client_ip,
    )
    s.add(event)
    return event
