from flask import Blueprint, jsonify, request

from app.djtquest.attachments import store_uploads
from app.djtquest.db import db_session
from app.djtquest.errors import ValidationError
from app.djtquest.http import current_user, get_storage, json_body
from app.djtquest.notifications import list_notifications, mark_read, notification_to_dict
from app.djtquest.rbac import require_login

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.post("/api/uploads")
@require_login
def upload():
    files = request.files.getlist("file")
    if not files:
        raise ValidationError("Nenhum arquivo enviado.")
    if len(files) > 12:
        raise ValidationError("Máximo de 12 anexos.")
    module = (request.form.get("module") or "").strip().lower()
    storage = get_storage()
    user = current_user()
    out = store_uploads(
        storage,
        module=module,
        user_id=user.id,
        files=[(f.filename or "", f.read(), f.mimetype) for f in files],
    )
    return jsonify({"attachments": out}), 201


@bp.get("/api/notifications")
@require_login
def notifications_list():
    s = db_session()
    unread_only = (request.args.get("unread") or "").strip() in ("1", "true")
    items = list_notifications(s, current_user().id, unread_only=unread_only)
    return jsonify({"items": [notification_to_dict(n) for n in items]})


@bp.post("/api/notifications/read")
@require_login
def notifications_read():
    s = db_session()
    raw_ids = json_body().get("ids")
    ids = [int(i) for i in raw_ids if str(i).isdigit()] if isinstance(raw_ids, list) else None
    count = mark_read(s, current_user().id, ids)
    s.commit()
    return jsonify({"success": True, "updated": count})
