from __future__ import annotations

from flask import current_app, g, request

from app.djtquest.models import User
from app.djtquest.storage import Storage, storage_from_config


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def json_body() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    # Multipart/form posts (imports, uploads) carry their fields in request.form.
    return request.form.to_dict() if request.form else {}


def get_storage() -> Storage:
    return storage_from_config(current_app.config)
