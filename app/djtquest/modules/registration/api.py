from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.gamification.service import profile_dict
from app.djtquest.modules.registration.service import (
    approve,
    list_pending,
    register,
    registration_dict,
    registration_options,
    reject,
)
from app.djtquest.rbac import require_permission

bp = Blueprint("registration", __name__)


@bp.post("")
def registration_create():
    s = db_session()
    out = register(s, json_body())
    s.commit()
    return jsonify({"success": True, **out}), 200 if out["already_pending"] else 201


@bp.get("/options")
def registration_options_get():
    return jsonify(registration_options())


@bp.get("/pending")
@require_permission("registrations.review")
def registration_pending():
    s = db_session()
    status = (request.args.get("status") or "pending").strip() or None
    if status == "all":
        status = None
    return jsonify({"success": True, "registrations": list_pending(s, current_user(), status=status)})


@bp.post("/<int:registration_id>/approve")
@require_permission("registrations.review")
def registration_approve(registration_id: int):
    s = db_session()
    user = approve(
        s,
        current_user(),
        registration_id,
        json_body(),
        default_password=current_app.config.get("DEFAULT_USER_PASSWORD") or "123456",
    )
    s.commit()
    return jsonify({"success": True, "userId": user.id, "user": profile_dict(user)})


@bp.post("/<int:registration_id>/reject")
@require_permission("registrations.review")
def registration_reject(registration_id: int):
    s = db_session()
    reg = reject(s, current_user(), registration_id, json_body())
    s.commit()
    return jsonify({"success": True, "registration": registration_dict(reg)})
