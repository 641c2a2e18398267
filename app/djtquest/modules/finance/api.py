from __future__ import annotations

import io

from flask import Blueprint, jsonify, request, send_file

from app.djtquest.db import db_session
from app.djtquest.http import current_user, get_storage, json_body
from app.djtquest.modules.finance.service import (
    FINANCE_COMPANIES,
    FINANCE_COORDINATIONS,
    FINANCE_EXPENSE_TYPES,
    FINANCE_REQUEST_KINDS,
    FINANCE_STATUSES,
    admin_delete,
    admin_list,
    admin_update_status,
    cancel_request,
    create_request,
    delete_own_request,
    export_requests,
    get_request,
    list_my_requests,
    request_dict,
)
from app.djtquest.rbac import require_login

bp = Blueprint("finance", __name__)

_ADMIN_FILTER_KEYS = (
    "company",
    "coordination",
    "request_kind",
    "status",
    "q",
    "date_start_from",
    "date_start_to",
    "limit",
    "offset",
)


def _filters() -> dict:
    return {k: request.args.get(k) for k in _ADMIN_FILTER_KEYS}


@bp.get("/options")
@require_login
def options():
    return jsonify(
        {
            "companies": list(FINANCE_COMPANIES),
            "request_kinds": list(FINANCE_REQUEST_KINDS),
            "expense_types": list(FINANCE_EXPENSE_TYPES),
            "coordinations": list(FINANCE_COORDINATIONS),
            "statuses": list(FINANCE_STATUSES),
        }
    )


# ---------- Requester ----------
@bp.get("/requests")
@require_login
def requests_list():
    s = db_session()
    items = list_my_requests(s, current_user(), limit=request.args.get("limit"))
    return jsonify({"items": [request_dict(r) for r in items]})


@bp.post("/requests")
@require_login
def requests_create():
    s = db_session()
    r = create_request(s, current_user(), json_body())
    s.commit()
    return jsonify({"success": True, "request": request_dict(r, detail=True)}), 201


@bp.get("/requests/<int:request_id>")
@require_login
def requests_get(request_id: int):
    s = db_session()
    r = get_request(s, current_user(), request_id)
    s.commit()
    return jsonify({"request": request_dict(r, detail=True)})


@bp.post("/requests/<int:request_id>/cancel")
@require_login
def requests_cancel(request_id: int):
    s = db_session()
    r = cancel_request(s, current_user(), request_id)
    s.commit()
    return jsonify({"success": True, "request": request_dict(r)})


@bp.delete("/requests/<int:request_id>")
@require_login
def requests_delete(request_id: int):
    s = db_session()
    out = delete_own_request(s, current_user(), request_id, storage=get_storage())
    s.commit()
    return jsonify(out)


# ---------- Admin ----------
@bp.get("/admin/requests")
@require_login
def admin_requests_list():
    s = db_session()
    return jsonify(admin_list(s, current_user(), _filters()))


@bp.get("/admin/requests/export")
@require_login
def admin_requests_export():
    s = db_session()
    data, mimetype, filename = export_requests(s, current_user(), _filters(), fmt=request.args.get("format") or "csv")
    s.commit()
    return send_file(io.BytesIO(data), mimetype=mimetype, as_attachment=True, download_name=filename, max_age=0)


@bp.post("/admin/requests/<int:request_id>/status")
@require_login
def admin_requests_status(request_id: int):
    s = db_session()
    r = admin_update_status(s, current_user(), request_id, json_body())
    s.commit()
    return jsonify({"success": True, "request": request_dict(r, detail=True)})


@bp.delete("/admin/requests/<int:request_id>")
@require_login
def admin_requests_delete(request_id: int):
    s = db_session()
    delete_files = (request.args.get("delete_files") or "1").strip().lower() not in ("0", "false", "no")
    out = admin_delete(s, current_user(), request_id, storage=get_storage(), delete_files=delete_files)
    s.commit()
    return jsonify(out)
