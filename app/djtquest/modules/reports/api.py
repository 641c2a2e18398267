from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.modules.gamification.service import ranking
from app.djtquest.modules.reports.service import overview
from app.djtquest.rbac import require_login, require_permission

bp = Blueprint("reports", __name__)


@bp.get("/overview")
@require_permission("reports.view")
def reports_overview():
    s = db_session()
    return jsonify(overview(s))


@bp.get("/ranking")
@require_login
def reports_ranking():
    s = db_session()
    team = (request.args.get("team") or "").strip() or None
    return jsonify({"items": ranking(s, team=team, limit=request.args.get("limit"))})
