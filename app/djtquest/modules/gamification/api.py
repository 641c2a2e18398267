from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.modules.gamification.service import (
    adjust_xp,
    list_tier_progressions,
    request_tier_progression,
    review_tier_progression,
    tier_progression_dict,
)
from app.djtquest.modules.gamification.tiers import TIER_LEVEL_NAMES, TIER_THRESHOLDS
from app.djtquest.rbac import require_login

bp = Blueprint("gamification", __name__)


@bp.post("/xp-adjust")
@require_login
def xp_adjust():
    s = db_session()
    result = adjust_xp(
        s,
        current_user(),
        json_body(),
        extra_emails=current_app.config.get("XP_ADJUST_ALLOWED_EMAILS") or (),
        extra_matriculas=current_app.config.get("XP_ADJUST_ALLOWED_MATRICULAS") or (),
    )
    s.commit()
    return jsonify({"success": True, "user": result})


@bp.get("/tiers")
def tiers():
    return jsonify(
        {
            prefix: [
                {"code": f"{prefix}-{i + 1}", "name": TIER_LEVEL_NAMES[prefix][i], "xp_min": xp_min}
                for i, xp_min in enumerate(thresholds)
            ]
            for prefix, thresholds in TIER_THRESHOLDS.items()
        }
    )


@bp.post("/tier-progression")
@require_login
def tier_progression_request():
    s = db_session()
    req = request_tier_progression(s, current_user())
    s.commit()
    return jsonify({"success": True, "request": tier_progression_dict(req)}), 201


@bp.get("/tier-progression")
@require_login
def tier_progression_list():
    status = request.args.get("status", "pending")
    rows = list_tier_progressions(db_session(), current_user(), status=None if status == "all" else status)
    return jsonify({"requests": rows})


@bp.post("/tier-progression/<int:request_id>/review")
@require_login
def tier_progression_review(request_id: int):
    s = db_session()
    req = review_tier_progression(s, current_user(), request_id, json_body())
    s.commit()
    return jsonify({"success": True, "request": tier_progression_dict(req)})
