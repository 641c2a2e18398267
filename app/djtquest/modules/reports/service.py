from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func

from app.djtquest.models import User
from app.djtquest.modules.finance.models import FinanceRequest
from app.djtquest.modules.forum.models import ForumTopic
from app.djtquest.modules.quiz.models import Challenge, QuizAttempt

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def _user_stats(s: "Session") -> dict:
    users = s.query(User.tier, User.team_id).filter(User.is_active.is_(True)).all()
    by_tier_prefix: dict[str, int] = {}
    by_team: dict[str, int] = {}
    for tier, team_id in users:
        prefix = (tier or "").split("-", 1)[0] or "EX"
        by_tier_prefix[prefix] = by_tier_prefix.get(prefix, 0) + 1
        team = team_id or "(sem equipe)"
        by_team[team] = by_team.get(team, 0) + 1
    return {"total": len(users), "by_tier_prefix": by_tier_prefix, "by_team": by_team}


def _quiz_stats(s: "Session") -> dict:
    by_status = (
        s.query(Challenge.quiz_workflow_status, func.count(Challenge.id))
        .filter(Challenge.type == "quiz")
        .group_by(Challenge.quiz_workflow_status)
        .all()
    )
    completions = (
        s.query(Challenge.id, Challenge.title, func.count(QuizAttempt.id))
        .join(QuizAttempt, QuizAttempt.challenge_id == Challenge.id)
        .filter(Challenge.type == "quiz", Challenge.quiz_workflow_status == "PUBLISHED")
        .filter(QuizAttempt.submitted_at.isnot(None))
        .group_by(Challenge.id, Challenge.title)
        .order_by(func.count(QuizAttempt.id).desc())
        .all()
    )
    return {
        "by_workflow_status": {status: cnt for status, cnt in by_status},
        "published_completions": [
            {"challenge_id": cid, "title": title, "completed": cnt} for cid, title, cnt in completions
        ],
    }


def _finance_stats(s: "Session") -> dict:
    rows = s.query(FinanceRequest.status, func.count(FinanceRequest.id)).group_by(FinanceRequest.status).all()
    return {"by_status": {status: cnt for status, cnt in rows}}


def _forum_stats(s: "Session") -> dict:
    rows = dict(s.query(ForumTopic.status, func.count(ForumTopic.id)).group_by(ForumTopic.status).all())
    return {"open": rows.get("open", 0), "closed": rows.get("closed", 0)}


def overview(s: "Session") -> dict:
    """Org-wide counters for the reports dashboard."""
    return {
        "users": _user_stats(s),
        "quizzes": _quiz_stats(s),
        "finance": _finance_stats(s),
        "forum": _forum_stats(s),
    }
