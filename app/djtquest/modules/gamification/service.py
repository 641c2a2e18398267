from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from app.djtquest.audit import record_event
from app.djtquest.constants import ROLE_COORDENADOR
from app.djtquest.errors import Conflict, Forbidden, NotFound, ValidationError
from app.djtquest.modules.gamification.tiers import (
    TIER_TRACK_NAMES,
    can_request_tier_progression,
    compute_tier_from_xp,
    get_next_prefix,
    parse_tier,
    tier_summary,
)
from app.djtquest.notifications import notify
from app.djtquest.rbac import can_manage_users
from app.djtquest.utils import build_team_scope, clamp_int, clamp_limit, norm_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User
    from app.djtquest.modules.gamification.models import TierProgressionRequest

logger = logging.getLogger(__name__)

XP_MAX = 1_000_000

# Only these people may overwrite XP by hand.
XP_ADJUST_EMAILS = frozenset(
    {
        "rodrigonasc@cpfl.com.br",
        "cveiga@cpfl.com.br",
        "rodrigoalmeida@cpfl.com.br",
        "paulo.camara@cpfl.com.br",
    }
)
XP_ADJUST_MATRICULAS = frozenset({"601555", "3005597", "866776", "2011902"})


def apply_xp(user: "User", delta: int) -> int:
    """Add (or remove) XP, floor at zero and re-derive the tier level. Returns the new XP."""
    user.xp = max(0, int(user.xp or 0) + int(delta or 0))
    user.tier = compute_tier_from_xp(user.tier, user.xp)
    return user.xp


def can_adjust_xp(user: "User | None", *, extra_emails=(), extra_matriculas=()) -> bool:
    if not user:
        return False
    email = (user.email or "").strip().lower()
    matricula = (user.matricula or "").strip()
    emails = XP_ADJUST_EMAILS | set(extra_emails or ())
    matriculas = XP_ADJUST_MATRICULAS | set(extra_matriculas or ())
    return bool((email and email in emails) or (matricula and matricula in matriculas))


def adjust_xp(
    s: "Session",
    actor: "User",
    payload: dict,
    *,
    extra_emails=(),
    extra_matriculas=(),
) -> dict:
    from app.djtquest.models import User

    if not can_adjust_xp(actor, extra_emails=extra_emails, extra_matriculas=extra_matriculas):
        logger.warning("xp.adjust denied actor=%s", actor.email if actor else None)
        raise Forbidden("Sem permissão para ajustar XP manualmente.")

    action = str(payload.get("action") or "").strip().lower()
    is_reset = action in ("reset", "zerar")
    is_set = action in ("set", "definir")
    if not is_reset and not is_set:
        raise ValidationError("action inválida (use 'set' ou 'reset').")

    target: User | None = None
    raw_user_id = payload.get("user_id")
    if raw_user_id not in (None, ""):
        try:
            target = s.get(User, int(raw_user_id))
        except (TypeError, ValueError):
            raise ValidationError("user_id inválido.")
    elif payload.get("matricula"):
        m = str(payload.get("matricula")).strip()
        target = s.query(User).filter(User.matricula == m).one_or_none()
    else:
        raise ValidationError("Informe user_id ou matricula.")
    if target is None:
        raise NotFound("Usuário alvo não encontrado.")

    if is_reset:
        new_xp = 0
    else:
        try:
            raw = float(payload.get("xp"))
        except (TypeError, ValueError):
            raise ValidationError("xp inválido.")
        if raw != raw:
            raise ValidationError("xp inválido.")
        new_xp = clamp_int(raw, 0, XP_MAX)

    previous_xp, previous_tier = target.xp, target.tier
    target.xp = new_xp
    target.tier = compute_tier_from_xp(previous_tier, new_xp)

    record_event(
        s,
        actor=actor,
        action="xp.adjust",
        entity_type="User",
        entity_id=str(target.id),
        reason=str(payload.get("reason") or "").strip()[:512] or None,
        metadata={"action": "reset" if is_reset else "set", "previous_xp": previous_xp, "new_xp": new_xp},
    )
    logger.info("xp.adjust target=%s %s -> %s by %s", target.id, previous_xp, new_xp, actor.email)
    return {
        "id": target.id,
        "name": target.name,
        "matricula": target.matricula,
        "email": target.email,
        "previous_xp": previous_xp,
        "new_xp": new_xp,
        "previous_tier": previous_tier,
        "new_tier": target.tier,
    }


def ranking(s: "Session", *, team: str | None = None, limit=None) -> list[dict]:
    from app.djtquest.models import User

    n = clamp_limit(limit, 20, 100)
    q = s.query(User).filter(User.is_active.is_(True))
    if team:
        all_team_ids = [t for (t,) in s.query(User.team_id).filter(User.team_id.isnot(None)).distinct().all()]
        scope = build_team_scope(team, all_team_ids)
        q = q.filter(User.team_id.in_(sorted(scope)))
    users = q.order_by(User.xp.desc(), User.id.asc()).limit(n).all()
    return [
        {
            "position": i + 1,
            "id": u.id,
            "name": u.display_name,
            "team_id": u.team_id,
            "xp": u.xp,
            "tier": u.tier,
        }
        for i, u in enumerate(users)
    ]


def profile_dict(user: "User") -> dict:
    from app.djtquest.rbac import can_access_studio, can_curate, role_keys

    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "matricula": user.matricula,
        "phone": user.phone,
        "date_of_birth": user.date_of_birth.isoformat() if user.date_of_birth else None,
        "team_id": user.team_id,
        "coord_id": user.coord_id,
        "division_id": user.division_id,
        "operational_base": user.operational_base,
        "xp": user.xp,
        "tier": tier_summary(user.tier, user.xp),
        "roles": sorted(role_keys(user)),
        "is_leader": user.is_leader,
        "studio_access": can_access_studio(user),
        "can_curate": can_curate(user),
        "must_change_password": user.must_change_password,
        "needs_profile_completion": user.needs_profile_completion,
    }


# ---------- Tier progression ----------
PROGRESSION_REVIEWER_ROLES = (ROLE_COORDENADOR,)


def tier_progression_dict(req: "TierProgressionRequest") -> dict:
    return {
        "id": req.id,
        "user_id": req.user_id,
        "current_tier": req.current_tier,
        "target_tier": req.target_tier,
        "status": req.status,
        "reviewed_by": req.reviewed_by_user_id,
        "reviewed_at": req.reviewed_at.isoformat() if req.reviewed_at else None,
        "review_notes": req.review_notes,
        "created_at": req.created_at.isoformat() if req.created_at else None,
    }


def request_tier_progression(s: "Session", user: "User") -> "TierProgressionRequest":
    """
    Level-5 players ask to move to level 1 of the next track. Coordinators are
    notified so they can set up the evaluation challenge; nothing changes on the
    user until a manager approves.
    """
    from app.djtquest.models import Role, User
    from app.djtquest.modules.gamification.models import TierProgressionRequest

    parsed = parse_tier(user.tier)
    if not parsed or not can_request_tier_progression(user.tier):
        raise ValidationError("É preciso estar no nível 5 para solicitar progressão de patamar.")
    prefix, _level = parsed
    next_prefix = get_next_prefix(prefix)
    if next_prefix is None:
        raise ValidationError("Você já está no patamar máximo.")

    open_req = (
        s.query(TierProgressionRequest.id)
        .filter(TierProgressionRequest.user_id == user.id, TierProgressionRequest.status == "pending")
        .first()
    )
    if open_req:
        raise Conflict("Já existe uma solicitação de progressão pendente.", code="already_pending")

    req = TierProgressionRequest(
        user_id=user.id,
        current_tier=f"{prefix}-5",
        target_tier=f"{next_prefix}-1",
        status="pending",
    )
    s.add(req)
    s.flush()

    meta = {
        "request_id": req.id,
        "user_id": user.id,
        "current_tier": req.current_tier,
        "target_tier": req.target_tier,
    }
    reviewers = (
        s.query(User)
        .join(User.roles)
        .filter(Role.key.in_(PROGRESSION_REVIEWER_ROLES), User.is_active.is_(True))
        .distinct()
        .all()
    )
    for reviewer in reviewers:
        notify(
            s,
            user_id=reviewer.id,
            type="tier_progression_request",
            title="Nova Solicitação de Progressão",
            message=(
                f"{user.display_name} solicitou progressão de {req.current_tier} para {req.target_tier}. "
                "Crie um desafio especial para avaliação."
            ),
            metadata=meta,
        )
    notify(
        s,
        user_id=user.id,
        type="tier_progression_pending",
        title="Solicitação Enviada!",
        message=f"Sua solicitação de progressão para {TIER_TRACK_NAMES[next_prefix]} foi enviada ao seu coordenador.",
        metadata={"request_id": req.id},
    )
    record_event(
        s,
        actor=user,
        action="tier.progression.request",
        entity_type="TierProgressionRequest",
        entity_id=str(req.id),
        metadata=meta,
    )
    logger.info("tier.progression.request user=%s %s -> %s", user.id, req.current_tier, req.target_tier)
    return req


def list_tier_progressions(s: "Session", actor: "User", *, status: str | None = "pending") -> list[dict]:
    from app.djtquest.modules.gamification.models import TierProgressionRequest

    if not can_manage_users(actor):
        raise Forbidden("Sem permissão para revisar progressões.")
    q = s.query(TierProgressionRequest)
    if status:
        q = q.filter(TierProgressionRequest.status == status)
    return [tier_progression_dict(r) for r in q.order_by(TierProgressionRequest.id.asc()).all()]


def review_tier_progression(s: "Session", actor: "User", request_id: int, payload: dict) -> "TierProgressionRequest":
    from app.djtquest.models import User
    from app.djtquest.modules.gamification.models import TierProgressionRequest

    if not can_manage_users(actor):
        raise Forbidden("Sem permissão para revisar progressões.")
    action = str(payload.get("action") or "").strip().lower()
    if action not in ("approve", "reject"):
        raise ValidationError("action inválida (use 'approve' ou 'reject').")
    req = s.get(TierProgressionRequest, request_id)
    if req is None:
        raise NotFound("Solicitação não encontrada.")
    if req.status != "pending":
        raise Conflict("Solicitação já revisada.", code="already_reviewed")
    target = s.get(User, req.user_id)
    if target is None:
        raise NotFound("Usuário não encontrado.")

    notes = norm_text(payload.get("notes"), 2000)
    req.status = "approved" if action == "approve" else "rejected"
    req.reviewed_by_user_id = actor.id
    req.reviewed_at = datetime.utcnow()
    req.review_notes = notes
    previous_tier = target.tier
    if action == "approve":
        # XP is kept; later XP changes re-derive the level inside the new track.
        target.tier = req.target_tier
        notify(
            s,
            user_id=target.id,
            type="tier_progression_approved",
            title="Progressão Aprovada!",
            message=f"Você agora é {TIER_TRACK_NAMES[req.target_tier[:2]]} ({req.target_tier}).",
            metadata={"request_id": req.id},
        )
    else:
        notify(
            s,
            user_id=target.id,
            type="tier_progression_rejected",
            title="Progressão não aprovada",
            message=notes or "Sua solicitação de progressão não foi aprovada desta vez.",
            metadata={"request_id": req.id},
        )
    s.flush()
    record_event(
        s,
        actor=actor,
        action=f"tier.progression.{action}",
        entity_type="TierProgressionRequest",
        entity_id=str(req.id),
        reason=notes,
        metadata={"user_id": target.id, "previous_tier": previous_tier, "new_tier": target.tier},
    )
    logger.info("tier.progression.%s request=%s by %s", action, req.id, actor.id)
    return req
