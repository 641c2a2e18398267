"""
Public sign-up requests and their review by leaders and managers.

A registration is reviewed only by someone whose org scope covers its sigla;
CONVIDADOS (external guest) requests are visible to every reviewer.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_
from werkzeug.security import generate_password_hash

from app.djtquest.audit import record_event
from app.djtquest.constants import (
    GUEST_TEAM_ID,
    REGISTRATION_TEAMS,
    ROLE_ADMIN,
    ROLE_COLABORADOR,
    ROLE_CONTENT_CURATOR,
    ROLE_COORDENADOR,
    ROLE_GERENTE_DIVISAO,
    ROLE_GERENTE_DJT,
    ROLE_INVITED,
    ROLE_LIDER_EQUIPE,
    ROLE_NAMES,
    TEAM_ALIASES,
)
from app.djtquest.errors import Conflict, Forbidden, NotFound, ValidationError
from app.djtquest.models import Role, User
from app.djtquest.modules.registration.models import PendingRegistration
from app.djtquest.rbac import role_keys
from app.djtquest.utils import (
    derive_org,
    is_valid_email,
    norm_email,
    norm_matricula,
    norm_team_code,
    norm_text,
    normalize_phone,
    parse_iso_date,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DUPLICATE_NOTE = "Solicitação duplicada (mesmo e-mail). Mantida a mais recente."
PENDING_LIST_LIMIT = 500

# Highest role wins.
_EFFECTIVE_ROLE_ORDER = (ROLE_ADMIN, ROLE_GERENTE_DJT, ROLE_GERENTE_DIVISAO, ROLE_COORDENADOR)


def normalize_sigla(raw) -> str | None:
    sigla = norm_team_code(raw)
    if not sigla:
        return None
    return TEAM_ALIASES.get(sigla, sigla)


def registration_options() -> dict:
    return {"teams": list(REGISTRATION_TEAMS), "guest_team_id": GUEST_TEAM_ID}


def registration_dict(r: PendingRegistration) -> dict:
    return {
        "id": r.id,
        "name": r.name,
        "email": r.email,
        "matricula": r.matricula,
        "telefone": r.telefone,
        "sigla_area": r.sigla_area,
        "operational_base": r.operational_base,
        "date_of_birth": r.date_of_birth.isoformat() if r.date_of_birth else None,
        "status": r.status,
        "reviewed_by": r.reviewed_by_user_id,
        "reviewed_at": r.reviewed_at.isoformat() if r.reviewed_at else None,
        "review_notes": r.review_notes,
        "created_user_id": r.created_user_id,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


# ---------- Sign-up ----------
def register(s: "Session", payload: dict) -> dict:
    errors: list[str] = []
    name = norm_text(payload.get("name"), 100)
    email = norm_email(payload.get("email"))
    matricula = norm_matricula(payload.get("matricula"))
    sigla = normalize_sigla(payload.get("sigla_area"))
    operational_base = norm_text(payload.get("operational_base"), 100)

    if not name:
        errors.append("Nome é obrigatório.")
    if not email or not is_valid_email(email):
        errors.append("Email inválido.")
    if not sigla:
        errors.append("Equipe/Sigla é obrigatória.")
    elif sigla not in REGISTRATION_TEAMS:
        errors.append("Equipe/Sigla inválida.")
    if sigla == GUEST_TEAM_ID:
        operational_base = GUEST_TEAM_ID
    elif not operational_base:
        errors.append("Base operacional é obrigatória.")

    telefone = None
    if norm_text(payload.get("telefone")):
        telefone = normalize_phone(payload.get("telefone"))
        if not telefone:
            errors.append("Telefone inválido.")
    date_of_birth = None
    if norm_text(payload.get("date_of_birth")):
        date_of_birth = parse_iso_date(payload.get("date_of_birth"))
        if not date_of_birth:
            errors.append("Data de nascimento inválida (use AAAA-MM-DD).")
    if errors:
        raise ValidationError(errors)

    existing = s.query(User.id).filter(func.lower(User.email) == email)
    if matricula:
        existing = s.query(User.id).filter(or_(func.lower(User.email) == email, User.matricula == matricula))
    if existing.first():
        raise Conflict("Já existe uma conta para este e-mail ou matrícula.", code="already_has_account")

    fields = {
        "name": name,
        "email": email,
        "matricula": matricula,
        "telefone": telefone,
        "sigla_area": sigla,
        "operational_base": operational_base,
        "date_of_birth": date_of_birth,
    }
    pending = (
        s.query(PendingRegistration)
        .filter(PendingRegistration.email == email, PendingRegistration.status == "pending")
        .order_by(PendingRegistration.created_at.desc(), PendingRegistration.id.desc())
        .all()
    )
    if pending:
        keep, duplicates = pending[0], pending[1:]
        for key, value in fields.items():
            setattr(keep, key, value)
        now = datetime.utcnow()
        for dup in duplicates:
            dup.status = "rejected"
            dup.review_notes = DUPLICATE_NOTE
            dup.reviewed_at = now
        s.flush()
        if duplicates:
            logger.info("Registration %s refreshed; %d older duplicate(s) rejected", keep.id, len(duplicates))
        return {"id": keep.id, "already_pending": True}

    reg = PendingRegistration(status="pending", **fields)
    s.add(reg)
    s.flush()
    return {"id": reg.id, "already_pending": False}


# ---------- Review scope ----------
@dataclass(frozen=True)
class ReviewScope:
    effective_role: str | None
    team_id: str | None
    coord_id: str | None
    division_id: str | None


def review_scope(user: User) -> ReviewScope:
    roles = role_keys(user)
    effective = next((r for r in _EFFECTIVE_ROLE_ORDER if r in roles), None)
    if effective is None and (ROLE_LIDER_EQUIPE in roles or user.is_leader):
        effective = ROLE_LIDER_EQUIPE

    team_id = (user.team_id or "").upper() or norm_team_code(user.operational_base)
    coord_id = (user.coord_id or "").upper() or None
    division_id = (user.division_id or "").upper() or None
    if team_id and not (coord_id and division_id):
        org = derive_org(team_id)
        if org:
            division_id = division_id or org[0]
            coord_id = coord_id or org[1]
    return ReviewScope(effective, team_id or None, coord_id, division_id)


def in_scope(sigla_raw, scope: ReviewScope) -> bool:
    sigla = str(sigla_raw or "").strip().upper()
    if not sigla:
        return False
    if sigla in (GUEST_TEAM_ID, "EXTERNO"):
        return True
    role = scope.effective_role
    if role in (ROLE_ADMIN, ROLE_GERENTE_DJT):
        return True
    div, coord, team = scope.division_id, scope.coord_id, scope.team_id
    if role == ROLE_GERENTE_DIVISAO:
        return bool(div) and sigla.startswith(div)
    if role == ROLE_COORDENADOR:
        return (
            (bool(div) and sigla.startswith(div))
            or (bool(coord) and sigla.startswith(coord))
            or (bool(team) and sigla == team)
        )
    if role == ROLE_LIDER_EQUIPE:
        return bool(team) and sigla == team
    return False


def list_pending(s: "Session", actor: User, *, status: str | None = "pending") -> list[dict]:
    scope = review_scope(actor)
    if scope.effective_role is None:
        raise Forbidden("Sem permissão para revisar cadastros.")
    q = s.query(PendingRegistration)
    if status:
        q = q.filter(PendingRegistration.status == status)
    rows = q.order_by(PendingRegistration.created_at.desc()).limit(PENDING_LIST_LIMIT).all()
    return [registration_dict(r) for r in rows if in_scope(r.sigla_area, scope)]


def _load_reviewable(s: "Session", actor: User, registration_id: int) -> PendingRegistration:
    reg = s.get(PendingRegistration, registration_id)
    if not reg or reg.status != "pending":
        raise NotFound("Cadastro não encontrado ou já processado.")
    scope = review_scope(actor)
    if scope.effective_role is None or not in_scope(reg.sigla_area, scope):
        raise Forbidden("Fora do escopo.")
    return reg


def _get_or_create_role(s: "Session", key: str) -> Role:
    role = s.query(Role).filter(Role.key == key).one_or_none()
    if role is None:
        role = Role(key=key, name=ROLE_NAMES.get(key, key))
        s.add(role)
        s.flush()
    return role


# ---------- Decisions ----------
def approve(s: "Session", actor: User, registration_id: int, payload: dict, *, default_password: str) -> User:
    reg = _load_reviewable(s, actor, registration_id)
    if not reg.date_of_birth:
        raise ValidationError("Data de nascimento é obrigatória para aprovar o cadastro.")

    sigla = reg.sigla_area
    if norm_text(payload.get("sigla_area")):
        sigla = normalize_sigla(payload.get("sigla_area"))
        if sigla not in REGISTRATION_TEAMS:
            raise ValidationError("Equipe/Sigla inválida.")
    operational_base = norm_text(payload.get("operational_base"), 100) or reg.operational_base
    force_guest = bool(payload.get("force_guest"))
    is_guest = force_guest or sigla == GUEST_TEAM_ID

    if s.query(User.id).filter(func.lower(User.email) == reg.email).first():
        raise Conflict("Já existe um perfil ativo com este e-mail.", code="already_has_account")
    if reg.matricula and s.query(User.id).filter(User.matricula == reg.matricula).first():
        raise Conflict("Já existe um perfil com esta matrícula.", code="already_has_account")

    user = User(
        email=reg.email,
        password_hash=generate_password_hash(default_password),
        name=reg.name,
        matricula=reg.matricula,
        phone=reg.telefone,
        date_of_birth=reg.date_of_birth,
        must_change_password=True,
        needs_profile_completion=True,
        is_active=True,
    )
    if is_guest:
        user.team_id = GUEST_TEAM_ID
        user.operational_base = GUEST_TEAM_ID
    else:
        org = derive_org(sigla or operational_base)
        if org:
            user.division_id, user.coord_id, user.team_id = org
        user.operational_base = operational_base
    s.add(user)
    s.flush()

    role_list = [ROLE_INVITED if is_guest else ROLE_COLABORADOR]
    if payload.get("assign_content_curator"):
        role_list.append(ROLE_CONTENT_CURATOR)
    for key in role_list:
        user.roles.append(_get_or_create_role(s, key))

    reg.status = "approved"
    reg.reviewed_by_user_id = actor.id
    reg.reviewed_at = datetime.utcnow()
    reg.review_notes = norm_text(payload.get("notes"), 2000)
    reg.created_user_id = user.id
    if sigla != reg.sigla_area:
        reg.sigla_area = sigla
    s.flush()

    record_event(
        s,
        actor=actor,
        action="registration.approve",
        entity_type="PendingRegistration",
        entity_id=str(reg.id),
        metadata={"user_id": user.id, "email": user.email, "roles": role_list, "team_id": user.team_id},
    )
    logger.info("Registration %s approved by user %s (new user %s)", reg.id, actor.id, user.id)
    return user


def reject(s: "Session", actor: User, registration_id: int, payload: dict) -> PendingRegistration:
    reg = _load_reviewable(s, actor, registration_id)
    notes = norm_text(payload.get("notes"), 2000)
    reg.status = "rejected"
    reg.reviewed_by_user_id = actor.id
    reg.reviewed_at = datetime.utcnow()
    reg.review_notes = notes
    s.flush()
    record_event(
        s,
        actor=actor,
        action="registration.reject",
        entity_type="PendingRegistration",
        entity_id=str(reg.id),
        reason=notes,
        metadata={"email": reg.email},
    )
    return reg
