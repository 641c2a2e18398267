from __future__ import annotations

import csv
import io
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.djtquest.attachments import normalize_attachment_refs
from app.djtquest.audit import record_event
from app.djtquest.constants import (
    GUEST_TEAM_ID,
    MANAGER_ROLES,
    ROLE_ADMIN,
    ROLE_FINANCE_ANALYST,
    ROLE_INVITED,
    ROLE_LIDER_EQUIPE,
)
from app.djtquest.errors import Conflict, Forbidden, NotFound, ValidationError
from app.djtquest.modules.finance.models import (
    FinanceRequest,
    FinanceRequestAttachment,
    FinanceRequestItem,
    FinanceRequestStatusHistory,
)
from app.djtquest.rbac import role_keys
from app.djtquest.utils import clamp_limit, parse_iso_date, safe_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.djtquest.models import User
    from app.djtquest.storage import Storage

logger = logging.getLogger(__name__)

FINANCE_COMPANIES = ("CPFL Piratininga", "CPFL Santa Cruz")
FINANCE_REQUEST_KINDS = ("Reembolso", "Adiantamento")
FINANCE_EXPENSE_TYPES = (
    "Transporte",
    "Quilometragem",
    "Abastecimento/Pedágio",
    "Estacionamento",
    "Almoço",
    "Jantar",
    "Hospedagem/Café da Manhã",
    "Materiais",
    "Serviços",
    "Outros",
    "Adiantamento",
)
FINANCE_COORDINATIONS = (
    "Santos",
    "Cubatão",
    "Piraju",
    "Itapetininga",
    "Sudeste",
    "Sul",
    "Planejamento",
    "DJTV (Coordenadores)",
    "DJTB (Coordenadores)",
    "DJT (Gerentes + Coordenadora)",
)
FINANCE_STATUSES = ("Enviado", "Em Análise", "Aprovado", "Reprovado", "Cancelado")
MULTIPLE_EXPENSE_TYPES = "Múltiplos"
MAX_ITEMS = 12
MAX_ATTACHMENTS = 12

EXPORT_HEADER = [
    "Protocolo",
    "Data",
    "Empresa",
    "Coordenação",
    "Tipo",
    "Despesa",
    "Solicitante",
    "E-mail",
    "Matrícula",
    "Treinamento Operacional",
    "Período",
    "Valor",
    "Status",
    "Descrição",
]

_MONEY_CLEAN_RE = re.compile(r"[^\d,.\-]")


# ---------- Money ----------
def parse_brl_to_cents(raw) -> int | None:
    """
    Parse a money string typed by a person into cents.

    '123,45' and '123.45' -> 12345; '1.234,56' and '1,234.56' -> 123456;
    '1.234' -> 123400 (a lone dot followed by three digits groups thousands); 'R$ 10' -> 1000.
    Empty, unparseable or negative input -> None.
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return round(raw * 100) if raw >= 0 else None
    s = _MONEY_CLEAN_RE.sub("", str(raw or "").strip())
    if not s or s.startswith("-"):
        return None
    if "," in s and "." in s:
        decimal_sep = "," if s.rfind(",") > s.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        s = s.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in s:
        head, _, tail = s.rpartition(",")
        if s.count(",") > 1 or len(tail) == 3:
            s = s.replace(",", "")
        else:
            s = f"{head}.{tail}"
    elif "." in s:
        head, _, tail = s.rpartition(".")
        if s.count(".") > 1 or len(tail) == 3:
            s = s.replace(".", "")
    try:
        value = float(s)
    except ValueError:
        return None
    if value != value or value < 0:
        return None
    return round(value * 100)


def format_cents_brl(cents: int | None) -> str:
    if cents is None:
        return ""
    return f"{cents // 100},{cents % 100:02d}"


# ---------- Permissions ----------
def is_guest(user: "User") -> bool:
    if ROLE_INVITED in role_keys(user):
        return True
    return any(
        str(v or "").strip().upper() == GUEST_TEAM_ID
        for v in (user.team_id, user.coord_id, user.division_id, user.operational_base)
    )


def can_manage_finance(user: "User | None") -> bool:
    if not user:
        return False
    roles = role_keys(user)
    if roles & (MANAGER_ROLES | {ROLE_LIDER_EQUIPE, ROLE_FINANCE_ANALYST}):
        return True
    return bool(user.is_leader)


def can_purge_finance(user: "User | None") -> bool:
    return ROLE_ADMIN in role_keys(user)


def _require_finance_user(user: "User") -> None:
    if is_guest(user):
        raise Forbidden("Convidados não têm acesso ao financeiro.")


def _require_manager(user: "User") -> None:
    if not can_manage_finance(user):
        raise Forbidden()


# ---------- Validation ----------
@dataclass
class FinancePayload:
    company: str
    training_operational: bool
    request_kind: str
    coordination: str
    date_start: date
    date_end: date | None
    description: str
    items: list[dict]
    attachments: list[dict]


def _parse_bool_sim_nao(raw) -> bool | None:
    if isinstance(raw, bool):
        return raw
    v = str(raw or "").strip().lower()
    if v in ("sim", "true", "1", "yes"):
        return True
    if v in ("não", "nao", "false", "0", "no"):
        return False
    return None


def validate_finance_payload(payload: dict, *, user_id: int) -> FinancePayload:
    """
    Validate a create payload and normalize it. Raises ValidationError with every problem found.

    Items are either given as payload["items"] or derived from the top-level
    expense_type/amount fields (single-item form).
    """
    errors: list[str] = []

    company = str(payload.get("company") or "").strip()
    if company not in FINANCE_COMPANIES:
        errors.append("Empresa inválida.")
    coordination = str(payload.get("coordination") or "").strip()
    if coordination not in FINANCE_COORDINATIONS:
        errors.append("Coordenação inválida.")
    training = _parse_bool_sim_nao(payload.get("training_operational"))
    if training is None:
        errors.append("Treinamento operacional deve ser 'Sim' ou 'Não'.")
    kind = str(payload.get("request_kind") or "").strip()
    if kind not in FINANCE_REQUEST_KINDS:
        errors.append("Tipo de solicitação inválido.")

    date_start = parse_iso_date(payload.get("date_start"))
    if date_start is None:
        errors.append("Data início inválida (use AAAA-MM-DD).")
    raw_end = payload.get("date_end")
    date_end = parse_iso_date(raw_end) if raw_end not in (None, "") else date_start
    if raw_end not in (None, "") and date_end is None:
        errors.append("Data fim inválida (use AAAA-MM-DD).")
    elif date_start and date_end and date_end < date_start:
        errors.append("Data Fim deve ser >= Data Início.")

    description = str(payload.get("description") or "").strip()
    if not 10 <= len(description) <= 5000:
        errors.append("Descrição deve ter entre 10 e 5000 caracteres.")

    raw_items = payload.get("items")
    if raw_items in (None, ""):
        raw_items = [
            {
                "expense_type": payload.get("expense_type"),
                "description": description,
                "amount": payload.get("amount"),
            }
        ]
    if not isinstance(raw_items, list) or not raw_items:
        errors.append("Informe pelo menos um item.")
        raw_items = []
    elif len(raw_items) > MAX_ITEMS:
        errors.append(f"Máximo de {MAX_ITEMS} itens.")

    items: list[dict] = []
    for i, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            errors.append(f"Item {i} inválido.")
            continue
        expense_type = str(raw.get("expense_type") or "").strip()
        if kind == "Adiantamento":
            expense_type = "Adiantamento"
        elif expense_type == "Adiantamento":
            errors.append(f"Item {i}: tipo Adiantamento não permitido em Reembolso.")
        elif expense_type not in FINANCE_EXPENSE_TYPES:
            errors.append(f"Item {i}: tipo de despesa inválido.")
        raw_amount = raw.get("amount")
        amount = parse_brl_to_cents(raw_amount)
        if raw_amount not in (None, "") and amount is None:
            errors.append(f"Item {i}: valor inválido.")
        elif kind == "Reembolso" and amount is None:
            errors.append(f"Item {i}: valor obrigatório.")
        items.append(
            {
                "expense_type": expense_type,
                "description": safe_text(raw.get("description"), 2000) or description[:2000],
                "amount_cents": amount,
            }
        )

    attachments: list[dict] = []
    try:
        attachments = normalize_attachment_refs(
            payload.get("attachments"), module="finance", user_id=user_id, max_items=MAX_ATTACHMENTS
        )
    except ValidationError as e:
        errors.extend(e.errors)
    if kind == "Reembolso" and not attachments:
        errors.append("Envie pelo menos 1 anexo.")
    raw_refs = payload.get("attachments") if isinstance(payload.get("attachments"), list) else []
    for ref, raw in zip(attachments, raw_refs):
        idx = raw.get("item_idx") if isinstance(raw, dict) else None
        ref["item_idx"] = int(idx) if isinstance(idx, int) and 0 <= idx < len(items) else None

    if errors:
        raise ValidationError(errors)
    return FinancePayload(
        company=company,
        training_operational=bool(training),
        request_kind=kind,
        coordination=coordination,
        date_start=date_start,  # type: ignore[arg-type]
        date_end=date_end,
        description=description,
        items=items,
        attachments=attachments,
    )


# ---------- Serialization ----------
def request_dict(r: FinanceRequest, *, detail: bool = False) -> dict:
    out = {
        "id": r.id,
        "protocol": r.protocol,
        "created_by": r.created_by,
        "created_by_name": r.created_by_name,
        "created_by_email": r.created_by_email,
        "created_by_matricula": r.created_by_matricula,
        "company": r.company,
        "training_operational": r.training_operational,
        "request_kind": r.request_kind,
        "expense_type": r.expense_type,
        "coordination": r.coordination,
        "date_start": r.date_start.isoformat() if r.date_start else None,
        "date_end": r.date_end.isoformat() if r.date_end else None,
        "description": r.description,
        "amount_cents": r.amount_cents,
        "currency": r.currency,
        "status": r.status,
        "last_observation": r.last_observation,
        "analyst_viewed_at": r.analyst_viewed_at.isoformat() if r.analyst_viewed_at else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }
    if detail:
        out["items"] = [
            {"id": i.id, "idx": i.idx, "expense_type": i.expense_type, "description": i.description, "amount_cents": i.amount_cents}
            for i in r.items
        ]
        out["attachments"] = [
            {
                "id": a.id,
                "item_id": a.item_id,
                "storage_key": a.storage_key,
                "filename": a.filename,
                "content_type": a.content_type,
                "size_bytes": a.size_bytes,
            }
            for a in r.attachments
        ]
        out["history"] = [
            {
                "id": h.id,
                "from_status": h.from_status,
                "to_status": h.to_status,
                "changed_by": h.changed_by,
                "observation": h.observation,
                "created_at": h.created_at.isoformat() if h.created_at else None,
            }
            for h in r.history
        ]
    return out


def _get_request(s: "Session", request_id) -> FinanceRequest:
    try:
        r = s.get(FinanceRequest, int(request_id))
    except (TypeError, ValueError):
        r = None
    if r is None:
        raise NotFound("Solicitação não encontrada.")
    return r


# ---------- Requester ----------
def create_request(s: "Session", user: "User", payload: dict) -> FinanceRequest:
    _require_finance_user(user)
    data = validate_finance_payload(payload, user_id=user.id)

    distinct_types = {i["expense_type"] for i in data.items}
    amounts = [i["amount_cents"] for i in data.items if i["amount_cents"] is not None]
    r = FinanceRequest(
        created_by=user.id,
        created_by_name=user.display_name,
        created_by_email=user.email,
        created_by_matricula=user.matricula,
        company=data.company,
        training_operational=data.training_operational,
        request_kind=data.request_kind,
        expense_type=distinct_types.pop() if len(distinct_types) == 1 else MULTIPLE_EXPENSE_TYPES,
        coordination=data.coordination,
        date_start=data.date_start,
        date_end=data.date_end,
        description=data.description,
        amount_cents=sum(amounts) if amounts else None,
        currency="BRL",
        status="Enviado",
    )
    for idx, item in enumerate(data.items):
        r.items.append(
            FinanceRequestItem(
                idx=idx,
                expense_type=item["expense_type"],
                description=item["description"],
                amount_cents=item["amount_cents"],
            )
        )
    r.history.append(FinanceRequestStatusHistory(changed_by=user.id, from_status=None, to_status="Enviado"))
    s.add(r)
    s.flush()

    r.protocol = f"FIN-{r.created_at.strftime('%Y%m%d')}-{r.id:06d}"
    for ref in data.attachments:
        item_idx = ref.get("item_idx")
        r.attachments.append(
            FinanceRequestAttachment(
                item_id=r.items[item_idx].id if item_idx is not None else None,
                uploaded_by=user.id,
                storage_key=ref["storage_key"],
                filename=ref["filename"],
                content_type=ref["content_type"],
                size_bytes=ref["size_bytes"],
            )
        )
    s.flush()
    record_event(
        s,
        actor=user,
        action="finance.create",
        entity_type="FinanceRequest",
        entity_id=str(r.id),
        metadata={"protocol": r.protocol, "amount_cents": r.amount_cents, "items": len(r.items)},
    )
    logger.info("finance.create id=%s protocol=%s user=%s", r.id, r.protocol, user.id)
    return r


def list_my_requests(s: "Session", user: "User", *, limit=None) -> list[FinanceRequest]:
    _require_finance_user(user)
    return (
        s.query(FinanceRequest)
        .filter(FinanceRequest.created_by == user.id)
        .order_by(FinanceRequest.created_at.desc(), FinanceRequest.id.desc())
        .limit(clamp_limit(limit, 50, 200))
        .all()
    )


def get_request(s: "Session", user: "User", request_id) -> FinanceRequest:
    r = _get_request(s, request_id)
    is_owner = r.created_by == user.id
    manager = can_manage_finance(user)
    if not (is_owner or manager):
        raise Forbidden()
    if manager and not is_owner and r.analyst_viewed_at is None:
        r.analyst_viewed_at = datetime.utcnow()
    return r


def cancel_request(s: "Session", user: "User", request_id) -> FinanceRequest:
    r = _get_request(s, request_id)
    if r.created_by != user.id:
        raise Forbidden()
    if r.status != "Enviado":
        raise Conflict("Só é possível cancelar solicitações com status Enviado.")
    observation = "Cancelado pelo usuário"
    r.history.append(
        FinanceRequestStatusHistory(changed_by=user.id, from_status=r.status, to_status="Cancelado", observation=observation)
    )
    r.status = "Cancelado"
    r.last_observation = observation
    record_event(s, actor=user, action="finance.cancel", entity_type="FinanceRequest", entity_id=str(r.id))
    return r


def _delete_storage_objects(storage: "Storage", r: FinanceRequest) -> list[str]:
    failed = storage.delete_many(a.storage_key for a in r.attachments)
    if failed:
        logger.warning("finance.delete id=%s left %d storage object(s) behind", r.id, len(failed))
    return failed


def delete_own_request(s: "Session", user: "User", request_id, *, storage: "Storage") -> dict:
    r = _get_request(s, request_id)
    if r.created_by != user.id:
        raise Forbidden()
    if r.analyst_viewed_at is not None or len(r.history) > 1:
        raise Conflict("Solicitação já foi analisada e não pode ser excluída.")
    failed = _delete_storage_objects(storage, r)
    record_event(
        s,
        actor=user,
        action="finance.delete",
        entity_type="FinanceRequest",
        entity_id=str(r.id),
        metadata={"protocol": r.protocol, "attachments": len(r.attachments)},
    )
    s.delete(r)
    return {"success": True, "storage_delete_failed": failed}


# ---------- Admin ----------
def _admin_query(s: "Session", filters: dict):
    q = s.query(FinanceRequest)
    for key in ("company", "coordination", "request_kind", "status"):
        v = str(filters.get(key) or "").strip()
        if v:
            q = q.filter(getattr(FinanceRequest, key) == v)
    text = str(filters.get("q") or "").strip().lower()
    if text:
        like = f"%{text}%"
        q = q.filter(
            or_(
                func.lower(FinanceRequest.created_by_name).like(like),
                func.lower(FinanceRequest.created_by_email).like(like),
            )
        )
    raw_from, raw_to = filters.get("date_start_from"), filters.get("date_start_to")
    d_from = parse_iso_date(raw_from) if raw_from else None
    d_to = parse_iso_date(raw_to) if raw_to else None
    if (raw_from and d_from is None) or (raw_to and d_to is None):
        raise ValidationError("Datas do filtro inválidas (use AAAA-MM-DD).")
    if d_from and d_to and d_to < d_from:
        raise ValidationError("Data final do filtro deve ser >= data inicial.")
    if d_from:
        q = q.filter(FinanceRequest.date_start >= d_from)
    if d_to:
        q = q.filter(FinanceRequest.date_start <= d_to)
    return q.order_by(FinanceRequest.created_at.desc(), FinanceRequest.id.desc())


def admin_list(s: "Session", user: "User", filters: dict) -> dict:
    _require_manager(user)
    q = _admin_query(s, filters)
    total = q.count()
    limit = clamp_limit(filters.get("limit"), 50, 200)
    try:
        offset = max(0, int(filters.get("offset") or 0))
    except (TypeError, ValueError):
        offset = 0
    items = q.offset(offset).limit(limit).all()
    return {"items": [request_dict(r) for r in items], "total": total, "limit": limit, "offset": offset}


def _export_row(r: FinanceRequest) -> list:
    period = r.date_start.isoformat() if r.date_start else ""
    if r.date_end and r.date_end != r.date_start:
        period = f"{period} a {r.date_end.isoformat()}"
    return [
        r.protocol or "",
        r.created_at.strftime("%Y-%m-%d") if r.created_at else "",
        r.company,
        r.coordination,
        r.request_kind,
        r.expense_type,
        r.created_by_name or "",
        r.created_by_email or "",
        r.created_by_matricula or "",
        "Sim" if r.training_operational else "Não",
        period,
        format_cents_brl(r.amount_cents),
        r.status,
        r.description,
    ]


def export_requests(s: "Session", user: "User", filters: dict, *, fmt: str = "csv") -> tuple[bytes, str, str]:
    """Returns (bytes, mimetype, filename)."""
    _require_manager(user)
    fmt = (fmt or "csv").strip().lower()
    if fmt not in ("csv", "xlsx"):
        raise ValidationError("Formato inválido (csv ou xlsx).")
    rows = [_export_row(r) for r in _admin_query(s, filters).all()]
    stamp = date.today().strftime("%Y%m%d")

    if fmt == "csv":
        out = io.StringIO()
        w = csv.writer(out)
        w.writerow(EXPORT_HEADER)
        w.writerows(rows)
        data = out.getvalue().encode("utf-8-sig")
        mimetype, filename = "text/csv", f"financeiro_{stamp}.csv"
    else:
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.title = "Solicitações"
        ws.append(EXPORT_HEADER)
        for row in rows:
            ws.append(row)
        buf = io.BytesIO()
        wb.save(buf)
        data = buf.getvalue()
        mimetype = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        filename = f"financeiro_{stamp}.xlsx"

    record_event(
        s,
        actor=user,
        action="finance.export",
        entity_type="FinanceRequest",
        entity_id="export",
        metadata={"format": fmt, "row_count": len(rows), "filters": {k: v for k, v in filters.items() if v}},
    )
    return data, mimetype, filename


def admin_update_status(s: "Session", user: "User", request_id, payload: dict) -> FinanceRequest:
    _require_manager(user)
    r = _get_request(s, request_id)
    status = str(payload.get("status") or "").strip()
    if status not in FINANCE_STATUSES:
        raise ValidationError("Status inválido.")
    observation = safe_text(payload.get("observation"), 2000)
    previous = r.status
    r.history.append(
        FinanceRequestStatusHistory(changed_by=user.id, from_status=previous, to_status=status, observation=observation)
    )
    r.status = status
    if observation:
        r.last_observation = observation
    if r.analyst_viewed_at is None:
        r.analyst_viewed_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="finance.status",
        entity_type="FinanceRequest",
        entity_id=str(r.id),
        reason=observation,
        metadata={"from": previous, "to": status},
    )
    return r


def admin_delete(s: "Session", user: "User", request_id, *, storage: "Storage", delete_files: bool = True) -> dict:
    if not can_purge_finance(user):
        raise Forbidden()
    r = _get_request(s, request_id)
    failed = _delete_storage_objects(storage, r) if delete_files else []
    record_event(
        s,
        actor=user,
        action="finance.purge",
        entity_type="FinanceRequest",
        entity_id=str(r.id),
        metadata={"protocol": r.protocol, "delete_files": delete_files, "storage_delete_failed": failed},
    )
    s.delete(r)
    return {"success": True, "storage_delete_failed": failed}
