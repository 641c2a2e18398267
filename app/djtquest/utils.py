from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable
from datetime import date

from app.djtquest.constants import TEAM_SCOPE_EXTRAS

_WS_RE = re.compile(r"\s+")
_NON_TEAM_RE = re.compile(r"[^A-Z0-9-]")
_DASHES_RE = re.compile(r"-+")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def norm_text(value, max_len: int = 255) -> str | None:
    s = _WS_RE.sub(" ", str(value or "")).strip()
    if not s:
        return None
    return s[:max_len]


def norm_email(value) -> str:
    return str(value or "").strip().lower()


def norm_matricula(value) -> str | None:
    digits = re.sub(r"\D+", "", str(value or ""))
    return digits or None


def norm_team_code(value) -> str | None:
    s = _NON_TEAM_RE.sub("-", str(value or "").strip().upper())
    s = _DASHES_RE.sub("-", s).strip("-")
    return s or None


def derive_org(sigla) -> tuple[str, str, str] | None:
    """
    Split a sigla like "DJTB-CUB" into (division, coordination, team).
    A bare division ("DJTV") gets the "SEDE" coordination.
    """
    team = norm_team_code(sigla)
    if not team:
        return None
    parts = [p for p in team.split("-") if p]
    division = parts[0] if parts else "DJT"
    coord_tag = parts[1] if len(parts) > 1 else "SEDE"
    return division, f"{division}-{coord_tag}", team


def build_team_scope(base_team_id, all_team_ids: Iterable[str]) -> set[str]:
    base = str(base_team_id or "").strip().upper()
    scope: set[str] = set()
    if not base:
        return scope
    scope.add(base)
    prefix = f"{base}-"
    for team_id in all_team_ids or ():
        normalized = str(team_id or "").strip().upper()
        if normalized.startswith(prefix):
            scope.add(normalized)
    for extra in TEAM_SCOPE_EXTRAS.get(base, ()):
        scope.add(extra)
    return scope


def parse_iso_date(value) -> date | None:
    """Strict YYYY-MM-DD; returns None for empty or malformed input."""
    s = str(value or "").strip()
    if not s or not _ISO_DATE_RE.match(s):
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def clamp_int(value, lo: int, hi: int, default: int | None = None) -> int:
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        if default is None:
            return lo
        return default
    return max(lo, min(hi, n))


def clamp_limit(value, default: int = 50, max_value: int = 200) -> int:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    if n != n or n <= 0:  # NaN or non-positive
        return default
    return max(1, min(max_value, int(n)))


def safe_text(value, max_len: int = 2000) -> str | None:
    s = str(value if value is not None else "").strip()
    if not s:
        return None
    return s[:max_len]


# Phone numbers: +CC AA XXXXX-XXXX (Brazilian mobile layout, any 1-3 digit country code).
def normalize_phone(raw) -> str | None:
    text = str(raw or "").strip()
    digits = re.sub(r"\D+", "", text)
    if not digits:
        return None
    if not text.startswith("+") and len(digits) == 11:
        digits = f"55{digits}"
    country_len = len(digits) - 11
    if country_len < 1 or country_len > 3:
        return None
    country = digits[:country_len]
    area = digits[country_len:country_len + 2]
    subscriber = digits[country_len + 2:]
    if len(area) != 2 or len(subscriber) != 9:
        return None
    return f"+{country} {area} {subscriber[:5]}-{subscriber[5:]}"


PASSWORD_MIN_LENGTH = 8


def validate_password(password: str, confirm: str | None = None) -> list[str]:
    errors: list[str] = []
    pw = password or ""
    if len(pw) < PASSWORD_MIN_LENGTH:
        errors.append(f"A senha deve ter pelo menos {PASSWORD_MIN_LENGTH} caracteres.")
    if pw == "123456":
        errors.append("A senha padrão não pode ser reutilizada.")
    if not re.search(r"[a-z]", pw):
        errors.append("A senha deve conter uma letra minúscula.")
    if not re.search(r"[A-Z]", pw):
        errors.append("A senha deve conter uma letra maiúscula.")
    if not re.search(r"\d", pw):
        errors.append("A senha deve conter um número.")
    if confirm is not None and confirm != pw:
        errors.append("As senhas não conferem.")
    return errors


def strip_accents(value: str) -> str:
    nfkd = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in nfkd if unicodedata.category(ch) != "Mn")


# Hashtags
HASHTAG_STOPWORDS = frozenset(
    {
        "de", "da", "do", "das", "dos", "e", "a", "o", "as", "os", "em", "no", "na", "nos", "nas",
        "para", "por", "com", "sem",
        "and", "or", "of", "the", "to", "in", "on", "for",
    }
)


def normalize_hashtag(raw) -> str:
    return str(raw or "").strip().lstrip("#").strip().lower()


def split_hashtag_path(raw) -> list[str]:
    """
    "#seguranca/epi/luvas" -> ["seguranca", "epi", "luvas"].
    At most three levels; the remainder is joined into the third.
    """
    tag = normalize_hashtag(raw)
    if not tag:
        return []
    delimiter = next((d for d in ("/", ":", ">", ".") if d in tag), None)
    parts = tag.split(delimiter) if delimiter else re.split(r"[_-]+", tag)
    filtered = [p.strip() for p in parts if p.strip() and p.strip() not in HASHTAG_STOPWORDS]
    if not filtered:
        return [tag]
    if len(filtered) <= 3:
        return filtered
    return [filtered[0], filtered[1], "_".join(filtered[2:])]


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_valid_email(value) -> bool:
    return bool(_EMAIL_RE.match(str(value or "").strip()))
