"""
Tier ladder: three tracks (EX -> FO -> GU), five levels each, XP thresholds per level.
"""
from __future__ import annotations

import re

TIER_PREFIXES = ("EX", "FO", "GU")
DEFAULT_TIER = "EX-1"

TIER_THRESHOLDS: dict[str, tuple[int, ...]] = {
    "EX": (0, 300, 700, 1200, 1800),
    "FO": (0, 400, 900, 1500, 2200),
    "GU": (0, 500, 1100, 1800, 2600),
}

TIER_TRACK_NAMES = {"EX": "Executor", "FO": "Formador", "GU": "Guardião"}

TIER_LEVEL_NAMES: dict[str, tuple[str, ...]] = {
    "EX": ("Executor Base", "Executor Seguro", "Executor Ágil", "Executor Preciso", "Executor de Excelência"),
    "FO": ("Formador Base", "Formador Seguro", "Formador Facilitador", "Formador Mentor", "Formador Multiplicador"),
    "GU": ("Guardião Base", "Guardião Vigilante", "Guardião Integrador", "Guardião Interdependente", "Guardião Embaixador"),
}

_NEXT_PREFIX = {"EX": "FO", "FO": "GU"}
_TIER_RE = re.compile(r"^(EX|FO|GU)\s*-\s*([1-5])$", re.IGNORECASE)


def parse_tier(code) -> tuple[str, int] | None:
    m = _TIER_RE.match(str(code or "").strip())
    if not m:
        return None
    return m.group(1).upper(), int(m.group(2))


def _clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


def compute_tier_from_xp(current_tier, xp: int) -> str:
    """Level follows XP inside the user's current track; the track itself only changes by promotion."""
    parsed = parse_tier(current_tier)
    prefix = parsed[0] if parsed else "EX"
    thresholds = TIER_THRESHOLDS[prefix]
    xp = max(0, int(xp or 0))
    level = 1
    for idx, min_xp in enumerate(thresholds):
        if xp >= min_xp:
            level = idx + 1
    return f"{prefix}-{level}"


def xp_needed_to_advance_tier_steps(current_tier, xp: int, steps: int) -> int:
    parsed = parse_tier(current_tier) or ("EX", 1)
    prefix, level = parsed
    target = _clamp(level + int(steps or 0), 1, 5)
    return max(0, TIER_THRESHOLDS[prefix][target - 1] - max(0, int(xp or 0)))


def get_tier_info(code) -> dict | None:
    parsed = parse_tier(code)
    if not parsed:
        return None
    prefix, level = parsed
    thresholds = TIER_THRESHOLDS[prefix]
    return {
        "code": f"{prefix}-{level}",
        "prefix": prefix,
        "track": TIER_TRACK_NAMES[prefix],
        "level": level,
        "name": TIER_LEVEL_NAMES[prefix][level - 1],
        "xp_min": thresholds[level - 1],
        "xp_max": thresholds[level] - 1 if level < 5 else None,
    }


def get_next_tier_level(code, xp: int) -> dict | None:
    parsed = parse_tier(code)
    if not parsed:
        return None
    prefix, level = parsed
    if level >= 5:
        return None
    nxt = dict(get_tier_info(f"{prefix}-{level + 1}") or {})
    nxt["xp_needed"] = nxt["xp_min"] - int(xp or 0)
    return nxt


def get_next_prefix(prefix: str) -> str | None:
    return _NEXT_PREFIX.get((prefix or "").upper())


def can_request_tier_progression(code) -> bool:
    parsed = parse_tier(code)
    return bool(parsed and parsed[1] == 5)


def tier_progress(code, xp: int) -> int:
    info = get_tier_info(code)
    if not info or info["xp_max"] is None:
        return 100
    span = (info["xp_max"] + 1) - info["xp_min"]
    done = max(0, int(xp or 0) - info["xp_min"])
    return max(0, min(100, round(done * 100 / span)))


def tier_summary(code, xp: int) -> dict:
    info = get_tier_info(code) or get_tier_info(DEFAULT_TIER) or {}
    return {
        **info,
        "progress": tier_progress(info["code"], xp),
        "next": get_next_tier_level(info["code"], xp),
        "next_track": get_next_prefix(info["prefix"]),
        "can_request_progression": can_request_tier_progression(info["code"]),
    }
