#!/usr/bin/env python3
"""
Give an existing account one or more roles. Running it twice is harmless.

Usage:
  python scripts/grant_role.py fulano@cpfl.com.br content_curator
  python scripts/grant_role.py 601234 lider_equipe coordenador   # by matricula; aliases accepted
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.djtquest.constants import ROLE_NAMES  # noqa: E402
from app.djtquest.models import Role, User  # noqa: E402
from app.djtquest.rbac import normalize_role, sanitize_role_list  # noqa: E402
from app.djtquest.utils import norm_email, norm_matricula  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402


def _find_user(s, login: str) -> User | None:
    if "@" in login:
        return s.query(User).filter(User.email == norm_email(login)).one_or_none()
    matricula = norm_matricula(login)
    if not matricula:
        return None
    return s.query(User).filter(User.matricula == matricula).one_or_none()


def grant(login: str, role_keys, *, database_url: str | None = None) -> list[str]:
    if isinstance(role_keys, str):
        role_keys = [role_keys]
    keys = sanitize_role_list(role_keys)
    unknown = [r for r in role_keys if normalize_role(r) not in ROLE_NAMES]
    if unknown or not keys:
        raise SystemExit(f"Unknown role(s) {unknown or role_keys!r}; expected one of: {', '.join(ROLE_NAMES)}")
    out: list[str] = []
    with script_session(resolve_db_url(database_url)) as s:
        user = _find_user(s, login)
        if user is None:
            raise SystemExit(f"No account for {login!r}")
        for key in keys:
            role = s.query(Role).filter(Role.key == key).one_or_none()
            if role is None:
                raise SystemExit("Roles are not seeded yet; run scripts/init_db.py first.")
            if role in user.roles:
                out.append(f"{user.email} already has {key}")
                continue
            user.roles.append(role)
            out.append(f"granted {key} to {user.email}")
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description="Grant roles to an account.")
    parser.add_argument("login", help="e-mail or matricula")
    parser.add_argument("roles", nargs="*", default=["admin"], help="role keys or aliases (default: admin)")
    args = parser.parse_args()
    for line in grant(args.login.strip(), args.roles):
        print(line)


if __name__ == "__main__":
    main()
