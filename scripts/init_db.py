"""
Seed roles, permissions and the first admin account.

Safe to run repeatedly: existing rows are kept and an existing admin's password is never overwritten.

Usage:
  python scripts/init_db.py
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Allow `python scripts/init_db.py` from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.djtquest.constants import PERMISSIONS, ROLE_ADMIN, ROLE_NAMES  # noqa: E402
from app.djtquest.models import Permission, Role, User  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402


def seed_roles_and_permissions(s) -> dict[str, Role]:
    """Create every known role and permission and grant the default role/permission pairs."""
    roles: dict[str, Role] = {}
    for key, name in ROLE_NAMES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
        roles[key] = role

    for key, (name, granted_to) in PERMISSIONS.items():
        perm = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not perm:
            perm = Permission(key=key, name=name)
            s.add(perm)
        for role_key in granted_to:
            role = roles[role_key]
            if perm not in role.permissions:
                role.permissions.append(perm)
    s.flush()
    return roles


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@djtquest.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    with script_session(resolve_db_url(database_url)) as s:
        roles = seed_roles_and_permissions(s)
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrador",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
                must_change_password=True,
            )
            s.add(user)
        if roles[ROLE_ADMIN] not in user.roles:
            user.roles.append(roles[ROLE_ADMIN])

    print(f"Seeded {len(ROLE_NAMES)} roles and {len(PERMISSIONS)} permissions; admin account: {admin_email}")


def main() -> None:
    seed_only()


if __name__ == "__main__":
    main()
