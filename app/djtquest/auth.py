from __future__ import annotations

import threading
import time
import uuid
from collections import deque

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.djtquest.audit import record_event
from app.djtquest.db import db_session
from app.djtquest.http import current_user, json_body
from app.djtquest.models import User
from app.djtquest.modules.gamification.service import profile_dict
from app.djtquest.rbac import require_login
from app.djtquest.security import ensure_csrf_token
from app.djtquest.utils import norm_email, norm_matricula, validate_password

bp = Blueprint("auth", __name__)


class LoginThrottle:
    """Per-process sliding window of login attempts keyed by client address."""

    def __init__(self, limit: int = 5, window_seconds: float = 300.0):
        self.limit = limit
        self.window = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        """Registers an attempt; False when the key already used up its window."""
        now = time.monotonic()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and now - hits[0] > self.window:
                hits.popleft()
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def forget(self, key: str) -> None:
        with self._lock:
            self._hits.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


login_throttle = LoginThrottle()


def _find_login_user(s, identifier: str) -> User | None:
    # Login by e-mail or matricula.
    if "@" in identifier:
        return s.query(User).filter(User.email == norm_email(identifier)).one_or_none()
    matricula = norm_matricula(identifier)
    if not matricula:
        return None
    return s.query(User).filter(User.matricula == matricula).one_or_none()


def load_current_user() -> None:
    """Tags the request with a request_id and resolves g.current_user from the session cookie."""
    g.request_id = g.get("request_id") or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return
    user_id = session.get("user_id")
    if not user_id:
        return
    user = db_session().get(User, int(user_id))
    if user is None or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/login")
def login_post():
    data = json_body()
    identifier = str(data.get("email") or data.get("login") or "").strip()
    password = str(data.get("password") or "")
    client_key = request.remote_addr or "unknown"

    if not login_throttle.hit(client_key):
        return jsonify({"error": "Muitas tentativas. Aguarde 5 minutos."}), 429

    s = db_session()
    user = _find_login_user(s, identifier)
    if user is None or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=identifier[:128] or None,
            reason="Invalid credentials",
            metadata={"login": identifier},
        )
        s.commit()
        current_app.logger.warning("Rejected login for %r (request_id=%s)", identifier, g.get("request_id"))
        return jsonify({"error": "Credenciais inválidas."}), 401

    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    login_throttle.forget(client_key)
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify(
        {
            "success": True,
            "user": profile_dict(user),
            "must_change_password": user.must_change_password,
            "csrf_token": ensure_csrf_token(),
        }
    )


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    user = g.get("current_user")
    if user is not None:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.clear()
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    return jsonify({"user": profile_dict(current_user())})


@bp.post("/change-password")
@require_login
def change_password():
    data = json_body()
    user = current_user()
    current_pw = str(data.get("current_password") or "")
    new_pw = str(data.get("new_password") or "")
    confirm = data.get("confirm_password")

    if not check_password_hash(user.password_hash, current_pw):
        return jsonify({"error": "Senha atual incorreta."}), 400
    errors = validate_password(new_pw, None if confirm is None else str(confirm))
    if errors:
        return jsonify({"error": errors[0], "errors": errors}), 400

    s = db_session()
    user.password_hash = generate_password_hash(new_pw)
    user.must_change_password = False
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify({"success": True})
