import hmac
import secrets

from flask import Request, session

CSRF_HEADER = "X-CSRF-Token"
_EXEMPT_PATH_PREFIXES = ("/static/", "/health", "/healthz")
# Session bootstrap and the public sign-up form.
_EXEMPT_PATHS = ("/auth/login", "/auth/logout", "/api/registration")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def is_csrf_exempt(req: Request) -> bool:
    if req.method not in ("POST", "PUT", "PATCH", "DELETE"):
        return True
    return req.path.startswith(_EXEMPT_PATH_PREFIXES) or req.path in _EXEMPT_PATHS


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get(CSRF_HEADER) or req.form.get("csrf_token")
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and hmac.compare_digest(str(token), str(expected)))
