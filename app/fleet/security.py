import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"


def new_token(nbytes: int = 32) -> str:
    """URL-safe random token for CSRF, password reset and invite links."""
    return secrets.token_urlsafe(nbytes)


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = new_token()
        session[CSRF_SESSION_KEY] = token
    return token


def submitted_csrf_token(req: Request) -> str | None:
    """The token a client sent: header first (fetch/XHR), then form field, then JSON body."""
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        body = req.get_json(silent=True)
        if isinstance(body, dict):
            token = body.get(CSRF_SESSION_KEY)
    return token


def validate_csrf(req: Request) -> bool:
    token = submitted_csrf_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
