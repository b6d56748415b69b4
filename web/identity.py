"""Owner identity derived from verified bearer tokens or the Flask session."""
from __future__ import annotations

import logging

from flask import Flask, current_app, g, request, session
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from library.errors import UnauthorizedError

logger = logging.getLogger(__name__)

IDENTITY_SALT = "game-shelf-identity"
EXTENSION_KEY = "identity_verifier"
SESSION_USER_KEY = "user_id"


class IdentityVerifier:
    """Issue and verify signed identity tokens.

    Tokens are minted by the identity provider with the shared secret; the
    collection API only ever trusts the ``sub`` claim of a valid token.
    """

    def __init__(self, secret: str, *, max_age: int | None = None) -> None:
        if not secret:
            raise ValueError("identity secret must not be empty")
        self._serializer = URLSafeTimedSerializer(secret, salt=IDENTITY_SALT)
        self._max_age = max_age

    def issue(self, owner_id: str) -> str:
        return self._serializer.dumps({"sub": str(owner_id)})

    def verify(self, token: str) -> str | None:
        try:
            payload = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired:
            logger.info("Rejected expired identity token")
            return None
        except BadSignature:
            logger.warning("Rejected identity token with a bad signature")
            return None
        if not isinstance(payload, dict):
            return None
        subject = str(payload.get("sub") or "").strip()
        return subject or None


def init_identity(flask_app: Flask, verifier: IdentityVerifier) -> None:
    flask_app.extensions[EXTENSION_KEY] = verifier


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def current_owner_id() -> str | None:
    """Return the verified owner for this request, or ``None``."""

    if "owner_id" in g:
        return g.owner_id
    owner_id: str | None = None
    token = _bearer_token()
    if token:
        verifier: IdentityVerifier | None = current_app.extensions.get(EXTENSION_KEY)
        if verifier is None:
            raise RuntimeError("identity verifier is not configured")
        owner_id = verifier.verify(token)
    if owner_id is None:
        session_owner = session.get(SESSION_USER_KEY)
        if session_owner:
            owner_id = str(session_owner)
    g.owner_id = owner_id
    return owner_id


def require_owner_id() -> str:
    owner_id = current_owner_id()
    if not owner_id:
        raise UnauthorizedError()
    return owner_id


__all__ = [
    "IdentityVerifier",
    "current_owner_id",
    "init_identity",
    "require_owner_id",
]
