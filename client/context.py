"""Credentials and owner identity carried by every client call."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ClientContext:
    """Identity for one signed-in user.

    ``owner_id`` is the identifier the identity service verified for
    ``token``; the server derives the owner from the token itself, the local
    copy is only used to label speculative records.
    """

    owner_id: str
    token: str = ''
    base_url: str = ''

    def auth_headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {'Authorization': f'Bearer {self.token}'}

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"


__all__ = ['ClientContext']
