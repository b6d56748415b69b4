"""Synchronous HTTP client for the games and shared-library endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Mapping
from urllib.error import HTTPError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from client.context import ClientContext
from library.errors import (
    LibraryError,
    NotFoundError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from library.models import GameEntry, GamePatch

logger = logging.getLogger(__name__)

_ERRORS_BY_STATUS: dict[int, type[LibraryError]] = {
    400: ValidationError,
    401: UnauthorizedError,
    404: NotFoundError,
}


class LibraryAPIClient:
    """Call the collection API with the credential carried by a :class:`ClientContext`."""

    GAMES_PATH = '/api/games'
    SHARES_PATH = '/api/shared-library'

    def __init__(
        self,
        context: ClientContext,
        *,
        timeout: float = 15.0,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self._context = context
        self._timeout = timeout
        self._opener = opener or urlopen

    @property
    def context(self) -> ClientContext:
        return self._context

    def list_games(self) -> list[GameEntry]:
        payload = self._request_json('GET', self.GAMES_PATH)
        if not isinstance(payload, list):
            raise UpstreamError('unexpected games payload')
        return [GameEntry.from_dict(item) for item in payload if isinstance(item, Mapping)]

    def create_game(self, patch: GamePatch) -> GameEntry:
        payload = self._request_json('POST', self.GAMES_PATH, body=patch.to_payload())
        return GameEntry.from_dict(payload)

    def update_game(self, entry_id: str, patch: GamePatch) -> GameEntry:
        path = f"{self.GAMES_PATH}/{quote(entry_id, safe='')}"
        payload = self._request_json('PUT', path, body=patch.to_payload())
        return GameEntry.from_dict(payload)

    def delete_game(self, entry_id: str) -> None:
        self._request_json('DELETE', f"{self.GAMES_PATH}/{quote(entry_id, safe='')}")

    def create_share(self, display_name: str | None = None, scope: str | None = None) -> dict[str, Any]:
        body = {'display_name': display_name, 'scope': scope}
        return self._request_json('POST', self.SHARES_PATH, body=body)

    def resolve_share(self, share_id: str) -> dict[str, Any]:
        query = urlencode({'shareId': share_id})
        return self._request_json('GET', f"{self.SHARES_PATH}?{query}", authenticated=False)

    def revoke_share(self, share_id: str) -> None:
        query = urlencode({'shareId': share_id})
        self._request_json('DELETE', f"{self.SHARES_PATH}?{query}")

    def _request_json(
        self,
        method: str,
        path: str,
        *,
        body: Mapping[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        data = json.dumps(body).encode('utf-8') if body is not None else None
        request = Request(self._context.url(path), data=data, method=method)
        request.add_header('Accept', 'application/json')
        if data is not None:
            request.add_header('Content-Type', 'application/json')
        if authenticated:
            for key, value in self._context.auth_headers().items():
                request.add_header(key, value)
        try:
            with self._opener(request, timeout=self._timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            raise _error_from_http(exc) from exc
        except OSError as exc:
            logger.warning('%s %s failed: %s', method, path, exc)
            raise UpstreamError(f'Request failed: {exc}') from exc
        try:
            return json.loads(raw.decode('utf-8')) if raw else {}
        except ValueError as exc:
            raise UpstreamError('invalid JSON response') from exc


def _error_from_http(error: HTTPError) -> LibraryError:
    message = ''
    try:
        body = error.read()
    except OSError:  # pragma: no cover
        body = b''
    if body:
        try:
            parsed = json.loads(body.decode('utf-8', errors='replace'))
        except ValueError:
            parsed = None
        if isinstance(parsed, Mapping) and parsed.get('error'):
            message = str(parsed['error'])
    error_cls = _ERRORS_BY_STATUS.get(error.code, UpstreamError)
    return error_cls(message or None)


__all__ = ['LibraryAPIClient']
