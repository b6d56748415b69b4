"""Share links exposing a read-only projection of one owner's collection."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable

from helpers import _normalize_text, now_utc_iso
from library.errors import NotFoundError, UnauthorizedError, UpstreamError
from library.models import DEFAULT_DISPLAY_NAME, ShareRecord, normalize_scope
from library.store import LibraryStore
from storage.blobs import SHARES_STORE, BlobStore

logger = logging.getLogger(__name__)

SHARE_PATH = '/shared'
_MAX_ID_ATTEMPTS = 5


class ShareService:
    """Create, resolve and revoke share records.

    Share ids are uuid4 values (122 random bits) and each new id is checked
    against the stored records before use. The owner id never leaves this
    service through :meth:`resolve_share`.
    """

    def __init__(
        self,
        blobs: BlobStore,
        library: LibraryStore,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], str] = now_utc_iso,
    ) -> None:
        self._blobs = blobs
        self._library = library
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock

    def _load(self, share_id: str) -> ShareRecord | None:
        if not share_id:
            return None
        raw = self._blobs.get(SHARES_STORE, share_id)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.error('Corrupt share record %s: %s', share_id, exc)
            raise UpstreamError() from exc
        if not isinstance(payload, dict):
            raise UpstreamError()
        return ShareRecord.from_dict(payload)

    def _new_share_id(self) -> str:
        for _attempt in range(_MAX_ID_ATTEMPTS):
            candidate = self._id_factory()
            if self._blobs.get(SHARES_STORE, candidate) is None:
                return candidate
            logger.warning('Share id collision on %s; regenerating', candidate)
        raise UpstreamError('Unable to allocate a share id')

    def create_share(
        self,
        owner_id: str | None,
        display_name: Any = None,
        scope: Any = None,
        *,
        base_url: str = '',
    ) -> dict[str, str]:
        owner = str(owner_id or '').strip()
        if not owner:
            raise UnauthorizedError()
        record = ShareRecord(
            share_id=self._new_share_id(),
            owner_id=owner,
            display_name=_normalize_text(display_name) or DEFAULT_DISPLAY_NAME,
            scope=normalize_scope(scope),
            created_at=self._clock(),
        )
        self._blobs.set(SHARES_STORE, record.share_id, json.dumps(record.to_dict()))
        logger.info('Created %s share for owner %s', record.scope, owner)
        return {
            'share_id': record.share_id,
            'share_url': share_url(base_url, record.share_id),
        }

    def resolve_share(self, share_id: str) -> dict[str, Any]:
        record = self._load(share_id)
        if record is None or not record.active:
            raise NotFoundError('Share not found')
        entries = self._library.list(record.owner_id)
        games = [entry.to_public_dict() for entry in entries if record.includes(entry)]
        return {
            'games': games,
            'display_name': record.display_name,
            'scope': record.scope,
            'created_at': record.created_at,
        }

    def revoke_share(self, owner_id: str | None, share_id: str) -> None:
        owner = str(owner_id or '').strip()
        if not owner:
            raise UnauthorizedError()
        record = self._load(share_id)
        if record is None or record.owner_id != owner:
            raise NotFoundError('Share not found or unauthorized')
        self._blobs.delete(SHARES_STORE, share_id)
        logger.info('Revoked share %s', share_id)


def share_url(base_url: str, share_id: str) -> str:
    return f"{(base_url or '').rstrip('/')}{SHARE_PATH}/{share_id}"


__all__ = ['SHARE_PATH', 'ShareService', 'share_url']
