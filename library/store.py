"""Owner-scoped game collection persisted as one JSON blob per owner.

Every write re-reads the owner's full collection and writes the whole list
back. Writes inside one process are serialized by ``db_utils.db_lock``; two
processes writing the same owner concurrently can still lose an update (last
writer wins). Collections are edited by their single owner, so that window is
accepted rather than papered over.
"""

from __future__ import annotations

import json
import logging
import uuid
from threading import Lock
from typing import Any, Callable, Protocol

from db import utils as db_utils
from helpers import now_utc_iso
from library.errors import NotFoundError, UnauthorizedError, UpstreamError
from library.models import GameEntry, GamePatch
from storage.blobs import GAMES_STORE, BlobStore

logger = logging.getLogger(__name__)


class ImageDeleter(Protocol):
    def owned_by(self, owner_id: str, key: str) -> bool: ...

    def delete(self, key: str) -> None: ...


def owner_key(owner_id: str) -> str:
    return f"user_{owner_id}"


def _require_owner(owner_id: str | None) -> str:
    text = str(owner_id or '').strip()
    if not text:
        raise UnauthorizedError()
    return text


class LibraryStore:
    """Authoritative CRUD over each owner's set of :class:`GameEntry` records."""

    def __init__(
        self,
        blobs: BlobStore,
        *,
        images: ImageDeleter | None = None,
        lock: Lock | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], str] = now_utc_iso,
    ) -> None:
        self._blobs = blobs
        self._images = images
        self._lock = lock or db_utils.db_lock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock

    def _load(self, owner_id: str) -> list[GameEntry]:
        raw = self._blobs.get(GAMES_STORE, owner_key(owner_id))
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.error('Corrupt games blob for owner %s: %s', owner_id, exc)
            raise UpstreamError() from exc
        if not isinstance(payload, list):
            logger.error('Unexpected games blob shape for owner %s', owner_id)
            raise UpstreamError()
        entries = [GameEntry.from_dict(item) for item in payload if isinstance(item, dict)]
        return [entry for entry in entries if entry.owner_id == owner_id]

    def _save(self, owner_id: str, entries: list[GameEntry]) -> None:
        payload = json.dumps([entry.to_dict() for entry in entries], ensure_ascii=False)
        self._blobs.set(GAMES_STORE, owner_key(owner_id), payload)

    def list(self, owner_id: str) -> list[GameEntry]:
        owner = _require_owner(owner_id)
        return self._load(owner)

    def get(self, owner_id: str, entry_id: str) -> GameEntry:
        for entry in self.list(owner_id):
            if entry.id == entry_id:
                return entry
        raise NotFoundError('Game not found')

    def create(self, owner_id: str, patch: GamePatch) -> GameEntry:
        owner = _require_owner(owner_id)
        patch = patch.normalized()
        patch.require_create_fields()
        with self._lock:
            entries = self._load(owner)
            existing_ids = {entry.id for entry in entries}
            entry_id = self._id_factory()
            while entry_id in existing_ids:
                entry_id = self._id_factory()
            base = GameEntry(
                id=entry_id,
                owner_id=owner,
                name='',
                description='',
                created_at=self._clock(),
            )
            entry = base.apply(patch)
            entries.append(entry)
            self._save(owner, entries)
        logger.info('Created game %s for owner %s', entry.id, owner)
        return entry

    def update(self, owner_id: str, entry_id: str, patch: GamePatch) -> GameEntry:
        owner = _require_owner(owner_id)
        patch = patch.normalized()
        with self._lock:
            entries = self._load(owner)
            for position, existing in enumerate(entries):
                if existing.id == entry_id:
                    break
            else:
                raise NotFoundError('Game not found')
            if patch.is_empty():
                return existing
            updated = existing.apply(patch)
            entries[position] = updated
            self._save(owner, entries)
        if existing.has_private_image and existing.image != updated.image:
            self._discard_image(owner, existing.image)
        return updated

    def delete(self, owner_id: str, entry_id: str) -> GameEntry | None:
        owner = _require_owner(owner_id)
        with self._lock:
            entries = self._load(owner)
            removed = next((entry for entry in entries if entry.id == entry_id), None)
            remaining = [entry for entry in entries if entry.id != entry_id]
            if removed is not None:
                self._save(owner, remaining)
        if removed is None:
            logger.debug('Delete of missing game %s for owner %s ignored', entry_id, owner)
            return None
        if removed.has_private_image:
            self._discard_image(owner, removed.image)
        logger.info('Deleted game %s for owner %s', entry_id, owner)
        return removed

    def _discard_image(self, owner_id: str, key: Any) -> None:
        if self._images is None or not isinstance(key, str):
            return
        if not self._images.owned_by(owner_id, key):
            logger.warning('Not deleting image %s not owned by %s', key, owner_id)
            return
        try:
            self._images.delete(key)
        except Exception as exc:
            logger.warning('Failed to delete image %s: %s', key, exc)


__all__ = ['LibraryStore', 'owner_key']
