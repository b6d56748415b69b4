"""Optimistic client-side state for one user's game collection.

Creates are applied locally before the store confirms them. Each speculative
record carries a temporary id (``tmp-`` prefix, never produced by the store)
and a future in :class:`PendingCreates`. Edits and deletes aimed at a
temporary id wait on that future, so they always act on the confirmed record
or fail with :class:`PendingCreateFailed` when the create was rolled back.

Everything runs on one asyncio event loop; the only concurrency is the
interleaving of in-flight requests.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Callable, Coroutine, Iterable, Mapping, Protocol

from client.api import LibraryAPIClient
from client.context import ClientContext
from client.gateway import HttpLibraryGateway, LibraryGateway
from config import CATALOG_LOOKUP_DELAY_SECONDS
from helpers import now_utc_iso, resolve_image_url
from library.catalog import RawgClient, patches_for_platforms
from library.errors import (
    LibraryError,
    NotFoundError,
    OperationInProgress,
    PendingCreateFailed,
)
from library.models import GameEntry, GamePatch, PlatformRef

logger = logging.getLogger(__name__)

TEMP_ID_PREFIX = 'tmp-'

LEVEL_SUCCESS = 'success'
LEVEL_ERROR = 'error'

Notifier = Callable[[str, str], None]


class CoverFinder(Protocol):
    def find_cover_image(self, name: str) -> str | None: ...


def new_temporary_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}"


def is_temporary_id(entry_id: Any) -> bool:
    return isinstance(entry_id, str) and entry_id.startswith(TEMP_ID_PREFIX)


def _describe(exc: BaseException) -> str:
    if isinstance(exc, LibraryError):
        return exc.message
    return 'Request failed'


class PendingCreates:
    """Registry mapping temporary ids to futures of their confirmed entries.

    Settled handles stay resolvable for the ``max_settled`` most recent
    creates; older ones are forgotten and waiting on them raises
    :class:`NotFoundError`.
    """

    def __init__(self, *, max_settled: int = 256) -> None:
        self._handles: dict[str, asyncio.Future[GameEntry]] = {}
        self._settled: deque[str] = deque()
        self._max_settled = max_settled

    def open(self, temp_id: str) -> asyncio.Future[GameEntry]:
        future: asyncio.Future[GameEntry] = asyncio.get_running_loop().create_future()
        self._handles[temp_id] = future
        return future

    def _settle(self, temp_id: str) -> None:
        self._settled.append(temp_id)
        while len(self._settled) > self._max_settled:
            self._handles.pop(self._settled.popleft(), None)

    def confirm(self, temp_id: str, entry: GameEntry) -> None:
        future = self._handles.get(temp_id)
        if future is not None and not future.done():
            future.set_result(entry)
            self._settle(temp_id)

    def fail(self, temp_id: str, error: BaseException) -> None:
        future = self._handles.get(temp_id)
        if future is not None and not future.done():
            future.set_exception(error)
            # Mark retrieved so an unawaited rollback does not log a traceback.
            future.exception()
            self._settle(temp_id)

    def is_pending(self, entry_id: str) -> bool:
        future = self._handles.get(entry_id)
        return future is not None and not future.done()

    def resolved(self, temp_id: str) -> GameEntry | None:
        future = self._handles.get(temp_id)
        if future is None or not future.done() or future.exception() is not None:
            return None
        return future.result()

    async def wait(self, temp_id: str) -> GameEntry:
        future = self._handles.get(temp_id)
        if future is None:
            raise NotFoundError('Game not found')
        return await asyncio.shield(future)

    def __len__(self) -> int:
        return len(self._handles)


class LibraryCoordinator:
    """Visible collection state reconciled against a :class:`LibraryGateway`."""

    def __init__(
        self,
        gateway: LibraryGateway,
        *,
        owner_id: str = '',
        notify: Notifier | None = None,
        clock: Callable[[], str] = now_utc_iso,
        lookup_delay: float = CATALOG_LOOKUP_DELAY_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._owner_id = owner_id
        self._notify_cb = notify
        self._clock = clock
        self._lookup_delay = lookup_delay
        self._entries: list[GameEntry] = []
        self._pending = PendingCreates()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._version = 0
        self._delete_in_flight = False
        self._backfill_running = False

    @classmethod
    def over_http(
        cls,
        context: ClientContext,
        *,
        notify: Notifier | None = None,
        timeout: float = 15.0,
    ) -> 'LibraryCoordinator':
        """Return a coordinator talking to the collection API as ``context``."""

        api = LibraryAPIClient(context, timeout=timeout)
        return cls(HttpLibraryGateway(api), owner_id=context.owner_id, notify=notify)

    @property
    def entries(self) -> list[GameEntry]:
        return list(self._entries)

    @property
    def library(self) -> list[GameEntry]:
        return [entry for entry in self._entries if not entry.is_wishlisted]

    @property
    def wishlist(self) -> list[GameEntry]:
        return [entry for entry in self._entries if entry.is_wishlisted]

    @property
    def is_deleting(self) -> bool:
        return self._delete_in_flight

    @property
    def is_backfilling(self) -> bool:
        return self._backfill_running

    def find(self, entry_id: str) -> GameEntry | None:
        return next((entry for entry in self._entries if entry.id == entry_id), None)

    def is_pending(self, entry_id: str) -> bool:
        return self._pending.is_pending(entry_id)

    @staticmethod
    def image_url(entry: GameEntry) -> str | None:
        return resolve_image_url(entry.image)

    def _notify(self, message: str, level: str = LEVEL_SUCCESS) -> None:
        if self._notify_cb is None:
            return
        try:
            self._notify_cb(message, level)
        except Exception:  # pragma: no cover
            logger.exception('Notification callback failed')

    def _bump(self) -> None:
        self._version += 1

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _replace(self, entry_id: str, entry: GameEntry) -> bool:
        for position, existing in enumerate(self._entries):
            if existing.id == entry_id:
                self._entries[position] = entry
                self._bump()
                return True
        return False

    def _drop(self, entry_id: str) -> None:
        self._entries = [entry for entry in self._entries if entry.id != entry_id]
        self._bump()

    async def drain(self) -> None:
        """Wait for every background create and reconcile task to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def refresh(self) -> list[GameEntry]:
        """Replace visible state with the store's, keeping unconfirmed creates.

        A result that arrives after a local mutation is discarded; the
        mutation schedules its own reconcile.
        """

        started = self._version
        confirmed = await self._gateway.list()
        if self._version != started:
            logger.debug('Discarding stale refresh (version %s -> %s)', started, self._version)
            return self.entries
        pending = [entry for entry in self._entries if self._pending.is_pending(entry.id)]
        self._entries = list(confirmed) + pending
        self._bump()
        return self.entries

    async def _reconcile(self) -> None:
        try:
            await self.refresh()
        except Exception as exc:
            logger.warning('Background refresh failed: %s', exc)

    def create(self, patch: GamePatch) -> str:
        """Show ``patch`` as a pending record and confirm it in the background.

        Must be called from inside the running event loop. Returns the
        temporary id; await :meth:`wait_for_create` to observe the outcome.
        """

        patch = patch.normalized()
        patch.require_create_fields()
        temp_id = new_temporary_id()
        speculative = GameEntry(
            id=temp_id,
            owner_id=self._owner_id,
            name='',
            description='',
            created_at=self._clock(),
        ).apply(patch)
        self._pending.open(temp_id)
        self._entries.append(speculative)
        self._bump()
        self._spawn(self._complete_create(temp_id, patch))
        return temp_id

    async def wait_for_create(self, temp_id: str) -> GameEntry:
        return await self._pending.wait(temp_id)

    async def _complete_create(self, temp_id: str, patch: GamePatch) -> None:
        try:
            created = await self._gateway.create(patch)
        except Exception as exc:
            logger.warning('Create of %r failed, rolling back %s: %s', patch.name, temp_id, exc)
            self._drop(temp_id)
            error = PendingCreateFailed()
            error.__cause__ = exc
            self._pending.fail(temp_id, error)
            self._notify(f'Failed to add "{patch.name}". Please try again.', LEVEL_ERROR)
            return

        if self.find(created.id) is not None:
            # A refresh already loaded the confirmed record.
            self._drop(temp_id)
        elif not self._replace(temp_id, created):
            logger.debug('Pending record %s vanished before confirmation', temp_id)
        self._pending.confirm(temp_id, created)
        self._notify(_added_message(created), LEVEL_SUCCESS)
        self._spawn(self._reconcile())

    async def _confirmed_id(self, entry_id: str) -> str:
        if not is_temporary_id(entry_id):
            return entry_id
        entry = await self._pending.wait(entry_id)
        return entry.id

    async def update(self, entry_id: str, patch: GamePatch) -> GameEntry:
        """Apply ``patch`` once the entry is confirmed; local state changes on success only."""

        try:
            patch = patch.normalized()
            target_id = await self._confirmed_id(entry_id)
            updated = await self._gateway.update(target_id, patch)
        except Exception as exc:
            self._notify(f'Update error: {_describe(exc)}', LEVEL_ERROR)
            raise
        if not self._replace(target_id, updated):
            logger.debug('Ignoring update response for %s; no longer visible', target_id)
        return updated

    async def toggle_wishlist(self, entry_id: str) -> GameEntry:
        entry = self.find(entry_id)
        if entry is None:
            raise NotFoundError('Game not found')
        updated = await self.update(entry_id, GamePatch(is_wishlisted=not entry.is_wishlisted))
        if updated.is_wishlisted:
            self._notify(f'"{updated.name}" added to your wishlist!', LEVEL_SUCCESS)
        else:
            self._notify(f'"{updated.name}" removed from your wishlist.', LEVEL_SUCCESS)
        return updated

    async def delete(self, entry_id: str) -> None:
        """Delete through the store, then reload; restore the prior view on failure.

        Only one delete may be in flight; a second call raises
        :class:`OperationInProgress` instead of queueing.
        """

        if self._delete_in_flight:
            self._notify(OperationInProgress.message, LEVEL_ERROR)
            raise OperationInProgress()
        self._delete_in_flight = True
        snapshot = list(self._entries)
        entry = self.find(entry_id)
        label = entry.name if entry is not None else 'game'
        try:
            target_id = await self._confirmed_id(entry_id)
            await self._gateway.delete(target_id)
            self._drop(target_id)
            try:
                await self.refresh()
            except Exception as exc:
                logger.warning('Refresh after deleting %s failed: %s', target_id, exc)
        except Exception:
            self._restore(snapshot)
            self._notify(f'Failed to delete "{label}". Please try again.', LEVEL_ERROR)
            raise
        finally:
            self._delete_in_flight = False
        self._notify(f'"{label}" has been successfully deleted from your library.', LEVEL_SUCCESS)

    def _restore(self, snapshot: list[GameEntry]) -> None:
        restored: list[GameEntry] = []
        visible_ids = {entry.id for entry in snapshot}
        for entry in snapshot:
            if is_temporary_id(entry.id) and not self._pending.is_pending(entry.id):
                confirmed = self._pending.resolved(entry.id)
                if confirmed is None or confirmed.id in visible_ids:
                    continue
                entry = confirmed
            restored.append(entry)
        self._entries = restored
        self._bump()

    def add_from_catalog(
        self,
        game: Mapping[str, Any],
        platforms: Iterable[PlatformRef | Mapping[str, Any]] | None = None,
        *,
        wishlisted: bool = False,
    ) -> list[str]:
        """Create one pending entry per owned platform of a catalog result."""

        return [
            self.create(patch)
            for patch in patches_for_platforms(game, platforms, wishlisted=wishlisted)
        ]

    async def backfill_missing_images(self, catalog: CoverFinder | None = None) -> int:
        """Look up covers for confirmed entries without an image.

        ``catalog`` defaults to a :class:`RawgClient` built from ``config``.
        """

        if self._backfill_running:
            return 0
        self._backfill_running = True
        try:
            missing = [
                entry for entry in self._entries
                if not entry.image and not is_temporary_id(entry.id)
            ]
            if not missing:
                self._notify('All games already have images!', LEVEL_SUCCESS)
                return 0
            if catalog is None:
                catalog = RawgClient.from_config()
            updated = 0
            for position, entry in enumerate(missing):
                if position:
                    await asyncio.sleep(self._lookup_delay)
                try:
                    cover = await asyncio.to_thread(catalog.find_cover_image, entry.name)
                    if not cover:
                        continue
                    await self._gateway.update(entry.id, GamePatch(image=cover))
                except LibraryError as exc:
                    logger.warning('Cover backfill for %r failed: %s', entry.name, exc)
                    continue
                updated += 1
            if updated:
                self._notify(f'Successfully updated images for {updated} games!', LEVEL_SUCCESS)
                await self._reconcile()
            else:
                self._notify('No images could be found for the games missing images.', LEVEL_ERROR)
            return updated
        finally:
            self._backfill_running = False


def _added_message(entry: GameEntry) -> str:
    platform_text = f" for {entry.selected_platform.name}" if entry.selected_platform else ''
    target = 'wishlist' if entry.is_wishlisted else 'library'
    return f'"{entry.name}"{platform_text} added to your {target}!'


__all__ = [
    'LEVEL_ERROR',
    'LEVEL_SUCCESS',
    'LibraryCoordinator',
    'PendingCreates',
    'TEMP_ID_PREFIX',
    'is_temporary_id',
    'new_temporary_id',
]
