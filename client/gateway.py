"""Async adapters the coordinator uses to reach the library store."""

from __future__ import annotations

import asyncio
from typing import Protocol

from client.api import LibraryAPIClient
from client.context import ClientContext
from library.models import GameEntry, GamePatch
from library.store import LibraryStore


class LibraryGateway(Protocol):
    async def list(self) -> list[GameEntry]: ...

    async def create(self, patch: GamePatch) -> GameEntry: ...

    async def update(self, entry_id: str, patch: GamePatch) -> GameEntry: ...

    async def delete(self, entry_id: str) -> None: ...


class LocalLibraryGateway:
    """In-process gateway bound to the owner of ``context``."""

    def __init__(self, store: LibraryStore, context: ClientContext) -> None:
        self._store = store
        self._owner_id = context.owner_id

    async def list(self) -> list[GameEntry]:
        return await asyncio.to_thread(self._store.list, self._owner_id)

    async def create(self, patch: GamePatch) -> GameEntry:
        return await asyncio.to_thread(self._store.create, self._owner_id, patch)

    async def update(self, entry_id: str, patch: GamePatch) -> GameEntry:
        return await asyncio.to_thread(self._store.update, self._owner_id, entry_id, patch)

    async def delete(self, entry_id: str) -> None:
        await asyncio.to_thread(self._store.delete, self._owner_id, entry_id)


class HttpLibraryGateway:
    """Gateway running the blocking HTTP client on worker threads."""

    def __init__(self, api: LibraryAPIClient) -> None:
        self._api = api

    async def list(self) -> list[GameEntry]:
        return await asyncio.to_thread(self._api.list_games)

    async def create(self, patch: GamePatch) -> GameEntry:
        return await asyncio.to_thread(self._api.create_game, patch)

    async def update(self, entry_id: str, patch: GamePatch) -> GameEntry:
        return await asyncio.to_thread(self._api.update_game, entry_id, patch)

    async def delete(self, entry_id: str) -> None:
        await asyncio.to_thread(self._api.delete_game, entry_id)


__all__ = ['HttpLibraryGateway', 'LibraryGateway', 'LocalLibraryGateway']
