import asyncio

import pytest

from client.context import ClientContext
from client.coordinator import (
    LEVEL_ERROR,
    LEVEL_SUCCESS,
    LibraryCoordinator,
    PendingCreates,
    is_temporary_id,
)
from client.gateway import LocalLibraryGateway
from library.catalog import RawgClient
from library.errors import (
    NotFoundError,
    OperationInProgress,
    PendingCreateFailed,
    UpstreamError,
)
from library.models import GameEntry, GamePatch


class ControlledGateway:
    """Wraps a real gateway; individual calls can be held open or failed."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = []
        self.gates = {}
        self.response_gates = {}
        self.applied = {}
        self.errors = {}

    def hold(self, operation):
        self.gates[operation] = asyncio.Event()
        return self.gates[operation]

    def hold_response(self, operation):
        """Let ``operation`` reach the store but keep its response back."""
        self.applied[operation] = asyncio.Event()
        self.response_gates[operation] = asyncio.Event()
        return self.applied[operation], self.response_gates[operation]

    async def _enter(self, operation, *args):
        self.calls.append((operation, *args))
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(operation)
        if error is not None:
            raise error

    async def _leave(self, operation, result):
        gate = self.response_gates.get(operation)
        if gate is not None:
            self.applied[operation].set()
            await gate.wait()
        return result

    async def list(self):
        await self._enter('list')
        return await self.inner.list()

    async def create(self, patch):
        await self._enter('create', patch.name)
        return await self._leave('create', await self.inner.create(patch))

    async def update(self, entry_id, patch):
        await self._enter('update', entry_id)
        return await self._leave('update', await self.inner.update(entry_id, patch))

    async def delete(self, entry_id):
        await self._enter('delete', entry_id)
        return await self.inner.delete(entry_id)


class Notifications(list):
    def __call__(self, message, level):
        self.append((message, level))


def _coordinator(library_store, owner='alice', **kwargs):
    gateway = ControlledGateway(LocalLibraryGateway(library_store, ClientContext(owner)))
    notes = Notifications()
    coordinator = LibraryCoordinator(
        gateway, owner_id=owner, notify=notes, lookup_delay=0, **kwargs
    )
    return coordinator, gateway, notes


def _patch(name, **fields):
    return GamePatch(name=name, description='PC', **fields)


def test_create_is_visible_before_confirmation(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        gate = gateway.hold('create')
        temp_id = coordinator.create(_patch('Celeste'))

        pending = coordinator.find(temp_id)
        assert is_temporary_id(temp_id)
        assert pending.name == 'Celeste'
        assert coordinator.is_pending(temp_id)

        gate.set()
        confirmed = await coordinator.wait_for_create(temp_id)
        await coordinator.drain()
        return coordinator, confirmed, notes

    coordinator, confirmed, notes = asyncio.run(scenario())

    assert [entry.id for entry in coordinator.entries] == [confirmed.id]
    assert not is_temporary_id(confirmed.id)
    assert notes == [('"Celeste" added to your library!', LEVEL_SUCCESS)]


def test_failed_create_is_rolled_back(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        gateway.errors['create'] = UpstreamError()
        temp_id = coordinator.create(_patch('Celeste'))
        with pytest.raises(PendingCreateFailed) as excinfo:
            await coordinator.wait_for_create(temp_id)
        await coordinator.drain()
        listed = await coordinator.refresh()
        return coordinator, temp_id, listed, notes, excinfo.value

    coordinator, temp_id, listed, notes, error = asyncio.run(scenario())

    assert coordinator.find(temp_id) is None
    assert all(entry.id != temp_id for entry in listed)
    assert library_store.list('alice') == []
    assert isinstance(error.__cause__, UpstreamError)
    assert notes == [('Failed to add "Celeste". Please try again.', LEVEL_ERROR)]


def test_edit_waits_for_pending_create(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        gate = gateway.hold('create')
        temp_id = coordinator.create(_patch('Hades'))
        edit = asyncio.create_task(coordinator.update(temp_id, GamePatch(genre='Roguelike')))
        await asyncio.sleep(0)
        assert [call[0] for call in gateway.calls] == ['create']

        gate.set()
        updated = await edit
        await coordinator.drain()
        return coordinator, updated, gateway

    coordinator, updated, gateway = asyncio.run(scenario())

    stored = library_store.list('alice')
    assert len(stored) == 1
    assert stored[0].id == updated.id
    assert (stored[0].name, stored[0].genre) == ('Hades', 'Roguelike')
    assert ('update', updated.id) in gateway.calls
    assert [(entry.id, entry.genre) for entry in coordinator.entries] == [(updated.id, 'Roguelike')]


def test_edit_of_failed_create_fails_distinguishably(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        gate = gateway.hold('create')
        gateway.errors['create'] = UpstreamError()
        temp_id = coordinator.create(_patch('Hades'))
        edit = asyncio.create_task(coordinator.update(temp_id, GamePatch(genre='Roguelike')))
        await asyncio.sleep(0)
        gate.set()
        with pytest.raises(PendingCreateFailed):
            await edit
        await coordinator.drain()
        return coordinator, gateway, notes

    coordinator, gateway, notes = asyncio.run(scenario())

    assert [call[0] for call in gateway.calls] == ['create']
    assert coordinator.entries == []
    assert library_store.list('alice') == []
    assert ('Update error: Cannot edit: original create failed', LEVEL_ERROR) in notes


def test_update_of_unknown_temporary_id(library_store):
    async def scenario():
        coordinator, _gateway, _notes = _coordinator(library_store)
        await coordinator.update('tmp-unknown', GamePatch(genre='RPG'))

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())


def test_refresh_keeps_unconfirmed_creates(library_store):
    library_store.create('alice', _patch('Celeste'))

    async def scenario():
        coordinator, gateway, _notes = _coordinator(library_store)
        gate = gateway.hold('create')
        temp_id = coordinator.create(_patch('Hades'))
        await coordinator.refresh()
        names = sorted(entry.name for entry in coordinator.entries)
        gate.set()
        await coordinator.drain()
        return temp_id, names, coordinator

    temp_id, names, coordinator = asyncio.run(scenario())

    assert names == ['Celeste', 'Hades']
    assert sorted(entry.name for entry in coordinator.entries) == ['Celeste', 'Hades']
    assert coordinator.find(temp_id) is None


def test_stale_refresh_is_discarded(library_store):
    async def scenario():
        coordinator, gateway, _notes = _coordinator(library_store)
        list_gate = gateway.hold('list')
        refresh = asyncio.create_task(coordinator.refresh())
        await asyncio.sleep(0)
        create_gate = gateway.hold('create')
        temp_id = coordinator.create(_patch('Celeste'))
        list_gate.set()
        await refresh
        visible = [entry.id for entry in coordinator.entries]
        create_gate.set()
        await coordinator.drain()
        return temp_id, visible

    temp_id, visible = asyncio.run(scenario())

    assert visible == [temp_id]


def test_refresh_during_create_response_keeps_one_entry(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        applied, release = gateway.hold_response('create')
        temp_id = coordinator.create(_patch('Hades'))
        await applied.wait()
        await coordinator.refresh()
        gateway.errors['list'] = UpstreamError()
        release.set()
        confirmed = await coordinator.wait_for_create(temp_id)
        await coordinator.drain()
        return coordinator, confirmed, notes

    coordinator, confirmed, notes = asyncio.run(scenario())

    assert [(entry.id, entry.name) for entry in coordinator.entries] == [(confirmed.id, 'Hades')]
    assert notes == [('"Hades" added to your library!', LEVEL_SUCCESS)]


def test_failed_reconcile_does_not_fail_create(library_store):
    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        gateway.errors['list'] = UpstreamError()
        temp_id = coordinator.create(_patch('Celeste'))
        confirmed = await coordinator.wait_for_create(temp_id)
        await coordinator.drain()
        return coordinator, gateway, confirmed, notes

    coordinator, gateway, confirmed, notes = asyncio.run(scenario())

    assert ('list',) in gateway.calls
    assert [entry.id for entry in coordinator.entries] == [confirmed.id]
    assert library_store.list('alice') == [confirmed]
    assert notes == [('"Celeste" added to your library!', LEVEL_SUCCESS)]


def test_update_response_after_delete_is_ignored(library_store):
    entry = library_store.create('alice', _patch('Celeste'))

    async def scenario():
        coordinator, gateway, _notes = _coordinator(library_store)
        await coordinator.refresh()
        applied, release = gateway.hold_response('update')
        edit = asyncio.create_task(coordinator.update(entry.id, GamePatch(genre='Platformer')))
        await applied.wait()
        await coordinator.delete(entry.id)
        release.set()
        updated = await edit
        return coordinator, updated

    coordinator, updated = asyncio.run(scenario())

    assert updated.genre == 'Platformer'
    assert coordinator.entries == []
    assert library_store.list('alice') == []


def test_delete_removes_entry_and_reloads(library_store):
    keep = library_store.create('alice', _patch('Celeste'))
    gone = library_store.create('alice', _patch('Hades'))

    async def scenario():
        coordinator, _gateway, notes = _coordinator(library_store)
        await coordinator.refresh()
        await coordinator.delete(gone.id)
        return coordinator, notes

    coordinator, notes = asyncio.run(scenario())

    assert [entry.id for entry in coordinator.entries] == [keep.id]
    assert library_store.list('alice') == [keep]
    assert notes[-1] == ('"Hades" has been successfully deleted from your library.', LEVEL_SUCCESS)


def test_failed_delete_restores_previous_view(library_store):
    library_store.create('alice', _patch('Celeste'))

    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        await coordinator.refresh()
        before = coordinator.entries
        gateway.errors['delete'] = UpstreamError()
        with pytest.raises(UpstreamError):
            await coordinator.delete(before[0].id)
        return coordinator, before, notes

    coordinator, before, notes = asyncio.run(scenario())

    assert coordinator.entries == before
    assert not coordinator.is_deleting
    assert notes == [('Failed to delete "Celeste". Please try again.', LEVEL_ERROR)]


def test_only_one_delete_in_flight(library_store):
    first = library_store.create('alice', _patch('Celeste'))
    second = library_store.create('alice', _patch('Hades'))

    async def scenario():
        coordinator, gateway, notes = _coordinator(library_store)
        await coordinator.refresh()
        gate = gateway.hold('delete')
        pending_delete = asyncio.create_task(coordinator.delete(first.id))
        await asyncio.sleep(0)
        assert coordinator.is_deleting
        with pytest.raises(OperationInProgress):
            await coordinator.delete(second.id)
        gate.set()
        await pending_delete
        return coordinator, notes

    coordinator, notes = asyncio.run(scenario())

    assert [entry.id for entry in coordinator.entries] == [second.id]
    assert (OperationInProgress.message, LEVEL_ERROR) in notes


def test_delete_of_pending_create_targets_confirmed_id(library_store):
    async def scenario():
        coordinator, gateway, _notes = _coordinator(library_store)
        gate = gateway.hold('create')
        temp_id = coordinator.create(_patch('Hades'))
        removal = asyncio.create_task(coordinator.delete(temp_id))
        await asyncio.sleep(0)
        gate.set()
        await removal
        await coordinator.drain()
        return coordinator, gateway

    coordinator, gateway = asyncio.run(scenario())

    deletes = [call for call in gateway.calls if call[0] == 'delete']
    assert len(deletes) == 1
    assert not is_temporary_id(deletes[0][1])
    assert coordinator.entries == []
    assert library_store.list('alice') == []


def test_toggle_wishlist(library_store):
    entry = library_store.create('alice', _patch('Celeste'))

    async def scenario():
        coordinator, _gateway, notes = _coordinator(library_store)
        await coordinator.refresh()
        await coordinator.toggle_wishlist(entry.id)
        wished = [item.id for item in coordinator.wishlist]
        await coordinator.toggle_wishlist(entry.id)
        return coordinator, wished, notes

    coordinator, wished, notes = asyncio.run(scenario())

    assert wished == [entry.id]
    assert [item.id for item in coordinator.library] == [entry.id]
    assert [message for message, _level in notes] == [
        '"Celeste" added to your wishlist!',
        '"Celeste" removed from your wishlist.',
    ]


def test_add_from_catalog_creates_one_entry_per_platform(library_store):
    game = {
        'id': 1,
        'name': 'Hades',
        'platforms': [{'platform': {'id': 4, 'name': 'PC'}}],
        'publishers': [],
    }

    async def scenario():
        coordinator, _gateway, notes = _coordinator(library_store)
        temp_ids = coordinator.add_from_catalog(
            game, [{'id': 4, 'name': 'PC'}, {'id': 7, 'name': 'Nintendo Switch'}]
        )
        for temp_id in temp_ids:
            await coordinator.wait_for_create(temp_id)
        await coordinator.drain()
        return notes

    notes = asyncio.run(scenario())

    stored = sorted(library_store.list('alice'), key=lambda entry: entry.description)
    assert [(entry.name, entry.description) for entry in stored] == [
        ('Hades', 'Nintendo Switch'),
        ('Hades', 'PC'),
    ]
    assert '"Hades" for PC added to your library!' in [message for message, _ in notes]


class FakeCatalog:
    def __init__(self, covers):
        self.covers = covers
        self.lookups = []

    def find_cover_image(self, name):
        self.lookups.append(name)
        return self.covers.get(name)


def test_backfill_missing_images(library_store):
    library_store.create('alice', _patch('Celeste'))
    library_store.create('alice', _patch('Hades'))
    library_store.create('alice', _patch('Tunic', image='https://media.rawg.io/tunic.jpg'))
    catalog = FakeCatalog({'Celeste': 'https://media.rawg.io/celeste.jpg'})

    async def scenario():
        coordinator, _gateway, notes = _coordinator(library_store)
        await coordinator.refresh()
        updated = await coordinator.backfill_missing_images(catalog)
        return coordinator, updated, notes

    coordinator, updated, notes = asyncio.run(scenario())

    assert updated == 1
    assert sorted(catalog.lookups) == ['Celeste', 'Hades']
    images = {entry.name: entry.image for entry in coordinator.entries}
    assert images['Celeste'] == 'https://media.rawg.io/celeste.jpg'
    assert images['Hades'] is None
    assert notes[-1] == ('Successfully updated images for 1 games!', LEVEL_SUCCESS)


def test_backfill_with_nothing_missing(library_store):
    async def scenario():
        coordinator, _gateway, notes = _coordinator(library_store)
        return await coordinator.backfill_missing_images(FakeCatalog({})), notes

    updated, notes = asyncio.run(scenario())

    assert updated == 0
    assert notes == [('All games already have images!', LEVEL_SUCCESS)]


def test_pending_creates_registry():
    confirmed = GameEntry(
        id='g1', owner_id='alice', name='Celeste', description='PC',
        created_at='2024-01-01T00:00:00+00:00',
    )

    async def scenario():
        registry = PendingCreates()
        registry.open('tmp-a')
        registry.open('tmp-b')
        registry.fail('tmp-b', PendingCreateFailed())
        assert registry.is_pending('tmp-a')
        assert registry.resolved('tmp-b') is None
        registry.confirm('tmp-a', confirmed)
        assert registry.resolved('tmp-a') == confirmed
        assert await registry.wait('tmp-a') == confirmed
        assert len(registry) == 2

    asyncio.run(scenario())


def test_pending_creates_forgets_oldest_settled_handles():
    confirmed = GameEntry(
        id='g1', owner_id='alice', name='Celeste', description='PC',
        created_at='2024-01-01T00:00:00+00:00',
    )

    async def scenario():
        registry = PendingCreates(max_settled=1)
        for temp_id in ('tmp-a', 'tmp-b', 'tmp-c'):
            registry.open(temp_id)
        registry.confirm('tmp-a', confirmed)
        registry.fail('tmp-b', PendingCreateFailed())
        assert len(registry) == 2
        assert registry.is_pending('tmp-c')
        with pytest.raises(NotFoundError):
            await registry.wait('tmp-a')
        with pytest.raises(PendingCreateFailed):
            await registry.wait('tmp-b')

    asyncio.run(scenario())


def test_backfill_defaults_to_configured_catalog(library_store, monkeypatch):
    library_store.create('alice', _patch('Celeste'))
    catalog = FakeCatalog({'Celeste': 'https://media.rawg.io/celeste.jpg'})
    monkeypatch.setattr(RawgClient, 'from_config', classmethod(lambda cls, **kwargs: catalog))

    async def scenario():
        coordinator, _gateway, _notes = _coordinator(library_store)
        await coordinator.refresh()
        return await coordinator.backfill_missing_images()

    assert asyncio.run(scenario()) == 1
    assert catalog.lookups == ['Celeste']
    assert library_store.list('alice')[0].image == 'https://media.rawg.io/celeste.jpg'


def test_over_http_uses_context_owner():
    coordinator = LibraryCoordinator.over_http(
        ClientContext('alice', token='t', base_url='https://shelf.example')
    )

    assert coordinator.entries == []
    assert not coordinator.is_deleting
    assert not coordinator.is_backfilling


def test_image_url_resolution(library_store):
    uploaded = library_store.create('alice', _patch('Celeste', image='alice/1-cover.jpg'))
    linked = library_store.create('alice', _patch('Hades', image='https://media.rawg.io/hades.jpg'))
    bare = library_store.create('alice', _patch('Tunic'))

    assert LibraryCoordinator.image_url(uploaded) == '/api/images?file=alice%2F1-cover.jpg'
    assert LibraryCoordinator.image_url(linked) == 'https://media.rawg.io/hades.jpg'
    assert LibraryCoordinator.image_url(bare) is None
