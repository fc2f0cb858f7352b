"""Tests for LocalStateCoordinator: connection, reloads, saving guard and writes."""

from __future__ import annotations

from datetime import UTC

import pytest

from scope_sync.exceptions import (
    InvalidStateTransitionError,
    NotConnectedError,
    RecordNotFoundError,
    ScopeStorageError,
    UnknownScopeError,
)
from scope_sync.records import Record
from scope_sync.scopes import InMemoryScopeClient, ScopeCapability
from scope_sync.sync import (
    ConnectionState,
    DocumentScope,
    LocalStateCoordinator,
    ObjectListScope,
    RecordScope,
    SyncEngine,
)


@pytest.fixture
def clients() -> dict[str, InMemoryScopeClient]:
    return {
        "todonna": InMemoryScopeClient("todonna"),
        "mymodule": InMemoryScopeClient("mymodule"),
        "ai-wallet": InMemoryScopeClient("ai-wallet"),
    }


@pytest.fixture
def coordinator(clients, clock) -> LocalStateCoordinator:
    return LocalStateCoordinator(
        [
            RecordScope("todos", SyncEngine(clients["todonna"], tz=UTC)),
            ObjectListScope("items", clients["mymodule"], prefix="items/"),
            DocumentScope("settings", clients["mymodule"], "settings", default={"theme": "light"}),
            DocumentScope("ai-config", clients["ai-wallet"], "config", optimistic=False),
        ],
        guard_release_delay_ms=100,
        clock=clock,
    )


@pytest.fixture
async def connected(coordinator: LocalStateCoordinator) -> LocalStateCoordinator:
    await coordinator.connect()
    return coordinator


def todo(text: str, status: str = "pending") -> dict:
    return {"todo_item_text": text, "todo_item_status": status}


class TestInitialization:
    """Tests for capability checks and initial state."""

    def test_starts_disconnected_with_defaults(self, coordinator: LocalStateCoordinator) -> None:
        assert coordinator.state is ConnectionState.DISCONNECTED
        assert coordinator.available_scopes == {"todos", "items", "settings", "ai-config"}
        assert coordinator.store.get("todos") == []
        assert coordinator.store.get("settings") == {"theme": "light"}
        assert coordinator.store.get("ai-config") is None

    def test_unreadable_scope_is_skipped(self) -> None:
        blind = InMemoryScopeClient("einkauf", capabilities=ScopeCapability.WRITE)
        coordinator = LocalStateCoordinator([ObjectListScope("stock", blind)])

        assert coordinator.available_scopes == frozenset()
        with pytest.raises(UnknownScopeError):
            coordinator.binding("stock")

    def test_engine_requires_record_scope(self, coordinator: LocalStateCoordinator) -> None:
        assert coordinator.engine().scope == "todonna"
        with pytest.raises(UnknownScopeError):
            coordinator.engine("settings")


class TestConnection:
    """Tests for the connection state machine."""

    async def test_connect_loads_every_scope(self, coordinator, clients) -> None:
        clients["todonna"].seed("a", todo("Buy milk"))
        clients["mymodule"].seed("items/x", {"name": "Lamp"})
        clients["mymodule"].seed("settings", {"theme": "dark"})
        states = []
        coordinator.on_state_change(states.append)

        await coordinator.connect()

        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert coordinator.is_connected
        assert coordinator.reload_count == 1
        assert [r.text for r in coordinator.store.get("todos")] == ["Buy milk"]
        assert coordinator.store.get("items") == [{"id": "x", "name": "Lamp"}]
        assert coordinator.store.get("settings") == {"theme": "dark"}

    async def test_failed_handshake_returns_to_disconnected(self, coordinator) -> None:
        async def handshake():
            raise ConnectionRefusedError("auth server down")

        with pytest.raises(ConnectionRefusedError):
            await coordinator.connect(handshake)

        assert coordinator.state is ConnectionState.DISCONNECTED
        assert coordinator.reload_count == 0

    async def test_connected_without_connecting_is_allowed(self, coordinator) -> None:
        await coordinator.mark_connected()
        assert coordinator.is_connected

    async def test_invalid_transition_raises(self, connected) -> None:
        with pytest.raises(InvalidStateTransitionError):
            await connected.mark_connecting()

    async def test_failing_scope_does_not_block_others(self, coordinator, clients) -> None:
        clients["todonna"].seed("a", todo("Buy milk"))
        clients["ai-wallet"].fail("get_object", "config", ScopeStorageError("get_object", "config", status=500))

        await coordinator.connect()
        results = await coordinator.reload_all()

        assert results == {"ai-config": False, "items": True, "settings": True, "todos": True}
        assert len(coordinator.store.get("todos")) == 1

    async def test_reload_scope_refreshes_one_scope(self, connected, clients) -> None:
        clients["todonna"].seed("a", todo("seeded later"))

        assert await connected.reload_scope("todos")

        assert [r.id for r in connected.store.get("todos")] == ["a"]
        assert connected.reload_count == 1
        with pytest.raises(UnknownScopeError):
            await connected.reload_scope("stock")

    async def test_reload_all_is_noop_while_disconnected(self, coordinator) -> None:
        assert await coordinator.reload_all() == {}
        assert coordinator.reload_count == 0

    async def test_disconnect_stops_reacting_to_changes(self, connected, clients) -> None:
        await connected.disconnect()

        await clients["todonna"].inject_remote_change("b", todo("remote"))

        assert connected.state is ConnectionState.DISCONNECTED
        assert connected.reload_count == 1


class TestRemoteChanges:
    """Tests for reloads triggered by change notifications."""

    async def test_remote_change_triggers_reload(self, connected, clients) -> None:
        await clients["todonna"].inject_remote_change("b", todo("from phone"))

        assert connected.reload_count == 2
        assert [r.id for r in connected.store.get("todos")] == ["b"]

    async def test_shared_client_subscribed_once(self, connected, clients) -> None:
        await clients["mymodule"].inject_remote_change("settings", {"theme": "dark"})

        assert connected.reload_count == 2
        assert connected.store.get("settings") == {"theme": "dark"}

    async def test_guarded_key_absorbed_until_release_delay(self, connected, clients, clock) -> None:
        """A finished write without a known revision keeps absorbing for the release delay."""
        token = connected.guard.begin("todonna", "x")
        connected.guard.complete(token, None)

        await clients["todonna"].inject_remote_change("x", todo("echo"))
        assert connected.reload_count == 1

        clock.advance(150)
        await clients["todonna"].inject_remote_change("x", todo("real change"))
        assert connected.reload_count == 2

    async def test_other_key_not_absorbed_while_guarded(self, connected, clients) -> None:
        token = connected.guard.begin("todonna", "x")
        connected.guard.complete(token, None)

        await clients["todonna"].inject_remote_change("y", todo("independent"))

        assert connected.reload_count == 2


class TestRecordWrites:
    """Tests for pessimistic record writes."""

    async def test_writes_require_connection(self, coordinator) -> None:
        with pytest.raises(NotConnectedError):
            await coordinator.add_record(Record(id="a", text="x"))
        with pytest.raises(NotConnectedError):
            await coordinator.save_document("settings", {})

    async def test_add_record_refreshes_scope_without_full_reload(self, connected, clients) -> None:
        revision = await connected.add_record(Record(id="a", text="Buy milk"))

        assert revision == clients["todonna"].revision_of("a")
        assert [r.id for r in connected.store.get("todos")] == ["a"]
        assert connected.reload_count == 1
        assert not connected.guard.is_guarding()

    async def test_update_record(self, connected, clients) -> None:
        await connected.add_record(Record(id="a", text="Buy milk"))

        await connected.update_record("a", {"completed": True})

        assert connected.store.get("todos")[0].is_done
        assert connected.reload_count == 1

    async def test_failed_write_reloads_everything_and_raises(self, connected) -> None:
        with pytest.raises(RecordNotFoundError):
            await connected.update_record("ghost", {"text": "boo"})

        assert connected.reload_count == 2

    async def test_remove_record(self, connected, clients) -> None:
        clients["todonna"].seed("a", todo("x"))
        await connected.reload_all()

        await connected.remove_record("a")

        assert connected.store.get("todos") == []

    async def test_replace_records(self, connected, clients) -> None:
        clients["todonna"].seed("old", todo("old"))

        result = await connected.replace_records([Record(id="new", text="new")])

        assert result.succeeded == 2
        assert [r.id for r in connected.store.get("todos")] == ["new"]
        assert connected.reload_count == 1


class TestItemAndDocumentWrites:
    """Tests for item scopes and document scopes."""

    async def test_save_and_delete_item(self, connected, clients) -> None:
        await connected.save_item("lamp", {"name": "Lamp"})

        assert clients["mymodule"].dump()["items/lamp"] == {"name": "Lamp"}
        assert connected.store.get("items") == [{"id": "lamp", "name": "Lamp"}]

        await connected.delete_item("lamp")

        assert connected.store.get("items") == []
        assert connected.reload_count == 1

    async def test_failed_item_save_reloads_and_raises(self, connected, clients) -> None:
        clients["mymodule"].fail("store_object", "items/lamp", ScopeStorageError("store_object", "items/lamp"))

        with pytest.raises(ScopeStorageError):
            await connected.save_item("lamp", {"name": "Lamp"})

        assert connected.store.get("items") == []
        assert connected.reload_count == 2

    async def test_save_document_is_visible_before_write_completes(self, connected, clients) -> None:
        seen = []
        connected.store.subscribe(lambda scope, value: seen.append((scope, value)))

        await connected.save_document("settings", {"theme": "dark"})

        assert seen[0] == ("settings", {"theme": "dark"})
        assert clients["mymodule"].dump()["settings"] == {"theme": "dark"}
        assert connected.reload_count == 1

    async def test_failed_document_save_resynchronizes(self, connected, clients) -> None:
        clients["mymodule"].fail("store_object", "settings", ScopeStorageError("store_object", "settings"))
        seen = []
        connected.store.subscribe(lambda scope, value: seen.append((scope, value)))

        with pytest.raises(ScopeStorageError):
            await connected.save_document("settings", {"theme": "dark"})

        assert seen[0] == ("settings", {"theme": "dark"})
        assert connected.store.get("settings") == {"theme": "light"}
        assert connected.reload_count == 2

    async def test_pessimistic_document_set_after_write(self, connected, clients) -> None:
        seen = []

        def on_set(scope, value):
            seen.append((scope, value, clients["ai-wallet"].dump().get("config")))

        connected.store.subscribe(on_set)

        await connected.save_document("ai-config", {"model": "small"})

        assert seen == [("ai-config", {"model": "small"}, {"model": "small"})]
        assert connected.store.get("ai-config") == {"model": "small"}

    async def test_failed_pessimistic_document_keeps_previous_value(self, connected, clients) -> None:
        clients["ai-wallet"].seed("config", {"model": "large"})
        await connected.reload_scope("ai-config")
        clients["ai-wallet"].fail("store_object", "config", ScopeStorageError("store_object", "config"))
        seen = []
        connected.store.subscribe(lambda scope, value: seen.append((scope, value)))

        with pytest.raises(ScopeStorageError):
            await connected.save_document("ai-config", {"model": "small"})

        assert ("ai-config", {"model": "small"}) not in seen
        assert connected.store.get("ai-config") == {"model": "large"}

    async def test_load_item(self, connected, clients) -> None:
        clients["mymodule"].seed("items/lamp", {"name": "Lamp"})

        assert await connected.load_item("lamp") == {"id": "lamp", "name": "Lamp"}
        assert await connected.load_item("ghost") is None
        assert ("get_object", "items/lamp", 0) in clients["mymodule"].requests

    async def test_load_item_failure_returns_none(self, connected, clients) -> None:
        error = ScopeStorageError("get_object", "items/lamp", status=500)
        clients["mymodule"].fail("get_object", "items/lamp", error)

        assert await connected.load_item("lamp") is None

    async def test_load_item_while_disconnected(self, coordinator, clients) -> None:
        clients["mymodule"].seed("items/lamp", {"name": "Lamp"})

        assert await coordinator.load_item("lamp") is None
        assert clients["mymodule"].requests == []

    async def test_load_item_rejects_other_scopes(self, connected) -> None:
        with pytest.raises(UnknownScopeError):
            await connected.load_item("a", scope="todos")

    async def test_save_document_rejects_list_scopes(self, connected) -> None:
        with pytest.raises(UnknownScopeError):
            await connected.save_document("items", {})


class TestObjectListScope:
    """Tests for single-object reads of an item binding."""

    @pytest.fixture
    def items(self, clients) -> ObjectListScope:
        return ObjectListScope("items", clients["mymodule"], prefix="items/")

    async def test_get_returns_item_shape(self, items, clients) -> None:
        clients["mymodule"].seed("items/lamp", {"name": "Lamp"})
        clients["mymodule"].seed("items/count", 3)

        assert await items.get("lamp") == {"id": "lamp", "name": "Lamp"}
        assert await items.get("count") == {"id": "count", "value": 3}

    async def test_get_absent_is_none(self, items) -> None:
        assert await items.get("ghost") is None

    async def test_get_propagates_storage_errors(self, items, clients) -> None:
        error = ScopeStorageError("get_object", "items/lamp", status=503)
        clients["mymodule"].fail("get_object", "items/lamp", error)

        with pytest.raises(ScopeStorageError):
            await items.get("lamp")

    async def test_load_skips_nested_folders(self, items, clients) -> None:
        clients["mymodule"].seed("items/lamp", {"name": "Lamp"})
        clients["mymodule"].seed("items/archive/chair", {"name": "Chair"})

        assert await items.load() == [{"id": "lamp", "name": "Lamp"}]


class TestClose:
    """Tests for teardown."""

    async def test_close_drops_everything(self, connected, clients) -> None:
        await connected.close()

        assert connected.state is ConnectionState.DISCONNECTED
        assert connected.store.closed

        await clients["todonna"].inject_remote_change("a", todo("late"))
        assert connected.reload_count == 1
