import threading

import pytest

from fakes import entry, folder, item

from app.modhub.modules.hierarchy.names import CustomName
from app.modhub.modules.hierarchy.nodes import Folder, UnknownHierarchyType
from app.modhub.modules.hierarchy.persistence import LoadedState, PersistenceCoordinator
from app.modhub.modules.hierarchy.service import HierarchySession, NodeNotFound, SessionRegistry
from app.modhub.modules.hierarchy.store import RemoteRecord
from app.modhub.storage import MemoryCache

CATALOG = [entry("orders"), entry("payments", "Payments", href="/pay"), entry("projects")]


def _session(timers, remote, *, hierarchy_type="assigned", catalog=CATALOG, fan_out=None, ready=True):
    coordinator = PersistenceCoordinator(
        hierarchy_type,
        cache=MemoryCache(),
        remote=remote,
        owner_id=lambda: 7,
        catalog=lambda: catalog,
        timer_factory=timers,
    )
    s = HierarchySession(hierarchy_type, coordinator, fan_out=fan_out, new_id=lambda: "nf")
    if ready:
        s.set_catalog(catalog)
    return s


def _keys(forest):
    return [n.id for n in forest]


def test_fresh_user_gets_catalog_order(timers, remote):
    s = _session(timers, remote)
    assert s.load() is True
    assert _keys(s.forest) == ["orders", "payments", "projects"]
    assert s.is_loaded is True


def test_loaded_state_is_merged(timers, remote):
    remote.records[(7, "assigned")] = RemoteRecord(
        hierarchy=[
            {"type": "folder", "id": "f1", "name": "Mine", "children": [{"type": "module", "id": "orders"}]},
            {"type": "module", "id": "orders"},
            {"type": "module", "id": "revoked"},
        ],
        custom_names={},
    )
    s = _session(timers, remote)
    s.load()
    assert _keys(s.forest) == ["f1", "payments", "projects"]
    assert _keys(s.forest[0].children) == ["orders"]


def test_stale_load_is_discarded(timers, remote):
    s = _session(timers, remote)
    first = s.begin_load()
    second = s.begin_load()
    assert first.cancelled is True
    assert s.apply_loaded(first, LoadedState(forest=[item("orders")])) is False
    assert s.is_loaded is False
    assert s.apply_loaded(second, LoadedState(forest=[item("payments")])) is True


def test_close_cancels_inflight_load(timers, remote):
    s = _session(timers, remote)
    ticket = s.begin_load()
    s.close()
    assert s.apply_loaded(ticket, LoadedState(forest=[item("orders")])) is False
    assert s.forest == []


def test_catalog_not_ready_keeps_saved_forest(timers, remote):
    s = _session(timers, remote, ready=False)
    ticket = s.begin_load()
    s.apply_loaded(ticket, LoadedState(forest=[folder("f1", [item("orders"), item("gone")])]))
    assert _keys(s.forest[0].children) == ["orders", "gone"]

    s.set_catalog(CATALOG)
    assert _keys(s.forest) == ["f1", "payments", "projects"]
    assert _keys(s.forest[0].children) == ["orders"]


def test_failed_catalog_refresh_marks_not_ready(timers, remote):
    def broken():
        raise ConnectionError("db down")

    coordinator = PersistenceCoordinator(
        "assigned", cache=MemoryCache(), remote=remote, owner_id=lambda: 7, catalog=lambda: [], timer_factory=timers
    )
    s = HierarchySession("assigned", coordinator, catalog_provider=broken)
    assert s.refresh_catalog() is False
    assert s.catalog_ready is False


def test_drag_and_drop_onto_item_creates_folder_and_saves(timers, remote):
    s = _session(timers, remote)
    s.load()
    s.drag_start("projects")
    s.drop("orders")
    assert _keys(s.forest) == ["nf", "payments"]
    assert _keys(s.forest[0].children) == ["orders", "projects"]
    assert s.dragged_id is None

    timers.fire_all()
    assert len(remote.writes) == 1


def test_drop_without_drag_is_noop(timers, remote):
    s = _session(timers, remote)
    s.load()
    before = s.forest
    assert s.drop("orders") is before
    assert timers.created == []


def test_drag_start_unknown_node(timers, remote):
    s = _session(timers, remote)
    s.load()
    with pytest.raises(NodeNotFound):
        s.drag_start("zz")


def test_drop_between_and_drag_end(timers, remote):
    s = _session(timers, remote)
    s.load()
    s.drag_start("projects")
    s.drop_between(0)
    assert _keys(s.forest) == ["projects", "orders", "payments"]
    s.drag_start("orders")
    s.drag_end()
    assert s.drop_between(0) is s.forest


def test_rejected_edit_does_not_save(timers, remote):
    s = _session(timers, remote)
    s.load()
    s.move_up("orders")
    s.toggle_folder("orders")
    assert timers.created == []


def test_folder_lifecycle(timers, remote):
    s = _session(timers, remote)
    s.load()
    created = s.create_folder("Finance")
    assert isinstance(created, Folder)
    s.add_to_folder("payments", created.id)
    assert _keys(s.forest) == ["orders", "projects", "nf"]
    assert _keys(s.forest[2].children) == ["payments"]
    s.remove_from_folder("payments")
    assert _keys(s.forest) == ["orders", "projects", "nf", "payments"]
    s.move_down("orders")
    s.reorder("payments", "orders")
    assert _keys(s.forest) == ["projects", "payments", "orders", "nf"]


def test_rename_item_fans_out_and_overrides_view(timers, remote):
    calls = []
    s = _session(timers, remote, fan_out=lambda key, name: calls.append((key, name)) or 1)
    s.load()
    s.rename("orders", "My Orders", "mine")
    assert calls == [("orders", "My Orders")]
    assert s.custom_names["orders"] == CustomName("My Orders", "mine")
    snap = s.snapshot()
    assert snap["hierarchy"][0]["displayName"] == "My Orders"
    assert snap["customNames"]["orders"] == {"displayName": "My Orders", "description": "mine"}

    timers.fire_all()
    assert remote.writes[0][3] == {"orders": {"displayName": "My Orders", "description": "mine"}}


def test_rename_folder_updates_node(timers, remote):
    calls = []
    s = _session(timers, remote, fan_out=lambda key, name: calls.append(key))
    s.load()
    created = s.create_folder("Old")
    s.rename(created.id, "New", "")
    assert s.forest[-1].display_name == "New"
    assert calls == []


def test_module_info_prefers_custom_name(timers, remote):
    s = _session(timers, remote)
    s.load()
    assert s.module_info("orders", "Default") == ("ORDERS", "")
    s.rename("orders", "Mine", "d")
    assert s.module_info("orders", "Default") == ("Mine", "d")
    assert s.module_info("unknown", "Default", "x") == ("Default", "x")


def test_available_session_never_drops(timers, remote):
    remote.records[(7, "available")] = RemoteRecord(hierarchy=[{"id": "legacy-thing", "name": "Legacy"}], custom_names={})
    s = _session(timers, remote, hierarchy_type="available")
    s.load()
    assert _keys(s.forest) == ["legacy-thing", "orders", "payments", "projects"]


def test_unknown_type_rejected(timers, remote):
    with pytest.raises(UnknownHierarchyType):
        _session(timers, remote, hierarchy_type="favorites")


class TestRegistry:
    def test_sessions_are_cached_per_owner_and_type(self, timers, remote):
        built = []

        def factory(owner_id, hierarchy_type):
            built.append((owner_id, hierarchy_type))
            return _session(timers, remote, hierarchy_type=hierarchy_type)

        reg = SessionRegistry(factory)
        a = reg.get(1, "assigned")
        assert reg.get(1, "assigned") is a
        reg.get(1, "available")
        reg.get(2, "assigned")
        assert built == [(1, "assigned"), (1, "available"), (2, "assigned")]

    def test_discard_flushes_pending_write(self, timers, remote):
        reg = SessionRegistry(lambda owner_id, t: _session(timers, remote, hierarchy_type=t))
        s = reg.get(7, "assigned")
        s.load()
        s.move_down("orders")
        reg.discard(7, "assigned")
        assert len(remote.writes) == 1
        assert reg.get(7, "assigned") is not s

    def test_flush_all_counts_sessions_with_pending_writes(self, timers, remote):
        reg = SessionRegistry(lambda owner_id, t: _session(timers, remote, hierarchy_type=t))
        s = reg.get(7, "assigned")
        s.load()
        reg.get(7, "available").load()
        s.move_down("orders")
        assert reg.flush_all() == 1
        assert len(remote.writes) == 1

    def test_slow_build_does_not_block_other_owners(self, timers, remote):
        building = threading.Event()
        release = threading.Event()

        def factory(owner_id, t):
            if owner_id == 1:
                building.set()
                release.wait(5)
            return _session(timers, remote, hierarchy_type=t)

        reg = SessionRegistry(factory)
        slow = threading.Thread(target=reg.get, args=(1, "assigned"))
        slow.start()
        assert building.wait(5)

        other = threading.Thread(target=reg.get, args=(2, "assigned"))
        other.start()
        other.join(2)
        assert not other.is_alive()

        release.set()
        slow.join(5)

    def test_idle_sessions_are_closed_and_rebuilt(self, timers, remote):
        now = [0.0]
        reg = SessionRegistry(
            lambda owner_id, t: _session(timers, remote, hierarchy_type=t),
            max_idle_seconds=10,
            clock=lambda: now[0],
        )
        s = reg.get(7, "assigned")
        s.load()
        s.move_down("orders")

        now[0] = 5.0
        reg.get(7, "available")
        assert remote.writes == []

        now[0] = 12.0
        reg.get(7, "available")
        assert len(remote.writes) == 1
        assert reg.get(7, "assigned") is not s

    def test_no_eviction_without_idle_limit(self, timers, remote):
        now = [0.0]
        reg = SessionRegistry(lambda owner_id, t: _session(timers, remote, hierarchy_type=t), clock=lambda: now[0])
        s = reg.get(7, "assigned")
        now[0] = 1e9
        assert reg.evict_idle() == 0
        assert reg.get(7, "assigned") is s
