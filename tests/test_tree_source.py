"""Tests for TreePropertySource — reconciliation against a watched subtree."""

import logging

import pytest

from dynprop import (
    DefaultValueNotFoundError,
    InMemoryTreeStore,
    NodeExistsError,
    NoNodeError,
    PropertyMarshallingError,
    OptionalDefaultValue,
    PropertySourceTimeoutError,
    TreePropertySource,
    UpsertConflictError,
)
from dynprop.source import NodeData, TreeEventType
from dynprop.source.tree import UPSERT_PROPERTY_RETRY_COUNT

from conftest import PROPERTIES_LOCATION

TEST_PROP_KEY = "test_prop_key"
TEST_PROP_KEY_1 = "test_prop_key_1"


def set_server_property(store, key, value):
    store.create(f"{PROPERTIES_LOCATION}/{key}", value.encode("utf-8"))


def change_server_property(store, key, value):
    store.set_data(f"{PROPERTIES_LOCATION}/{key}", value.encode("utf-8"))


def remove_server_property(store, key):
    store.delete(f"{PROPERTIES_LOCATION}/{key}")


class TestSubscribeAndCall:
    def test_property_exists_ignores_default(self, store, source):
        set_server_property(store, TEST_PROP_KEY, "some Value")
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY, str, OptionalDefaultValue.of("zzz"), slot.append
        )
        assert slot == ["some Value"]
        sub.close()

    def test_react_on_property_update(self, store, source):
        set_server_property(store, TEST_PROP_KEY, "some Value")
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY, str, OptionalDefaultValue.of("zzz"), slot.append
        )
        change_server_property(store, TEST_PROP_KEY, "some Value 2")
        assert slot == ["some Value", "some Value 2"]
        sub.close()

    def test_start_with_default_then_creation_and_change(self, store, source):
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY_1, str, OptionalDefaultValue.of("zzz"), slot.append
        )
        assert slot == ["zzz"]

        set_server_property(store, TEST_PROP_KEY_1, "some Value")
        assert slot == ["zzz", "some Value"]

        change_server_property(store, TEST_PROP_KEY_1, "some Value 2")
        assert slot == ["zzz", "some Value", "some Value 2"]
        sub.close()

    def test_removed_property_falls_back_to_default(self, store, source):
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY_1, str, OptionalDefaultValue.of("default"), slot.append
        )
        set_server_property(store, TEST_PROP_KEY_1, "some Value")
        remove_server_property(store, TEST_PROP_KEY_1)
        assert slot == ["default", "some Value", "default"]
        sub.close()

    def test_default_of_none_is_a_value(self, source):
        slot = []
        sub = source.subscribe_and_call_listener(
            "absent", str, OptionalDefaultValue.of(None), slot.append
        )
        assert slot == [None]
        sub.close()

    def test_missing_key_without_default_raises(self, source):
        with pytest.raises(DefaultValueNotFoundError):
            source.subscribe_and_call_listener("absent", str, OptionalDefaultValue.none(), print)
        assert source.listener_count("absent") == 0

    def test_typed_values(self, store, source):
        set_server_property(store, "pool.size", "8")
        slot = []
        sub = source.subscribe_and_call_listener(
            "pool.size", int, OptionalDefaultValue.of(4), slot.append
        )
        change_server_property(store, "pool.size", "16")
        assert slot == [8, 16]
        sub.close()

    def test_closed_subscription_gets_nothing(self, store, source):
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY, str, OptionalDefaultValue.of("d"), slot.append
        )
        sub.close()
        sub.close()
        assert sub.closed
        set_server_property(store, TEST_PROP_KEY, "late")
        assert slot == ["d"]

    def test_other_keys_do_not_notify(self, store, source):
        slot = []
        sub = source.subscribe_and_call_listener(
            TEST_PROP_KEY, str, OptionalDefaultValue.of("d"), slot.append
        )
        set_server_property(store, TEST_PROP_KEY_1, "x")
        assert slot == ["d"]
        sub.close()


class TestDeliveryErrors:
    def test_decode_error_is_logged_and_skipped(self, store, source, caplog):
        set_server_property(store, "n", "1")
        slot = []
        sub = source.subscribe_and_call_listener("n", int, OptionalDefaultValue.of(0), slot.append)

        with caplog.at_level(logging.ERROR, logger="dynprop.source.tree"):
            change_server_property(store, "n", "not a number")

        change_server_property(store, "n", "3")
        assert slot == [1, 3]
        assert "Failed to read new value of property n" in caplog.text
        sub.close()

    def test_malformed_value_at_subscribe_uses_default(self, store, source, caplog):
        set_server_property(store, "n", "garbage")
        slot = []
        with caplog.at_level(logging.ERROR, logger="dynprop.source.tree"):
            sub = source.subscribe_and_call_listener(
                "n", int, OptionalDefaultValue.of(7), slot.append
            )
        assert slot == [7]
        assert "using default value" in caplog.text
        sub.close()

    def test_malformed_value_at_subscribe_without_default_raises(self, store, source):
        set_server_property(store, "n", "garbage")
        with pytest.raises(PropertyMarshallingError):
            source.subscribe_and_call_listener("n", int, OptionalDefaultValue.none(), print)

    def test_failing_listener_does_not_block_others(self, store, source, caplog):
        slot = []

        def boom(value):
            if value != "d":
                raise RuntimeError("bad listener")

        s1 = source.subscribe_and_call_listener(TEST_PROP_KEY, str, OptionalDefaultValue.of("d"), boom)
        s2 = source.subscribe_and_call_listener(
            TEST_PROP_KEY, str, OptionalDefaultValue.of("d"), slot.append
        )
        with caplog.at_level(logging.ERROR, logger="dynprop.source.tree"):
            set_server_property(store, TEST_PROP_KEY, "v")
        assert slot == ["d", "v"]
        assert "Failed to update property" in caplog.text
        s1.close()
        s2.close()

    def test_events_logged_at_info(self, store, source, caplog):
        with caplog.at_level(logging.INFO, logger="dynprop.source.tree"):
            set_server_property(store, TEST_PROP_KEY, "logged")
        assert "Event type NODE_ADDED" in caplog.text
        assert "logged" in caplog.text


class TestUpsert:
    def test_upsert_creates_then_updates(self, store, source):
        source.upsert_property("a", "1")
        assert store.get_data(f"{PROPERTIES_LOCATION}/a", 1.0).data == b"1"
        source.upsert_property("a", "2")
        assert store.get_data(f"{PROPERTIES_LOCATION}/a", 1.0).data == b"2"
        assert source.get_property("a") == "2"

    def test_upsert_is_idempotent(self, store, source):
        events = []
        handle = store.watch(f"{PROPERTIES_LOCATION}/a", events.append)
        source.upsert_property("a", "same")
        source.upsert_property("a", "same")
        mutations = [e for e in events if e.type is not TreeEventType.INITIALIZED]
        assert len(mutations) == 1
        handle.close()

    def test_upsert_typed_value(self, source):
        source.upsert_property("pool.size", 12)
        assert source.get_property("pool.size", int) == 12
        assert source.get_property("pool.size") == "12"

    def test_upsert_retries_after_concurrent_create(self):
        racing = InMemoryTreeStore()
        src = TreePropertySource(racing, PROPERTIES_LOCATION)
        original_create = racing.create
        calls = []

        def create(path, data):
            calls.append(path)
            if len(calls) == 1:
                # Another writer wins the race with a different value.
                original_create(path, b"theirs")
                raise NodeExistsError(path)
            return original_create(path, data)

        racing.create = create
        src.upsert_property("k", "mine")
        assert racing.get_data(f"{PROPERTIES_LOCATION}/k", 1.0).data == b"mine"
        assert len(calls) == 1
        src.close()

    def test_upsert_gives_up_after_bounded_attempts(self):
        class AlwaysConflicting(InMemoryTreeStore):
            def __init__(self):
                super().__init__()
                self.attempts = 0

            def create(self, path, data):
                if path.endswith("/k"):
                    self.attempts += 1
                    raise NodeExistsError(path)
                return super().create(path, data)

            def get_data(self, path, timeout):
                return None

        store = AlwaysConflicting()
        src = TreePropertySource(store, PROPERTIES_LOCATION)
        with pytest.raises(UpsertConflictError) as exc_info:
            src.upsert_property("k", "v")
        assert store.attempts == UPSERT_PROPERTY_RETRY_COUNT
        assert isinstance(exc_info.value.__cause__, NodeExistsError)
        src.close()


class TestPutIfAbsent:
    def test_creates_when_absent(self, store, source):
        source.put_if_absent("p", "v")
        assert source.get_property("p") == "v"

    def test_keeps_existing(self, store, source):
        set_server_property(store, "p", "existing")
        source.put_if_absent("p", "v")
        assert source.get_property("p") == "existing"

    def test_concurrent_creation_is_success(self):
        class LosingStore(InMemoryTreeStore):
            def create(self, path, data):
                if path.endswith("/p"):
                    super().create(path, b"winner")
                    raise NodeExistsError(path)
                return super().create(path, data)

        store = LosingStore()
        src = TreePropertySource(store, PROPERTIES_LOCATION)
        src.put_if_absent("p", "loser")
        assert src.get_property("p") == "winner"
        src.close()


class TestUpdateAndGet:
    def test_update_property(self, store, source):
        set_server_property(store, "u", "1")
        source.update_property("u", "2")
        assert source.get_property("u") == "2"

    def test_update_missing_raises(self, source):
        with pytest.raises(NoNodeError):
            source.update_property("missing", "x")

    def test_get_property_default(self, source):
        assert source.get_property("missing") is None
        assert source.get_property("missing", int, 5) == 5


class TestBulkReads:
    def test_read_all_properties(self, store, source):
        set_server_property(store, "propName1", "some Value 1")
        set_server_property(store, "propName2", "some Value 2")
        props = source.read_all_properties()
        assert props == {"propName1": "some Value 1", "propName2": "some Value 2"}

    def test_read_all_when_nothing_present(self, source):
        assert source.read_all_properties() == {}

    def test_read_all_subtree_properties(self, store, source):
        set_server_property(store, "a/b", "1")
        set_server_property(store, "c", "2")
        assert source.read_all_subtree_properties() == {"a": "", "a/b": "1", "c": "2"}
        assert source.read_all_subtree_properties("a") == {"a/b": "1"}
        assert source.read_all_subtree_properties("missing") == {}

    def test_bulk_read_bypasses_mirror(self, store, source):
        """Values written behind the watch's back are still read."""
        store._nodes[PROPERTIES_LOCATION] = NodeData(b"", 0)
        store._nodes[f"{PROPERTIES_LOCATION}/hidden"] = NodeData(b"x", 0)
        assert source.read_all_properties() == {"hidden": "x"}
        assert source.get_property("hidden") is None

    def test_invalid_utf8_is_a_marshalling_error(self, store, source):
        store.create(f"{PROPERTIES_LOCATION}/bin", b"\xff\xfe")
        with pytest.raises(PropertyMarshallingError):
            source.get_property("bin")
        with pytest.raises(PropertyMarshallingError):
            source.read_all_properties()
        with pytest.raises(PropertyMarshallingError):
            source.read_all_subtree_properties()

    def test_invalid_utf8_update_is_logged(self, store, source, caplog):
        slot = []
        sub = source.subscribe_and_call_listener("bin", str, OptionalDefaultValue.of("d"), slot.append)
        with caplog.at_level(logging.ERROR, logger="dynprop.source.tree"):
            store.create(f"{PROPERTIES_LOCATION}/bin", b"\xff\xfe")
        assert slot == ["d"]
        assert "Failed to read new value of property bin" in caplog.text
        sub.close()

    def test_timeout_is_surfaced(self, source, store):
        def slow(path, timeout):
            raise PropertySourceTimeoutError(f"Listing {path}", timeout)

        store.get_children_data = slow
        with pytest.raises(PropertySourceTimeoutError):
            source.read_all_properties()


class TestLifecycle:
    def test_initial_load_timeout(self):
        class SilentStore(InMemoryTreeStore):
            def watch(self, root, listener):
                return super().watch(root, lambda event: None)

        with pytest.raises(PropertySourceTimeoutError):
            TreePropertySource(SilentStore(), PROPERTIES_LOCATION, read_timeout=0.05)

    def test_initial_snapshot_is_mirrored(self, store):
        set_server_property(store, "pre", "existing")
        src = TreePropertySource(store, PROPERTIES_LOCATION)
        assert src.get_property("pre") == "existing"
        src.close()

    def test_root_must_be_absolute(self, store):
        with pytest.raises(ValueError):
            TreePropertySource(store, "relative/path")

    def test_close_stops_dispatch(self, store):
        src = TreePropertySource(store, PROPERTIES_LOCATION)
        slot = []
        src.subscribe_and_call_listener(TEST_PROP_KEY, str, OptionalDefaultValue.of("d"), slot.append)
        src.close()
        src.close()
        set_server_property(store, TEST_PROP_KEY, "after close")
        assert slot == ["d"]

    def test_upload_initial_properties(self, store, source):
        set_server_property(store, "existing", "stored")
        merged = source.upload_initial_properties({"existing": "default", "fresh": 3})
        assert merged == {"existing": "stored", "fresh": "3"}
        assert source.get_property("fresh", int) == 3
