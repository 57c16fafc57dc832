"""Tests for MappedProperty, CombinedProperty and the constant variants."""

import gc
import logging
import threading

import pytest

from dynprop import AtomicProperty, CombinedProperty, DynamicProperty, MappedProperty


class TestConstantAndDelegated:
    def test_constant_property(self):
        p = DynamicProperty.of(122)
        assert p.get() == 122

    def test_constant_property_of_none(self):
        assert DynamicProperty.of(None).get() is None

    def test_constant_add_and_call(self):
        p = DynamicProperty.of("x")
        log = []
        sub = p.add_and_call_listener(lambda old, new: log.append((old, new)))
        assert log == [(None, "x")]
        sub.close()

    def test_delegated_property(self):
        counter = iter(range(10))
        p = DynamicProperty.delegated(lambda: next(counter))
        assert p.get() == 0
        assert p.get() == 1

    def test_delegated_constant_supplier(self):
        assert DynamicProperty.delegated(lambda: 12).get() == 12


class TestMappedProperty:
    def test_mapped_property(self):
        string_property = AtomicProperty("159")
        int_property = string_property.map(int)
        assert int_property.get() == 159

        captured = []
        sub = int_property.add_and_call_listener(lambda old, new: captured.append((old, new)))
        string_property.set("305")

        assert captured[-1] == (159, 305)
        assert int_property.get() == 305
        sub.close()

    def test_chain(self):
        source = AtomicProperty(2)
        squared_plus_one = source.map(lambda v: v * v).map(lambda v: v + 1)
        assert squared_plus_one.get() == 5
        source.set(3)
        assert squared_plus_one.get() == 10

    def test_parent_listeners_run_before_mapped_listeners(self):
        source = AtomicProperty(1)
        order = []
        s1 = source.add_listener(lambda old, new: order.append("source"))
        mapped = source.map(lambda v: v * 10)
        s2 = mapped.add_listener(lambda old, new: order.append("mapped"))
        source.set(2)
        assert order == ["source", "mapped"]
        s1.close()
        s2.close()

    def test_construction_error_propagates(self):
        source = AtomicProperty("not a number")
        with pytest.raises(ValueError):
            source.map(int)
        assert source.listener_count() == 0

    def test_failing_transform_keeps_previous_value(self, caplog):
        source = AtomicProperty("1")
        mapped = source.map(int)
        log = []
        sub = mapped.add_listener(lambda old, new: log.append(new))

        with caplog.at_level(logging.ERROR):
            source.set("oops")

        assert mapped.get() == 1
        assert log == []
        assert "Failed to update property" in caplog.text

        source.set("7")
        assert mapped.get() == 7
        assert log == [7]
        sub.close()

    def test_close_releases_source_subscription(self):
        source = AtomicProperty(1)
        mapped = MappedProperty(source, lambda v: v + 1)
        assert source.listener_count() == 1
        log = []
        sub = mapped.add_listener(lambda old, new: log.append(new))

        mapped.close()
        mapped.close()

        assert source.listener_count() == 0
        source.set(5)
        assert mapped.get() == 2
        assert log == []
        assert sub.closed

    def test_unreachable_mapped_property_is_released(self):
        source = AtomicProperty(1)
        mapped = source.map(lambda v: v + 1)
        assert source.listener_count() == 1
        del mapped
        gc.collect()
        assert source.listener_count() == 0
        source.set(2)


class TestCombinedProperty:
    def test_combine_properties(self):
        first = AtomicProperty("hello")
        second = AtomicProperty("123")

        combined = CombinedProperty([first, second], lambda: first.get() + second.get())
        assert combined.get() == "hello123"

        first.set("hi")
        assert combined.get() == "hi123"

        second.set("42")
        assert combined.get() == "hi42"

    def test_recomputes_once_per_upstream_change(self):
        a = AtomicProperty(1)
        b = AtomicProperty(2)
        total = CombinedProperty([a, b], lambda: a.get() + b.get())
        log = []
        sub = total.add_listener(lambda old, new: log.append((old, new)))
        a.set(10)
        b.set(20)
        assert log == [(3, 12), (12, 30)]
        sub.close()

    def test_concurrent_changes_deliver_at_least_one_per_change(self):
        a = AtomicProperty(0)
        b = AtomicProperty(0)
        total = CombinedProperty([a, b], lambda: a.get() + b.get())
        log = []
        sub = total.add_listener(lambda old, new: log.append(new))

        threads = [
            threading.Thread(target=a.set, args=(1,)),
            threading.Thread(target=b.set, args=(2,)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log) >= 2
        assert total.get() == 3
        sub.close()

    def test_close_releases_all_sources(self):
        a = AtomicProperty("x")
        b = AtomicProperty("y")
        combined = CombinedProperty([a, b], lambda: a.get() + b.get())
        assert a.listener_count() == 1
        assert b.listener_count() == 1
        combined.close()
        assert a.listener_count() == 0
        assert b.listener_count() == 0
        a.set("z")
        assert combined.get() == "xy"

    def test_construction_error_releases_sources(self):
        a = AtomicProperty(1)

        def broken():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            CombinedProperty([a], broken)
        assert a.listener_count() == 0

    def test_combined_of_mapped(self):
        port = AtomicProperty("8080")
        host = AtomicProperty("localhost")
        port_number = port.map(int)
        url = CombinedProperty(
            [host, port_number], lambda: f"http://{host.get()}:{port_number.get()}"
        )
        assert url.get() == "http://localhost:8080"
        port.set("9090")
        assert url.get() == "http://localhost:9090"

    def test_unreachable_combined_property_is_released(self):
        a = AtomicProperty(1)
        b = AtomicProperty(2)
        combined = CombinedProperty([a, b], lambda: a.get() + b.get())
        assert a.listener_count() == b.listener_count() == 1
        del combined
        gc.collect()
        assert a.listener_count() == b.listener_count() == 0
