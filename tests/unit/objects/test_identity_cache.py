"""Identity cache: one live instance per (table, id), held weakly."""

from __future__ import annotations

import gc
import threading

from jello.objects.identity import IdentityCache


class _Stub:
    __slots__ = ("__weakref__", "label")

    def __init__(self, label: str) -> None:
        self.label = label


def test_get_or_create_loads_once() -> None:
    cache = IdentityCache()
    calls: list[str] = []

    def loader() -> _Stub:
        calls.append("load")
        return _Stub("a")

    first = cache.get_or_create("person", "a", loader)
    second = cache.get_or_create("person", "a", loader)

    assert first is second
    assert calls == ["load"]
    assert ("person", "a") in cache
    assert len(cache) == 1


def test_keys_are_scoped_by_table() -> None:
    cache = IdentityCache()
    person = cache.get_or_create("person", "x", lambda: _Stub("p"))
    animal = cache.get_or_create("animal", "x", lambda: _Stub("a"))
    assert person is not animal


def test_entries_do_not_keep_instances_alive() -> None:
    cache = IdentityCache()
    held = cache.get_or_create("person", "a", lambda: _Stub("a"))
    assert cache.get("person", "a") is held

    del held
    gc.collect()

    assert cache.get("person", "a") is None
    assert len(cache) == 0


def test_discard_and_clear() -> None:
    cache = IdentityCache()
    a = cache.get_or_create("person", "a", lambda: _Stub("a"))
    b = cache.get_or_create("person", "b", lambda: _Stub("b"))

    cache.discard("person", "a")
    cache.discard("person", "missing")
    assert cache.get("person", "a") is None
    assert cache.get("person", "b") is b

    cache.clear()
    assert len(cache) == 0
    del a, b


def test_concurrent_loads_yield_one_instance() -> None:
    cache = IdentityCache()
    barrier = threading.Barrier(8)
    results: list[object] = []
    lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        got = cache.get_or_create("person", "a", lambda: _Stub("a"))
        with lock:
            results.append(got)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8
    assert all(item is results[0] for item in results)
