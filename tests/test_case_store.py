import pytest

from assessment.case_store import CaseStore


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_put_get_remove(clock):
    store = CaseStore(ttl_sec=10, clock=clock)
    store.put("A", 1)

    assert store.get("A") == 1
    assert "A" in store
    assert store.remove("A") is True
    assert store.get("A") is None
    assert store.remove("A") is False


def test_entries_expire(clock):
    store = CaseStore(ttl_sec=10, clock=clock)
    store.put("A", 1)
    clock.now = 9.9
    assert store.get("A") == 1
    clock.now = 10.0
    assert store.get("A") is None
    assert len(store) == 0


def test_keys_purges_expired(clock):
    store = CaseStore(ttl_sec=10, clock=clock)
    store.put("A", 1)
    clock.now = 5
    store.put("B", 2)
    clock.now = 12
    assert store.keys() == ["B"]


def test_put_refreshes_ttl(clock):
    store = CaseStore(ttl_sec=10, clock=clock)
    store.put("A", 1)
    clock.now = 8
    store.put("A", 2)
    clock.now = 15
    assert store.get("A") == 2


def test_capacity_evicts_oldest(clock):
    store = CaseStore(ttl_sec=10, max_entries=2, clock=clock)
    store.put("A", 1)
    store.put("B", 2)
    store.put("C", 3)
    assert store.keys() == ["B", "C"]


def test_instances_are_isolated(clock):
    first = CaseStore(clock=clock)
    second = CaseStore(clock=clock)
    first.put("A", 1)
    assert second.get("A") is None
