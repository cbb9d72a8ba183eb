from __future__ import annotations

import threading

import pytest

from sizegate.admission.cache import DecisionCache


def test_lookup_unknown_returns_none():
    cache = DecisionCache(capacity=4)
    assert cache.lookup("Qmissing") is None


def test_insert_and_lookup_both_outcomes():
    cache = DecisionCache(capacity=4)
    assert cache.insert("Qallowed", True) is True
    assert cache.insert("Qdenied", False) is True

    assert cache.lookup("Qallowed") is True
    assert cache.lookup("Qdenied") is False
    assert len(cache) == 2


def test_existing_entry_is_not_overwritten():
    cache = DecisionCache(capacity=4)
    cache.insert("Qa", True)

    assert cache.insert("Qa", False) is False
    assert cache.lookup("Qa") is True
    assert len(cache) == 1


def test_fifo_eviction_ignores_lookups():
    cache = DecisionCache(capacity=3)
    for cid in ("Q1", "Q2", "Q3"):
        cache.insert(cid, True)
    # A read does not refresh Q1's position.
    assert cache.lookup("Q1") is True

    cache.insert("Q4", False)

    assert "Q1" not in cache
    assert [cid for cid, _ in cache.snapshot()] == ["Q2", "Q3", "Q4"]
    assert cache.evictions == 1


def test_reinsert_keeps_original_position():
    cache = DecisionCache(capacity=2)
    cache.insert("Q1", True)
    cache.insert("Q2", True)
    cache.insert("Q1", True)
    cache.insert("Q3", True)

    assert "Q1" not in cache
    assert "Q2" in cache


def test_insert_many_respects_capacity():
    cache = DecisionCache(capacity=3)
    inserted = cache.insert_many(["Qa", "Qb", "Qc", "Qd", "Qe"], False)

    assert inserted == 5
    assert len(cache) == 3
    assert [cid for cid, _ in cache.snapshot()] == ["Qc", "Qd", "Qe"]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        DecisionCache(capacity=0)


def test_concurrent_inserts_stay_bounded_and_unique():
    cache = DecisionCache(capacity=100)

    def worker(offset: int) -> None:
        for i in range(500):
            cache.insert(f"Q{(offset + i) % 300}", i % 2 == 0)

    threads = [threading.Thread(target=worker, args=(n * 37,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    entries = cache.snapshot()
    assert len(entries) <= 100
    assert len({cid for cid, _ in entries}) == len(entries)
