"""Repository tests for the stock ledger.

They cover the all-or-nothing reservation contract, idempotent settlement per
reservation id, and that concurrent reservations against the same stock key
never exceed the initial count.
"""
import threading
import uuid


def test_reserve_decrements_every_line(inventory):
    inventory.upsert("P1", "M", 3)
    inventory.upsert("P2", None, 5)
    assert inventory.reserve("r1", [("P1", "M", 2), ("P2", "", 1)]) is None
    assert inventory.get("P1", "M") == (1, 0)
    assert inventory.get("P2") == (4, 0)


def test_reserve_is_all_or_nothing(inventory):
    inventory.upsert("P1", "M", 3)
    inventory.upsert("P2", None, 1)
    failed = inventory.reserve("r1", [("P1", "M", 2), ("P2", "", 2)])
    assert failed == 1
    assert inventory.get("P1", "M") == (3, 0)
    assert inventory.get("P2") == (1, 0)


def test_unknown_key_fails_its_line(inventory):
    inventory.upsert("P1", "M", 3)
    assert inventory.reserve("r1", [("P1", "L", 1)]) == 0
    assert inventory.get("P1", "M") == (3, 0)


def test_duplicate_keys_are_checked_against_their_sum(inventory):
    inventory.upsert("P1", "M", 3)
    assert inventory.reserve("r1", [("P1", "M", 2), ("P1", "M", 2)]) == 0
    assert inventory.get("P1", "M") == (3, 0)


def test_reserve_replay_does_not_decrement_twice(inventory):
    inventory.upsert("P1", None, 5)
    assert inventory.reserve("r1", [("P1", "", 2)]) is None
    assert inventory.reserve("r1", [("P1", "", 2)]) is None
    assert inventory.get("P1") == (3, 0)


def test_commit_counts_sale_once_and_blocks_release(inventory):
    inventory.upsert("P1", "S", 2)
    inventory.reserve("r1", [("P1", "S", 1)])
    assert inventory.commit("r1", [("P1", "S", 1)]) is True
    assert inventory.commit("r1", [("P1", "S", 1)]) is False
    assert inventory.release("r1", [("P1", "S", 1)]) is False
    assert inventory.get("P1", "S") == (1, 1)


def test_release_restores_stock_once(inventory):
    inventory.upsert("P1", "S", 2)
    inventory.reserve("r1", [("P1", "S", 2)])
    assert inventory.release("r1", [("P1", "S", 2)]) is True
    assert inventory.release("r1", [("P1", "S", 2)]) is False
    assert inventory.get("P1", "S") == (2, 0)


def test_release_of_unknown_reservation_is_noop(inventory):
    inventory.upsert("P1", None, 2)
    assert inventory.release("missing", [("P1", "", 1)]) is False
    assert inventory.get("P1") == (2, 0)


def test_reserve_after_release_of_unknown_id_takes_nothing(inventory):
    # the caller timed out and released before its reserve reached the ledger
    inventory.upsert("P1", "M", 2)
    assert inventory.release("late", [("P1", "M", 1)]) is False
    assert inventory.reserve("late", [("P1", "M", 1)]) is None
    assert inventory.get("P1", "M") == (2, 0)
    assert inventory.commit("late", [("P1", "M", 1)]) is False
    assert inventory.get("P1", "M") == (2, 0)


def test_levels_reads_several_keys(inventory):
    inventory.upsert("P1", "M", 3)
    inventory.upsert("P2", None, 1)
    assert inventory.levels([("P1", "M"), ("P2", None), ("P3", "L")]) == [
        ("P1", "M", 3, 0),
        ("P2", "", 1, 0),
        ("P3", "L", 0, 0),
    ]


def test_concurrent_reservations_never_oversell(inventory):
    inventory.upsert("LAST", "M", 3)
    results = []
    lock = threading.Lock()

    def worker():
        out = inventory.reserve(str(uuid.uuid4()), [("LAST", "M", 1)])
        with lock:
            results.append(out)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(None) == 3
    assert results.count(0) == 5
    assert inventory.get("LAST", "M") == (0, 0)
