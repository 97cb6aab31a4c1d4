import random
import threading

import pytest

from linechat.registry import DuplicateSession, SessionRegistry
from linechat.session import Session


class _NullOutbound:
    def deliver(self, line: str) -> bool:
        return True

    def close(self, timeout=None) -> None:
        pass


def _session(name: str) -> Session:
    return Session(name, _NullOutbound())


def test_add_makes_session_visible_immediately() -> None:
    reg = SessionRegistry()
    alice = _session("alice")
    reg.add(alice)

    assert reg.count() == 1
    assert len(reg) == 1
    assert alice in reg
    assert reg.snapshot() == (alice,)
    assert reg.get(alice.id) is alice


def test_remove_is_idempotent() -> None:
    reg = SessionRegistry()
    alice = _session("alice")
    reg.add(alice)

    assert reg.remove(alice) is True
    assert reg.remove(alice) is False
    assert reg.count() == 0
    assert alice not in reg


def test_remove_of_never_added_session_is_noop() -> None:
    reg = SessionRegistry()
    reg.add(_session("alice"))
    assert reg.remove(_session("bob")) is False
    assert reg.count() == 1


def test_duplicate_add_is_rejected_without_corrupting_entries() -> None:
    reg = SessionRegistry()
    alice = _session("alice")
    bob = _session("bob")
    reg.add(alice)
    reg.add(bob)

    with pytest.raises(DuplicateSession):
        reg.add(alice)

    impostor = Session("mallory", _NullOutbound(), session_id=bob.id)
    with pytest.raises(DuplicateSession):
        reg.add(impostor)

    assert reg.snapshot() == (alice, bob)
    # Removing the impostor must not evict the real entry with the same id.
    assert reg.remove(impostor) is False
    assert reg.get(bob.id) is bob


def test_find_by_name_is_case_insensitive() -> None:
    reg = SessionRegistry()
    alice = _session("Alice")
    reg.add(alice)

    for query in ("alice", "ALICE", "Alice", "aLiCe"):
        assert reg.find_by_name(query) is alice


def test_find_by_name_returns_first_in_insertion_order() -> None:
    reg = SessionRegistry()
    first = _session("sam")
    second = _session("SAM")
    reg.add(first)
    reg.add(second)

    assert reg.find_by_name("Sam") is first
    reg.remove(first)
    assert reg.find_by_name("Sam") is second


def test_find_by_name_not_found_returns_none() -> None:
    reg = SessionRegistry()
    reg.add(_session("alice"))
    assert reg.find_by_name("nobody") is None
    assert reg.find_by_name("ali") is None


def test_snapshot_is_unaffected_by_later_mutation() -> None:
    reg = SessionRegistry()
    alice, bob = _session("alice"), _session("bob")
    reg.add(alice)
    reg.add(bob)

    seen = []
    for s in reg:
        if not seen:
            reg.remove(bob)
            reg.add(_session("carol"))
        seen.append(s)

    assert seen == [alice, bob]
    assert [s.display_name for s in reg.snapshot()] == ["alice", "carol"]


def test_count_matches_adds_minus_removes_for_random_sequences() -> None:
    rng = random.Random(1234)
    reg = SessionRegistry()
    live: list[Session] = []
    added = removed = 0

    for _ in range(500):
        if live and rng.random() < 0.45:
            victim = live.pop(rng.randrange(len(live)))
            assert reg.remove(victim) is True
            removed += 1
            # A second teardown of the same session changes nothing.
            if rng.random() < 0.3:
                assert reg.remove(victim) is False
        else:
            s = _session(f"user{rng.randrange(100)}")
            reg.add(s)
            live.append(s)
            added += 1
        assert reg.count() == added - removed == len(live)


def test_concurrent_add_remove_and_enumerate() -> None:
    reg = SessionRegistry()
    stable = [_session(f"stable{i}") for i in range(10)]
    for s in stable:
        reg.add(s)

    errors: list[BaseException] = []
    stop = threading.Event()

    def churn(worker: int) -> None:
        try:
            for i in range(200):
                s = _session(f"churn{worker}-{i}")
                reg.add(s)
                reg.remove(s)
        except BaseException as e:  # pragma: no cover - surfaced below
            errors.append(e)

    def enumerate_loop() -> None:
        try:
            while not stop.is_set():
                snap = reg.snapshot()
                ids = [s.id for s in snap]
                assert len(ids) == len(set(ids))
                for s in stable:
                    assert s in snap
        except BaseException as e:  # pragma: no cover - surfaced below
            errors.append(e)

    reader = threading.Thread(target=enumerate_loop)
    reader.start()
    workers = [threading.Thread(target=churn, args=(n,)) for n in range(8)]
    for t in workers:
        t.start()
    for t in workers:
        t.join()
    stop.set()
    reader.join()

    assert errors == []
    assert reg.snapshot() == tuple(stable)


def test_clear_all_returns_sessions_and_empties() -> None:
    reg = SessionRegistry()
    sessions = [_session("a"), _session("b")]
    for s in sessions:
        reg.add(s)

    assert reg.clear_all() == sessions
    assert reg.count() == 0
