import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from server.core.MemoryTable import DuplicatePolicy, UserTable
from shared.errors import NameInUseError


class StubLink:
    def __init__(self, name: str) -> None:
        self.name = name


def test_lookup_after_register_and_remove():
    users = UserTable()
    link = StubLink("a")

    users.register("alice", link)
    record = users.lookup("alice")
    assert record is not None
    assert record.link is link
    assert record.username == "alice"

    assert users.remove("alice") is True
    assert users.lookup("alice") is None


def test_remove_is_idempotent():
    users = UserTable()
    users.register("alice", StubLink("a"))

    assert users.remove("alice") is True
    assert users.remove("alice") is False
    assert users.remove("never-registered") is False


def test_register_overwrites():
    users = UserTable()
    first, second = StubLink("1"), StubLink("2")
    users.register("alice", first)
    users.register("alice", second)

    assert users.lookup("alice").link is second
    assert len(users) == 1


def test_remove_with_link_only_removes_own_entry():
    users = UserTable()
    old, new = StubLink("old"), StubLink("new")
    users.register("alice", old)
    users.register("alice", new)

    assert users.remove("alice", link=old) is False
    assert users.lookup("alice").link is new
    assert users.remove("alice", link=new) is True
    assert "alice" not in users


def test_claim_reject_keeps_existing_holder():
    users = UserTable()
    holder = StubLink("holder")
    users.claim("alice", holder, DuplicatePolicy.REJECT)

    with pytest.raises(NameInUseError) as exc_info:
        users.claim("alice", StubLink("intruder"), DuplicatePolicy.REJECT)

    assert exc_info.value.username == "alice"
    assert users.lookup("alice").link is holder


def test_claim_replace_overwrites_without_displacing():
    users = UserTable()
    old, new = StubLink("old"), StubLink("new")
    users.claim("alice", old, DuplicatePolicy.REPLACE)

    record, displaced = users.claim("alice", new, DuplicatePolicy.REPLACE)

    assert record.link is new
    assert displaced is None
    assert users.lookup("alice").link is new


def test_claim_kick_returns_displaced_link():
    users = UserTable()
    old, new = StubLink("old"), StubLink("new")
    users.claim("alice", old, DuplicatePolicy.KICK)

    _, displaced = users.claim("alice", new, DuplicatePolicy.KICK)

    assert displaced is old
    assert users.lookup("alice").link is new


def test_reclaim_by_same_link_is_not_a_duplicate():
    users = UserTable()
    link = StubLink("a")
    users.claim("alice", link, DuplicatePolicy.REJECT)

    _, displaced = users.claim("alice", link, DuplicatePolicy.REJECT)

    assert displaced is None


def test_usernames_snapshot_is_sorted_across_shards():
    users = UserTable(shards=4)
    for name in ["carol", "alice", "bob", "dave", "erin"]:
        users.register(name, StubLink(name))

    assert users.usernames() == ["alice", "bob", "carol", "dave", "erin"]
    assert len(users) == 5
    assert "bob" in users
    assert 42 not in users

    records = users.records()
    assert [r.username for r in records] == users.usernames()
    assert all(r.link.name == r.username for r in records)
    assert all(r.connected_at > 0 for r in records)


def test_single_shard_table_still_works():
    users = UserTable(shards=1)
    users.register("alice", StubLink("a"))
    users.register("bob", StubLink("b"))
    assert users.usernames() == ["alice", "bob"]


def test_rejects_zero_shards():
    with pytest.raises(ValueError):
        UserTable(shards=0)


def test_concurrent_claims_for_same_name_admit_exactly_one():
    users = UserTable()
    barrier = threading.Barrier(16)
    winners = []
    lock = threading.Lock()

    def contender(i: int) -> None:
        link = StubLink(str(i))
        barrier.wait()
        try:
            users.claim("alice", link, DuplicatePolicy.REJECT)
        except NameInUseError:
            return
        with lock:
            winners.append(link)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(contender, range(16)))

    assert len(winners) == 1
    assert users.lookup("alice").link is winners[0]


def test_concurrent_register_and_remove_distinct_names():
    users = UserTable()
    names = [f"user{i}" for i in range(200)]

    def churn(name: str) -> None:
        link = StubLink(name)
        for _ in range(50):
            users.register(name, link)
            assert users.lookup(name).link is link
            assert users.remove(name, link=link) is True
        users.register(name, link)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(churn, names))

    assert users.usernames() == sorted(names)
