import threading
import time

import pytest

from tablelobby.constants import E_JOIN_TIMEOUT, M_JOIN_REQUEST, M_JOIN_TABLE, M_NEW_TABLE
from tablelobby.errors import JoinRejectedError, JoinTimeoutError
from tablelobby.messages import build_table_message
from tablelobby.tables import Table


def test_two_peer_join(make_peer, recorder) -> None:
    b = make_peer("peer-b", capture_new_tables=True)
    a = make_peer("peer-a")
    recorder.listen(a, M_JOIN_REQUEST)
    recorder.listen(b, M_NEW_TABLE, M_JOIN_TABLE)

    a.create_table("t1", 1)
    assert len(recorder.of(M_NEW_TABLE)) == 1
    announced = b.announced_tables[0]

    future = b.join_table(announced)
    joined = future.result(timeout=1)

    assert joined.joined_peers == ["peer-a", "peer-b"]
    assert joined.required_slots == []
    for lobby in (a, b):
        tables = lobby.get_joined_tables(table_name="t1")
        assert len(tables) == 1
        assert tables[0].joined_peers == ["peer-a", "peer-b"]
        assert tables[0].required_slots == []

    assert a.open_tables is False
    assert len(recorder.of(M_JOIN_REQUEST)) == 1
    assert len(recorder.of(M_JOIN_TABLE)) == 1
    assert len(b.negotiator) == 0
    assert b.stats_manager.get("joins_accepted") == 1


def test_join_times_out_against_silent_owner(make_peer, recorder) -> None:
    b = make_peer("peer-b")
    recorder.listen(b, E_JOIN_TIMEOUT)
    table = Table("peer-gone", "t-9", "quiet", ["*"], ["peer-gone"], {"x": 1})

    started = time.monotonic()
    future = b.join_table(table, timeout_ms=100)
    with pytest.raises(JoinTimeoutError) as exc_info:
        future.result(timeout=2)
    assert time.monotonic() - started >= 0.09

    assert exc_info.value.table == table
    assert recorder.of(E_JOIN_TIMEOUT) == [table]
    assert len(b.negotiator) == 0
    assert b.get_joined_tables() == []


def test_join_without_matching_slot_sends_nothing(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-a", "t-1", "private", ["peer-c", "peer-d"], ["peer-a"], {})

    future = b.join_table(table)

    assert future.done()
    with pytest.raises(JoinRejectedError):
        future.result()
    assert b.transport.message_count == 0
    assert len(b.negotiator) == 0


def test_join_reserved_slot_for_self(make_peer) -> None:
    b = make_peer("peer-b")
    make_peer("peer-a").create_table("reserved", ["peer-b"], announce=False)
    table = Table("peer-a", "x", "x", ["peer-b"], ["peer-a"], {})
    # Different table id: the owner has nothing to admit us to, so it stays pending.
    future = b.join_table(table, timeout_ms=5000)
    assert not future.done()
    assert len(b.negotiator) == 1


def test_duplicate_join_is_rejected(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-gone", "t-1", "t", ["*"], ["peer-gone"], {})

    first = b.join_table(table, timeout_ms=5000)
    second = b.join_table(table.copy(), timeout_ms=5000)

    with pytest.raises(JoinRejectedError) as exc_info:
        second.result(timeout=1)
    assert not isinstance(exc_info.value, JoinTimeoutError)
    assert not first.done()
    assert len(b.transport.sends) == 1


def test_invalid_table_is_rejected(make_peer) -> None:
    b = make_peer("peer-b")
    bad = Table("", "t-1", "t", ["*"], [], {})
    with pytest.raises(JoinRejectedError):
        b.join_table(bad).result(timeout=1)
    assert b.transport.message_count == 0


def test_join_request_goes_to_owner_only(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-gone", "t-1", "t", ["*"], ["peer-gone", "peer-c"], {})
    b.join_table(table, timeout_ms=5000)
    payload, recipients = b.transport.sends[0]
    assert recipients == ["peer-gone"]
    assert payload["cpMsg"] == "jointablerequest"
    assert payload["tableId"] == "t-1"


def test_jointable_from_non_owner_does_not_resolve(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-a", "t-1", "t", ["*"], ["peer-a"], {})
    future = b.join_table(table, timeout_ms=5000)

    update = table.copy()
    update.required_slots = []
    update.joined_peers.append("peer-b")
    b.transport.inject("peer-mallory", build_table_message(M_JOIN_TABLE, update))
    assert not future.done()

    b.transport.inject("peer-a", build_table_message(M_JOIN_TABLE, update))
    assert future.result(timeout=1).joined_peers == ["peer-a", "peer-b"]


def test_stop_cancels_pending_joins(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-gone", "t-1", "t", ["*"], ["peer-gone"], {})
    future = b.join_table(table, timeout_ms=5000)
    b.stop()
    assert future.cancelled()


def test_cancel_callbacks_run_without_state_lock(make_peer) -> None:
    b = make_peer("peer-b")
    table = Table("peer-gone", "t-1", "t", ["*"], ["peer-gone"], {})
    future = b.join_table(table, timeout_ms=5000)
    lock_free = []

    def on_done(_future) -> None:
        # The lock is re-entrant, so try it from another thread.
        def try_lock() -> None:
            got = b._state_lock.acquire(blocking=False)
            if got:
                b._state_lock.release()
            lock_free.append(got)

        t = threading.Thread(target=try_lock)
        t.start()
        t.join()

    future.add_done_callback(on_done)
    b.stop()
    assert future.cancelled()
    assert lock_free == [True]
