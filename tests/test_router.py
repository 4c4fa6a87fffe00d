from tablelobby.constants import (
    K_KIND,
    M_JOIN_REQUEST,
    M_JOIN_TABLE,
    M_LEAVE_TABLE,
    M_NEW_TABLE,
    M_TABLE_MSG,
)
from tablelobby.messages import build_chat_message, build_table_message
from tablelobby.tables import Table


def _announcement(owner: str, table_id: str) -> dict:
    return build_table_message(M_NEW_TABLE, Table(owner, table_id, "t", ["*"], [owner], {}))


def test_newtable_ignored_unless_capturing(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_NEW_TABLE)

    a.transport.inject("peer-x", _announcement("peer-x", "1"))
    assert a.announced_tables == []
    assert recorder.of(M_NEW_TABLE) == []

    a.capture_new_tables = True
    a.transport.inject("peer-x", _announcement("peer-x", "1"))
    a.transport.inject("peer-x", _announcement("peer-x", "1"))
    assert len(a.announced_tables) == 1
    assert len(recorder.of(M_NEW_TABLE)) == 1
    assert a.stats_manager.get("captures_rejected") == 1


def test_capture_toggle_works_offline(make_peer) -> None:
    a = make_peer("peer-a", connect=False)
    a.capture_new_tables = True
    a.transport.inject("peer-x", _announcement("peer-x", "1"))
    assert len(a.announced_tables) == 1


def test_join_request_ignored_without_open_tables(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_JOIN_REQUEST)
    req = build_table_message(M_JOIN_REQUEST, Table("peer-a", "t-1", "t", ["*"], ["peer-a"], {}))
    a.transport.inject("peer-b", req)
    assert recorder.of(M_JOIN_REQUEST) == []
    assert a.transport.message_count == 0


def test_join_request_fills_all_matching_slots_by_default(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_JOIN_REQUEST)
    table = a.create_table("t", 2, announce=False)

    a.transport.inject("peer-b", build_table_message(M_JOIN_REQUEST, table))

    stored = a.get_joined_tables(table_id=table.table_id)[0]
    assert stored.required_slots == []
    assert stored.joined_peers == ["peer-a", "peer-b", "peer-b"]
    assert len(recorder.of(M_JOIN_REQUEST)) == 2
    assert a.open_tables is False


def test_join_request_fills_one_slot_when_configured(make_peer) -> None:
    a = make_peer("peer-a", consume_all_matching_slots=False)
    table = a.create_table("t", 2, announce=False)

    a.transport.inject("peer-b", build_table_message(M_JOIN_REQUEST, table))

    stored = a.get_joined_tables(table_id=table.table_id)[0]
    assert stored.required_slots == ["*"]
    assert stored.joined_peers == ["peer-a", "peer-b"]
    assert a.open_tables is True
    payload, recipients = a.transport.sends[-1]
    assert payload[K_KIND] == M_JOIN_TABLE
    assert recipients == ["peer-b"]


def test_join_request_respects_reserved_slots(make_peer) -> None:
    a = make_peer("peer-a")
    table = a.create_table("t", ["peer-c"], announce=False)

    a.transport.inject("peer-b", build_table_message(M_JOIN_REQUEST, table))
    assert a.get_joined_tables()[0].joined_peers == ["peer-a"]
    assert a.transport.message_count == 0

    a.transport.inject("peer-c", build_table_message(M_JOIN_REQUEST, table))
    assert a.get_joined_tables()[0].joined_peers == ["peer-a", "peer-c"]


def test_open_flag_stays_set_while_any_owned_table_is_open(make_peer) -> None:
    a = make_peer("peer-a")
    first = a.create_table("one", 1, announce=False)
    a.create_table("two", 1, announce=False)

    a.transport.inject("peer-b", build_table_message(M_JOIN_REQUEST, first))
    assert a.open_tables is True


def test_tablemsg_passes_through(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_TABLE_MSG)
    table = Table("peer-a", "t-1", "t", [], ["peer-a", "peer-b"], {})
    a.transport.inject("peer-b", build_chat_message(table, {"raise": 20}))

    (msg,) = recorder.of(M_TABLE_MSG)
    assert msg.sender == "peer-b"
    assert msg.message == {"raise": 20}
    assert msg.raw["result"]["from"] == "peer-b"


def test_leavetable_removes_sender(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_LEAVE_TABLE)
    table = a.create_table("t", ["peer-b"], announce=False)
    a.transport.inject("peer-b", build_table_message(M_JOIN_REQUEST, table))

    a.transport.inject("peer-b", build_table_message(M_LEAVE_TABLE, table))
    assert a.get_joined_tables()[0].joined_peers == ["peer-a"]
    assert len(recorder.of(M_LEAVE_TABLE)) == 1

    # Not a member any more: nothing to do.
    a.transport.inject("peer-b", build_table_message(M_LEAVE_TABLE, table))
    assert len(recorder.of(M_LEAVE_TABLE)) == 1


def test_irrelevant_traffic_is_dropped(make_peer) -> None:
    a = make_peer("peer-a")
    a.transport._deliver({"jsonrpc": "2.0", "method": "ping"})
    a.transport._deliver("garbage")
    a.transport.inject("peer-x", {K_KIND: "unknown"})
    a.transport.inject("peer-x", {"no": "kind"})
    assert a.stats_manager.get("notifications_in") == 4
    assert a.stats_manager.get("notifications_ignored") == 4


def test_listener_errors_do_not_break_dispatch(make_peer, recorder) -> None:
    a = make_peer("peer-a", capture_new_tables=True)

    def boom(_payload) -> None:
        raise RuntimeError("listener bug")

    a.add_listener(M_NEW_TABLE, boom)
    recorder.listen(a, M_NEW_TABLE)
    a.transport.inject("peer-x", _announcement("peer-x", "1"))
    assert len(recorder.of(M_NEW_TABLE)) == 1
    assert a.remove_listener(M_NEW_TABLE, boom)
    assert not a.remove_listener(M_NEW_TABLE, boom)


def test_relayed_announcement_is_not_captured(make_peer, recorder) -> None:
    a = make_peer("peer-a", capture_new_tables=True)
    recorder.listen(a, M_NEW_TABLE)

    a.transport.inject("peer-x", _announcement("peer-b", "1"))
    assert a.announced_tables == []
    assert a.stats_manager.get("captures_rejected") == 1

    a.transport.inject("peer-b", _announcement("peer-b", "1"))
    a.transport.inject("peer-x", _announcement("peer-b", "1"))
    assert [(t.owner_peer_id, t.table_id) for t in a.announced_tables] == [("peer-b", "1")]
    assert len(recorder.of(M_NEW_TABLE)) == 1


def test_join_table_update_recomputes_open_flag(make_peer, recorder) -> None:
    a = make_peer("peer-a")
    recorder.listen(a, M_JOIN_TABLE)
    table = a.create_table("t", 2, announce=False)
    assert a.open_tables is True

    update = table.copy()
    update.required_slots = []
    update.joined_peers = ["peer-a", "peer-b", "peer-c"]
    a.transport.inject("peer-b", build_table_message(M_JOIN_TABLE, update))

    assert a.get_joined_tables(table_id=table.table_id)[0].required_slots == []
    assert len(recorder.of(M_JOIN_TABLE)) == 1
    assert a.open_tables is False
