import pytest

from tablelobby.constants import K_DATA, K_FROM, K_KIND, K_RESULT
from tablelobby.envelope import make_notification, unwrap_notification, validate_notification


def test_validate_accepts_make_notification() -> None:
    env = make_notification("peer-a", {K_KIND: "tablemsg"})
    validate_notification(env)
    assert unwrap_notification(env) == ("peer-a", {K_KIND: "tablemsg"})


def test_validate_rejects_non_map() -> None:
    with pytest.raises(TypeError):
        validate_notification(["not", "a", "map"])


def test_validate_rejects_missing_result() -> None:
    env = make_notification("peer-a", {K_KIND: "newtable"})
    env.pop(K_RESULT)
    with pytest.raises(ValueError):
        validate_notification(env)


def test_validate_rejects_non_map_data() -> None:
    env = make_notification("peer-a", {K_KIND: "newtable"})
    env[K_RESULT][K_DATA] = "newtable"
    with pytest.raises(TypeError):
        validate_notification(env)


def test_validate_rejects_missing_or_empty_kind() -> None:
    env = make_notification("peer-a", {"tableId": "x"})
    with pytest.raises(TypeError):
        validate_notification(env)

    env = make_notification("peer-a", {K_KIND: ""})
    with pytest.raises(ValueError):
        validate_notification(env)


def test_validate_rejects_bad_sender() -> None:
    env = make_notification("", {K_KIND: "newtable"})
    with pytest.raises(ValueError):
        validate_notification(env)

    env = make_notification("peer-a", {K_KIND: "newtable"})
    env[K_RESULT][K_FROM] = 42
    with pytest.raises(TypeError):
        validate_notification(env)


def test_validate_allows_unknown_extension_keys() -> None:
    env = make_notification("peer-a", {K_KIND: "newtable", "future": True})
    env["id"] = None
    validate_notification(env)
