from __future__ import annotations

import pytest

from tablelobby.config import LobbyRuntimeConfig
from tablelobby.envelope import make_notification
from tablelobby.service import LobbyService
from tablelobby.transport import Transport


class FakeNetwork:
    """Delivers notifications between FakeTransports synchronously, in order."""

    def __init__(self) -> None:
        self.transports: dict[str, FakeTransport] = {}

    def deliver(self, sender: str, payload: dict, recipients) -> None:
        env = make_notification(sender, payload)
        for pid in recipients:
            t = self.transports.get(pid)
            if t is not None and t.online:
                t._deliver(env)


class FakeTransport(Transport):
    def __init__(self, network: FakeNetwork, peer_id: str) -> None:
        super().__init__()
        self.network = network
        self._peer_id = peer_id
        self.online = False
        self.fail_connect = False
        self.broadcasts: list[dict] = []
        self.sends: list[tuple[dict, list[str]]] = []
        network.transports[peer_id] = self

    @property
    def peer_id(self) -> str | None:
        return self._peer_id

    def connect(self, endpoint=None) -> str:
        if self.fail_connect:
            raise ConnectionError("no route")
        self.online = True
        return self._peer_id

    def broadcast(self, payload: dict) -> None:
        self.broadcasts.append(payload)
        others = [pid for pid in self.network.transports if pid != self._peer_id]
        self.network.deliver(self._peer_id, payload, others)

    def send(self, payload: dict, recipients) -> None:
        recipients = list(recipients)
        self.sends.append((payload, recipients))
        self.network.deliver(self._peer_id, payload, recipients)

    @property
    def message_count(self) -> int:
        return len(self.broadcasts) + len(self.sends)

    def inject(self, sender: str, payload: dict) -> None:
        self._deliver(make_notification(sender, payload))


def quiet_config(**overrides) -> LobbyRuntimeConfig:
    # Long beacon interval so only the immediate first announcement happens.
    base = dict(beacon_interval_ms=60_000, join_timeout_ms=5_000)
    base.update(overrides)
    return LobbyRuntimeConfig(**base)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def make_peer(network):
    peers: list[LobbyService] = []

    def _make(peer_id: str, *, connect: bool = True, **overrides) -> LobbyService:
        transport = FakeTransport(network, peer_id)
        lobby = LobbyService(quiet_config(**overrides), transport)
        if connect:
            lobby.start()
        peers.append(lobby)
        return lobby

    yield _make

    for lobby in peers:
        lobby.stop()


class Recorder:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def listen(self, lobby: LobbyService, *events: str) -> Recorder:
        for name in events:
            lobby.add_listener(name, lambda payload, name=name: self.events.append((name, payload)))
        return self

    def of(self, name: str) -> list[object]:
        return [p for n, p in self.events if n == name]


@pytest.fixture
def recorder():
    return Recorder()
