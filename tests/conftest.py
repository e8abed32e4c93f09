"""Shared fixtures for relay tests."""

from __future__ import annotations

import select
import socket
import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import replace

import pytest

from slot_relay.config import ServerConfig, load_default_config
from slot_relay.poller import ReadinessPoller
from slot_relay.server import RelayServer
from slot_relay.slots import ConnectionSlotPool
from slot_relay.types import RelayContext


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def nothing_received(sock: socket.socket, timeout: float = 0.2) -> bool:
    readable, _, _ = select.select([sock], [], [], timeout)
    return not readable


def recv_some(sock: socket.socket, timeout: float = 2.0) -> bytes:
    readable, _, _ = select.select([sock], [], [], timeout)
    if not readable:
        return b""
    return sock.recv(4096)


@pytest.fixture
def relay_config() -> ServerConfig:
    """Defaults, bound to an ephemeral loopback port with a short poll wait."""
    return replace(
        load_default_config(),
        host="127.0.0.1",
        port=0,
        max_clients=3,
        poll_timeout_ms=10,
    )


@pytest.fixture
def started_server(relay_config: ServerConfig) -> Iterator[RelayServer]:
    """A started server whose cycles the test drives with run_once()."""
    server = RelayServer(config=relay_config)
    server.start()
    try:
        yield server
    finally:
        server.close()


@pytest.fixture
def serving_server(relay_config: ServerConfig) -> Iterator[RelayServer]:
    """A server running serve_forever() on a background thread."""
    server = RelayServer(config=relay_config)
    server.start()
    thread = threading.Thread(target=server.serve_forever, name="RelayLoop", daemon=True)
    thread.start()
    server.thread = thread  # type: ignore[attr-defined]
    try:
        yield server
    finally:
        server.stop()
        thread.join(timeout=5)


class SocketPairClients:
    """Slots filled with socketpair ends, for relay tests without a listener."""

    def __init__(self, capacity: int = 3):
        self.context = RelayContext(
            slots=ConnectionSlotPool(capacity),
            poller=ReadinessPoller(),
        )
        self.peers: dict[int, socket.socket] = {}
        self._all: list[socket.socket] = []

    def add(self) -> int:
        server_end, client_end = socket.socketpair()
        self._all.extend([server_end, client_end])
        index = self.context.slots.allocate(server_end)
        assert index is not None
        self.context.poller.register(server_end)
        self.peers[index] = client_end
        return index

    def handle(self, index: int) -> socket.socket:
        handle = self.context.slots.get(index).handle
        assert handle is not None
        return handle

    def close(self) -> None:
        self.context.poller.close()
        for sock in self._all:
            sock.close()


@pytest.fixture
def pair_clients() -> Iterator[SocketPairClients]:
    clients = SocketPairClients(capacity=3)
    try:
        yield clients
    finally:
        clients.close()
