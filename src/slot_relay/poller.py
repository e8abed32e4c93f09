"""Readiness polling over native sockets, backed by ``zmq.Poller``."""

from __future__ import annotations

import socket

import zmq
from loguru import logger


class PollerError(RuntimeError):
    """Raised when the poll set cannot be created. Fatal at startup."""


class ReadinessPoller:
    """
    Tracks a set of sockets and reports which are readable after each poll.

    ``zmq.Poller`` accepts any object exposing ``fileno()``, so plain TCP
    sockets are polled the same way the ZeroMQ sockets elsewhere are. Readiness
    answers are only meaningful for the most recent ``poll()`` call.
    """

    def __init__(self) -> None:
        try:
            self._poller = zmq.Poller()
        except zmq.ZMQError as e:
            raise PollerError(f"Failed to allocate the poll set: {e}") from e
        self._registered: set[socket.socket] = set()
        self._ready: set[socket.socket] = set()

    def __len__(self) -> int:
        return len(self._registered)

    def __contains__(self, handle: object) -> bool:
        return handle in self._registered

    def register(self, handle: socket.socket) -> None:
        if handle in self._registered:
            raise ValueError(f"Socket {handle.fileno()} is already registered")
        self._poller.register(handle, zmq.POLLIN)
        self._registered.add(handle)

    def unregister(self, handle: socket.socket) -> None:
        """Drop a socket from the poll set. Must happen before it is closed."""
        if handle not in self._registered:
            return
        self._poller.unregister(handle)
        self._registered.discard(handle)
        self._ready.discard(handle)

    def poll(self, timeout_ms: int = 0) -> int:
        """Check every registered socket once; return how many are readable."""
        if not self._registered:
            self._ready = set()
            return 0
        events = self._poller.poll(timeout_ms)
        self._ready = {
            handle
            for handle, event in events
            if event & zmq.POLLIN or event & zmq.POLLERR
        }
        return len(self._ready)

    def is_ready(self, handle: socket.socket | None) -> bool:
        return handle is not None and handle in self._ready

    def close(self) -> None:
        """Unregister everything. Sockets themselves are left open."""
        for handle in list(self._registered):
            try:
                self._poller.unregister(handle)
            except KeyError:
                logger.debug(f"Poller had already dropped {handle!r}")
        self._registered.clear()
        self._ready.clear()
