"""Admission control for new connections on the listening socket."""

from __future__ import annotations

import socket

from loguru import logger

from .types import RelayContext

SERVER_NOT_FULL = b"OK"
SERVER_FULL = b"FULL"


class ListenerAdmission:
    """Accepts pending connections and admits or rejects them by occupancy."""

    def __init__(self, listener: socket.socket, context: RelayContext):
        self.listener = listener
        self.context = context

    def try_accept(self) -> socket.socket | None:
        """
        Accept one pending connection.

        Returns the new client socket when it was admitted, None when it was
        rejected or the accept itself failed. Rejected connections are still
        accepted so they leave the backlog, told ``FULL`` and closed.
        """
        ctx = self.context

        if ctx.slots.is_full:
            logger.warning("*** Maximum client count reached - rejecting client connection ***")
            conn = self._accept()
            if conn is None:
                return None
            self._send_response(conn, SERVER_FULL)
            conn.close()
            ctx.stats.rejected += 1
            return None

        conn = self._accept()
        if conn is None:
            return None

        index = ctx.slots.allocate(conn)
        if index is None:
            # is_full was checked above and the loop is single-threaded
            raise RuntimeError("No free slot despite client count below capacity")

        ctx.poller.register(conn)
        ctx.stats.accepted += 1
        self._send_response(conn, SERVER_NOT_FULL)

        logger.info(
            f"Client connected on slot {index}. "
            f"There are now {ctx.client_count} client(s) connected."
        )
        return conn

    def _accept(self) -> socket.socket | None:
        try:
            conn, addr = self.listener.accept()
        except OSError as e:
            # Peer gave up between the poll and the accept
            logger.debug(f"Accept failed: {e}")
            return None

        # Client sockets are serviced with plain blocking reads and sends
        conn.setblocking(True)
        logger.debug(f"Accepted connection from {addr[0]}:{addr[1]}")
        return conn

    def _send_response(self, conn: socket.socket, response: bytes) -> None:
        try:
            conn.sendall(self.context.framing.encode(response))
        except OSError as e:
            logger.debug(f"Failed to send admission response {response!r}: {e}")
