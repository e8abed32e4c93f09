"""Per-client read, broadcast and disconnect handling."""

from __future__ import annotations

import socket
from enum import Enum

from loguru import logger

from .types import RelayContext

SHUTDOWN_COMMAND = b"shutdown"


class RelayOutcome(Enum):
    DISCONNECTED = "disconnected"
    EMPTY = "empty"
    RELAYED = "relayed"
    SHUTDOWN = "shutdown"


class BroadcastRelay:
    """Services one ready client slot per call."""

    def __init__(self, context: RelayContext):
        self.context = context

    def handle_ready(self, index: int) -> RelayOutcome:
        """
        Read one message from slot ``index`` and act on it.

        A zero-byte read or a read error means the peer went away: the slot is
        released and nothing is broadcast. Otherwise the decoded message goes
        to every other occupied slot in index order, and the shutdown command
        is honoured only after that broadcast.
        """
        ctx = self.context
        handle = ctx.slots.get(index).handle
        if handle is None:
            raise ValueError(f"Slot {index} is not occupied")

        # The buffer lives only for this step
        try:
            chunk = handle.recv(ctx.buffer_size)
        except OSError as e:
            logger.debug(f"Read from client {index} failed: {e}")
            chunk = b""

        if not chunk:
            self._disconnect(index, handle)
            return RelayOutcome.DISCONNECTED

        ctx.stats.messages_received += 1
        message = ctx.framing.fit(ctx.framing.decode(chunk), ctx.buffer_size)
        text = message.decode("utf-8", errors="replace")
        logger.info(f"Received: >>>> {text} from client number: {index}")

        if ctx.framing.is_empty(message):
            return RelayOutcome.EMPTY

        self.broadcast(index, message)

        if message == SHUTDOWN_COMMAND:
            ctx.shutdown.set(requested_by=index)
            logger.warning("Disconnecting all clients and shutting down the server...")
            return RelayOutcome.SHUTDOWN

        return RelayOutcome.RELAYED

    def broadcast(self, origin: int, message: bytes) -> list[int]:
        """Send ``message`` to every occupied slot except ``origin``.

        Returns the indices the message was delivered to.
        """
        ctx = self.context
        wire = ctx.framing.encode(message)
        delivered: list[int] = []

        for slot in ctx.slots:
            if slot.index == origin or not slot.occupied or slot.handle is None:
                continue

            logger.debug(
                f"Retransmitting message ({len(wire)} bytes) to client number: {slot.index}"
            )
            try:
                slot.handle.sendall(wire)
            except OSError as e:
                ctx.stats.failed_sends += 1
                logger.debug(f"Send to client {slot.index} failed: {e}")
                continue

            ctx.stats.messages_relayed += 1
            delivered.append(slot.index)

        return delivered

    def _disconnect(self, index: int, handle: socket.socket) -> None:
        ctx = self.context
        logger.info(f"Client {index} disconnected.")

        ctx.poller.unregister(handle)
        handle.close()
        ctx.slots.release(index)
        ctx.stats.disconnects += 1

        logger.info(f"Server is now connected to: {ctx.client_count} client(s).")
