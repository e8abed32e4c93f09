"""
Shared state for the relay loop.

The loop owns one ``RelayContext`` and hands it to the admission and relay
steps, so no component keeps module-level globals.
"""

from dataclasses import dataclass, field

from .framing import Framing, NulTerminatedFraming
from .poller import ReadinessPoller
from .slots import ConnectionSlotPool


@dataclass(frozen=True)
class ServerEndpoint:
    """Listening address, fixed for the life of the process."""

    host: str
    port: int
    resolved_ip: str | None = None

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass
class ShutdownSignal:
    """Set once when the shutdown command is seen; never cleared."""

    is_set: bool = False
    requested_by: int | None = None

    def set(self, requested_by: int | None = None) -> None:
        if self.is_set:
            return
        self.is_set = True
        self.requested_by = requested_by


@dataclass
class RelayStats:
    accepted: int = 0
    rejected: int = 0
    disconnects: int = 0
    messages_received: int = 0
    messages_relayed: int = 0
    failed_sends: int = 0

    def summary(self) -> str:
        return (
            f"accepted={self.accepted}, rejected={self.rejected}, "
            f"disconnects={self.disconnects}, received={self.messages_received}, "
            f"relayed={self.messages_relayed}, failed_sends={self.failed_sends}"
        )


@dataclass
class RelayContext:
    slots: ConnectionSlotPool
    poller: ReadinessPoller
    framing: Framing = field(default_factory=NulTerminatedFraming)
    buffer_size: int = 512
    shutdown: ShutdownSignal = field(default_factory=ShutdownSignal)
    stats: RelayStats = field(default_factory=RelayStats)

    @property
    def client_count(self) -> int:
        return self.slots.client_count
