"""
Slot Relay Server Package

A capacity-bounded TCP relay. Clients connect, are told "OK" or "FULL", and
every message a client sends is rebroadcast to all other connected clients.
Any client can stop the server by sending "shutdown".

Main Classes:
    RelayServer: The single-threaded poll/admit/relay loop
    RelayClient: Blocking client for connecting to a relay server

Examples:
    # Run server via CLI (after installation)
    slot-relay-server --max-clients 3

    # Use server programmatically
    from slot_relay import RelayServer, load_default_config
    server = RelayServer(load_default_config())
    server.serve_forever()

    # Use client programmatically
    from slot_relay import RelayClient
    with RelayClient("localhost", 22297) as client:
        client.send("hello")
"""

from .client import AdmissionRejected, RelayClient
from .config import ServerConfig, load_default_config
from .framing import LengthPrefixedFraming, NulTerminatedFraming, get_framing
from .relay import RelayOutcome
from .server import RelayServer, ServerState, get_version

__all__ = [
    # Server API
    "RelayServer",
    "ServerState",
    "ServerConfig",
    "RelayOutcome",
    "load_default_config",
    "get_version",
    # Client API
    "RelayClient",
    "AdmissionRejected",
    # Framing
    "NulTerminatedFraming",
    "LengthPrefixedFraming",
    "get_framing",
]

try:
    from importlib.metadata import PackageNotFoundError, version

    try:
        __version__ = version("slot-relay-server")
    except PackageNotFoundError:
        __version__ = "unknown"
except ImportError:
    __version__ = "unknown"
