# server.py
import sys

# ruff: noqa: E402, I001

# Python version check - must be at the very beginning
MIN_PY = (3, 11)
if sys.version_info < MIN_PY:
    sys.stderr.write(
        f"ERROR: Slot Relay Server requires Python {MIN_PY[0]}.{MIN_PY[1]}+ "
        f"(current: {sys.version.split()[0]}).\n"
    )
    sys.exit(1)

import argparse
import errno
import platform
import socket
import time
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path

from loguru import logger

from . import network_utils
from .admission import ListenerAdmission
from .config import (
    ConfigurationError,
    DefaultConfigError,
    ServerConfig,
    create_config_from_args,
    load_default_config,
)
from .framing import FRAMINGS, get_framing
from .logging_utils import configure_logging
from .poller import PollerError, ReadinessPoller
from .relay import BroadcastRelay
from .slots import ConnectionSlotPool
from .types import RelayContext, ServerEndpoint


class ListenerError(RuntimeError):
    """Raised when the listening socket cannot be opened. Fatal at startup."""


class ServerState(Enum):
    CREATED = "created"
    RUNNING = "running"
    TERMINATING = "terminating"
    STOPPED = "stopped"


@lru_cache(maxsize=1)
def get_version() -> str:
    """
    Return the server version.
    Priority:
      1) importlib.metadata for 'slot-relay-server' (when installed)
      2) parse nearest pyproject.toml (when running from source)
      3) 'unknown'
    """
    import importlib.metadata as im

    try:
        return im.version("slot-relay-server")
    except im.PackageNotFoundError:
        pass

    for parent in Path(__file__).resolve().parents:
        toml_path = parent / "pyproject.toml"
        if toml_path.exists():
            data = tomllib.loads(toml_path.read_text(encoding="utf-8"))
            v = (data.get("project") or {}).get("version")
            if v:
                return v
            break

    return "unknown"


def _port_in_use_hints(port: int) -> list[str]:
    if platform.system() == "Windows":
        return [
            f"You can find the process using: netstat -ano | findstr :{port}",
            "And stop it using: taskkill /PID <PID> /F",
        ]
    return [
        f"You can find the process using: lsof -i :{port}",
        "And stop it using: kill <PID>",
    ]


class RelayServer:
    """
    Single-threaded relay loop.

    Each cycle polls every registered socket once, admits or rejects a pending
    connection, then services ready clients in slot order. The loop ends after
    the cycle in which a client sent the shutdown command.
    """

    def __init__(self, config: ServerConfig | None = None):
        self.config = config if config is not None else load_default_config()
        self.state = ServerState.CREATED
        self.endpoint: ServerEndpoint | None = None
        self.listener: socket.socket | None = None
        self.context: RelayContext | None = None
        self.admission: ListenerAdmission | None = None
        self.relay: BroadcastRelay | None = None
        self._last_status_log = 0.0

    def __repr__(self) -> str:
        return f"RelayServer@{self.endpoint or self.config.host}:{self.state.value}"

    @property
    def address(self) -> tuple[str, int]:
        """The address the listener is actually bound to."""
        if self.listener is None:
            raise RuntimeError("Server has not been started")
        return self.listener.getsockname()[:2]

    @property
    def client_count(self) -> int:
        return self.context.client_count if self.context else 0

    @property
    def is_running(self) -> bool:
        return self.state == ServerState.RUNNING

    def start(self) -> None:
        """Resolve the endpoint, create the poll set and open the listener."""
        cfg = self.config
        self.endpoint = network_utils.resolve_endpoint(cfg.host, cfg.port)

        poller = ReadinessPoller()
        logger.info(
            f"Allocated socket set for {cfg.max_clients} client(s) "
            f"plus the listening socket."
        )

        self.listener = self._open_listener(self.endpoint)
        poller.register(self.listener)

        self.context = RelayContext(
            slots=ConnectionSlotPool(cfg.max_clients),
            poller=poller,
            framing=get_framing(cfg.framing),
            buffer_size=cfg.buffer_size,
        )
        self.admission = ListenerAdmission(self.listener, self.context)
        self.relay = BroadcastRelay(self.context)
        self.state = ServerState.RUNNING
        self._last_status_log = time.monotonic()
        logger.info("Awaiting clients...")

    def _open_listener(self, endpoint: ServerEndpoint) -> socket.socket:
        bind_host = endpoint.resolved_ip or endpoint.host
        if bind_host in network_utils.WILDCARD_HOSTS:
            bind_host = ""

        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise ListenerError(f"Socket creation failed with error {e}") from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((bind_host, endpoint.port))
            sock.listen(self.config.accept_backlog)
        except (OSError, OverflowError) as e:
            sock.close()
            if isinstance(e, OSError) and e.errno == errno.EADDRINUSE:
                logger.error(
                    f"Error: Another server instance is already running on port {endpoint.port}"
                )
                for hint in _port_in_use_hints(endpoint.port):
                    logger.error(hint)
            raise ListenerError(f"Failed to open the server socket: {e}") from e

        # A readiness report for a peer that already left must not stall accept()
        sock.setblocking(False)
        logger.info(f"Successfully created server socket on {endpoint}.")
        return sock

    def run_once(self) -> int:
        """Run one poll/admit/relay cycle. Returns the ready socket count."""
        if self.state != ServerState.RUNNING:
            raise RuntimeError(f"Cannot run a cycle while {self.state.value}")
        ctx = self.context

        ready = ctx.poller.poll(self.config.poll_timeout_ms)
        if ready:
            logger.debug(f"There are currently {ready} socket(s) with data to be processed.")

        if ctx.poller.is_ready(self.listener):
            self.admission.try_accept()

        for index in range(ctx.slots.capacity):
            slot = ctx.slots.get(index)
            if slot.occupied and ctx.poller.is_ready(slot.handle):
                self.relay.handle_ready(index)

        if ctx.shutdown.is_set:
            self.state = ServerState.TERMINATING

        return ready

    def serve_forever(self) -> None:
        """Cycle until shutdown, then release the listener and the poll set."""
        if self.state == ServerState.CREATED:
            self.start()

        try:
            while self.state == ServerState.RUNNING:
                self.run_once()
                self._maybe_log_status()
        finally:
            self.close()

    def stop(self) -> None:
        """Ask the loop to finish after its current cycle."""
        if self.context is not None:
            self.context.shutdown.set()
        if self.state == ServerState.RUNNING:
            self.state = ServerState.TERMINATING

    def close(self) -> None:
        """Terminal action. Safe to call more than once."""
        if self.state == ServerState.STOPPED:
            return

        ctx = self.context
        if ctx is not None:
            ctx.poller.close()
            if self.config.close_clients_on_shutdown:
                for index in ctx.slots.occupied_indices():
                    handle = ctx.slots.release(index)
                    if handle is not None:
                        handle.close()

        if self.listener is not None:
            self.listener.close()

        self.state = ServerState.STOPPED
        if ctx is not None:
            logger.info(
                f"Server stopped with {ctx.client_count} client(s) still connected. "
                f"Stats: {ctx.stats.summary()}"
            )

    def _maybe_log_status(self) -> None:
        interval = self.config.status_log_interval
        if interval <= 0:
            return
        now = time.monotonic()
        if now - self._last_status_log >= interval:
            ctx = self.context
            logger.info(
                f"Status: {ctx.client_count}/{ctx.slots.capacity} clients, "
                f"{ctx.stats.summary()}"
            )
            self._last_status_log = now


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Slot Relay Server")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML configuration file",
    )
    parser.add_argument("--host", default=None, help="Listening address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Listening port (default: 22297)")
    parser.add_argument(
        "--max-clients",
        type=int,
        default=None,
        help="Maximum number of connected clients (default: 3)",
    )
    parser.add_argument(
        "--buffer-size",
        type=int,
        default=None,
        help="Maximum bytes read per message (default: 512)",
    )
    parser.add_argument(
        "--poll-timeout-ms",
        type=int,
        default=None,
        help="Milliseconds each poll may wait; 0 never waits (default: 0)",
    )
    parser.add_argument(
        "--framing",
        choices=sorted(FRAMINGS),
        default=None,
        help="Message framing (default: nul)",
    )
    parser.add_argument(
        "--close-clients-on-shutdown",
        action="store_true",
        help="Close connected clients when the server shuts down",
    )
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for JSON log files")
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-json-console", action="store_true", help="Emit console logs as JSON"
    )
    parser.add_argument("--log-rotation", default=None, help="loguru rotation rule (default: 10 MB)")
    parser.add_argument("--log-retention", default=None, help="loguru retention rule (default: 20 files)")
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s {get_version()}",
        help="Show version and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config, overrides = create_config_from_args(args)
    except (ConfigurationError, DefaultConfigError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except FileNotFoundError as e:
        print(f"ERROR: Configuration file not found: {e.filename}", file=sys.stderr)
        return 1
    except tomllib.TOMLDecodeError as e:
        print(f"ERROR: Invalid TOML in configuration file: {e}", file=sys.stderr)
        return 1

    configure_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )

    logger.info("=" * 60)
    logger.info("Slot Relay Server Starting")
    logger.info("=" * 60)
    logger.info(f"  Version: {get_version()}")
    logger.info(f"  Listening: {config.host}:{config.port}")
    logger.info(f"  Max clients: {config.max_clients}")
    logger.info(f"  Buffer size: {config.buffer_size} bytes")
    logger.info(f"  Framing: {config.framing}")
    for override in overrides:
        logger.info(
            f"  Config override: {override.key} = {override.new_value!r} "
            f"(default {override.default_value!r})"
        )
    local_ips = network_utils.get_local_ip_addresses()
    if local_ips:
        logger.info(f"  Reachable at: {', '.join(local_ips)}")
    logger.info("=" * 60)

    server = RelayServer(config=config)
    try:
        server.start()
    except (PollerError, ListenerError) as e:
        logger.error(str(e))
        server.close()
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal (Ctrl+C)...")
    finally:
        server.close()
        logger.info("Server shutdown complete.")

    return 0
