"""
Blocking client for the Slot Relay Server.

Connects, reads the admission response, then sends and receives framed
messages. Received bytes are buffered so several relayed messages arriving in
one TCP read are handed out one at a time.
"""

from __future__ import annotations

import argparse
import socket
import sys
import threading

from loguru import logger

from .admission import SERVER_FULL, SERVER_NOT_FULL
from .framing import FRAMINGS, Framing, get_framing
from .logging_utils import configure_logging
from .poller import ReadinessPoller

RECV_CHUNK = 4096


class AdmissionRejected(ConnectionError):
    """The server answered FULL."""


class RelayClient:
    """
    Client for one relay connection.

    Example:
        with RelayClient("localhost", 22297) as client:
            client.send("hello")
            print(client.receive(timeout=1.0))
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 22297,
        framing: str | Framing = "nul",
        connect_timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.framing = get_framing(framing) if isinstance(framing, str) else framing
        self.connect_timeout = connect_timeout
        self.admission: bytes | None = None

        self._sock: socket.socket | None = None
        self._poller = ReadinessPoller()
        self._buffer = b""
        self._closed_by_server = False

    def __enter__(self) -> RelayClient:
        admission = self.connect()
        if admission != SERVER_NOT_FULL:
            self.close()
            raise AdmissionRejected(f"Server refused the connection: {admission!r}")
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_connected(self) -> bool:
        return self._sock is not None and not self._closed_by_server

    def connect(self) -> bytes:
        """Open the connection and return the admission response (OK or FULL)."""
        self._sock = socket.create_connection(
            (self.host, self.port), timeout=self.connect_timeout
        )
        self._sock.settimeout(None)

        response = self.receive(timeout=self.connect_timeout)
        if response is None:
            raise ConnectionError("No admission response from server")

        self.admission = response
        if response == SERVER_FULL:
            logger.warning(f"Server {self.host}:{self.port} is full")
        else:
            logger.info(f"Connected to {self.host}:{self.port} ({response.decode(errors='replace')})")
        return response

    def send(self, message: str | bytes) -> None:
        if self._sock is None:
            raise ConnectionError("Client is not connected")
        payload = message.encode("utf-8") if isinstance(message, str) else message
        self._sock.sendall(self.framing.encode(payload))

    def send_raw(self, data: bytes) -> None:
        """Send bytes exactly as given, without framing."""
        if self._sock is None:
            raise ConnectionError("Client is not connected")
        self._sock.sendall(data)

    def receive(self, timeout: float | None = None) -> bytes | None:
        """
        Return the next complete message.

        None means nothing arrived within ``timeout`` or the server closed the
        connection; check ``is_connected`` to tell them apart.
        """
        if self._sock is None:
            raise ConnectionError("Client is not connected")

        while True:
            payload, self._buffer = self.framing.split_frame(self._buffer)
            if payload is not None:
                return payload
            if self._closed_by_server:
                return None

            if not self._wait_readable(timeout):
                return None

            try:
                chunk = self._sock.recv(RECV_CHUNK)
            except ConnectionResetError:
                chunk = b""
            if not chunk:
                self._closed_by_server = True
                continue
            self._buffer += chunk

    def _wait_readable(self, timeout: float | None) -> bool:
        if self._sock not in self._poller:
            self._poller.register(self._sock)
        timeout_ms = -1 if timeout is None else int(timeout * 1000)
        self._poller.poll(timeout_ms)
        return self._poller.is_ready(self._sock)

    def close(self) -> None:
        if self._sock is not None:
            self._poller.unregister(self._sock)
            self._sock.close()
            self._sock = None


def _print_incoming(client: RelayClient, stop: threading.Event) -> None:
    while not stop.is_set():
        message = client.receive(timeout=0.2)
        if message is not None:
            print(f"<<< {message.decode('utf-8', errors='replace')}", flush=True)
        elif not client.is_connected:
            logger.info("Server closed the connection")
            stop.set()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Slot Relay interactive client")
    parser.add_argument("--host", default="localhost", help="Server address (default: localhost)")
    parser.add_argument("--port", type=int, default=22297, help="Server port (default: 22297)")
    parser.add_argument(
        "--framing",
        choices=sorted(FRAMINGS),
        default="nul",
        help="Message framing (default: nul)",
    )
    parser.add_argument(
        "--log-level-console",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Console log level (default: INFO)",
    )
    args = parser.parse_args(argv)

    configure_logging(log_dir=None, console_level=args.log_level_console)

    client = RelayClient(host=args.host, port=args.port, framing=args.framing)
    try:
        admission = client.connect()
    except OSError as e:
        logger.error(f"Failed to connect to {args.host}:{args.port}: {e}")
        return 1

    if admission != SERVER_NOT_FULL:
        client.close()
        return 1

    stop = threading.Event()
    receiver = threading.Thread(
        target=_print_incoming, args=(client, stop), name="ReceiveThread", daemon=True
    )
    receiver.start()

    try:
        for line in sys.stdin:
            if stop.is_set():
                break
            client.send(line.rstrip("\r\n"))
    finally:
        stop.set()
        receiver.join(timeout=1.0)
        client.close()

    return 0
