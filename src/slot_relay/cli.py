"""
Command-line interface wrappers for the Slot Relay Server.

These are the console script entry points declared in pyproject.toml. They
delegate to the main() functions of the server and client modules.
"""

import sys

from .server import main


def cli_main() -> None:
    """
    Main CLI entry point for the slot-relay-server command.

    Exit status is 0 after a graceful shutdown and 1 when startup fails.
    """
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nServer interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


def client_cli_main() -> None:
    """Entry point for the slot-relay-client command."""
    from .client import main as client_main

    try:
        sys.exit(client_main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli_main()
