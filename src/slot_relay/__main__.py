"""
Main entry point for running the Slot Relay Server as a module.

This allows the package to be executed with:
    python -m slot_relay

The recommended way to run the server is using the installed CLI command:
    slot-relay-server
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
