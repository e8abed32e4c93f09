import logging
import sys
from pathlib import Path

import pytest
from loguru import logger

from slot_relay import cli, logging_utils, server


@pytest.fixture(autouse=True)
def _restore_loguru():
    yield
    logger.remove()
    logger.add(sys.stderr)


def _patch_dummy_server(monkeypatch, store):
    class DummyServer:
        def __init__(self, config):
            store["config"] = config

        def start(self):
            store["started"] = True

        def serve_forever(self):
            store["served"] = True

        def close(self):
            store["closed"] = True

    monkeypatch.setattr(server, "RelayServer", DummyServer)
    monkeypatch.setattr(server.network_utils, "get_local_ip_addresses", lambda: [])


def test_main_logging_args_with_log_dir(monkeypatch, tmp_path):
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)

    original_configure = server.configure_logging

    def wrapped_configure_logging(**kwargs):
        store["configure_args"] = kwargs
        return original_configure(**kwargs)

    monkeypatch.setattr(server, "configure_logging", wrapped_configure_logging)

    exit_code = server.main(
        [
            "--log-dir",
            str(tmp_path),
            "--log-json-console",
            "--log-level-console",
            "DEBUG",
            "--log-rotation",
            "10 MB",
            "--log-retention",
            "5",
            "--max-clients",
            "7",
        ]
    )

    assert exit_code == 0
    assert store["configure_args"]["log_dir"] == Path(tmp_path)
    assert store["configure_args"]["console_json"] is True
    assert store["configure_args"]["console_level"] == "DEBUG"
    assert store["configure_args"]["rotation"] == "10 MB"
    assert store["configure_args"]["retention"] == "5"
    assert store["config"].max_clients == 7
    assert store["served"] and store["closed"]

    log_file = tmp_path / logging_utils.DEFAULT_LOG_FILENAME
    assert log_file.exists()
    first_line = log_file.read_text().splitlines()[0]
    assert first_line.lstrip().startswith("{")


def test_main_without_log_dir(monkeypatch):
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)
    monkeypatch.setattr(
        server, "configure_logging", lambda **kwargs: store.setdefault("configure_args", kwargs)
    )

    assert server.main([]) == 0
    assert store["configure_args"]["log_dir"] is None
    assert store["configure_args"]["console_level"] == "INFO"


def test_main_rejects_invalid_config(monkeypatch, capsys):
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)

    assert server.main(["--max-clients", "0"]) == 1
    assert "max_clients must be positive" in capsys.readouterr().err
    assert "config" not in store


def test_main_missing_config_file(monkeypatch, tmp_path, capsys):
    _patch_dummy_server(monkeypatch, {})

    assert server.main(["--config", str(tmp_path / "missing.toml")]) == 1
    assert "Configuration file not found" in capsys.readouterr().err


def test_main_startup_failure_exits_nonzero(monkeypatch):
    class FailingServer:
        def __init__(self, config):
            pass

        def start(self):
            raise server.ListenerError("Failed to open the server socket: boom")

        def close(self):
            pass

    monkeypatch.setattr(server, "RelayServer", FailingServer)
    monkeypatch.setattr(server.network_utils, "get_local_ip_addresses", lambda: [])
    monkeypatch.setattr(server, "configure_logging", lambda **kwargs: None)

    assert server.main([]) == 1


def test_main_ctrl_c_is_graceful(monkeypatch):
    store: dict[str, object] = {}
    _patch_dummy_server(monkeypatch, store)
    monkeypatch.setattr(server, "configure_logging", lambda **kwargs: None)

    def interrupted(self):
        raise KeyboardInterrupt

    monkeypatch.setattr(server.RelayServer, "serve_forever", interrupted)

    assert server.main([]) == 0
    assert store["closed"] is True


def test_cli_main_exit_codes(monkeypatch):
    monkeypatch.setattr(cli, "main", lambda: 0)
    with pytest.raises(SystemExit) as excinfo:
        cli.cli_main()
    assert excinfo.value.code == 0

    def boom():
        raise RuntimeError("unexpected")

    monkeypatch.setattr(cli, "main", boom)
    with pytest.raises(SystemExit) as excinfo:
        cli.cli_main()
    assert excinfo.value.code == 1


def test_stdlib_logging_is_intercepted(tmp_path):
    log_file = logging_utils.configure_logging(log_dir=tmp_path, console_level="INFO")

    logging.getLogger("third.party").warning("routed through loguru")

    assert log_file == tmp_path / logging_utils.DEFAULT_LOG_FILENAME
    assert "routed through loguru" in log_file.read_text()
