"""Tests for dependency/API sessions, driven by fake compose and API commands."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from zerox_harness.config import HarnessConfig, LoggingConfig, LogType
from zerox_harness.deployment import (
    API_TIMEOUT_MESSAGE,
    DEPENDENCY_TIMEOUT_MESSAGE,
    compose_down,
    running_api,
    setup_api,
    setup_dependencies,
    teardown_api,
    teardown_dependencies,
)
from zerox_harness.exceptions import DeploymentError, ReadinessTimeout
from zerox_harness.process import ManagedProcess

_FAKE_COMPOSE = """\
import os, sys, time

cmd = sys.argv[1]
if cmd == "up":
    if os.environ.get("FAKE_UP_SILENT"):
        print("postgres_1 | starting", flush=True)
    else:
        print("mesh_1 | started HTTP RPC server", flush=True)
        print("mesh_1 | started WS RPC server", flush=True)
        print("postgres_1 | database system is ready to accept connections", flush=True)
        print("env", os.environ["ETHEREUM_RPC_URL"], os.environ["ETHEREUM_CHAIN_ID"], flush=True)
    time.sleep(60)
elif cmd == "down":
    with open("down_called", "w") as f:
        f.write("1")
    sys.exit(int(os.environ.get("FAKE_DOWN_RC", "0")))
"""

_FAKE_API = "import time; print('API HTTP listening on port 3000!', flush=True); time.sleep(60)"
_SILENT_API = "import time; print('compiling...', flush=True); time.sleep(60)"


def _config(tmp_path: Path, api_code: str = _FAKE_API, **overrides) -> HarnessConfig:
    script = tmp_path / "fake_compose.py"
    script.write_text(_FAKE_COMPOSE)
    return HarnessConfig(
        api_root=str(tmp_path),
        api_command=[sys.executable, "-u", "-c", api_code],
        compose_command=[sys.executable, "-u", str(script)],
        **overrides,
    )


class TestSetupDependencies:
    @pytest.mark.asyncio
    async def test_up_and_down(self, tmp_path: Path):
        config = _config(tmp_path)
        session = await setup_dependencies(config)
        assert session.process.is_running

        (tmp_path / "postgres").mkdir()
        await teardown_dependencies(session)

        assert session.closed
        assert not session.process.is_running
        assert (tmp_path / "down_called").exists()
        assert not (tmp_path / "postgres").exists()

    @pytest.mark.asyncio
    async def test_environment_and_file_logs(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("ETHEREUM_RPC_URL", "https://mainnet.infura.io/v3/key")
        config = _config(tmp_path, ethereum_chain_id=4242)
        session = await setup_dependencies(config, LogType.FILE)
        await teardown_dependencies(session)

        logs = (tmp_path / "dependency_logs").read_text()
        assert "started WS RPC server" in logs
        assert "env http://ganache:8545 4242" in logs
        assert (tmp_path / "dependency_errors").exists()

    @pytest.mark.asyncio
    async def test_timeout_stops_process(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("FAKE_UP_SILENT", "1")
        config = _config(tmp_path, dependency_timeout_seconds=0.3)

        with pytest.raises(ReadinessTimeout) as exc_info:
            await setup_dependencies(config)
        assert str(exc_info.value) == DEPENDENCY_TIMEOUT_MESSAGE
        assert len(exc_info.value.pending) == 3

    @pytest.mark.asyncio
    async def test_double_teardown_raises(self, tmp_path: Path):
        session = await setup_dependencies(_config(tmp_path))
        await teardown_dependencies(session)
        with pytest.raises(DeploymentError):
            await teardown_dependencies(session)


class TestComposeDown:
    @pytest.mark.asyncio
    async def test_nonzero_exit_raises(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("FAKE_DOWN_RC", "3")
        with pytest.raises(DeploymentError, match="rc=3"):
            await compose_down(_config(tmp_path))

    @pytest.mark.asyncio
    async def test_missing_compose_binary(self, tmp_path: Path):
        config = _config(tmp_path)
        config.compose_command = ["definitely-not-docker-compose-zx"]
        with pytest.raises(DeploymentError, match="command not found"):
            await compose_down(config)


class TestApiSession:
    @pytest.mark.asyncio
    async def test_setup_and_teardown(self, tmp_path: Path):
        config = _config(tmp_path)
        session = await setup_api(config)
        assert session.process.is_running
        assert session.dependencies.process.is_running

        (tmp_path / "0x_mesh").mkdir()
        await teardown_api(session)

        assert not session.process.is_running
        assert not session.dependencies.process.is_running
        assert session.dependencies.closed
        assert not (tmp_path / "0x_mesh").exists()

    @pytest.mark.asyncio
    async def test_teardown_twice_raises(self, tmp_path: Path):
        session = await setup_api(_config(tmp_path))
        await teardown_api(session)
        with pytest.raises(DeploymentError, match="There is no 0x-api instance to tear down"):
            await teardown_api(session)

    @pytest.mark.asyncio
    async def test_independent_sessions(self, tmp_path: Path):
        root_a = tmp_path / "a"
        root_b = tmp_path / "b"
        root_a.mkdir()
        root_b.mkdir()
        a = await setup_api(_config(root_a))
        b = await setup_api(_config(root_b))
        assert a.process.pid != b.process.pid
        await teardown_api(a)
        assert b.process.is_running
        await teardown_api(b)

    @pytest.mark.asyncio
    async def test_api_timeout_tears_dependencies_down(self, tmp_path: Path):
        config = _config(tmp_path, api_code=_SILENT_API, api_timeout_seconds=0.3)
        with pytest.raises(ReadinessTimeout, match=API_TIMEOUT_MESSAGE):
            await setup_api(config)
        assert (tmp_path / "down_called").exists()

    @pytest.mark.asyncio
    async def test_console_logging(self, tmp_path: Path, caplog):
        config = _config(tmp_path)
        logging_config = LoggingConfig(
            api_log_type=LogType.CONSOLE, dependency_log_type=LogType.CONSOLE
        )
        with caplog.at_level("INFO", logger="zerox-harness"):
            async with running_api(config, logging_config):
                pass
        messages = [r.getMessage() for r in caplog.records]
        assert "[0x-api] API HTTP listening on port 3000!" in messages
        assert "[docker-compose up] mesh_1 | started HTTP RPC server" in messages

    @pytest.mark.asyncio
    async def test_running_api_context_manager(self, tmp_path: Path):
        config = _config(tmp_path)
        async with running_api(config) as session:
            assert session.process.is_running
        assert session.closed
        assert not session.process.is_running

    @pytest.mark.asyncio
    async def test_missing_api_binary_tears_dependencies_down(self, tmp_path: Path, monkeypatch):
        stopped: list[str] = []
        original_stop = ManagedProcess.stop

        async def recording_stop(self, grace: float = 5.0):
            stopped.append(self.name)
            await original_stop(self, grace)

        monkeypatch.setattr(ManagedProcess, "stop", recording_stop)
        config = _config(tmp_path)
        config.api_command = ["definitely-not-yarn-zx", "start"]
        logging_config = LoggingConfig(api_log_type=LogType.FILE)

        with pytest.raises(DeploymentError, match="command not found"):
            await setup_api(config, logging_config)

        assert "0x-api" in stopped
        assert "docker-compose up" in stopped
        assert (tmp_path / "down_called").exists()
        assert (tmp_path / "api_logs").exists()

    @pytest.mark.asyncio
    async def test_unwritable_api_log_tears_dependencies_down(self, tmp_path: Path):
        (tmp_path / "api_logs").mkdir()
        config = _config(tmp_path)
        logging_config = LoggingConfig(api_log_type=LogType.FILE)

        with pytest.raises(OSError):
            await setup_api(config, logging_config)

        assert (tmp_path / "down_called").exists()

    @pytest.mark.asyncio
    async def test_missing_compose_binary_closes_log_files(self, tmp_path: Path, monkeypatch):
        closed: list[bool] = []
        original_add_closer = ManagedProcess.add_closer

        def tracking_add_closer(self, closer):
            def _close():
                closer()
                closed.append(True)

            original_add_closer(self, _close)

        monkeypatch.setattr(ManagedProcess, "add_closer", tracking_add_closer)
        config = _config(tmp_path)
        config.compose_command = ["definitely-not-docker-compose-zx"]

        with pytest.raises(DeploymentError, match="command not found"):
            await setup_dependencies(config, LogType.FILE)

        assert closed == [True, True]
