"""Bring a local 0x API and its docker-compose dependencies up and down.

Each setup call returns an explicit session object that its teardown
consumes, so several deployments (in different roots) can coexist and a
session cannot be torn down twice.

Usage:
    config = load_harness_config()
    session = await setup_api(config, LoggingConfig(api_log_type=LogType.CONSOLE))
    try:
        ...  # run integration tests against http://localhost:3000
    finally:
        await teardown_api(session)
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from .config import HarnessConfig, LoggingConfig, LogType
from .exceptions import DeploymentError
from .output import attach_output
from .process import ManagedProcess

logger = logging.getLogger("zerox-harness")

DEPENDENCY_PATTERNS = [
    r".*mesh.*started HTTP RPC server",
    r".*mesh.*started WS RPC server",
    r".*postgres.*database system is ready to accept connections",
]
DEPENDENCY_TIMEOUT_MESSAGE = "dependency setup: Did not find the dependency startup logs"

API_PATTERNS = [r"API (HTTP) listening on port 3000!"]
API_TIMEOUT_MESSAGE = "api setup: Did not find the API startup log"

# Data directories the services leave behind in the API root.
_POSTGRES_DIR = "postgres"
_MESH_DIR = "0x_mesh"


@dataclass
class DependencySession:
    config: HarnessConfig
    process: ManagedProcess
    closed: bool = False


@dataclass
class ApiSession:
    config: HarnessConfig
    process: ManagedProcess
    dependencies: DependencySession
    closed: bool = False


async def _launch(
    process: ManagedProcess,
    log_type: LogType,
    *,
    prefix: str,
    log_path: Path,
    error_path: Path,
    message: str,
    patterns: list[str],
    timeout: float,
) -> None:
    """Attach log sinks, start ``process`` and wait for readiness.

    On any failure the process is stopped, which also closes its log files.
    """
    try:
        attach_output(process, log_type, prefix=prefix, log_path=log_path, error_path=error_path)
        await process.start()
        await process.wait_for_patterns(message, patterns, timeout)
    except BaseException:
        await process.stop()
        raise


async def setup_dependencies(
    config: HarnessConfig, log_type: LogType = LogType.HIDDEN
) -> DependencySession:
    """Run ``docker-compose up`` and wait for mesh and postgres to be ready."""
    root = Path(config.api_root)
    env = {
        **os.environ,
        "ETHEREUM_RPC_URL": config.ethereum_rpc_url,
        "ETHEREUM_CHAIN_ID": str(config.ethereum_chain_id),
    }
    up = ManagedProcess(
        "docker-compose up", [*config.compose_command, "up"], cwd=str(root), env=env
    )
    await _launch(
        up,
        log_type,
        prefix="[docker-compose up]",
        log_path=root / "dependency_logs",
        error_path=root / "dependency_errors",
        message=DEPENDENCY_TIMEOUT_MESSAGE,
        patterns=DEPENDENCY_PATTERNS,
        timeout=config.dependency_timeout_seconds,
    )
    return DependencySession(config=config, process=up)


async def compose_down(config: HarnessConfig) -> None:
    """Run ``docker-compose down`` and remove the postgres data directory."""
    root = Path(config.api_root)
    cmd = [*config.compose_command, "down"]
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise DeploymentError(f"command not found: '{cmd[0]}'") from None
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise DeploymentError(
            f"{' '.join(cmd)} failed (rc={proc.returncode}): "
            f"{stderr.decode(errors='replace')[:200]}"
        )
    shutil.rmtree(root / _POSTGRES_DIR, ignore_errors=True)
    logger.info("Dependencies torn down")


def remove_mesh_data(config: HarnessConfig) -> None:
    shutil.rmtree(Path(config.api_root) / _MESH_DIR, ignore_errors=True)


async def teardown_dependencies(session: DependencySession) -> None:
    if session.closed:
        raise DeploymentError("There are no 0x-api dependencies to tear down")
    session.closed = True
    try:
        await compose_down(session.config)
    finally:
        await session.process.stop()


async def setup_api(
    config: HarnessConfig, logging_config: LoggingConfig | None = None
) -> ApiSession:
    """Start the dependencies, then ``yarn start`` the API and wait for it."""
    logging_config = logging_config or config.logging
    root = Path(config.api_root)

    dependencies = await setup_dependencies(config, logging_config.dependency_log_type)
    try:
        api = ManagedProcess("0x-api", config.api_command, cwd=str(root))
        await _launch(
            api,
            logging_config.api_log_type,
            prefix="[0x-api]",
            log_path=root / "api_logs",
            error_path=root / "api_errors",
            message=API_TIMEOUT_MESSAGE,
            patterns=API_PATTERNS,
            timeout=config.api_timeout_seconds,
        )
    except BaseException:
        try:
            await teardown_dependencies(dependencies)
        except DeploymentError as e:
            logger.warning(f"Dependency cleanup after failed API setup: {e}")
        raise
    return ApiSession(config=config, process=api, dependencies=dependencies)


async def teardown_api(session: ApiSession) -> None:
    """Stop the API, tear its dependencies down and clean the mesh data."""
    if session.closed:
        raise DeploymentError("There is no 0x-api instance to tear down")
    session.closed = True
    await session.process.stop()
    await teardown_dependencies(session.dependencies)
    remove_mesh_data(session.config)
    logger.info("0x-api torn down")


@asynccontextmanager
async def running_api(
    config: HarnessConfig, logging_config: LoggingConfig | None = None
) -> AsyncIterator[ApiSession]:
    session = await setup_api(config, logging_config)
    try:
        yield session
    finally:
        await teardown_api(session)
