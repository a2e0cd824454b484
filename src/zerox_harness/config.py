"""Configuration models built from environment variables."""

from __future__ import annotations

import os
import shlex
from enum import Enum

from pydantic import BaseModel, Field

from .exceptions import ConfigError

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"


class LogType(str, Enum):
    HIDDEN = "hidden"
    CONSOLE = "console"
    FILE = "file"


class LoggingConfig(BaseModel):
    """Where the API's and its dependencies' output should go."""

    api_log_type: LogType = LogType.HIDDEN
    dependency_log_type: LogType = LogType.HIDDEN


class HarnessConfig(BaseModel):
    api_root: str = Field(default_factory=os.getcwd)
    api_command: list[str] = Field(default_factory=lambda: ["yarn", "start"])
    compose_command: list[str] = Field(default_factory=lambda: ["docker-compose"])
    ethereum_rpc_url: str = "http://ganache:8545"
    ethereum_chain_id: int = 1337
    api_timeout_seconds: float = 10.0
    dependency_timeout_seconds: float = 25.0
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class MetaTxConfig(BaseModel):
    taker_address: str
    taker_private_key: str
    api_key: str = ""
    api_url: str = "https://api.0x.org"
    sell_token: str = "MKR"
    buy_token: str = "ETH"
    buy_amount: str = "50000000"


def _log_type_from_env(name: str) -> LogType:
    raw = os.environ.get(name, LogType.HIDDEN.value).strip().lower()
    try:
        return LogType(raw)
    except ValueError:
        choices = ", ".join(t.value for t in LogType)
        raise ConfigError(f"{name} must be one of: {choices} (got '{raw}')") from None


def load_harness_config() -> HarnessConfig:
    """Build the deployment config from environment variables.

    Falls back to defaults when env vars are not set.
    """
    config = HarnessConfig(
        # The compose stack never inherits the shell's ETHEREUM_RPC_URL.
        ethereum_rpc_url=os.environ.get("ZEROEX_HARNESS_RPC_URL", "http://ganache:8545"),
        logging=LoggingConfig(
            api_log_type=_log_type_from_env("ZEROEX_API_LOGS"),
            dependency_log_type=_log_type_from_env("ZEROEX_DEPENDENCY_LOGS"),
        ),
    )
    if os.environ.get("ZEROEX_API_ROOT"):
        config.api_root = os.environ["ZEROEX_API_ROOT"]
    if os.environ.get("ZEROEX_API_COMMAND"):
        config.api_command = shlex.split(os.environ["ZEROEX_API_COMMAND"])
    if os.environ.get("ZEROEX_COMPOSE_COMMAND"):
        config.compose_command = shlex.split(os.environ["ZEROEX_COMPOSE_COMMAND"])

    chain_id = os.environ.get("ETHEREUM_CHAIN_ID", "")
    if chain_id:
        try:
            config.ethereum_chain_id = int(chain_id)
        except ValueError:
            raise ConfigError(
                f"ETHEREUM_CHAIN_ID must be an integer (got '{chain_id}')"
            ) from None
    return config


def load_meta_tx_config() -> MetaTxConfig:
    """Build the meta-transaction config from environment variables.

    TAKER_ADDRESS and TAKER_PRIVATE_KEY are required.
    """
    taker_address = os.environ.get("TAKER_ADDRESS")
    taker_private_key = os.environ.get("TAKER_PRIVATE_KEY")
    if not taker_address or taker_address.lower() == NULL_ADDRESS:
        raise ConfigError("TAKER_ADDRESS must be specified")
    if not taker_private_key:
        raise ConfigError("TAKER_PRIVATE_KEY must be specified")

    return MetaTxConfig(
        taker_address=taker_address,
        taker_private_key=taker_private_key,
        api_key=os.environ.get("ZEROEX_API_KEY", ""),
        api_url=os.environ.get("ZEROEX_API_URL", "https://api.0x.org"),
    )
