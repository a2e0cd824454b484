"""CLI entry point for zerox-harness."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import click

from . import __version__
from .config import LogType, load_harness_config, load_meta_tx_config
from .exceptions import HarnessError

logger = logging.getLogger("zerox-harness")

_LOG_TYPES = click.Choice([t.value for t in LogType], case_sensitive=False)


# ── Helpers ──────────────────────────────────────────────


def _configure_logging(verbose: bool = False) -> None:
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(log_format, datefmt=date_format))

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, handlers=[console], force=True)
    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def _wait_for_shutdown() -> None:
    """Block until SIGINT or SIGTERM."""
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _signal_handler, sig)
        except (NotImplementedError, RuntimeError):
            pass
    await shutdown_event.wait()


def _run(coro) -> object:
    """Run a coroutine, turning HarnessError into a clean CLI failure."""
    try:
        return asyncio.run(coro)
    except HarnessError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


# ── CLI Commands ─────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="zerox-harness")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """zerox-harness: 0x API test harness and meta-transaction runner."""
    _configure_logging(verbose)


@main.command("meta-tx")
@click.option("--sell-token", default=None, help="Token to sell (default: MKR)")
@click.option("--buy-token", default=None, help="Token to buy (default: ETH)")
@click.option("--buy-amount", default=None, help="Amount to buy in base units")
@click.option("--api-url", default=None, help="Override ZEROEX_API_URL")
def meta_tx(
    sell_token: str | None,
    buy_token: str | None,
    buy_amount: str | None,
    api_url: str | None,
) -> None:
    """Quote, sign and submit one meta-transaction.

    Reads TAKER_ADDRESS, TAKER_PRIVATE_KEY and ZEROEX_API_KEY from the
    environment.
    """
    from .metatx import run_meta_tx

    try:
        config = load_meta_tx_config()
    except HarnessError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if sell_token:
        config.sell_token = sell_token
    if buy_token:
        config.buy_token = buy_token
    if buy_amount:
        config.buy_amount = buy_amount
    if api_url:
        config.api_url = api_url

    response = _run(run_meta_tx(config))
    click.echo(f"Submitted: {response}")


@main.command()
@click.option("--api-logs", type=_LOG_TYPES, default=None, help="Where API output goes")
@click.option(
    "--dependency-logs",
    type=_LOG_TYPES,
    default=None,
    help="Where docker-compose output goes",
)
@click.option("--deps-only", is_flag=True, help="Only start the dependencies")
def up(api_logs: str | None, dependency_logs: str | None, deps_only: bool) -> None:
    """Start the 0x API (and its dependencies) until Ctrl+C."""
    from .deployment import (
        setup_api,
        setup_dependencies,
        teardown_api,
        teardown_dependencies,
    )

    try:
        config = load_harness_config()
    except HarnessError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if api_logs:
        config.logging.api_log_type = LogType(api_logs.lower())
    if dependency_logs:
        config.logging.dependency_log_type = LogType(dependency_logs.lower())

    async def _up() -> None:
        if deps_only:
            deps = await setup_dependencies(config, config.logging.dependency_log_type)
            click.echo("Dependencies are up. Press Ctrl+C to stop.")
            try:
                await _wait_for_shutdown()
            finally:
                await teardown_dependencies(deps)
            return

        session = await setup_api(config, config.logging)
        click.echo("0x-api is up. Press Ctrl+C to stop.")
        try:
            await _wait_for_shutdown()
        finally:
            await teardown_api(session)

    _run(_up())
    click.echo("Torn down.")


@main.command()
def down() -> None:
    """Run docker-compose down and remove the postgres and 0x_mesh data."""
    from .deployment import compose_down, remove_mesh_data

    try:
        config = load_harness_config()
    except HarnessError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _run(compose_down(config))
    remove_mesh_data(config)
    click.echo("Dependencies torn down.")


if __name__ == "__main__":
    main()
