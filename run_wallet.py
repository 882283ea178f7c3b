#!/usr/bin/env python3
"""
Lumina Wallet Runner — opens (or creates) a wallet and starts:
  - The interactive command shell
  - Block synchronisation against a ledger client
  - Optionally the local HTTP API

Usage:
    python run_wallet.py --wallet data/wallet.db --endpoint https://node.example \\
                         --fund-amount 100

Environment variables (alternative to flags):
    LUMINA_WALLET_PATH, LUMINA_ENDPOINT, LUMINA_API_PORT, LUMINA_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import getpass
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from lumina_core.api import APIServer  # noqa: E402
from lumina_core.commands import CommandHandler  # noqa: E402
from lumina_core.config import LuminaConfig, load_config  # noqa: E402
from lumina_core.contract import ContractGateway, SimulatedInterpreter  # noqa: E402
from lumina_core.errors import WalletError  # noqa: E402
from lumina_core.ledger_client import SimulatedLedger  # noqa: E402
from lumina_core.logging_config import setup_logging, shutdown_logging  # noqa: E402
from lumina_core.precision import parse_amount  # noqa: E402
from lumina_core.storage import WalletStore  # noqa: E402
from lumina_core.sync import SyncEngine  # noqa: E402
from lumina_core.wallet import Wallet  # noqa: E402

logger = logging.getLogger("lumina")

PROMPT = "[wallet]> "


# ===================================================================
#  Startup
# ===================================================================

async def _ask(loop: asyncio.AbstractEventLoop, prompt: str, secret: bool = False) -> str:
    reader = getpass.getpass if secret else input
    return await loop.run_in_executor(None, lambda: reader(prompt))


async def prepare_wallet(wallet: Wallet) -> None:
    """Create, recover or unlock the wallet interactively."""
    loop = asyncio.get_running_loop()
    if wallet.is_initialized:
        while True:
            password = await _ask(loop, f"Password for {wallet.address}: ", secret=True)
            try:
                wallet.unlock(password)
                return
            except WalletError as exc:
                print(f"  {exc.message}")

    print("No wallet found.")
    while True:
        choice = (await _ask(loop, "Create a new wallet or recover from seed? [create/recover] ")).strip()
        try:
            if choice == "create":
                password = await _ask(loop, "New password: ", secret=True)
                phrase = wallet.create(password)
                print(f"\nWallet created: {wallet.address}")
                print(f"Seed phrase: {phrase}")
                print("WARNING: Write this seed phrase down and keep it secret. It is shown only once.\n")
                return
            if choice == "recover":
                phrase = await _ask(loop, "Seed phrase (12 words): ", secret=True)
                password = await _ask(loop, "New password: ", secret=True)
                address = wallet.recover_from_seed(phrase, password)
                print(f"\nWallet recovered: {address}\n")
                return
        except WalletError as exc:
            print(f"  {exc.message}")


async def interactive_shell(handler: CommandHandler) -> None:
    """Read commands until ``exit``."""
    loop = asyncio.get_running_loop()
    print((await handler.execute_command("welcome", [])).message)
    while True:
        try:
            line = (await _ask(loop, PROMPT)).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue
        if line in ("exit", "quit"):
            break
        result = await handler.execute_line(line)
        print(result.message if result.success else f"Error: {result.message}")


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args():
    p = argparse.ArgumentParser(description="Lumina Wallet")
    p.add_argument("--config", default=None, help="Path to lumina.toml config file")
    p.add_argument("--wallet", default=None, help="Wallet database path")
    p.add_argument("--endpoint", default=None, help="Ledger endpoint URL")
    p.add_argument("--api", action="store_true", help="Start the HTTP API")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    p.add_argument("--log-format", choices=("human", "json"), default=None)
    p.add_argument("--log-file", default=None, help="Also write JSON logs to this file")
    p.add_argument("--fund-amount", default="0",
                   help="Credit the wallet with this many tokens on the simulated ledger")
    return p.parse_args()


def apply_args(cfg: LuminaConfig, args) -> LuminaConfig:
    # CLI flags override config
    if args.wallet:
        cfg.wallet.path = args.wallet
    if args.endpoint:
        cfg.network.endpoint = args.endpoint
    if args.api:
        cfg.api.enabled = True
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    if args.log_format:
        cfg.logging.format = args.log_format
    if args.log_file:
        cfg.logging.file = args.log_file
    return cfg


async def main():
    args = parse_args()
    cfg = apply_args(load_config(args.config), args)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    store = WalletStore(cfg.wallet.path)
    wallet = Wallet.open(
        store, kdf_iterations=cfg.wallet.kdf_iterations, default_token=cfg.wallet.default_token,
    )
    ledger = SimulatedLedger()
    engine = SyncEngine(
        wallet,
        ledger,
        endpoint=cfg.network.endpoint,
        batch_size=cfg.sync.batch_size,
        request_timeout=cfg.network.request_timeout,
        max_retries=cfg.sync.max_retries,
        retry_backoff=cfg.sync.retry_backoff,
    )
    gateway = ContractGateway(wallet, SimulatedInterpreter())
    handler = CommandHandler(wallet, engine, gateway)
    api: APIServer | None = None

    try:
        await prepare_wallet(wallet)

        fund = parse_amount(args.fund_amount)
        if fund > 0:
            ledger.fund(wallet.address, fund, cfg.wallet.default_token)
            logger.info(f"Simulated ledger funded {wallet.address}")

        if cfg.api.enabled:
            api = APIServer(wallet, engine, gateway, cfg.api.host, cfg.api.port, api_config=cfg.api)
            await api.start()

        await interactive_shell(handler)
    finally:
        print("Shutting down...")
        if engine.status.value == "Syncing":
            await engine.stop_sync()
        if api is not None:
            await api.stop()
        wallet.close()
        shutdown_logging()


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
