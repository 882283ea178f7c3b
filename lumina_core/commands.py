"""
Command dispatch for the Lumina wallet shell.

Every operation a user can trigger is registered here as a named command
returning a :class:`CommandResult`.  Domain errors never escape: they are
turned into ``CommandResult(success=False, error=<code>)`` so the shell and
other callers always get a structured answer.

Usage:
    handler = CommandHandler(wallet, engine, gateway)
    result = await handler.execute_line("transfer LMT... 1.5")
    print(result.message)
"""

from __future__ import annotations

import inspect
import logging
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Union

from lumina_core import __version__
from lumina_core.contract import ContractGateway
from lumina_core.errors import WalletError
from lumina_core.precision import UNITS_PER_TOKEN, format_amount, parse_amount
from lumina_core.sync import SyncEngine, SyncStatus
from lumina_core.wallet import DEV_TEAM_ADDRESS, Wallet

logger = logging.getLogger("lumina_commands")

DEFAULT_DONATION = UNITS_PER_TOKEN  # 1 LMT
DEFAULT_HISTORY_LIMIT = 20


@dataclass
class CommandResult:
    success: bool
    message: str
    error: str | None = None
    data: dict = field(default_factory=dict)

    @classmethod
    def fail(cls, exc: WalletError) -> CommandResult:
        return cls(False, exc.message, exc.code)


Handler = Callable[[list[str]], Union[CommandResult, Awaitable[CommandResult]]]


@dataclass
class _Command:
    func: Handler
    description: str
    category: str


class CommandHandler:
    """Registry of named commands bound to a wallet and its collaborators."""

    def __init__(
        self,
        wallet: Wallet,
        engine: SyncEngine | None = None,
        gateway: ContractGateway | None = None,
    ):
        self.wallet = wallet
        self.engine = engine
        self.gateway = gateway
        self._commands: dict[str, _Command] = {}
        self._register_builtin()

    # ── registry ─────────────────────────────────────────────────────

    def register_command(self, name: str, func: Handler, description: str,
                         category: str = "Misc") -> None:
        self._commands[name] = _Command(func, description, category)

    def is_command_registered(self, name: str) -> bool:
        return name in self._commands

    def get_command_description(self, name: str) -> str:
        cmd = self._commands.get(name)
        return cmd.description if cmd else ""

    @property
    def command_names(self) -> list[str]:
        return sorted(self._commands)

    async def execute_line(self, line: str) -> CommandResult:
        try:
            parts = shlex.split(line)
        except ValueError as exc:
            return CommandResult(False, f"Could not parse command: {exc}", "invalid_input")
        if not parts:
            return CommandResult(False, "Empty command", "invalid_input")
        return await self.execute_command(parts[0], parts[1:])

    async def execute_command(self, name: str, args: list[str]) -> CommandResult:
        cmd = self._commands.get(name)
        if cmd is None:
            return CommandResult(
                False, f"Unknown command: {name}. Type 'help' for a list of commands.", "unknown_command",
            )
        logger.debug(f"Executing command: {name}")
        try:
            result = cmd.func(args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except WalletError as exc:
            return CommandResult.fail(exc)
        except Exception as exc:
            logger.exception(f"Exception in command {name}")
            return CommandResult(False, f"Command execution failed: {exc}", "internal_error")

    def _register_builtin(self) -> None:
        reg = self.register_command
        reg("welcome", self._welcome, "Show the welcome banner", "General")
        reg("help", self._help, "List commands: help [command]", "General")
        reg("version", self._version, "Show version information", "General")
        reg("create", self._create, "Create a new wallet: create <password>", "Wallet")
        reg("recover", self._recover, "Recover a wallet: recover <password> <12 words>", "Wallet")
        reg("unlock", self._unlock, "Unlock signing: unlock <password>", "Wallet")
        reg("lock", self._lock, "Forget the signing key until the next unlock", "Wallet")
        reg("passwd", self._passwd, "Change password: passwd <old> <new>", "Wallet")
        reg("wallet_info", self._wallet_info, "Display wallet information", "Wallet")
        reg("balance", self._balance, "Display balance: balance [token]", "Wallet")
        reg("transfer", self._transfer, "Transfer funds: transfer <address> <amount> [token]", "Wallet")
        reg("history", self._history, "Show recent transactions: history [limit]", "Wallet")
        reg("seed", self._seed, "Display the seed phrase: seed confirm <password>", "Wallet")
        reg("execute", self._execute, "Execute a smart contract: execute <contract_address> <function> [args...]",
            "Contracts")
        reg("refresh", self._refresh, "Synchronize with the network: refresh [background]", "Network")
        reg("stop", self._stop, "Stop a background synchronization", "Network")
        reg("status", self._status, "Display wallet and synchronization status", "Network")
        reg("endpoint", self._endpoint, "Show or set the network endpoint: endpoint [url]", "Network")
        reg("donate", self._donate, "Donate to the development team: donate [amount] [confirm]", "Misc")

    # ── general ──────────────────────────────────────────────────────

    def _welcome(self, args: list[str]) -> CommandResult:
        lines = [
            "",
            "  Lumina Wallet",
            "  -------------",
            f"  version {__version__}",
            "",
            "  Type 'help' for a list of commands, 'exit' to quit.",
        ]
        return CommandResult(True, "\n".join(lines))

    def _help(self, args: list[str]) -> CommandResult:
        if args:
            desc = self.get_command_description(args[0])
            if not desc:
                return CommandResult(False, f"Unknown command: {args[0]}", "unknown_command")
            return CommandResult(True, f"{args[0]}: {desc}")
        by_category: dict[str, list[str]] = {}
        for name in self.command_names:
            by_category.setdefault(self._commands[name].category, []).append(name)
        out = ["Available commands:"]
        for category in sorted(by_category):
            out.append(f"\n{category} commands:")
            for name in by_category[category]:
                out.append(f"  {name:<15}{self._commands[name].description}")
        return CommandResult(True, "\n".join(out))

    def _version(self, args: list[str]) -> CommandResult:
        return CommandResult(True, f"Lumina Wallet v{__version__}", data={"version": __version__})

    # ── wallet ───────────────────────────────────────────────────────

    def _create(self, args: list[str]) -> CommandResult:
        if len(args) != 1:
            return CommandResult(False, "Usage: create <password>", "invalid_input")
        phrase = self.wallet.create(args[0])
        return CommandResult(
            True,
            f"Wallet created: {self.wallet.address}\n"
            f"Seed phrase: {phrase}\n\n"
            "WARNING: Write this seed phrase down and keep it secret. It is shown only once.",
            data={"address": self.wallet.address},
        )

    def _recover(self, args: list[str]) -> CommandResult:
        if len(args) < 2:
            return CommandResult(False, "Usage: recover <password> <12 words>", "invalid_input")
        address = self.wallet.recover_from_seed(" ".join(args[1:]), args[0])
        return CommandResult(True, f"Wallet recovered: {address}", data={"address": address})

    def _unlock(self, args: list[str]) -> CommandResult:
        if len(args) != 1:
            return CommandResult(False, "Usage: unlock <password>", "invalid_input")
        self.wallet.unlock(args[0])
        return CommandResult(True, "Wallet unlocked")

    def _lock(self, args: list[str]) -> CommandResult:
        self.wallet.lock()
        return CommandResult(True, "Wallet locked")

    def _passwd(self, args: list[str]) -> CommandResult:
        if len(args) != 2:
            return CommandResult(False, "Usage: passwd <old> <new>", "invalid_input")
        self.wallet.change_password(args[0], args[1])
        return CommandResult(True, "Password changed")

    def _wallet_info(self, args: list[str]) -> CommandResult:
        info = self.wallet.info()
        created = datetime.fromtimestamp(info["created_at"], tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        balances = ", ".join(info["balances"].values()) or format_amount(0, self.wallet.default_token)
        lines = [
            "Wallet Information:",
            f"  Address: {info['address']}",
            f"  Balance: {balances}",
            f"  Transactions: {info['transaction_count']} ({info['pending_count']} pending)",
            f"  Created: {created}",
            f"  Locked: {'yes' if info['locked'] else 'no'}",
        ]
        return CommandResult(True, "\n".join(lines), data=info)

    def _balance(self, args: list[str]) -> CommandResult:
        token = args[0] if args else self.wallet.default_token
        units = self.wallet.get_balance(token)
        return CommandResult(
            True, f"Balance: {format_amount(units, token)}", data={"token": token, "units": units},
        )

    def _transfer(self, args: list[str]) -> CommandResult:
        if len(args) not in (2, 3):
            return CommandResult(False, "Usage: transfer <address> <amount> [token]", "invalid_input")
        address, amount_text = args[0], args[1]
        token = args[2] if len(args) == 3 else self.wallet.default_token
        units = parse_amount(amount_text)
        tx_id = self.wallet.transfer(address, units, token)
        return CommandResult(
            True,
            f"Transferred {format_amount(units, token)} to {address}\nTransaction: {tx_id}",
            data={"tx_id": tx_id},
        )

    def _history(self, args: list[str]) -> CommandResult:
        limit = DEFAULT_HISTORY_LIMIT
        if args:
            if not args[0].isdigit() or int(args[0]) < 1:
                return CommandResult(False, "Usage: history [limit]", "invalid_input")
            limit = int(args[0])
        records = self.wallet.history()[-limit:]
        if not records:
            return CommandResult(True, "No transactions yet", data={"transactions": []})
        return CommandResult(
            True,
            "\n".join(r.describe() for r in reversed(records)),
            data={"transactions": [r.to_dict() for r in records]},
        )

    def _seed(self, args: list[str]) -> CommandResult:
        if not args or args[0] != "confirm" or len(args) != 2:
            return CommandResult(
                False,
                "WARNING: This command will display your seed phrase, which can be used to access "
                "your wallet.\nAnyone with access to your seed phrase can steal your funds.\n"
                "To confirm, type: seed confirm <password>",
                "confirmation_required",
            )
        phrase = self.wallet.get_seed_phrase(args[1])
        return CommandResult(
            True, f"Seed phrase: {phrase}\n\nWARNING: Keep this seed phrase secret and secure!",
        )

    # ── contracts ────────────────────────────────────────────────────

    def _execute(self, args: list[str]) -> CommandResult:
        if self.gateway is None:
            return CommandResult(False, "Contract execution is not available", "unavailable")
        if len(args) < 2:
            return CommandResult(
                False, "Usage: execute <contract_address> <function> [args...]", "invalid_input",
            )
        result = self.gateway.execute(args[0], args[1], args[2:])
        return CommandResult(
            True,
            f"Contract execution result: {result.output}\n"
            f"Transaction: {result.tx_id} (interpreter {result.interpreter_tx_id})\n"
            f"Estimated gas: {format_amount(result.gas_estimate)}",
            data=result.to_dict(),
        )

    # ── network ──────────────────────────────────────────────────────

    async def _refresh(self, args: list[str]) -> CommandResult:
        if self.engine is None:
            return CommandResult(False, "Network synchronizer is not available", "unavailable")
        engine = self.engine
        acks = await engine.submit_pending()
        await engine.start_sync(self._log_progress)
        if args and args[0] == "background":
            return CommandResult(True, "Synchronization started", data=engine.status_dict())
        status = await engine.wait()
        if status is SyncStatus.SYNCED:
            msg = f"Wallet refreshed successfully (height {engine.cursor.current_height})"
            if acks:
                msg += f"; {len(acks)} pending transaction(s) submitted"
            return CommandResult(True, msg, data=engine.status_dict())
        err = engine.last_error
        return CommandResult(
            False,
            f"Failed to refresh wallet: {err.message if err else 'synchronization stopped'}",
            err.code if err else "not_synced",
            data=engine.status_dict(),
        )

    async def _stop(self, args: list[str]) -> CommandResult:
        if self.engine is None:
            return CommandResult(False, "Network synchronizer is not available", "unavailable")
        await self.engine.stop_sync()
        return CommandResult(
            True, f"Synchronization stopped at height {self.engine.cursor.current_height}",
            data=self.engine.status_dict(),
        )

    def _status(self, args: list[str]) -> CommandResult:
        synced = self.engine is not None and self.engine.is_synced
        lines = [f"Wallet: {self.wallet.status(synced)}"]
        data: dict[str, Any] = {"wallet": self.wallet.status(synced)}
        if self.engine is not None:
            sync = self.engine.status_dict()
            data["sync"] = sync
            lines += [
                "Network Status:",
                f"  Endpoint: {sync['endpoint']}",
                f"  Sync status: {sync['status']}",
                f"  Height: {sync['current_height']} / {sync['latest_known_height']}",
                f"  Progress: {sync['progress'] * 100:.1f}%",
            ]
            if sync["last_error"]:
                lines.append(f"  Last error: {sync['last_error']['message']}")
        return CommandResult(True, "\n".join(lines), data=data)

    def _endpoint(self, args: list[str]) -> CommandResult:
        if self.engine is None:
            return CommandResult(False, "Network synchronizer is not available", "unavailable")
        if args:
            self.engine.set_network_endpoint(args[0])
        endpoint = self.engine.get_network_endpoint()
        return CommandResult(True, f"Network endpoint: {endpoint}", data={"endpoint": endpoint})

    # ── misc ─────────────────────────────────────────────────────────

    def _donate(self, args: list[str]) -> CommandResult:
        units = parse_amount(args[0]) if args else DEFAULT_DONATION
        token = self.wallet.default_token
        if units <= 0:
            return CommandResult(False, "Donation amount must be positive", "invalid_amount")
        if len(args) < 2 or args[1] != "confirm":
            shown = format_amount(units, token)
            return CommandResult(
                True,
                f"You are about to donate {shown} to the Lumina development team.\n"
                f"To confirm, type: donate {shown.split()[0]} confirm",
            )
        tx_id = self.wallet.donate(units)
        return CommandResult(
            True,
            f"Thank you for your donation of {format_amount(units, token)} to the Lumina development team!",
            data={"tx_id": tx_id, "address": DEV_TEAM_ADDRESS},
        )

    @staticmethod
    def _log_progress(progress: float, message: str) -> None:
        logger.info(f"Sync {progress * 100:.1f}%: {message}")
