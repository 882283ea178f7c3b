"""
Contract execution gateway for the Lumina wallet.

The wallet does not interpret contracts.  It validates a request, hands
``(code, params)`` to a :class:`ContractInterpreter` collaborator and, when
the interpreter reports success, records a zero-amount transaction that
references the interpreter's transaction id.

Usage:
    gateway = ContractGateway(wallet, SimulatedInterpreter())
    gateway.set_parameter("limit", "10")
    result = gateway.execute("LMT…", "transfer_ownership", ["alice"])
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from lumina_core import crypto_utils
from lumina_core.errors import ContractExecutionFailed, InvalidContractRequest, WalletLocked
from lumina_core.transaction import canonical_json
from lumina_core.wallet import Wallet, is_valid_address

logger = logging.getLogger("lumina_contract")

# Advisory only: 0.001 LMT per 1000 characters of code == 100 units per character.
GAS_UNITS_PER_CHAR = 100
MAX_CODE_BYTES = 1_048_576


class InterpreterError(Exception):
    """Raised by interpreters; the message reaches the caller untouched."""


@runtime_checkable
class ContractInterpreter(Protocol):
    def run(self, code: str, params: dict[str, str]) -> dict: ...


@dataclass
class ContractResult:
    tx_id: str                 # id of the wallet's own record
    interpreter_tx_id: str
    output: str
    gas_estimate: int          # units

    def to_dict(self) -> dict:
        return {
            "tx_id": self.tx_id,
            "interpreter_tx_id": self.interpreter_tx_id,
            "output": self.output,
            "gas_estimate": self.gas_estimate,
        }


def estimate_gas(code: str) -> int:
    """Best-effort gas estimate in units."""
    return len(code) * GAS_UNITS_PER_CHAR


def validate_contract(code: str) -> None:
    if not isinstance(code, str) or not code.strip():
        raise InvalidContractRequest("Contract code is empty")
    if len(code.encode("utf-8")) > MAX_CODE_BYTES:
        raise InvalidContractRequest("Contract code is too large")
    if "contract" not in code:
        raise InvalidContractRequest("Contract does not contain a 'contract' declaration")


class ContractGateway:
    """Validates contract requests and forwards them to an interpreter."""

    def __init__(self, wallet: Wallet, interpreter: ContractInterpreter):
        self.wallet = wallet
        self.interpreter = interpreter
        self._parameters: dict[str, str] = {}

    # ---- parameters ----

    def set_parameter(self, name: str, value: str) -> None:
        if not isinstance(name, str) or not name.isidentifier():
            raise InvalidContractRequest(f"Invalid parameter name: {name!r}")
        self._parameters[name] = str(value)
        logger.debug(f"Set contract parameter: {name}")

    def clear_parameters(self) -> None:
        self._parameters.clear()

    @property
    def parameters(self) -> dict[str, str]:
        return dict(self._parameters)

    # ---- execution ----

    def execute(self, contract_address: str, function: str, args: list[str] | None = None) -> ContractResult:
        """Call *function* on the deployed contract at *contract_address*."""
        if not is_valid_address(contract_address):
            raise InvalidContractRequest(f"Invalid contract address: {contract_address!r}")
        if not isinstance(function, str) or not function.isidentifier():
            raise InvalidContractRequest(f"Invalid function name: {function!r}")
        call_args = [str(a) for a in (args or [])]
        code = f"contract {contract_address} call {function} {json.dumps(call_args)}"
        return self._run(code, contract_address)

    def execute_code(self, code: str, contract_address: str = "") -> ContractResult:
        """Run contract source directly."""
        validate_contract(code)
        if not contract_address:
            contract_address = "C" + crypto_utils.sha256(code.encode("utf-8")).hex()[:40]
        elif not is_valid_address(contract_address):
            raise InvalidContractRequest(f"Invalid contract address: {contract_address!r}")
        return self._run(code, contract_address)

    def execute_file(self, path: str, contract_address: str = "") -> ContractResult:
        logger.info(f"Executing contract from file: {path}")
        try:
            code = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise InvalidContractRequest(f"Failed to open contract file: {path}") from exc
        return self.execute_code(code, contract_address)

    def _run(self, code: str, contract_address: str) -> ContractResult:
        params = dict(self._parameters)
        params["caller"] = self.wallet.address
        if self.wallet.is_locked:
            raise WalletLocked("Unlock the wallet to execute contracts")
        gas = estimate_gas(code)
        try:
            outcome = self.interpreter.run(code, params)
        except Exception as exc:
            logger.error(f"Contract execution on {contract_address} failed: {exc}")
            raise ContractExecutionFailed(str(exc)) from exc

        interp_tx_id = outcome.get("tx_id") if isinstance(outcome, dict) else None
        if not isinstance(interp_tx_id, str) or not interp_tx_id:
            raise ContractExecutionFailed("Interpreter returned no transaction id")
        record = self.wallet.record_contract_call(contract_address, interp_tx_id)
        logger.info(f"Contract {contract_address} executed: interpreter tx {interp_tx_id}")
        return ContractResult(record.tx_id, interp_tx_id, str(outcome.get("output", "")), gas)


class SimulatedInterpreter:
    """
    Stand-in interpreter: accepts any code and returns a deterministic
    transaction id.  Set ``fail_with`` to make the next calls fail.
    """

    def __init__(self, fail_with: str | None = None):
        self.fail_with = fail_with
        self.calls: list[tuple[str, dict[str, str]]] = []

    def run(self, code: str, params: dict[str, str]) -> dict:
        self.calls.append((code, dict(params)))
        if self.fail_with is not None:
            raise InterpreterError(self.fail_with)
        digest = crypto_utils.sha256(canonical_json({"code": code, "params": params})).hex()
        return {
            "tx_id": f"TX-{digest[:16]}",
            "output": "Contract executed successfully (simulation mode)",
        }
