"""
Tests for contract execution (contract.py).
"""

from __future__ import annotations

import pytest

from lumina_core.contract import (
    ContractGateway,
    SimulatedInterpreter,
    estimate_gas,
    validate_contract,
)
from lumina_core.errors import (
    ContractExecutionFailed,
    InvalidContractRequest,
    WalletLocked,
    WalletNotInitialized,
)
from lumina_core.precision import parse_amount
from lumina_core.transaction import TxKind, TxStatus

BAD_CONTRACT = "LMTcontract"  # Lumina prefix without a valid checksum
OPAQUE = "C0ffee1234"


@pytest.fixture
def interpreter():
    return SimulatedInterpreter()


@pytest.fixture
def gateway(created_wallet, interpreter):
    return ContractGateway(created_wallet, interpreter)


class TestValidation:
    def test_gas_estimate(self):
        # 0.001 LMT per 1000 characters
        assert estimate_gas("x" * 1000) == parse_amount("0.001")
        assert estimate_gas("") == 0

    @pytest.mark.parametrize("code", ["", "   ", "function main() {}"])
    def test_invalid_code(self, code):
        with pytest.raises(InvalidContractRequest):
            validate_contract(code)

    def test_valid_code(self):
        validate_contract("contract Token { }")

    def test_bad_parameter_name(self, gateway):
        with pytest.raises(InvalidContractRequest):
            gateway.set_parameter("not valid", "1")


class TestExecute:
    def test_records_contract_call(self, gateway, interpreter, created_wallet):
        result = gateway.execute(OPAQUE, "transfer", ["a", "b"])
        assert result.interpreter_tx_id.startswith("TX-")
        assert "simulation mode" in result.output

        record = created_wallet.get_transaction(result.tx_id)
        assert record.kind is TxKind.CONTRACT
        assert record.amount == 0
        assert record.status is TxStatus.CONFIRMED
        assert record.to_address == OPAQUE
        assert record.reference == result.interpreter_tx_id
        assert record.verify_signature()

        code, params = interpreter.calls[-1]
        assert code == f'contract {OPAQUE} call transfer ["a", "b"]'
        assert params["caller"] == created_wallet.address

    def test_balance_untouched(self, gateway, funded_wallet):
        before = funded_wallet.get_balance()
        gateway.execute(OPAQUE, "ping")
        assert funded_wallet.get_balance() == before

    def test_parameters_forwarded(self, gateway, interpreter):
        gateway.set_parameter("limit", "5")
        gateway.execute(OPAQUE, "run")
        assert interpreter.calls[-1][1]["limit"] == "5"
        gateway.clear_parameters()
        assert gateway.parameters == {}

    def test_invalid_address(self, gateway):
        with pytest.raises(InvalidContractRequest):
            gateway.execute(BAD_CONTRACT, "run")

    def test_invalid_function(self, gateway):
        with pytest.raises(InvalidContractRequest):
            gateway.execute(OPAQUE, "drop table")

    def test_interpreter_failure(self, created_wallet):
        gateway = ContractGateway(created_wallet, SimulatedInterpreter(fail_with="out of gas"))
        with pytest.raises(ContractExecutionFailed, match="out of gas"):
            gateway.execute(OPAQUE, "run")
        assert created_wallet.history() == []

    def test_interpreter_without_tx_id(self, created_wallet):
        class _Silent:
            def run(self, code, params):
                return {"output": "ok"}

        gateway = ContractGateway(created_wallet, _Silent())
        with pytest.raises(ContractExecutionFailed):
            gateway.execute(OPAQUE, "run")

    def test_locked_wallet(self, gateway, created_wallet):
        created_wallet.lock()
        with pytest.raises(WalletLocked):
            gateway.execute(OPAQUE, "run")

    def test_uninitialized_wallet(self, wallet, interpreter):
        with pytest.raises(WalletNotInitialized):
            ContractGateway(wallet, interpreter).execute(OPAQUE, "run")


class TestExecuteCode:
    def test_code_string(self, gateway, created_wallet):
        result = gateway.execute_code("contract Counter { count = 0 }")
        record = created_wallet.get_transaction(result.tx_id)
        assert record.to_address.startswith("C")
        assert result.gas_estimate == estimate_gas("contract Counter { count = 0 }")

    def test_code_without_declaration(self, gateway):
        with pytest.raises(InvalidContractRequest):
            gateway.execute_code("print('hi')")

    def test_from_file(self, gateway, tmp_path):
        path = tmp_path / "counter.lum"
        path.write_text("contract Counter { }", encoding="utf-8")
        result = gateway.execute_file(str(path))
        assert result.interpreter_tx_id

    def test_missing_file(self, gateway, tmp_path):
        with pytest.raises(InvalidContractRequest, match="Failed to open contract file"):
            gateway.execute_file(str(tmp_path / "missing.lum"))
