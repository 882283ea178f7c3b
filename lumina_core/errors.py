"""
Error taxonomy for the Lumina wallet.

Every failure the wallet core can report is a subclass of
:class:`WalletError`.  Each class carries a stable ``code`` string so the
outer surfaces (command handler, HTTP API) can turn an exception into a
structured result without string matching on messages.

    WalletError
    ├── InvalidInput
    │   ├── InvalidAmount
    │   ├── InvalidAddress
    │   ├── InvalidSeedPhrase
    │   └── InvalidContractRequest
    ├── InsufficientFunds
    ├── AuthenticationFailed
    ├── InsufficientEntropy
    ├── SigningFailed
    ├── WalletStateError
    │   ├── WalletNotInitialized
    │   ├── WalletAlreadyInitialized
    │   └── WalletLocked
    ├── StorageError
    ├── CorruptStateError
    ├── NetworkError
    │   ├── LedgerConnectionError
    │   ├── FetchError
    │   └── SubmitError
    ├── SyncStateError
    │   ├── AlreadySyncing
    │   └── NotSyncing
    └── ContractExecutionFailed
"""

from __future__ import annotations


class WalletError(Exception):
    """Base class for all wallet errors."""

    code = "wallet_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


# ── caller mistakes ─────────────────────────────────────────────────

class InvalidInput(WalletError):
    code = "invalid_input"


class InvalidAmount(InvalidInput):
    code = "invalid_amount"


class InvalidAddress(InvalidInput):
    code = "invalid_address"


class InvalidSeedPhrase(InvalidInput):
    code = "invalid_seed_phrase"


class InvalidContractRequest(InvalidInput):
    code = "invalid_contract_request"


# ── business rules / secrets ────────────────────────────────────────

class InsufficientFunds(WalletError):
    code = "insufficient_funds"


class AuthenticationFailed(WalletError):
    code = "authentication_failed"


class InsufficientEntropy(WalletError):
    code = "insufficient_entropy"


class SigningFailed(WalletError):
    code = "signing_failed"


class WalletStateError(WalletError):
    code = "wallet_state"


class WalletNotInitialized(WalletStateError):
    code = "wallet_not_initialized"


class WalletAlreadyInitialized(WalletStateError):
    code = "wallet_already_initialized"


class WalletLocked(WalletStateError):
    code = "wallet_locked"


# ── persistence ─────────────────────────────────────────────────────

class StorageError(WalletError):
    """Durable I/O failed.  Retrying is up to the caller."""
    code = "storage_error"


class CorruptStateError(WalletError):
    """Persisted or received state failed validation.  Never auto-repaired."""
    code = "corrupt_state"


# ── network (LedgerClient) ──────────────────────────────────────────

class NetworkError(WalletError):
    code = "network_error"


class LedgerConnectionError(NetworkError):
    code = "connection_error"


class FetchError(NetworkError):
    code = "fetch_error"


class SubmitError(NetworkError):
    code = "submit_error"


# ── sync state machine ──────────────────────────────────────────────

class SyncStateError(WalletError):
    code = "sync_state"


class AlreadySyncing(SyncStateError):
    code = "already_syncing"


class NotSyncing(SyncStateError):
    code = "not_syncing"


# ── contracts ───────────────────────────────────────────────────────

class ContractExecutionFailed(WalletError):
    code = "contract_execution_failed"
