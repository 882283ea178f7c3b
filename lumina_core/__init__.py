"""
Lumina - a local software wallet for the Lumina token network.

Key features:
- 12-word seed phrases with password-encrypted storage (AES-256-GCM)
- secp256k1 ECDSA signing and content-derived transaction ids
- Fixed-point balances per token, append-only transaction history
- Incremental, cancellable block synchronisation against a LedgerClient
- Contract execution through an external interpreter
- Command shell and aiohttp HTTP API
"""

__version__ = "1.0.0"
__all__ = [
    "errors",
    "precision",
    "crypto_utils",
    "identity",
    "transaction",
    "wallet",
    "storage",
    "ledger_client",
    "sync",
    "contract",
    "commands",
    "api",
    "config",
    "logging_config",
]
