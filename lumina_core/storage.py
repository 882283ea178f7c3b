"""
SQLite-based persistence layer for the Lumina wallet.

One database file holds exactly one wallet: its identity (encrypted seed
and KDF parameters), balances, transaction history and sync metadata.
The whole state is written in a single ``BEGIN IMMEDIATE … COMMIT``
transaction so a crash can never leave a half-written snapshot.

Usage:
    with WalletStore("data/wallet.db") as store:
        store.save_state(state)
        state = store.load_state()
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from lumina_core.errors import CorruptStateError, InvalidAmount, StorageError
from lumina_core.identity import MIN_ENCRYPTED_SEED_BYTES, Identity, KdfParams
from lumina_core.precision import check_units
from lumina_core.transaction import TransactionRecord

logger = logging.getLogger("lumina_storage")

STORE_FORMAT = "lumina-wallet"


@dataclass
class WalletState:
    """Everything the wallet persists, as plain values."""
    identity: Identity
    balances: dict[str, int] = field(default_factory=dict)
    history: list[TransactionRecord] = field(default_factory=list)
    credited_tx_ids: set[str] = field(default_factory=set)
    sync_height: int = 0
    next_sequence: int = 1


class WalletStore:
    """Thin SQLite wrapper for persisting one wallet."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/wallet.db"):
        self.db_path = db_path
        try:
            if db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA busy_timeout = 5000")
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError as exc:
            if "not a database" in str(exc) or "malformed" in str(exc):
                raise CorruptStateError(f"{db_path} is not a wallet database") from exc
            raise StorageError(f"Cannot open {db_path}: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Cannot open {db_path}: {exc}") from exc
        try:
            self._create_tables()
            self._ensure_schema_version()
        except sqlite3.DatabaseError as exc:
            self._conn.close()
            raise CorruptStateError(f"{db_path} is not a wallet database: {exc}") from exc
        except CorruptStateError:
            self._conn.close()
            raise
        logger.info(f"Wallet store opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                format  TEXT NOT NULL,
                version INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS identity (
                id             INTEGER PRIMARY KEY CHECK (id = 1),
                address        TEXT NOT NULL,
                public_key     TEXT NOT NULL,
                encrypted_seed TEXT NOT NULL,
                kdf_algorithm  TEXT NOT NULL,
                kdf_iterations INTEGER NOT NULL,
                kdf_salt       TEXT NOT NULL,
                created_at     REAL NOT NULL DEFAULT 0
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS balances (
                token  TEXT PRIMARY KEY,
                amount INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                position     INTEGER PRIMARY KEY,
                tx_id        TEXT NOT NULL UNIQUE,
                from_address TEXT NOT NULL,
                to_address   TEXT NOT NULL,
                amount       INTEGER NOT NULL,
                token        TEXT NOT NULL,
                timestamp    INTEGER NOT NULL,
                status       TEXT NOT NULL,
                signature    TEXT NOT NULL DEFAULT '',
                public_key   TEXT NOT NULL DEFAULT '',
                sequence     INTEGER NOT NULL DEFAULT 0,
                kind         TEXT NOT NULL DEFAULT 'transfer',
                reference    TEXT NOT NULL DEFAULT ''
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS wallet_meta (
                key   TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS credited_tx_ids (
                tx_id TEXT PRIMARY KEY
            )
        """)

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT format, version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, format, version) VALUES (1, ?, ?)",
                (STORE_FORMAT, self.CURRENT_SCHEMA_VERSION),
            )
            return
        if row["format"] != STORE_FORMAT:
            raise CorruptStateError(f"Unknown store format {row['format']!r}")
        db_ver = row["version"]
        if db_ver > self.CURRENT_SCHEMA_VERSION:
            raise CorruptStateError(
                f"Wallet store v{db_ver} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade Lumina."
            )
        if db_ver < self.CURRENT_SCHEMA_VERSION:
            raise CorruptStateError(f"Unsupported wallet store version v{db_ver}")

    # ── save ─────────────────────────────────────────────────────

    def save_state(self, state: WalletState) -> None:
        """Replace the stored wallet with *state* in one transaction."""
        ident = state.identity
        c = self._conn
        try:
            c.execute("BEGIN IMMEDIATE")
            try:
                c.execute(
                    """INSERT OR REPLACE INTO identity
                       (id, address, public_key, encrypted_seed, kdf_algorithm,
                        kdf_iterations, kdf_salt, created_at)
                       VALUES (1, ?, ?, ?, ?, ?, ?, ?)""",
                    (ident.address, ident.public_key.hex(), ident.encrypted_seed.hex(),
                     ident.kdf_params.algorithm, ident.kdf_params.iterations,
                     ident.kdf_params.salt.hex(), ident.created_at),
                )
                c.execute("DELETE FROM balances")
                c.executemany(
                    "INSERT INTO balances (token, amount) VALUES (?, ?)",
                    sorted(state.balances.items()),
                )
                c.execute("DELETE FROM transactions")
                c.executemany(
                    """INSERT INTO transactions
                       (position, tx_id, from_address, to_address, amount, token,
                        timestamp, status, signature, public_key, sequence, kind, reference)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (i, r.tx_id, r.from_address, r.to_address, r.amount, r.token,
                         r.timestamp, r.status.value, r.signature.hex(), r.public_key.hex(),
                         r.sequence, r.kind.value, r.reference)
                        for i, r in enumerate(state.history)
                    ],
                )
                c.execute("DELETE FROM credited_tx_ids")
                c.executemany(
                    "INSERT INTO credited_tx_ids (tx_id) VALUES (?)",
                    [(tid,) for tid in state.credited_tx_ids],
                )
                c.executemany(
                    "INSERT OR REPLACE INTO wallet_meta (key, value) VALUES (?, ?)",
                    [("sync_height", state.sync_height), ("next_sequence", state.next_sequence)],
                )
                c.execute("COMMIT")
            except Exception:
                c.execute("ROLLBACK")
                raise
        except (sqlite3.Error, OverflowError) as exc:
            logger.error(f"Failed to save wallet state to {self.db_path}: {exc}")
            raise StorageError(f"Could not save wallet state: {exc}") from exc

    # ── load ─────────────────────────────────────────────────────

    def has_identity(self) -> bool:
        try:
            row = self._conn.execute("SELECT 1 FROM identity WHERE id = 1").fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not read wallet store: {exc}") from exc
        return row is not None

    def load_state(self) -> WalletState | None:
        """Load and validate the stored wallet; ``None`` for an empty store."""
        try:
            ident_row = self._conn.execute("SELECT * FROM identity WHERE id = 1").fetchone()
            if ident_row is None:
                return None
            balance_rows = self._conn.execute("SELECT token, amount FROM balances").fetchall()
            tx_rows = self._conn.execute("SELECT * FROM transactions ORDER BY position").fetchall()
            credited_rows = self._conn.execute("SELECT tx_id FROM credited_tx_ids").fetchall()
            meta = {
                r["key"]: r["value"]
                for r in self._conn.execute("SELECT key, value FROM wallet_meta").fetchall()
            }
        except sqlite3.DatabaseError as exc:
            raise CorruptStateError(f"Wallet store unreadable: {exc}") from exc

        identity = self._identity_from_row(ident_row)

        balances: dict[str, int] = {}
        for row in balance_rows:
            try:
                balances[str(row["token"])] = check_units(row["amount"], f"balance of {row['token']}")
            except InvalidAmount as exc:
                raise CorruptStateError(str(exc)) from exc

        history = [
            TransactionRecord.from_dict({
                "tx_id": r["tx_id"],
                "from": r["from_address"],
                "to": r["to_address"],
                "amount": r["amount"],
                "token": r["token"],
                "timestamp": r["timestamp"],
                "status": r["status"],
                "signature": r["signature"],
                "public_key": r["public_key"],
                "sequence": r["sequence"],
                "kind": r["kind"],
                "reference": r["reference"],
            })
            for r in tx_rows
        ]

        sync_height = meta.get("sync_height", 0)
        next_sequence = meta.get("next_sequence", 1)
        if not isinstance(sync_height, int) or sync_height < 0:
            raise CorruptStateError(f"Invalid sync height {sync_height!r}")
        if not isinstance(next_sequence, int) or next_sequence < 1:
            raise CorruptStateError(f"Invalid sequence counter {next_sequence!r}")

        logger.debug(
            f"Loaded wallet {identity.address}: {len(balances)} balances, "
            f"{len(history)} transactions, height {sync_height}"
        )
        return WalletState(
            identity=identity,
            balances=balances,
            history=history,
            credited_tx_ids={r["tx_id"] for r in credited_rows},
            sync_height=sync_height,
            next_sequence=next_sequence,
        )

    @staticmethod
    def _identity_from_row(row: sqlite3.Row) -> Identity:
        try:
            identity = Identity(
                address=row["address"],
                public_key=bytes.fromhex(row["public_key"]),
                encrypted_seed=bytes.fromhex(row["encrypted_seed"]),
                kdf_params=KdfParams(
                    salt=bytes.fromhex(row["kdf_salt"]),
                    iterations=int(row["kdf_iterations"]),
                    algorithm=row["kdf_algorithm"],
                ),
                created_at=float(row["created_at"]),
            )
        except (ValueError, TypeError) as exc:
            raise CorruptStateError(f"Malformed identity record: {exc}") from exc
        if not identity.address or not identity.encrypted_seed or identity.kdf_params.iterations < 1:
            raise CorruptStateError("Incomplete identity record")
        if len(identity.encrypted_seed) < MIN_ENCRYPTED_SEED_BYTES:
            raise CorruptStateError("Encrypted seed is truncated")
        if identity.kdf_params.algorithm != "pbkdf2-hmac-sha256":
            raise CorruptStateError(f"Unknown KDF {identity.kdf_params.algorithm!r}")
        return identity

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        self._conn.close()
        logger.debug(f"Wallet store closed: {self.db_path}")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
