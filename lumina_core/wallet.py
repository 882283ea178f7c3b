"""
Wallet aggregate for Lumina.

A :class:`Wallet` owns one identity, its balance table and its
append-only transaction history, and is the only thing allowed to mutate
them.  It provides:
  - Seed creation / recovery / reveal and password change
  - Lock / unlock of the in-memory signing key
  - Transfer construction, signing and local debit
  - Application of ledger blocks (credits, confirmations, failures)
  - Submission of pending transfers to a :class:`LedgerClient`

Every mutation happens under a single re-entrant lock and is persisted
before the call returns.  If persisting fails the in-memory state is
rolled back to what it was before the call and :class:`StorageError`
propagates, so memory and disk never disagree.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from lumina_core.crypto_utils import (
    ADDRESS_PREFIX,
    SecureRandom,
    derive_address,
    is_valid_wallet_address,
    private_key_from_material,
    public_key_from_private,
    sha256,
)
from lumina_core.errors import (
    CorruptStateError,
    FetchError,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidInput,
    StorageError,
    SubmitError,
    WalletAlreadyInitialized,
    WalletLocked,
    WalletNotInitialized,
)
from lumina_core.identity import (
    DEFAULT_KDF_ITERATIONS,
    Identity,
    create_identity,
    decrypt_seed,
    derive_private_key,
    recover_identity,
)
from lumina_core.ledger_client import Block, BlockTransaction, LedgerClient, TxAck
from lumina_core.precision import (
    DEFAULT_TOKEN,
    MAX_UNITS,
    add_units,
    check_units,
    format_amount,
    sub_units,
)
from lumina_core.storage import WalletState, WalletStore
from lumina_core.transaction import (
    TransactionRecord,
    TxKind,
    TxStatus,
    compute_tx_id,
)

logger = logging.getLogger("lumina_wallet")

MAX_ADDRESS_LENGTH = 128
MAX_TOKEN_LENGTH = 12

# Donations go to the address of a published, well-known key.
DEV_TEAM_ADDRESS = derive_address(
    public_key_from_private(private_key_from_material(sha256(b"Lumina development fund")))
)

STATUS_NOT_INITIALIZED = "Not initialized"
STATUS_NOT_SYNCED = "Not synchronized with the network"
STATUS_READY = "Ready"


def is_valid_address(address: str) -> bool:
    """
    Accept checksummed ``LMT…`` addresses and opaque alphanumeric
    addresses of foreign formats.  Anything starting with the Lumina
    prefix must carry a valid checksum.
    """
    if not isinstance(address, str) or not address or len(address) > MAX_ADDRESS_LENGTH:
        return False
    if address.startswith(ADDRESS_PREFIX):
        return is_valid_wallet_address(address)
    return address.isascii() and address.isalnum()


def check_token(token: str) -> str:
    if not isinstance(token, str) or not token or len(token) > MAX_TOKEN_LENGTH \
            or not (token.isascii() and token.isalnum()):
        raise InvalidInput(f"Invalid token symbol: {token!r}")
    return token


@dataclass
class _Snapshot:
    identity: Identity | None
    private_key: bytes | None
    balances: dict[str, int]
    history: list[TransactionRecord]
    credited: set[str]
    sync_height: int
    sequence: int


class Wallet:
    """The wallet aggregate.  See module docstring."""

    def __init__(
        self,
        store: WalletStore | None = None,
        rng: SecureRandom | None = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
        default_token: str = DEFAULT_TOKEN,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.rng = rng or SecureRandom()
        self.kdf_iterations = kdf_iterations
        self.default_token = check_token(default_token)
        self._clock = clock

        self._lock = threading.RLock()
        self.identity: Identity | None = None
        self._private_key: bytes | None = None
        self._balances: dict[str, int] = {}
        self._history: list[TransactionRecord] = []
        self._by_id: dict[str, TransactionRecord] = {}
        self._credited: set[str] = set()
        self.sync_height: int = 0       # next block height to apply
        self._sequence: int = 1

    # ---- factory / lifecycle ----

    @classmethod
    def open(cls, store: WalletStore, **kwargs) -> Wallet:
        """Build a wallet from *store*, loading any persisted state (locked)."""
        wallet = cls(store, **kwargs)
        state = store.load_state()
        if state is not None:
            wallet._load(state)
            logger.info(f"Loaded wallet {wallet.address} at height {wallet.sync_height}")
        return wallet

    def _load(self, state: WalletState) -> None:
        by_id: dict[str, TransactionRecord] = {}
        for record in state.history:
            if record.tx_id in by_id:
                raise CorruptStateError(f"Duplicate transaction {record.tx_id} in history")
            by_id[record.tx_id] = record
        with self._lock:
            self.identity = state.identity
            self._private_key = None
            self._balances = {k: v for k, v in state.balances.items() if v}
            self._history = list(state.history)
            self._by_id = by_id
            self._credited = set(state.credited_tx_ids)
            self.sync_height = state.sync_height
            self._sequence = state.next_sequence

    def save(self) -> None:
        """Persist the current state (used at shutdown)."""
        with self._lock:
            if self.store is not None and self.identity is not None:
                self.store.save_state(self._state())

    def close(self) -> None:
        with self._lock:
            self.save()
            self.lock()
            if self.store is not None:
                self.store.close()
                self.store = None

    # ---- identity ----

    @property
    def is_initialized(self) -> bool:
        return self.identity is not None

    @property
    def is_locked(self) -> bool:
        return self._private_key is None

    @property
    def address(self) -> str:
        return self._require_identity().address

    def get_main_address(self) -> str:
        return self.address

    def create(self, password: str) -> str:
        """Generate a new identity.  Returns the seed phrase, which is shown once."""
        with self._lock:
            if self.identity is not None:
                raise WalletAlreadyInitialized("Wallet already has an identity")
            identity, phrase = create_identity(
                password, self.rng, self.kdf_iterations, created_at=self._clock(),
            )
            self._install_identity(identity, phrase)
            logger.info(f"Created wallet {identity.address}")
            return phrase

    def recover_from_seed(self, phrase: str, password: str) -> str:
        """Rebuild the identity from *phrase*.  Returns the main address."""
        with self._lock:
            if self.identity is not None:
                raise WalletAlreadyInitialized("Wallet already has an identity")
            identity, phrase = recover_identity(
                phrase, password, self.rng, self.kdf_iterations, created_at=self._clock(),
            )
            self._install_identity(identity, phrase)
            logger.info(f"Recovered wallet {identity.address}")
            return identity.address

    def _install_identity(self, identity: Identity, phrase: str) -> None:
        snapshot = self._capture()
        self.identity = identity
        self._private_key = derive_private_key(phrase)
        self._persist(snapshot)

    def unlock(self, password: str) -> None:
        with self._lock:
            identity = self._require_identity()
            phrase = decrypt_seed(identity, password)
            key = derive_private_key(phrase)
            if derive_address(public_key_from_private(key)) != identity.address:
                raise CorruptStateError("Stored seed does not match the wallet address")
            self._private_key = key
            logger.info(f"Wallet {identity.address} unlocked")

    def lock(self) -> None:
        with self._lock:
            if self._private_key is not None:
                self._private_key = None
                logger.info("Wallet locked")

    def get_seed_phrase(self, password: str) -> str:
        """Reveal the phrase after re-verifying *password*."""
        identity = self._require_identity()
        phrase = decrypt_seed(identity, password)
        logger.info(f"Seed phrase revealed for {identity.address}")
        return phrase

    def change_password(self, old_password: str, new_password: str) -> None:
        with self._lock:
            identity = self._require_identity()
            updated = identity.reencrypt(old_password, new_password, self.rng)
            snapshot = self._capture()
            self.identity = updated
            self._persist(snapshot)
            logger.info(f"Password changed for {identity.address}")

    # ---- queries ----

    def get_balance(self, token: str | None = None) -> int:
        with self._lock:
            return self._balances.get(token or self.default_token, 0)

    def balances(self) -> dict[str, int]:
        with self._lock:
            return dict(self._balances)

    def history(self) -> list[TransactionRecord]:
        with self._lock:
            return [r.copy() for r in self._history]

    def get_transaction(self, tx_id: str) -> TransactionRecord | None:
        with self._lock:
            record = self._by_id.get(tx_id)
            return record.copy() if record else None

    def pending(self) -> list[TransactionRecord]:
        with self._lock:
            return [r.copy() for r in self._history if r.status is TxStatus.PENDING]

    @staticmethod
    def verify_signature(record: TransactionRecord) -> bool:
        return record.verify_signature()

    def status(self, synced: bool) -> str:
        if self.identity is None:
            return STATUS_NOT_INITIALIZED
        if not synced:
            return STATUS_NOT_SYNCED
        return STATUS_READY

    def info(self) -> dict:
        with self._lock:
            identity = self._require_identity()
            return {
                "address": identity.address,
                "balances": {t: format_amount(u, t) for t, u in sorted(self._balances.items())},
                "transaction_count": len(self._history),
                "pending_count": sum(1 for r in self._history if r.status is TxStatus.PENDING),
                "created_at": identity.created_at,
                "sync_height": self.sync_height,
                "locked": self.is_locked,
            }

    # ---- transfers ----

    def transfer(self, to_address: str, amount: int, token: str | None = None) -> str:
        """
        Debit *amount* units of *token* and record a signed Pending transfer.

        Returns the content-derived transaction id.  Nothing is sent to the
        network here; see :meth:`submit_pending`.
        """
        token = check_token(token or self.default_token)
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("Amount must be an integer number of units")
        if amount <= 0:
            raise InvalidAmount("Amount must be positive")
        if amount > MAX_UNITS:
            raise InvalidAmount("Amount out of range")
        if not is_valid_address(to_address):
            raise InvalidAddress(f"Invalid destination address: {to_address!r}")

        with self._lock:
            identity = self._require_identity()
            balance = self._balances.get(token, 0)
            if balance < amount:
                raise InsufficientFunds(
                    f"Insufficient {token} balance: have {format_amount(balance, token)}, "
                    f"need {format_amount(amount, token)}"
                )
            if self._private_key is None:
                raise WalletLocked("Unlock the wallet to sign transfers")

            timestamp = int(self._clock() * 1000)
            tx_id = compute_tx_id(identity.address, to_address, amount, token, timestamp, self._sequence)
            record = TransactionRecord(
                tx_id=tx_id,
                from_address=identity.address,
                to_address=to_address,
                amount=amount,
                token=token,
                timestamp=timestamp,
                sequence=self._sequence,
            )
            record.sign(self._private_key, identity.public_key)

            snapshot = self._capture()
            self._set_balance(token, sub_units(balance, amount))
            self._append(record)
            self._sequence += 1
            self._persist(snapshot)

        logger.info(f"Transfer {tx_id[:16]} queued: {format_amount(amount, token)} to {to_address}")
        return tx_id

    def donate(self, amount: int, token: str | None = None) -> str:
        return self.transfer(DEV_TEAM_ADDRESS, amount, token)

    def record_contract_call(self, contract_address: str, interpreter_tx_id: str) -> TransactionRecord:
        """Record a zero-amount transaction acknowledging a contract execution."""
        with self._lock:
            identity = self._require_identity()
            if self._private_key is None:
                raise WalletLocked("Unlock the wallet to record contract calls")
            token = self.default_token
            timestamp = int(self._clock() * 1000)
            record = TransactionRecord(
                tx_id=compute_tx_id(identity.address, contract_address, 0, token, timestamp, self._sequence),
                from_address=identity.address,
                to_address=contract_address,
                amount=0,
                token=token,
                timestamp=timestamp,
                status=TxStatus.CONFIRMED,
                sequence=self._sequence,
                kind=TxKind.CONTRACT,
                reference=interpreter_tx_id,
            )
            record.sign(self._private_key, identity.public_key)
            snapshot = self._capture()
            self._append(record)
            self._sequence += 1
            self._persist(snapshot)
            return record.copy()

    def mark_failed(self, tx_id: str, reason: str = "") -> None:
        """Fail a Pending transfer and refund its debit."""
        with self._lock:
            record = self._by_id.get(tx_id)
            if record is None:
                raise InvalidInput(f"Unknown transaction {tx_id}")
            if record.status.is_terminal:
                return
            snapshot = self._capture()
            record.transition(TxStatus.FAILED)
            if record.kind is TxKind.TRANSFER:
                self._set_balance(record.token, add_units(self._balances.get(record.token, 0), record.amount))
            self._persist(snapshot)
        logger.warning(f"Transfer {tx_id[:16]} failed: {reason or 'rejected'}")

    async def submit_pending(self, client: LedgerClient, timeout: float | None = None) -> list[TxAck]:
        """
        Push every Pending transfer to *client*.

        A rejected acknowledgement fails the record and refunds it.  A
        :class:`SubmitError` (or timeout) leaves it Pending for the next
        attempt.  Returns the acknowledgements received.
        """
        acks: list[TxAck] = []
        for record in self.pending():
            if record.kind is not TxKind.TRANSFER:
                continue
            try:
                ack = await asyncio.wait_for(client.submit_transaction(record), timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Submission of {record.tx_id[:16]} timed out; will retry")
                continue
            except SubmitError as exc:
                logger.warning(f"Submission of {record.tx_id[:16]} failed: {exc.message}; will retry")
                continue
            acks.append(ack)
            if not ack.accepted:
                self.mark_failed(record.tx_id, ack.message)
        return acks

    # ---- block application ----

    def apply_blocks(self, blocks: Iterable[Block]) -> int:
        """
        Apply consecutive blocks starting at :attr:`sync_height`.

        Blocks below the current height were already applied and are
        skipped, so re-delivery is harmless.  A gap raises
        :class:`FetchError`.  The whole batch is applied atomically.
        Returns the new height.
        """
        with self._lock:
            self._require_identity()
            snapshot = self._capture()
            try:
                for block in blocks:
                    self._apply_block(block)
            except Exception:
                self._restore(snapshot)
                raise
            if self.sync_height != snapshot.sync_height:
                self._persist(snapshot)
            return self.sync_height

    def _apply_block(self, block: Block) -> None:
        if block.height < self.sync_height:
            logger.debug(f"Skipping already-applied block {block.height}")
            return
        if block.height > self.sync_height:
            raise FetchError(f"Received block {block.height}, expected {self.sync_height}")
        for tx in block.transactions:
            self._apply_block_tx(tx)
        self.sync_height = block.height + 1

    def _apply_block_tx(self, tx: BlockTransaction) -> None:
        me = self.identity.address
        outgoing = tx.from_address == me
        incoming = tx.to_address == me
        if not (outgoing or incoming):
            return
        try:
            check_units(tx.amount)
            check_token(tx.token)
        except InvalidInput as exc:
            raise FetchError(f"Malformed transaction {tx.tx_id} in block: {exc.message}") from exc
        if tx.status is TxStatus.PENDING:
            raise FetchError(f"Unsettled transaction {tx.tx_id} in block")

        if outgoing:
            self._settle_outgoing(tx)
        if incoming and tx.status is TxStatus.CONFIRMED and tx.tx_id not in self._credited:
            self._set_balance(tx.token, add_units(self._balances.get(tx.token, 0), tx.amount))
            self._credited.add(tx.tx_id)
            if tx.tx_id not in self._by_id:
                self._append(TransactionRecord(
                    tx_id=tx.tx_id,
                    from_address=tx.from_address,
                    to_address=tx.to_address,
                    amount=tx.amount,
                    token=tx.token,
                    timestamp=tx.timestamp,
                    status=TxStatus.CONFIRMED,
                    signature=tx.signature,
                    kind=TxKind.INCOMING,
                ))

    def _settle_outgoing(self, tx: BlockTransaction) -> None:
        record = self._by_id.get(tx.tx_id)
        if record is None:
            # Sent from another installation of the same seed.
            if tx.status is TxStatus.CONFIRMED:
                balance = self._balances.get(tx.token, 0)
                if tx.amount > balance:
                    raise CorruptStateError(
                        f"Confirmed spend {tx.tx_id} exceeds the local {tx.token} balance"
                    )
                self._set_balance(tx.token, balance - tx.amount)
            self._append(TransactionRecord(
                tx_id=tx.tx_id,
                from_address=tx.from_address,
                to_address=tx.to_address,
                amount=tx.amount,
                token=tx.token,
                timestamp=tx.timestamp,
                status=tx.status,
                signature=tx.signature,
                public_key=self.identity.public_key,
            ))
            return
        if record.status.is_terminal:
            return
        record.transition(tx.status)
        if tx.status is TxStatus.FAILED:
            self._set_balance(record.token, add_units(self._balances.get(record.token, 0), record.amount))
            logger.warning(f"Transfer {record.tx_id[:16]} failed on the ledger; refunded")
        else:
            logger.info(f"Transfer {record.tx_id[:16]} confirmed")

    # ---- internals ----

    def _require_identity(self) -> Identity:
        if self.identity is None:
            raise WalletNotInitialized("Wallet has no identity; create or recover one first")
        return self.identity

    def _set_balance(self, token: str, units: int) -> None:
        if units:
            self._balances[token] = units
        else:
            self._balances.pop(token, None)

    def _append(self, record: TransactionRecord) -> None:
        self._history.append(record)
        self._by_id[record.tx_id] = record

    def _capture(self) -> _Snapshot:
        return _Snapshot(
            identity=self.identity,
            private_key=self._private_key,
            balances=dict(self._balances),
            history=[r.copy() for r in self._history],
            credited=set(self._credited),
            sync_height=self.sync_height,
            sequence=self._sequence,
        )

    def _restore(self, snap: _Snapshot) -> None:
        self.identity = snap.identity
        self._private_key = snap.private_key
        self._balances = snap.balances
        self._history = snap.history
        self._by_id = {r.tx_id: r for r in snap.history}
        self._credited = snap.credited
        self.sync_height = snap.sync_height
        self._sequence = snap.sequence

    def _state(self) -> WalletState:
        return WalletState(
            identity=self.identity,
            balances=self._balances,
            history=self._history,
            credited_tx_ids=self._credited,
            sync_height=self.sync_height,
            next_sequence=self._sequence,
        )

    def _persist(self, snapshot: _Snapshot) -> None:
        if self.store is None:
            return
        try:
            self.store.save_state(self._state())
        except StorageError:
            self._restore(snapshot)
            logger.error("Persisting wallet state failed; in-memory change rolled back")
            raise

    def __repr__(self) -> str:
        addr = self.identity.address if self.identity else "uninitialized"
        return f"Wallet({addr})"
