"""
Remote ledger abstraction for the Lumina wallet.

The wallet never talks to the network directly.  Everything goes through a
:class:`LedgerClient`:

    connect(endpoint)                  -> None
    fetch_latest_height()              -> int   (number of blocks)
    fetch_blocks(start, end)           -> list[Block]   heights [start, end)
    submit_transaction(record)         -> TxAck

Block heights start at 0, so a ledger reporting a latest height of 250
holds blocks 0..249.  Validating blocks is the client's job; the wallet
trusts what it receives.

:class:`SimulatedLedger` is a complete in-process implementation used by
the test-suite, the interactive shell's offline mode and demos.  It has
knobs for injecting latency and failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Iterable, Protocol, runtime_checkable

from lumina_core import crypto_utils
from lumina_core.errors import FetchError, LedgerConnectionError, SubmitError
from lumina_core.precision import DEFAULT_TOKEN
from lumina_core.transaction import TransactionRecord, TxStatus, canonical_json

logger = logging.getLogger("lumina_ledger")

DEFAULT_ENDPOINT = "https://node.luminachain.network"
GENESIS_ADDRESS = "LMTgenesis"


# ─── Wire types ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BlockTransaction:
    """A settled transaction as reported inside a block."""
    tx_id: str
    from_address: str
    to_address: str
    amount: int
    token: str = DEFAULT_TOKEN
    timestamp: int = 0
    status: TxStatus = TxStatus.CONFIRMED
    signature: bytes = b""


@dataclass(frozen=True)
class Block:
    height: int
    transactions: tuple[BlockTransaction, ...] = ()
    block_hash: str = ""


@dataclass(frozen=True)
class TxAck:
    tx_id: str
    accepted: bool
    message: str = ""


@runtime_checkable
class LedgerClient(Protocol):
    async def connect(self, endpoint: str) -> None: ...

    async def fetch_latest_height(self) -> int: ...

    async def fetch_blocks(self, start: int, end: int) -> list[Block]: ...

    async def submit_transaction(self, record: TransactionRecord) -> TxAck: ...


# ═════════════════════════════════════════════════════════════════════════
#  SimulatedLedger
# ═════════════════════════════════════════════════════════════════════════


class SimulatedLedger:
    """
    In-memory ledger implementing :class:`LedgerClient`.

    Submitted transactions wait in a mempool until :meth:`seal_block`
    packs them into the next block.  Failure knobs are counters: setting
    ``fetch_failures = 2`` makes the next two ``fetch_blocks`` calls raise
    :class:`FetchError`.
    """

    def __init__(self, latency: float = 0.0):
        self.blocks: list[Block] = []
        self.mempool: list[BlockTransaction] = []
        self.endpoint: str | None = None
        self.latency = latency

        # Fault injection
        self.connect_failures = 0
        self.height_failures = 0
        self.fetch_failures = 0
        self.submit_failures = 0
        self.reject_submissions = False

        # Call log, handy for assertions
        self.fetch_calls: list[tuple[int, int]] = []
        self.submitted: list[str] = []

    # ── LedgerClient ─────────────────────────────────────────────────

    async def connect(self, endpoint: str) -> None:
        await self._delay()
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise LedgerConnectionError(f"Cannot reach {endpoint}")
        self.endpoint = endpoint
        logger.debug(f"Simulated ledger connected as {endpoint}")

    async def fetch_latest_height(self) -> int:
        self._require_connection()
        await self._delay()
        if self.height_failures > 0:
            self.height_failures -= 1
            raise FetchError("Latest height unavailable")
        return len(self.blocks)

    async def fetch_blocks(self, start: int, end: int) -> list[Block]:
        self._require_connection()
        await self._delay()
        self.fetch_calls.append((start, end))
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise FetchError(f"Blocks [{start}, {end}) unavailable")
        if start < 0 or end < start or end > len(self.blocks):
            raise FetchError(f"Invalid block range [{start}, {end})")
        return list(self.blocks[start:end])

    async def submit_transaction(self, record: TransactionRecord) -> TxAck:
        self._require_connection()
        await self._delay()
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise SubmitError(f"Submission of {record.tx_id} timed out")
        if self.reject_submissions:
            return TxAck(record.tx_id, False, "Rejected by ledger")
        if not record.verify_signature():
            return TxAck(record.tx_id, False, "Invalid signature")
        if record.tx_id in self.submitted:
            return TxAck(record.tx_id, True, "Already known")
        self.submitted.append(record.tx_id)
        self.mempool.append(BlockTransaction(
            tx_id=record.tx_id,
            from_address=record.from_address,
            to_address=record.to_address,
            amount=record.amount,
            token=record.token,
            timestamp=record.timestamp,
            signature=record.signature,
        ))
        return TxAck(record.tx_id, True, "Queued")

    # ── Ledger construction helpers ──────────────────────────────────

    def append_block(self, transactions: Iterable[BlockTransaction] = ()) -> Block:
        height = len(self.blocks)
        txs = tuple(transactions)
        prev = self.blocks[-1].block_hash if self.blocks else "0" * 64
        body = canonical_json({
            "height": height,
            "prev": prev,
            "txs": [tx.tx_id for tx in txs],
        })
        block = Block(height, txs, crypto_utils.sha256(body).hex())
        self.blocks.append(block)
        return block

    def add_empty_blocks(self, count: int) -> None:
        for _ in range(count):
            self.append_block()

    def fund(self, address: str, amount: int, token: str = DEFAULT_TOKEN,
             sender: str = GENESIS_ADDRESS) -> str:
        """Credit *address* in a new block.  Returns the funding tx id."""
        height = len(self.blocks)
        tx_id = crypto_utils.sha256(
            canonical_json({"fund": address, "amount": amount, "token": token,
                            "height": height, "from": sender})
        ).hex()
        self.append_block([BlockTransaction(
            tx_id=tx_id,
            from_address=sender,
            to_address=address,
            amount=amount,
            token=token,
            timestamp=int(time.time() * 1000),
        )])
        return tx_id

    def seal_block(self, fail: Iterable[str] = ()) -> Block:
        """Pack the mempool into a block; ids in *fail* settle as Failed."""
        failed = set(fail)
        txs = []
        for tx in self.mempool:
            if tx.tx_id in failed:
                tx = BlockTransaction(
                    tx.tx_id, tx.from_address, tx.to_address, tx.amount,
                    tx.token, tx.timestamp, TxStatus.FAILED, tx.signature,
                )
            txs.append(tx)
        self.mempool.clear()
        return self.append_block(txs)

    # ── internals ────────────────────────────────────────────────────

    def _require_connection(self) -> None:
        if self.endpoint is None:
            raise LedgerConnectionError("Not connected")

    async def _delay(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)
