"""
Incremental block synchronisation for the Lumina wallet.

The :class:`SyncEngine` keeps a wallet's local view in step with the
remote ledger.  It is a small state machine:

    NotSynced ──start_sync──▶ Syncing ──caught up──▶ Synced
        ▲                        │                     │
        └──── stop / failure ────┘◀──── start_sync ────┘

One sync attempt:

1. **Connect** to the configured endpoint and **fetch the latest height**.
2. **Batch loop** (background task): request blocks
   ``[cursor, min(cursor + batch_size, latest))``, hand them to
   :meth:`Wallet.apply_blocks`, advance the cursor and report
   ``progress = cursor / latest`` to the caller's callback.
3. When the cursor reaches the target the latest height is fetched again;
   if the ledger grew the loop continues, otherwise the engine is Synced.

Cancellation is cooperative: :meth:`stop_sync` sets a flag that the loop
checks between batches, so a batch is never half-applied.  Every
``LedgerClient`` call is bounded by ``request_timeout`` and failed fetches
are retried with exponential backoff before the attempt is abandoned.
Blocks applied before a failure stay applied.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from lumina_core.errors import (
    AlreadySyncing,
    FetchError,
    InvalidInput,
    LedgerConnectionError,
    NetworkError,
    NotSyncing,
    WalletError,
)
from lumina_core.ledger_client import DEFAULT_ENDPOINT, Block, LedgerClient, TxAck
from lumina_core.wallet import Wallet

logger = logging.getLogger("lumina_sync")

DEFAULT_BATCH_SIZE = 100
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 0.5

ProgressCallback = Callable[[float, str], Optional[Awaitable[Any]]]


class SyncStatus(str, Enum):
    NOT_SYNCED = "NotSynced"
    SYNCING = "Syncing"
    SYNCED = "Synced"


@dataclass
class SyncCursor:
    current_height: int = 0
    latest_known_height: int = 0
    status: SyncStatus = SyncStatus.NOT_SYNCED
    progress: float = 0.0


class SyncEngine:
    """
    Drives block synchronisation for one wallet.

    Lifecycle:
        1. ``await engine.start_sync(callback)`` connects, reads the remote
           height and launches the batch loop as a background task.
        2. ``await engine.wait()`` blocks until the attempt finishes.
        3. ``await engine.stop_sync()`` cancels between batches.
    """

    def __init__(
        self,
        wallet: Wallet,
        client: LedgerClient,
        endpoint: str = DEFAULT_ENDPOINT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    ):
        if batch_size < 1:
            raise InvalidInput("batch_size must be at least 1")
        if request_timeout <= 0:
            raise InvalidInput("request_timeout must be positive")
        if max_retries < 0 or retry_backoff < 0:
            raise InvalidInput("retry settings must not be negative")
        self.wallet = wallet
        self.client = client
        self.batch_size = batch_size
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._endpoint = endpoint
        self._connected = False

        self.cursor = SyncCursor(current_height=wallet.sync_height)
        self.last_error: WalletError | None = None
        self._callback: ProgressCallback | None = None
        self._cancel = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._starting = False

    # ── Properties ───────────────────────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self.cursor.status

    @property
    def progress(self) -> float:
        return self.cursor.progress

    @property
    def is_synced(self) -> bool:
        return self.cursor.status is SyncStatus.SYNCED

    def get_network_endpoint(self) -> str:
        return self._endpoint

    def set_network_endpoint(self, endpoint: str) -> None:
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise InvalidInput("Endpoint must be a non-empty string")
        if self._starting or self.cursor.status is SyncStatus.SYNCING:
            raise AlreadySyncing("Cannot change the endpoint while syncing")
        self._endpoint = endpoint.strip()
        self._connected = False
        logger.info(f"Network endpoint set to {self._endpoint}")

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start_sync(self, progress_callback: ProgressCallback | None = None) -> None:
        """Connect, read the remote height and launch the batch loop."""
        if self._starting or self.cursor.status is SyncStatus.SYNCING \
                or (self._task is not None and not self._task.done()):
            raise AlreadySyncing("Synchronization already in progress")
        self.wallet.get_main_address()
        self._starting = True
        try:
            await self._launch(progress_callback)
        finally:
            self._starting = False

    async def _launch(self, progress_callback: ProgressCallback | None) -> None:
        await self._connect()
        latest = await self._call(self.client.fetch_latest_height(), FetchError, "fetching latest height")
        current = self.wallet.sync_height
        if not isinstance(latest, int) or latest < 0:
            raise FetchError(f"Ledger reported an invalid height: {latest!r}")
        if latest < current:
            raise FetchError(f"Ledger height {latest} is behind the local height {current}")

        self.cursor.current_height = current
        self.cursor.latest_known_height = latest
        self.cursor.status = SyncStatus.SYNCING
        if current < latest:
            self.cursor.progress = current / latest
        self.last_error = None
        self._callback = progress_callback
        self._cancel = asyncio.Event()
        logger.info(f"Sync started: local height {current}, remote height {latest}")
        self._task = asyncio.create_task(self._run())

    async def stop_sync(self) -> None:
        """Request cancellation and wait for the loop to reach a batch boundary."""
        if self.cursor.status is not SyncStatus.SYNCING or self._task is None:
            raise NotSyncing("No synchronization in progress")
        self._cancel.set()
        await self.wait()
        logger.info(f"Sync stopped at height {self.cursor.current_height}")

    async def wait(self) -> SyncStatus:
        """Wait for the running attempt (if any) to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self.cursor.status

    async def submit_pending(self) -> list[TxAck]:
        """Push the wallet's Pending transfers to the ledger."""
        await self._connect()
        return await self.wallet.submit_pending(self.client, self.request_timeout)

    # ── Batch loop ───────────────────────────────────────────────────

    async def _run(self) -> None:
        cursor = self.cursor
        try:
            if cursor.current_height >= cursor.latest_known_height:
                await self._finish_caught_up()
                return
            while not self._cancel.is_set():
                start = cursor.current_height
                end = min(start + self.batch_size, cursor.latest_known_height)
                blocks = await self._fetch_with_retry(start, end)
                cursor.current_height = self.wallet.apply_blocks(blocks)

                if cursor.current_height >= cursor.latest_known_height:
                    latest = await self._with_retry(
                        lambda: self.client.fetch_latest_height(), "fetching latest height",
                    )
                    if latest > cursor.latest_known_height:
                        logger.info(f"Ledger advanced to {latest}; continuing")
                        cursor.latest_known_height = latest
                    elif not self._cancel.is_set():
                        await self._finish_caught_up()
                        return

                progress = max(cursor.progress, cursor.current_height / cursor.latest_known_height)
                await self._report(progress, f"Processed blocks up to {cursor.current_height}")

            cursor.status = SyncStatus.NOT_SYNCED
        except WalletError as exc:
            self.last_error = exc
            cursor.status = SyncStatus.NOT_SYNCED
            logger.error(f"Sync failed at height {cursor.current_height}: {exc.message}")
        except asyncio.CancelledError:
            cursor.status = SyncStatus.NOT_SYNCED
            raise
        except Exception:
            cursor.status = SyncStatus.NOT_SYNCED
            logger.exception("Sync loop error")

    async def _finish_caught_up(self) -> None:
        self.cursor.status = SyncStatus.SYNCED
        height = self.cursor.current_height
        logger.info(f"Synchronization completed at height {height}")
        await self._report(1.0, f"Synchronization completed at height {height}")

    async def _fetch_with_retry(self, start: int, end: int) -> list[Block]:
        blocks = await self._with_retry(
            lambda: self.client.fetch_blocks(start, end), f"fetching blocks [{start}, {end})",
        )
        if not blocks:
            raise FetchError(f"Ledger returned no blocks for [{start}, {end})")
        return blocks

    async def _with_retry(self, make_call: Callable[[], Awaitable[Any]], what: str) -> Any:
        delay = self.retry_backoff
        attempt = 0
        while True:
            try:
                if not self._connected:
                    await self._connect()
                return await self._call(make_call(), FetchError, what)
            except NetworkError as exc:
                if isinstance(exc, LedgerConnectionError):
                    self._connected = False
                if attempt >= self.max_retries:
                    raise
                logger.warning(
                    f"{what} failed (attempt {attempt + 1}/{self.max_retries + 1}): "
                    f"{exc.message}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                delay *= 2
                attempt += 1

    # ── helpers ──────────────────────────────────────────────────────

    async def _connect(self) -> None:
        try:
            await self._call(self.client.connect(self._endpoint), LedgerConnectionError,
                             f"connecting to {self._endpoint}")
        except LedgerConnectionError:
            self._connected = False
            raise
        self._connected = True

    async def _call(self, awaitable: Awaitable[Any], error_cls: type[NetworkError], what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.request_timeout)
        except asyncio.TimeoutError:
            raise error_cls(f"Timed out after {self.request_timeout}s {what}") from None

    async def _report(self, progress: float, message: str) -> None:
        self.cursor.progress = progress
        if self._callback is None:
            return
        try:
            result = self._callback(progress, message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Progress callback raised")

    # ── Status ───────────────────────────────────────────────────────

    def status_dict(self) -> dict:
        return {
            "status": self.cursor.status.value,
            "current_height": self.cursor.current_height,
            "latest_known_height": self.cursor.latest_known_height,
            "progress": self.cursor.progress,
            "endpoint": self._endpoint,
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }
