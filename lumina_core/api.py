"""
Local HTTP API for a Lumina wallet.

Built on ``aiohttp`` and started alongside the interactive shell when
``[api] enabled = true``.

Endpoints
---------
GET  /health                  Liveness and wallet state
GET  /status                  Wallet + sync summary
GET  /balance/<token>         Balance of one token
GET  /history                 Transaction history (``?limit=N``)
GET  /sync                    Sync cursor
POST /transfer                Create a signed Pending transfer
POST /seed/reveal             Reveal the seed phrase (password required)
POST /sync/start              Start a background sync
POST /sync/stop               Stop the running sync
POST /contract/execute        Call a contract function

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- Request body size cap (``max_body_bytes``).

Wallet errors are returned as ``{"ok": false, "error": <code>, "message": ...}``.

Usage:
    api = APIServer(wallet, engine, gateway, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from lumina_core.errors import (
    AuthenticationFailed,
    CorruptStateError,
    InvalidInput,
    NetworkError,
    StorageError,
    SyncStateError,
    WalletError,
)
from lumina_core.precision import format_amount, parse_amount

if TYPE_CHECKING:
    from lumina_core.config import APIConfig
    from lumina_core.contract import ContractGateway
    from lumina_core.sync import SyncEngine
    from lumina_core.wallet import Wallet

logger = logging.getLogger("lumina_api")


# ═══════════════════════════════════════════════════════════════════
#  Error mapping
# ═══════════════════════════════════════════════════════════════════

def status_for_error(exc: WalletError) -> int:
    """HTTP status for a wallet error."""
    if isinstance(exc, AuthenticationFailed):
        return 401
    if isinstance(exc, SyncStateError):
        return 409
    if isinstance(exc, NetworkError):
        return 502
    if isinstance(exc, (StorageError, CorruptStateError)):
        return 500
    return 400


def _error_response(exc: WalletError) -> web.Response:
    body = {"ok": False}
    body.update(exc.to_dict())
    return web.json_response(body, status=status_for_error(exc))


@web.middleware
async def wallet_error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except WalletError as exc:
        logger.info(f"{request.method} {request.path} -> {exc.code}: {exc.message}")
        return _error_response(exc)


async def _json_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidInput("Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise InvalidInput("JSON body must be an object")
    return body


def _str_field(body: dict, name: str, required: bool = True) -> str:
    value = body.get(name, "")
    if not isinstance(value, str):
        raise InvalidInput(f"{name} must be a string")
    if required and not value:
        raise InvalidInput(f"{name} is required")
    return value


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an API key on POST requests.

    The key is only read from the ``X-API-Key`` header.
    """

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


class APIServer:
    """Thin aiohttp wrapper around a wallet and its sync engine."""

    def __init__(
        self,
        wallet: Wallet,
        engine: SyncEngine | None = None,
        gateway: ContractGateway | None = None,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.wallet = wallet
        self.engine = engine
        self.gateway = gateway
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536

        if self._api_config is not None:
            cfg = self._api_config
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))

        middlewares.append(wallet_error_middleware)
        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        return app

    async def start(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/status", self._status)
        app.router.add_get("/balance/{token}", self._balance)
        app.router.add_get("/history", self._history)
        app.router.add_get("/sync", self._sync_status)
        app.router.add_post("/transfer", self._transfer)
        app.router.add_post("/seed/reveal", self._reveal_seed)
        app.router.add_post("/sync/start", self._sync_start)
        app.router.add_post("/sync/stop", self._sync_stop)
        app.router.add_post("/contract/execute", self._contract_execute)

    # ── handlers ─────────────────────────────────────────────────

    def _require_engine(self) -> SyncEngine:
        if self.engine is None:
            raise web.HTTPServiceUnavailable(text="Network synchronizer is not available")
        return self.engine

    async def _health(self, _request: web.Request) -> web.Response:
        return web.json_response({
            "ok": True,
            "initialized": self.wallet.is_initialized,
            "locked": self.wallet.is_locked,
        })

    async def _status(self, _request: web.Request) -> web.Response:
        synced = self.engine is not None and self.engine.is_synced
        body: dict[str, Any] = {"ok": True, "wallet": self.wallet.status(synced)}
        if self.wallet.is_initialized:
            body["info"] = self.wallet.info()
        if self.engine is not None:
            body["sync"] = self.engine.status_dict()
        return web.json_response(body)

    async def _balance(self, request: web.Request) -> web.Response:
        token = request.match_info["token"]
        self.wallet.get_main_address()
        units = self.wallet.get_balance(token)
        return web.json_response({
            "ok": True,
            "token": token,
            "units": units,
            "formatted": format_amount(units, token),
        })

    async def _history(self, request: web.Request) -> web.Response:
        raw = request.query.get("limit", "")
        limit = None
        if raw:
            if not raw.isdigit() or int(raw) < 1:
                raise InvalidInput("limit must be a positive integer")
            limit = int(raw)
        self.wallet.get_main_address()
        records = self.wallet.history()
        if limit is not None:
            records = records[-limit:]
        return web.json_response({"ok": True, "transactions": [r.to_dict() for r in records]})

    async def _sync_status(self, _request: web.Request) -> web.Response:
        engine = self._require_engine()
        return web.json_response({"ok": True, **engine.status_dict()})

    async def _transfer(self, request: web.Request) -> web.Response:
        """
        POST /transfer
        Body: {"to": "LMT...", "amount": "1.5", "token": "LMT"}
        """
        body = await _json_body(request)
        to = _str_field(body, "to")
        amount = body.get("amount")
        if isinstance(amount, float):
            amount = repr(amount)
        if not isinstance(amount, (str, int)) or isinstance(amount, bool):
            raise InvalidInput("amount must be a decimal string")
        token = _str_field(body, "token", required=False) or None
        units = parse_amount(amount)
        tx_id = self.wallet.transfer(to, units, token)
        return web.json_response({"ok": True, "tx_id": tx_id})

    async def _reveal_seed(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        password = _str_field(body, "password")
        phrase = self.wallet.get_seed_phrase(password)
        return web.json_response({"ok": True, "seed_phrase": phrase})

    async def _sync_start(self, _request: web.Request) -> web.Response:
        engine = self._require_engine()
        await engine.start_sync()
        return web.json_response({"ok": True, **engine.status_dict()}, status=202)

    async def _sync_stop(self, _request: web.Request) -> web.Response:
        engine = self._require_engine()
        await engine.stop_sync()
        return web.json_response({"ok": True, **engine.status_dict()})

    async def _contract_execute(self, request: web.Request) -> web.Response:
        """
        POST /contract/execute
        Body: {"contract": "LMT...", "function": "transfer", "args": ["a", "b"]}
        """
        if self.gateway is None:
            raise web.HTTPServiceUnavailable(text="Contract execution is not available")
        body = await _json_body(request)
        contract = _str_field(body, "contract")
        function = _str_field(body, "function")
        args = body.get("args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise InvalidInput("args must be a list of strings")
        result = self.gateway.execute(contract, function, args)
        return web.json_response({"ok": True, **result.to_dict()})
