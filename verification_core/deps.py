"""
verification_core.deps: service container and lifecycle.

- Explicitly initialised handles (no module-level singletons): HTTP client, session store,
  NEAR RPC + verification contract, Celo ZK verifier, NEP-413 verifier, reconciler,
  listing (with its TTL cache) and the polling status service.
- Lifecycle: init_container() -> use -> shutdown_container(), idempotent close.
- FastAPI: the container lives on app.state; handlers get it via Depends(get_container).
- Tests replace providers with overrides(store=..., contract=..., ...) without monkey-patching.
"""
from __future__ import annotations

import asyncio
import contextlib
import contextvars
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional

import httpx
from fastapi import Request

from .config import Settings, get_settings
from .crypto.nep413 import SignatureVerifier
from .engine.cache import TaggedTTLCache
from .engine.listing import ListingService
from .engine.reconciler import Reconciler
from .engine.status import StatusService
from .errors import ContractError, ContractErrorKind
from .logging_setup import get_logger
from .near.contract import NearVerificationContract
from .near.rpc import NearRpcClient
from .sessions.store import InMemorySessionStore, RedisSessionStore
from .zk.celo import CeloProofVerifier

__all__ = [
    "DependencyError",
    "HttpClient",
    "UnconfiguredContract",
    "DependencyContainer",
    "overrides",
    "init_container",
    "shutdown_container",
    "lifespan",
    "get_container",
]


class DependencyError(RuntimeError):
    """A dependency could not be provided."""


# -------------------------------
# HTTP client (httpx) with retries
# -------------------------------
class HttpClient:
    def __init__(self, settings: Settings, logger: Any):
        self._settings = settings
        self._logger = logger
        self._client: Optional[httpx.AsyncClient] = None  # lazy

    async def ensure(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._settings.http_timeout_seconds,
                limits=httpx.Limits(max_keepalive_connections=32, max_connections=64),
                follow_redirects=False,
            )
        return self._client

    async def request(self, method: str, url: str, **kw: Any) -> httpx.Response:
        client = await self.ensure()
        # exponential retry on transport errors and 5xx
        retries = max(0, int(self._settings.http_retries))
        backoff = max(0.0, float(self._settings.http_backoff_base))
        for attempt in range(retries + 1):
            try:
                resp = await client.request(method.upper(), url, **kw)
            except httpx.TransportError as exc:
                if attempt >= retries:
                    self._logger.error(
                        "http_request_failed",
                        extra={"host": httpx.URL(url).host, "attempt": attempt, "err": type(exc).__name__},
                    )
                    raise
            else:
                if resp.status_code < 500 or attempt >= retries:
                    return resp
            await asyncio.sleep(backoff * (2 ** attempt))
        raise DependencyError("unreachable")  # pragma: no cover

    async def get(self, url: str, **kw: Any) -> httpx.Response:
        return await self.request("GET", url, **kw)

    async def post(self, url: str, **kw: Any) -> httpx.Response:
        return await self.request("POST", url, **kw)

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None


class UnconfiguredContract:
    """Stands in when VERIFY_VERIFICATION_CONTRACT_ID is empty; every call fails with a ContractError."""

    async def _fail(self, *_: Any, **__: Any) -> Any:
        raise ContractError(ContractErrorKind.UNKNOWN, "verification contract id is not configured")

    is_verified = _fail
    get_verification = _fail
    get_full_verification = _fail
    get_verified_accounts = _fail


# -------------------------------
# Container
# -------------------------------
@dataclass
class DependencyContainer:
    settings: Settings
    logger: Any
    http: Any
    store: Any
    near_rpc: Optional[NearRpcClient]
    contract: Any
    zk_verifier: Any
    signature_verifier: Any
    reconciler: Reconciler
    listing_cache: TaggedTTLCache
    listing: ListingService
    status: StatusService
    _closed: bool = field(default=False, init=False)

    async def aclose(self) -> None:
        if self._closed:
            return
        await self.status.drain()
        for obj in (self.store, self.http):
            close = getattr(obj, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:  # noqa: BLE001
                self.logger.warning("container_close_error", extra={"component": type(obj).__name__, "err": repr(e)})
        self._closed = True


# Temporary overrides (tests)
_overrides: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("verification_core_overrides", default={})


def _get_override(name: str) -> Optional[Any]:
    return _overrides.get().get(name)


def _override_or(name: str, factory: Callable[[], Any]) -> Any:
    o = _get_override(name)
    return o if o is not None else factory()


@contextlib.contextmanager
def overrides(**mapping: Any) -> Iterator[None]:
    """
    Example:
        with overrides(store=InMemorySessionStore(), contract=FakeContract()):
            container = init_container(settings)
    """
    new = dict(_overrides.get())
    new.update(mapping)
    token = _overrides.set(new)
    try:
        yield
    finally:
        _overrides.reset(token)


# Provider factories (overrides first)
def _make_store(settings: Settings, logger: Any) -> Any:
    o = _get_override("store")
    if o is not None:
        return o
    if settings.redis_dsn:
        return RedisSessionStore.from_url(
            settings.redis_dsn,
            namespace=settings.redis_namespace,
            ttl_seconds=settings.session_ttl_seconds,
            nonce_ttl_seconds=settings.nonce_ttl_seconds,
        )
    logger.warning("session_store_in_memory", extra={"reason": "VERIFY_REDIS_URL not set"})
    return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds, nonce_ttl_seconds=settings.nonce_ttl_seconds)


def _make_contract(settings: Settings, rpc: NearRpcClient) -> Any:
    o = _get_override("contract")
    if o is not None:
        return o
    if not settings.verification_contract_id:
        return UnconfiguredContract()
    return NearVerificationContract(rpc, settings.verification_contract_id)


def _make_zk_verifier(settings: Settings) -> Any:
    o = _get_override("zk_verifier")
    if o is not None:
        return o
    return CeloProofVerifier(
        settings.effective_celo_rpc_urls,
        settings.identity_hub_address,
        timeout=settings.celo_rpc_timeout_seconds,
        success_ttl=settings.celo_rpc_success_ttl_seconds,
    )


def init_container(settings: Optional[Settings] = None) -> DependencyContainer:
    settings = settings or get_settings()
    logger = get_logger("verification_core")

    http = _override_or("http", lambda: HttpClient(settings, logger))
    near_rpc = NearRpcClient(http, settings.near_rpc_urls, timeout=settings.near_rpc_timeout_seconds)
    contract = _make_contract(settings, near_rpc)
    store = _make_store(settings, logger)
    signature_verifier = _override_or("signature_verifier", SignatureVerifier)
    zk_verifier = _make_zk_verifier(settings)

    reconciler = Reconciler(zk_verifier, signature_verifier, challenge=settings.signing_message)
    listing_cache = _override_or("listing_cache", lambda: TaggedTTLCache(settings.listing_cache_ttl_seconds))
    listing = ListingService(contract, reconciler, cache=listing_cache, max_page_size=settings.max_page_size)
    status = StatusService(store, contract)

    container = DependencyContainer(
        settings=settings,
        logger=logger,
        http=http,
        store=store,
        near_rpc=near_rpc,
        contract=contract,
        zk_verifier=zk_verifier,
        signature_verifier=signature_verifier,
        reconciler=reconciler,
        listing_cache=listing_cache,
        listing=listing,
        status=status,
    )
    logger.info(
        "container_initialized",
        extra={"env": settings.env, "near_network": settings.near_network, "self_network": settings.self_network},
    )
    logger.debug("settings_loaded", extra={"settings": settings.redacted()})
    return container


async def shutdown_container(container: Optional[DependencyContainer]) -> None:
    if container is None:
        return
    await container.aclose()
    logging.getLogger("verification_core").info("container_closed")


# -------------------------------
# FastAPI integration
# -------------------------------
@contextlib.asynccontextmanager
async def lifespan(app: Any):
    """
    Usage:
        app = FastAPI(lifespan=deps.lifespan)
    A container already placed on app.state (tests) is reused and left open.
    """
    owned = getattr(app.state, "container", None) is None
    if owned:
        app.state.container = init_container(getattr(app.state, "settings", None))
    try:
        yield
    finally:
        if owned:
            await shutdown_container(app.state.container)
            app.state.container = None


def get_container(request: Request) -> DependencyContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise DependencyError("Dependency container is not initialized. Use deps.lifespan or set app.state.container.")
    return container
