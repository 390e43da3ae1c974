# -*- coding: utf-8 -*-
"""
Verification session store.

Sessions bridge the identity-provider callback to the polling browser client.
Keys are "<namespace>:<session_id>" and expire after a fixed TTL enforced by the
backend (Redis SET ... EX). Failures are logged with the session id and re-raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from pydantic import ValidationError

from ..schemas import VERIFICATION_ERROR_MESSAGES, SessionStatus, VerificationErrorCode, VerificationSession

__all__ = [
    "SessionStore",
    "RedisSessionStore",
    "InMemorySessionStore",
    "now_ms",
]

log = logging.getLogger("verification_core.sessions")

NONCE_NAMESPACE = "self-nonce"


def now_ms() -> int:
    return int(time.time() * 1000)


@runtime_checkable
class SessionStore(Protocol):
    async def get(self, session_id: str) -> Optional[VerificationSession]: ...

    async def set(self, session_id: str, session: VerificationSession) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def create_session(self, session_id: str) -> VerificationSession: ...

    async def update_session(self, session_id: str, **fields: Any) -> VerificationSession: ...

    async def reserve_signature_nonce(self, account_id: str, nonce_b64: str) -> bool: ...

    async def ping(self) -> bool: ...

    async def aclose(self) -> None: ...


def _log_failure(message: str, operation: str, session_id: str, exc: BaseException, **extra: Any) -> None:
    log.error(
        message,
        exc_info=exc,
        extra={
            "operation": operation,
            "session_id": session_id,
            "error_type": type(exc).__name__,
            **extra,
        },
    )


def _decode(session_id: str, raw: Any) -> Optional[VerificationSession]:
    if raw is None:
        return None
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return VerificationSession.model_validate_json(raw)
    except (ValidationError, ValueError) as e:
        log.warning(
            "session_corrupt",
            extra={"operation": "session_get", "session_id": session_id, "err": str(e)},
        )
        return None


def _encode(session: VerificationSession) -> str:
    return session.model_dump_json(by_alias=True, exclude_none=True)


def _merge(session_id: str, existing: Optional[VerificationSession], fields: Dict[str, Any]) -> VerificationSession:
    """Merge an update into the stored session. A terminal status never goes back to pending."""
    update = {k: v for k, v in fields.items() if v is not None}
    if "status" in update:
        update["status"] = SessionStatus(update["status"])
    code = update.get("error_code")
    if isinstance(code, VerificationErrorCode):
        update["error_code"] = code = code.value
    if code and "error" not in update:
        try:
            update["error"] = VERIFICATION_ERROR_MESSAGES[VerificationErrorCode(code)]
        except ValueError:
            log.warning("session_unknown_error_code", extra={"session_id": session_id, "error_code": code})

    if existing is None:
        if "status" not in update:
            raise ValueError("status is required when creating a session by update")
        return VerificationSession(**update, timestamp=now_ms())

    if existing.is_terminal and update.get("status") == SessionStatus.pending:
        log.warning(
            "session_regression_ignored",
            extra={"operation": "session_update", "session_id": session_id, "status": existing.status},
        )
        update.pop("status")

    data = existing.model_dump()
    data.update(update)
    data["timestamp"] = now_ms()
    return VerificationSession(**data)


# --------------------------------------------------------------------------------------
# Redis
# --------------------------------------------------------------------------------------

class RedisSessionStore:
    def __init__(
        self,
        redis: Any,
        *,
        namespace: str = "self-session",
        ttl_seconds: int = 300,
        nonce_ttl_seconds: int = 600,
    ):
        self._redis = redis
        self._namespace = namespace
        self._ttl = int(ttl_seconds)
        self._nonce_ttl = int(nonce_ttl_seconds)

    @classmethod
    def from_url(cls, url: str, **kw: Any) -> "RedisSessionStore":
        import redis.asyncio as redis

        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True), **kw)

    def _key(self, session_id: str) -> str:
        return f"{self._namespace}:{session_id}"

    async def get(self, session_id: str) -> Optional[VerificationSession]:
        try:
            raw = await self._redis.get(self._key(session_id))
        except Exception as e:
            _log_failure("Failed to fetch session", "session_get", session_id, e)
            raise
        return _decode(session_id, raw)

    async def set(self, session_id: str, session: VerificationSession) -> None:
        try:
            await self._redis.set(self._key(session_id), _encode(session), ex=self._ttl)
        except Exception as e:
            _log_failure("Failed to store session", "session_set", session_id, e, status=session.status)
            raise

    async def delete(self, session_id: str) -> None:
        try:
            await self._redis.delete(self._key(session_id))
        except Exception as e:
            _log_failure("Failed to delete session", "session_delete", session_id, e)
            raise
        log.info("session_deleted", extra={"operation": "session_delete", "session_id": session_id})

    async def create_session(self, session_id: str) -> VerificationSession:
        session = VerificationSession(status=SessionStatus.pending, timestamp=now_ms())
        await self.set(session_id, session)
        log.info("session_created", extra={"operation": "session_create", "session_id": session_id})
        return session

    async def update_session(self, session_id: str, **fields: Any) -> VerificationSession:
        try:
            existing = _decode(session_id, await self._redis.get(self._key(session_id)))
            session = _merge(session_id, existing, fields)
            await self._redis.set(self._key(session_id), _encode(session), ex=self._ttl)
        except Exception as e:
            _log_failure(
                "Failed to update session",
                "session_update",
                session_id,
                e,
                status=fields.get("status"),
                account_id=fields.get("account_id"),
            )
            raise
        log.info(
            "session_updated",
            extra={
                "operation": "session_update",
                "session_id": session_id,
                "status": session.status,
                "account_id": session.account_id,
                "attestation_id": session.attestation_id,
                "error_code": session.error_code,
            },
        )
        return session

    async def reserve_signature_nonce(self, account_id: str, nonce_b64: str) -> bool:
        key = f"{NONCE_NAMESPACE}:{account_id}:{nonce_b64}"
        try:
            result = await self._redis.set(key, "1", ex=self._nonce_ttl, nx=True)
        except Exception as e:
            log.error(
                "Failed to reserve signature nonce",
                exc_info=e,
                extra={"operation": "nonce_reserve", "account_id": account_id, "ttl_seconds": self._nonce_ttl},
            )
            raise
        return bool(result)

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def aclose(self) -> None:
        close = getattr(self._redis, "aclose", None) or getattr(self._redis, "close", None)
        if close is not None:
            await close()


# --------------------------------------------------------------------------------------
# In-memory (no Redis configured, tests)
# --------------------------------------------------------------------------------------

class InMemorySessionStore:
    """Process-local store with monotonic-clock expiry. Same semantics as RedisSessionStore."""

    def __init__(self, *, ttl_seconds: int = 300, nonce_ttl_seconds: int = 600):
        self._ttl = float(ttl_seconds)
        self._nonce_ttl = float(nonce_ttl_seconds)
        self._data: Dict[str, Tuple[float, str]] = {}
        self._nonces: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _alive(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        expires_at, raw = item
        if time.monotonic() >= expires_at:
            self._data.pop(key, None)
            return None
        return raw

    async def get(self, session_id: str) -> Optional[VerificationSession]:
        return _decode(session_id, self._alive(session_id))

    async def set(self, session_id: str, session: VerificationSession) -> None:
        self._data[session_id] = (time.monotonic() + self._ttl, _encode(session))

    async def delete(self, session_id: str) -> None:
        self._data.pop(session_id, None)

    async def create_session(self, session_id: str) -> VerificationSession:
        session = VerificationSession(status=SessionStatus.pending, timestamp=now_ms())
        await self.set(session_id, session)
        return session

    async def update_session(self, session_id: str, **fields: Any) -> VerificationSession:
        async with self._lock:
            session = _merge(session_id, _decode(session_id, self._alive(session_id)), fields)
            await self.set(session_id, session)
        return session

    async def reserve_signature_nonce(self, account_id: str, nonce_b64: str) -> bool:
        key = f"{account_id}:{nonce_b64}"
        now = time.monotonic()
        expires_at = self._nonces.get(key)
        if expires_at is not None and now < expires_at:
            return False
        self._nonces[key] = now + self._nonce_ttl
        return True

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self._data.clear()
        self._nonces.clear()
