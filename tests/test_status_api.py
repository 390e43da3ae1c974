# -*- coding: utf-8 -*-
"""
GET /api/verification/status: polling contract and self-heal from on-chain state.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import pytest

from verification_core.errors import ContractError, ContractErrorKind
from verification_core.schemas import SessionStatus, VerificationSession
from verification_core.sessions.store import InMemorySessionStore

SID = "3f2b8c1e-9a4d-4e6f-8b2a-1c3d5e7f9a0b"
LEGACY_SID = "k3j4h5g6f7d8s9a0q1"
URL = "/api/verification/status"


class SpyStore(InMemorySessionStore):
    def __init__(self, fail_get: Optional[BaseException] = None, fail_update: Optional[BaseException] = None):
        super().__init__(ttl_seconds=300)
        self.gets = 0
        self.fail_get = fail_get
        self.fail_update = fail_update

    async def get(self, session_id: str):
        self.gets += 1
        if self.fail_get is not None:
            raise self.fail_get
        return await super().get(session_id)

    async def update_session(self, session_id: str, **fields: Any):
        if self.fail_update is not None:
            raise self.fail_update
        return await super().update_session(session_id, **fields)


@pytest.fixture
def store() -> SpyStore:
    return SpyStore()


# -----------------------------
# Input validation
# -----------------------------

@pytest.mark.anyio
async def test_missing_session_id(client: httpx.AsyncClient, store: SpyStore):
    r = await client.get(URL)
    assert r.status_code == 400
    assert r.json() == {"status": "error", "error": "Invalid request"}
    assert store.gets == 0


@pytest.mark.anyio
@pytest.mark.parametrize(
    "sid",
    [
        "short",
        "../../etc/passwd",
        "ABCDEFGHIJKLMNOPQR",
        "3f2b8c1e-9a4d-1e6f-8b2a-1c3d5e7f9a0b",
        LEGACY_SID + "\n",
        SID + "\n",
    ],
)
async def test_malformed_session_id(client: httpx.AsyncClient, store: SpyStore, sid: str):
    r = await client.get(URL, params={"sessionId": sid})
    assert r.status_code == 400
    assert r.json() == {"status": "error", "error": "Invalid request"}
    assert store.gets == 0


@pytest.mark.anyio
async def test_unknown_session_reads_as_expired(client: httpx.AsyncClient):
    r = await client.get(URL, params={"sessionId": SID})
    assert r.status_code == 404
    assert r.json() == {"status": "expired", "error": "Session not found or expired"}


# -----------------------------
# Stored state
# -----------------------------

@pytest.mark.anyio
async def test_pending_session(client: httpx.AsyncClient, store: SpyStore):
    await store.create_session(SID)
    r = await client.get(URL, params={"sessionId": SID})
    assert r.status_code == 200
    assert r.json() == {"status": "pending"}
    assert r.headers["cache-control"] == "no-store"


@pytest.mark.anyio
async def test_legacy_session_id_accepted(client: httpx.AsyncClient, store: SpyStore):
    await store.create_session(LEGACY_SID)
    r = await client.get(URL, params={"sessionId": LEGACY_SID})
    assert r.status_code == 200


@pytest.mark.anyio
async def test_success_session_camel_case(client: httpx.AsyncClient, store: SpyStore):
    await store.set(
        SID,
        VerificationSession(status=SessionStatus.success, account_id="alice.testnet", attestation_id="1", timestamp=1),
    )
    r = await client.get(URL, params={"sessionId": SID})
    assert r.status_code == 200
    assert r.json() == {"status": "success", "accountId": "alice.testnet", "attestationId": "1"}


@pytest.mark.anyio
async def test_error_session_carries_code(client: httpx.AsyncClient, store: SpyStore):
    await store.set(
        SID,
        VerificationSession(
            status=SessionStatus.error,
            error="This passport has already been registered",
            error_code="DUPLICATE_PASSPORT",
            timestamp=1,
        ),
    )
    body = (await client.get(URL, params={"sessionId": SID})).json()
    assert body == {
        "status": "error",
        "error": "This passport has already been registered",
        "errorCode": "DUPLICATE_PASSPORT",
    }


@pytest.mark.anyio
async def test_store_failure_is_generic_500(client: httpx.AsyncClient, store: SpyStore):
    store.fail_get = ConnectionError("redis://:secret@cache:6379 unreachable")
    r = await client.get(URL, params={"sessionId": SID})
    assert r.status_code == 500
    assert r.json() == {"status": "error", "error": "Failed to fetch session status"}
    assert "secret" not in r.text


# -----------------------------
# Self-heal
# -----------------------------

async def _pending_for(store: SpyStore, account_id: str) -> None:
    await store.set(SID, VerificationSession(status=SessionStatus.pending, account_id=account_id, timestamp=1))


@pytest.mark.anyio
async def test_self_heal_reports_success_and_writes_back(client, store, contract, container):
    await _pending_for(store, "alice.testnet")
    contract.mark_verified("alice.testnet", attestation_id="2")

    r = await client.get(URL, params={"sessionId": SID, "accountId": "alice.testnet"})
    assert r.status_code == 200
    assert r.json() == {"status": "success", "accountId": "alice.testnet", "attestationId": "2"}

    await container.status.drain()
    stored = await store.get(SID)
    assert stored.status == SessionStatus.success
    assert stored.attestation_id == "2"


@pytest.mark.anyio
async def test_no_self_heal_without_matching_account(client, store, contract):
    await _pending_for(store, "alice.testnet")
    contract.mark_verified("mallory.testnet")

    r = await client.get(URL, params={"sessionId": SID, "accountId": "mallory.testnet"})
    assert r.json()["status"] == "pending"
    assert contract.calls == []


@pytest.mark.anyio
async def test_no_self_heal_without_account_param(client, store, contract):
    await _pending_for(store, "alice.testnet")
    contract.mark_verified("alice.testnet")

    r = await client.get(URL, params={"sessionId": SID})
    assert r.json() == {"status": "pending", "accountId": "alice.testnet"}
    assert contract.calls == []


@pytest.mark.anyio
async def test_not_verified_on_chain_stays_pending(client, store, contract):
    await _pending_for(store, "alice.testnet")
    r = await client.get(URL, params={"sessionId": SID, "accountId": "alice.testnet"})
    assert r.json()["status"] == "pending"
    assert contract.calls == [("is_verified", "alice.testnet")]


@pytest.mark.anyio
async def test_contract_failure_falls_back_to_stored_status(client, store, contract):
    await _pending_for(store, "alice.testnet")
    contract.error = ContractError(ContractErrorKind.RPC_UNAVAILABLE, "all endpoints down")
    r = await client.get(URL, params={"sessionId": SID, "accountId": "alice.testnet"})
    assert r.status_code == 200
    assert r.json()["status"] == "pending"


@pytest.mark.anyio
async def test_write_back_failure_does_not_change_response(client, store, contract, container):
    await _pending_for(store, "alice.testnet")
    contract.mark_verified("alice.testnet")
    store.fail_update = ConnectionError("redis down")

    r = await client.get(URL, params={"sessionId": SID, "accountId": "alice.testnet"})
    assert r.json()["status"] == "success"
    await container.status.drain()
    assert container.status.pending_write_backs == 0
    assert (await store.get(SID)).status == SessionStatus.pending


@pytest.mark.anyio
@pytest.mark.parametrize("account_id", ["alice.testnet\n", "0x" + "ab" * 20 + "\n", "ab" * 32 + "\n"])
async def test_no_self_heal_for_malformed_account_id(client, store, contract, account_id):
    await _pending_for(store, account_id)
    contract.mark_verified(account_id)

    r = await client.get(URL, params={"sessionId": SID, "accountId": account_id})
    assert r.status_code == 200
    assert r.json()["status"] == "pending"
    assert contract.calls == []


@pytest.mark.anyio
async def test_terminal_session_is_not_re_checked(client, store, contract):
    await store.set(
        SID,
        VerificationSession(status=SessionStatus.error, account_id="alice.testnet", error="Verification failed", timestamp=1),
    )
    contract.mark_verified("alice.testnet")
    r = await client.get(URL, params={"sessionId": SID, "accountId": "alice.testnet"})
    assert r.json()["status"] == "error"
    assert contract.calls == []
