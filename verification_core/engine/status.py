# -*- coding: utf-8 -*-
"""
Polling status for verification sessions.

Responses are generic: malformed ids get the same 400 regardless of the
reason, and unknown ids get the same 404 "expired" as sessions that timed out.
A pending session whose account is already verified on-chain is reported as success
and written back to the store in the background.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Tuple

from ..logging_setup import set_context
from ..metrics import SELF_HEAL_TOTAL
from ..schemas import (
    SessionStatus,
    StatusResponse,
    is_valid_account_id,
    is_valid_session_id,
)

__all__ = ["StatusService", "INVALID_REQUEST_BODY", "EXPIRED_BODY", "FAILURE_BODY"]

log = logging.getLogger("verification_core.engine.status")

INVALID_REQUEST_BODY: Dict[str, str] = {"status": SessionStatus.error.value, "error": "Invalid request"}
EXPIRED_BODY: Dict[str, str] = {"status": SessionStatus.expired.value, "error": "Session not found or expired"}
FAILURE_BODY: Dict[str, str] = {"status": SessionStatus.error.value, "error": "Failed to fetch session status"}


class StatusService:
    def __init__(self, store: Any, contract: Any):
        self._store = store
        self._contract = contract
        self._pending: Set[asyncio.Task] = set()

    async def get_status(self, session_id: Optional[str], account_id: Optional[str] = None) -> Tuple[int, Dict[str, Any]]:
        """Return (http_status, body) for a poll."""
        if not is_valid_session_id(session_id):
            return 400, dict(INVALID_REQUEST_BODY)
        set_context(session_id=session_id, operation="session_status")

        try:
            session = await self._store.get(session_id)
        except Exception:  # noqa: BLE001
            log.exception("session_status_read_failed")
            return 500, dict(FAILURE_BODY)

        if session is None:
            return 404, dict(EXPIRED_BODY)

        if (
            session.status == SessionStatus.pending
            and account_id
            and session.account_id == account_id
            and is_valid_account_id(account_id)
        ):
            healed = await self._self_heal(session_id, account_id)
            if healed is not None:
                return 200, healed.to_json_dict()

        return 200, StatusResponse(
            status=session.status,
            account_id=session.account_id,
            attestation_id=session.attestation_id,
            error=session.error,
            error_code=session.error_code,
        ).to_json_dict()

    async def _self_heal(self, session_id: str, account_id: str) -> Optional[StatusResponse]:
        try:
            if not await self._contract.is_verified(account_id):
                SELF_HEAL_TOTAL.labels("not_verified").inc()
                return None
            summary = await self._contract.get_verification(account_id)
        except Exception as e:  # noqa: BLE001
            SELF_HEAL_TOTAL.labels("contract_error").inc()
            log.warning("self_heal_contract_failed", extra={"account_id": account_id, "err": repr(e)})
            return None

        attestation_id = summary.attestation_id if summary is not None else None
        SELF_HEAL_TOTAL.labels("healed").inc()
        log.info("self_heal_verified_on_chain", extra={"account_id": account_id, "attestation_id": attestation_id})
        self._schedule_write_back(session_id, account_id, attestation_id)
        return StatusResponse(status=SessionStatus.success, account_id=account_id, attestation_id=attestation_id)

    def _schedule_write_back(self, session_id: str, account_id: str, attestation_id: Optional[str]) -> None:
        task = asyncio.create_task(self._write_back(session_id, account_id, attestation_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_back(self, session_id: str, account_id: str, attestation_id: Optional[str]) -> None:
        try:
            await self._store.update_session(
                session_id,
                status=SessionStatus.success,
                account_id=account_id,
                attestation_id=attestation_id,
            )
        except Exception as e:  # noqa: BLE001
            log.warning(
                "self_heal_write_back_failed",
                extra={"session_id": session_id, "account_id": account_id, "err": repr(e)},
            )

    @property
    def pending_write_backs(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for scheduled write-backs (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
