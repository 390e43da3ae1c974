# -*- coding: utf-8 -*-
"""Read-only client for the NEAR verification contract."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Protocol, Tuple, runtime_checkable

from pydantic import ValidationError

from ..errors import ContractError, ContractErrorKind
from ..schemas import VerificationSummary, VerifiedAccountRecord
from .rpc import NearRpcClient

__all__ = ["VerificationContract", "NearVerificationContract", "MAX_LIST_LIMIT"]

log = logging.getLogger("verification_core.near.contract")

MAX_LIST_LIMIT = 100
_NS_PER_MS = 1_000_000


@runtime_checkable
class VerificationContract(Protocol):
    async def is_verified(self, account_id: str) -> bool: ...

    async def get_verification(self, account_id: str) -> Optional[VerificationSummary]: ...

    async def get_full_verification(self, account_id: str) -> Optional[VerifiedAccountRecord]: ...

    async def get_verified_accounts(self, from_index: int, limit: int) -> Tuple[List[VerifiedAccountRecord], int]: ...


def _ns_to_ms(item: Mapping[str, Any]) -> dict:
    data = dict(item)
    if isinstance(data.get("verified_at"), (int, float)):
        data["verified_at"] = int(data["verified_at"]) // _NS_PER_MS
    if isinstance(data.get("attestation_id"), int):
        data["attestation_id"] = str(data["attestation_id"])
    return data


def _to_record(item: Any, method: str) -> VerifiedAccountRecord:
    if not isinstance(item, Mapping):
        raise ContractError(ContractErrorKind.INVALID_RESPONSE, "verification is not an object", method=method)
    try:
        return VerifiedAccountRecord.model_validate(_ns_to_ms(item))
    except ValidationError as e:
        raise ContractError(ContractErrorKind.INVALID_RESPONSE, f"malformed verification: {e.error_count()} error(s)", method=method) from e


def _to_summary(item: Any, method: str) -> VerificationSummary:
    if not isinstance(item, Mapping):
        raise ContractError(ContractErrorKind.INVALID_RESPONSE, "verification summary is not an object", method=method)
    try:
        return VerificationSummary.model_validate(_ns_to_ms(item))
    except ValidationError as e:
        raise ContractError(ContractErrorKind.INVALID_RESPONSE, "malformed verification summary", method=method) from e


class NearVerificationContract:
    def __init__(self, rpc: NearRpcClient, contract_id: str):
        if not contract_id:
            raise ValueError("verification contract id is required")
        self._rpc = rpc
        self._contract_id = contract_id

    @property
    def contract_id(self) -> str:
        return self._contract_id

    async def is_verified(self, account_id: str) -> bool:
        result = await self._rpc.call_function(self._contract_id, "is_verified", {"account_id": account_id})
        return bool(result)

    async def get_verification(self, account_id: str) -> Optional[VerificationSummary]:
        result = await self._rpc.call_function(self._contract_id, "get_verification", {"account_id": account_id})
        if result is None:
            return None
        return _to_summary(result, "get_verification")

    async def get_full_verification(self, account_id: str) -> Optional[VerifiedAccountRecord]:
        result = await self._rpc.call_function(self._contract_id, "get_full_verification", {"account_id": account_id})
        if result is None:
            return None
        return _to_record(result, "get_full_verification")

    async def get_verified_accounts(self, from_index: int, limit: int) -> Tuple[List[VerifiedAccountRecord], int]:
        """One page of verifications plus the total count, fetched concurrently."""
        total, items = await asyncio.gather(
            self._rpc.call_function(self._contract_id, "get_verified_count", {}),
            self._rpc.call_function(
                self._contract_id,
                "list_verifications",
                {"from_index": max(0, int(from_index)), "limit": min(int(limit), MAX_LIST_LIMIT)},
            ),
        )
        if items is not None and not isinstance(items, list):
            raise ContractError(ContractErrorKind.INVALID_RESPONSE, "list_verifications is not an array", method="list_verifications")
        records = [_to_record(item, "list_verifications") for item in (items or [])]
        log.debug("contract_page_fetched", extra={"from_index": from_index, "count": len(records), "total": total})
        return records, int(total or 0)
