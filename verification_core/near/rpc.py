# -*- coding: utf-8 -*-
"""
NEAR JSON-RPC client with primary -> fallback failover.

Transport failures (network errors, 5xx, non-JSON bodies, RPC-side timeouts) move on
to the next endpoint. Contract/account errors are deterministic and raised at once as
ContractError; the raw error text is classified here and nowhere else.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from ..errors import ContractError, ContractErrorKind, classify_contract_failure, public_message_for

__all__ = ["NearRpcClient", "FullAccessKeyResult"]

log = logging.getLogger("verification_core.near.rpc")


@dataclass(frozen=True)
class FullAccessKeyResult:
    is_full_access: bool
    error: Optional[str] = None


def _is_full_access(permission: Any) -> bool:
    if permission == "FullAccess":
        return True
    return isinstance(permission, Mapping) and "FullAccess" in permission


class NearRpcClient:
    def __init__(self, http: Any, urls: Sequence[str], *, timeout: float = 10.0):
        if not urls:
            raise ValueError("at least one NEAR RPC url is required")
        self._http = http
        self._urls: List[str] = list(urls)
        self._timeout = timeout
        self._next_id = 0

    @property
    def urls(self) -> List[str]:
        return list(self._urls)

    async def _request(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._http.post(url, json=payload, timeout=self._timeout)
        if resp.status_code >= 500:
            raise ContractError(ContractErrorKind.RPC_UNAVAILABLE, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise ContractError(ContractErrorKind.INVALID_RESPONSE, "non-JSON RPC response") from e
        if not isinstance(body, dict):
            raise ContractError(ContractErrorKind.INVALID_RESPONSE, "unexpected RPC response shape")
        return body

    async def query(self, params: Dict[str, Any], *, method: Optional[str] = None) -> Dict[str, Any]:
        """Run a `query` RPC call against each endpoint in turn; returns `result`."""
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": f"vc-{self._next_id}", "method": "query", "params": params}
        last: Optional[ContractError] = None

        for url in self._urls:
            try:
                body = await self._request(url, payload)
            except ContractError as e:
                last = ContractError(e.kind, e.message, method=method)
                log.warning("near_rpc_endpoint_failed", extra={"rpc_method": method, "kind": e.kind.value})
                continue
            except httpx.HTTPError as e:
                last = ContractError(ContractErrorKind.RPC_UNAVAILABLE, str(e) or type(e).__name__, method=method)
                log.warning("near_rpc_endpoint_failed", extra={"rpc_method": method, "err": type(e).__name__})
                continue

            if body.get("error") is not None:
                err = body["error"]
                failure = classify_contract_failure(
                    rpc_error=err if isinstance(err, Mapping) else {"message": str(err)},
                    method=method,
                )
                if failure.kind is ContractErrorKind.RPC_UNAVAILABLE:
                    last = failure
                    continue
                raise failure

            result = body.get("result")
            if not isinstance(result, dict):
                raise ContractError(ContractErrorKind.INVALID_RESPONSE, "missing RPC result", method=method)
            if result.get("error"):
                raise classify_contract_failure(query_error=str(result["error"]), method=method)
            return result

        assert last is not None
        log.error("near_rpc_all_endpoints_failed", extra={"rpc_method": method, "endpoints": len(self._urls)})
        raise last

    async def call_function(self, contract_id: str, method_name: str, args: Optional[Mapping[str, Any]] = None) -> Any:
        """View call; decodes the returned byte array as JSON (None for an empty result)."""
        args_b64 = base64.b64encode(json.dumps(dict(args or {}), separators=(",", ":")).encode("utf-8")).decode("ascii")
        result = await self.query(
            {
                "request_type": "call_function",
                "finality": "final",
                "account_id": contract_id,
                "method_name": method_name,
                "args_base64": args_b64,
            },
            method=method_name,
        )
        raw = result.get("result")
        if not isinstance(raw, list):
            raise ContractError(ContractErrorKind.INVALID_RESPONSE, "call_function result is not a byte array", method=method_name)
        if not raw:
            return None
        try:
            return json.loads(bytes(raw).decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise ContractError(ContractErrorKind.INVALID_RESPONSE, "call_function result is not JSON", method=method_name) from e

    async def view_access_key(self, account_id: str, public_key: str) -> Dict[str, Any]:
        return await self.query(
            {
                "request_type": "view_access_key",
                "finality": "final",
                "account_id": account_id,
                "public_key": public_key,
            },
            method="view_access_key",
        )

    async def has_full_access_key(self, account_id: str, public_key: str) -> FullAccessKeyResult:
        """Whether `public_key` is a FullAccess key of `account_id`. Errors are returned, not raised."""
        try:
            key = await self.view_access_key(account_id, public_key)
        except ContractError as e:
            if e.kind in (ContractErrorKind.ACCESS_KEY_NOT_FOUND, ContractErrorKind.ACCOUNT_NOT_FOUND):
                return FullAccessKeyResult(False, public_message_for(e.kind))
            return FullAccessKeyResult(False, f"RPC error: {e.message}")

        if "permission" not in key:
            return FullAccessKeyResult(False, "Invalid RPC response format")
        if not _is_full_access(key["permission"]):
            return FullAccessKeyResult(False, "Public key is not a full-access key")
        return FullAccessKeyResult(True)
