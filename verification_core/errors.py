# -*- coding: utf-8 -*-
"""
Error types for verification_core.

- AppError: request-level error with HTTP status and stable code, rendered by the
  API exception handler without internal details.
- ContractError: tagged error raised by the NEAR contract/RPC collaborator. The raw
  panic text / RPC cause is classified once, at the RPC boundary; callers switch on
  ContractErrorKind only.
"""

from __future__ import annotations

import re
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Mapping, Optional, Tuple

__all__ = [
    "AppError",
    "ContractErrorKind",
    "ContractError",
    "ZkVerifierUnavailable",
    "classify_contract_failure",
    "http_status_for",
    "public_message_for",
]


class AppError(Exception):
    def __init__(self, message: str, http_status: int = HTTPStatus.BAD_REQUEST, code: str = "bad_request"):
        self.message = message
        self.http_status = int(http_status)
        self.code = code
        super().__init__(message)


class ContractErrorKind(str, Enum):
    NOT_CITIZEN = "NotCitizen"
    ALREADY_VOTED = "AlreadyVoted"
    VOTING_CLOSED = "VotingClosed"
    PROPOSAL_NOT_ACTIVE = "ProposalNotActive"
    DUPLICATE_IDENTITY = "DuplicateIdentity"
    ACCOUNT_ALREADY_VERIFIED = "AccountAlreadyVerified"
    CONTRACT_PAUSED = "ContractPaused"
    ACCOUNT_NOT_FOUND = "AccountNotFound"
    ACCESS_KEY_NOT_FOUND = "AccessKeyNotFound"
    RPC_UNAVAILABLE = "RpcUnavailable"
    INVALID_RESPONSE = "InvalidResponse"
    UNKNOWN = "Unknown"


class ContractError(Exception):
    """Failure reported by the verification/governance contract or its RPC transport."""

    def __init__(self, kind: ContractErrorKind, message: str = "", *, method: Optional[str] = None):
        self.kind = kind
        self.message = message or kind.value
        self.method = method
        super().__init__(f"{kind.value}: {self.message}")


class ZkVerifierUnavailable(Exception):
    """No Celo RPC endpoint could complete the verifier call."""


# ---------------------------------------------------------------------------
# Classification (the only place where contract error text is inspected)
# ---------------------------------------------------------------------------

_PANIC_RE = re.compile(r"(?:Smart contract panicked:\s*|panic_msg:\s*\")(.+?)(?:\"\s*\}|$)", re.S)
_ACCESS_KEY_MISSING_RE = re.compile(r"UnknownAccessKey|access key .* does not exist", re.I | re.S)
_ACCOUNT_MISSING_RE = re.compile(r"UnknownAccount|account .* does not exist", re.I | re.S)

_PANIC_PATTERNS: Tuple[Tuple[re.Pattern[str], ContractErrorKind], ...] = (
    (re.compile(r"only verified citizens", re.I), ContractErrorKind.NOT_CITIZEN),
    (re.compile(r"already voted", re.I), ContractErrorKind.ALREADY_VOTED),
    (re.compile(r"voting period has ended", re.I), ContractErrorKind.VOTING_CLOSED),
    (re.compile(r"not active", re.I), ContractErrorKind.PROPOSAL_NOT_ACTIVE),
    (re.compile(r"nullifier already used|already registered|duplicate", re.I), ContractErrorKind.DUPLICATE_IDENTITY),
    (re.compile(r"account already verified|already verified", re.I), ContractErrorKind.ACCOUNT_ALREADY_VERIFIED),
    (re.compile(r"paused", re.I), ContractErrorKind.CONTRACT_PAUSED),
)

# NEAR JSON-RPC error causes (error.cause.name)
_CAUSE_KINDS: Dict[str, ContractErrorKind] = {
    "UNKNOWN_ACCOUNT": ContractErrorKind.ACCOUNT_NOT_FOUND,
    "UNKNOWN_ACCESS_KEY": ContractErrorKind.ACCESS_KEY_NOT_FOUND,
    "NO_CONTRACT_CODE": ContractErrorKind.ACCOUNT_NOT_FOUND,
    "TIMEOUT_ERROR": ContractErrorKind.RPC_UNAVAILABLE,
    "NO_SYNCED_BLOCKS": ContractErrorKind.RPC_UNAVAILABLE,
    "UNAVAILABLE_SHARD": ContractErrorKind.RPC_UNAVAILABLE,
    "INTERNAL_ERROR": ContractErrorKind.RPC_UNAVAILABLE,
}


def classify_contract_failure(
    *,
    panic: Optional[str] = None,
    rpc_error: Optional[Mapping[str, Any]] = None,
    query_error: Optional[str] = None,
    method: Optional[str] = None,
) -> ContractError:
    """
    Turn a contract panic string, a NEAR JSON-RPC error object, or the free-form
    `result.error` string of a view query into a ContractError.
    """
    if query_error is not None:
        if "panic" in query_error.lower():
            return classify_contract_failure(panic=query_error, method=method)
        if _ACCESS_KEY_MISSING_RE.search(query_error):
            return ContractError(ContractErrorKind.ACCESS_KEY_NOT_FOUND, query_error, method=method)
        if _ACCOUNT_MISSING_RE.search(query_error):
            return ContractError(ContractErrorKind.ACCOUNT_NOT_FOUND, query_error, method=method)
        return ContractError(ContractErrorKind.UNKNOWN, query_error, method=method)

    if panic is not None:
        m = _PANIC_RE.search(panic)
        text = (m.group(1) if m else panic).strip()
        for pattern, kind in _PANIC_PATTERNS:
            if pattern.search(text):
                return ContractError(kind, text, method=method)
        return ContractError(ContractErrorKind.UNKNOWN, text, method=method)

    if rpc_error is not None:
        cause = rpc_error.get("cause") or {}
        name = str(cause.get("name") or rpc_error.get("name") or "").upper()
        text = str(rpc_error.get("data") or rpc_error.get("message") or name or "RPC error")
        if name in _CAUSE_KINDS:
            return ContractError(_CAUSE_KINDS[name], text, method=method)
        # call_function panics arrive as a HANDLER_ERROR/CONTRACT_EXECUTION_ERROR with the panic in data/info
        info = cause.get("info") or {}
        detail = str(info.get("error_message") or text)
        if "panic" in detail.lower():
            return classify_contract_failure(panic=detail, method=method)
        return ContractError(ContractErrorKind.UNKNOWN, text, method=method)

    return ContractError(ContractErrorKind.UNKNOWN, "unknown contract failure", method=method)


# ---------------------------------------------------------------------------
# Exhaustive mappings
# ---------------------------------------------------------------------------

_HTTP_STATUS: Dict[ContractErrorKind, HTTPStatus] = {
    ContractErrorKind.NOT_CITIZEN: HTTPStatus.FORBIDDEN,
    ContractErrorKind.ALREADY_VOTED: HTTPStatus.BAD_REQUEST,
    ContractErrorKind.VOTING_CLOSED: HTTPStatus.BAD_REQUEST,
    ContractErrorKind.PROPOSAL_NOT_ACTIVE: HTTPStatus.BAD_REQUEST,
    ContractErrorKind.DUPLICATE_IDENTITY: HTTPStatus.CONFLICT,
    ContractErrorKind.ACCOUNT_ALREADY_VERIFIED: HTTPStatus.CONFLICT,
    ContractErrorKind.CONTRACT_PAUSED: HTTPStatus.SERVICE_UNAVAILABLE,
    ContractErrorKind.ACCOUNT_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ContractErrorKind.ACCESS_KEY_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ContractErrorKind.RPC_UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
    ContractErrorKind.INVALID_RESPONSE: HTTPStatus.BAD_GATEWAY,
    ContractErrorKind.UNKNOWN: HTTPStatus.INTERNAL_SERVER_ERROR,
}

_PUBLIC_MESSAGES: Dict[ContractErrorKind, str] = {
    ContractErrorKind.NOT_CITIZEN: "You must be a verified citizen to vote",
    ContractErrorKind.ALREADY_VOTED: "You have already voted on this proposal",
    ContractErrorKind.VOTING_CLOSED: "Voting period has ended for this proposal",
    ContractErrorKind.PROPOSAL_NOT_ACTIVE: "This proposal is not active",
    ContractErrorKind.DUPLICATE_IDENTITY: "This identity has already been registered",
    ContractErrorKind.ACCOUNT_ALREADY_VERIFIED: "This account is already verified",
    ContractErrorKind.CONTRACT_PAUSED: "Verification is temporarily paused",
    ContractErrorKind.ACCOUNT_NOT_FOUND: "Account not found",
    ContractErrorKind.ACCESS_KEY_NOT_FOUND: "Public key not found for account",
    ContractErrorKind.RPC_UNAVAILABLE: "Blockchain service temporarily unavailable",
    ContractErrorKind.INVALID_RESPONSE: "Unexpected response from blockchain service",
    ContractErrorKind.UNKNOWN: "Internal server error",
}


def http_status_for(kind: ContractErrorKind) -> int:
    return int(_HTTP_STATUS[kind])


def public_message_for(kind: ContractErrorKind) -> str:
    return _PUBLIC_MESSAGES[kind]
