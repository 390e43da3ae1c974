# -*- coding: utf-8 -*-
"""
API and domain schemas for verification_core.

- Pydantic v2 models; JSON output is camelCase (alias_generator=to_camel), Python side is snake_case.
- Session records (Redis values), on-chain verified account records, reconciler results.
- Input validators for session ids and NEAR account ids.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

SESSION_ID_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.I
)
SESSION_ID_LEGACY_RE = re.compile(r"^[a-z0-9]{16,24}$")

NEAR_NAMED_ACCOUNT_RE = re.compile(r"^(([a-z\d]+[-_])*[a-z\d]+\.)*([a-z\d]+[-_])*[a-z\d]+$")
NEAR_IMPLICIT_ACCOUNT_RE = re.compile(r"^[0-9a-f]{64}$")
NEAR_ETH_IMPLICIT_ACCOUNT_RE = re.compile(r"^0x[0-9a-f]{40}$")


def is_valid_session_id(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(SESSION_ID_UUID_RE.fullmatch(value) or SESSION_ID_LEGACY_RE.fullmatch(value))


def is_valid_account_id(value: Optional[str]) -> bool:
    if not value or not (2 <= len(value) <= 64):
        return False
    return bool(
        NEAR_IMPLICIT_ACCOUNT_RE.fullmatch(value)
        or NEAR_ETH_IMPLICIT_ACCOUNT_RE.fullmatch(value)
        or NEAR_NAMED_ACCOUNT_RE.fullmatch(value)
    )


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SessionStatus(str, Enum):
    pending = "pending"
    success = "success"
    error = "error"
    expired = "expired"  # response-only, never stored


TERMINAL_STATUSES = frozenset({SessionStatus.success, SessionStatus.error})


class VerificationErrorCode(str, Enum):
    MISSING_FIELDS = "MISSING_FIELDS"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    OFAC_CHECK_FAILED = "OFAC_CHECK_FAILED"
    NULLIFIER_MISSING = "NULLIFIER_MISSING"
    NEAR_SIGNATURE_INVALID = "NEAR_SIGNATURE_INVALID"
    NEAR_SIGNATURE_MISSING = "NEAR_SIGNATURE_MISSING"
    SIGNATURE_EXPIRED = "SIGNATURE_EXPIRED"
    SIGNATURE_TIMESTAMP_INVALID = "SIGNATURE_TIMESTAMP_INVALID"
    DUPLICATE_PASSPORT = "DUPLICATE_PASSPORT"
    STORAGE_FAILED = "STORAGE_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


VERIFICATION_ERROR_MESSAGES: Dict[VerificationErrorCode, str] = {
    VerificationErrorCode.MISSING_FIELDS: "Missing required fields",
    VerificationErrorCode.VERIFICATION_FAILED: "Verification failed",
    VerificationErrorCode.OFAC_CHECK_FAILED: "OFAC verification failed",
    VerificationErrorCode.NULLIFIER_MISSING: "Nullifier missing from proof",
    VerificationErrorCode.NEAR_SIGNATURE_INVALID: "NEAR signature verification failed",
    VerificationErrorCode.NEAR_SIGNATURE_MISSING: "Invalid or missing NEAR signature data",
    VerificationErrorCode.SIGNATURE_EXPIRED: "Signature expired",
    VerificationErrorCode.SIGNATURE_TIMESTAMP_INVALID: "Invalid signature timestamp",
    VerificationErrorCode.DUPLICATE_PASSPORT: "This passport has already been registered",
    VerificationErrorCode.STORAGE_FAILED: "Failed to store verification",
    VerificationErrorCode.INTERNAL_ERROR: "Internal server error",
}


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class ModelBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class VerificationSession(ModelBase):
    status: SessionStatus
    account_id: Optional[str] = None
    attestation_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: int = Field(default=0, description="Last write, epoch milliseconds")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatusResponse(ModelBase):
    status: SessionStatus
    account_id: Optional[str] = None
    attestation_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


# ---------------------------------------------------------------------------
# On-chain records
# ---------------------------------------------------------------------------

class ZkProof(ModelBase):
    a: Tuple[str, str]
    b: Tuple[Tuple[str, str], Tuple[str, str]]
    c: Tuple[str, str]


class SelfProof(ModelBase):
    proof: ZkProof
    public_signals: List[str] = Field(default_factory=list)


class VerificationSummary(ModelBase):
    nullifier: str
    near_account_id: str
    attestation_id: str
    verified_at: int


class VerifiedAccountRecord(ModelBase):
    near_account_id: str
    nullifier: str
    user_id: Optional[str] = None
    attestation_id: str
    verified_at: int
    self_proof: SelfProof
    user_context_data: str

    @field_validator("attestation_id", mode="before")
    @classmethod
    def _attestation_to_str(cls, v):
        return str(v) if isinstance(v, int) else v


# ---------------------------------------------------------------------------
# Reconciliation output
# ---------------------------------------------------------------------------

class VerificationResult(ModelBase):
    zk_valid: bool
    signature_valid: bool
    error: Optional[str] = None
    zk_error: Optional[str] = None
    signature_error: Optional[str] = None


class SignatureBlock(ModelBase):
    account_id: str
    public_key: str
    signature: str
    nonce: str  # base64, 32 bytes
    challenge: str
    recipient: str


class NearSignatureVerification(ModelBase):
    nep413_hash: str
    public_key_hex: str
    signature_hex: str


class ProofData(ModelBase):
    nullifier: str
    user_id: Optional[str] = None
    attestation_id: str
    verified_at: int
    zk_proof: ZkProof
    public_signals: List[str]
    signature: SignatureBlock
    user_context_data: str
    near_signature_verification: NearSignatureVerification


class AccountWithStatus(ModelBase):
    account: VerifiedAccountRecord
    verification: VerificationResult
    proof_data: Optional[ProofData] = None

    def to_json_dict(self) -> dict:
        # proofData is always present (null when unavailable)
        data = super().to_json_dict()
        data.setdefault("proofData", None)
        return data


class VerifiedAccountsPage(ModelBase):
    accounts: List[AccountWithStatus]
    total: int
    page: int
    page_size: int

    def to_json_dict(self) -> dict:
        return {
            "accounts": [a.to_json_dict() for a in self.accounts],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
        }


class ErrorResponse(BaseModel):
    error: str
    code: str
    request_id: str
