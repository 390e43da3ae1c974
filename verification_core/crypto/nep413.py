# -*- coding: utf-8 -*-
"""
NEP-413 signed-message verification for NEAR wallets.

Signed payload:
    SHA-256( u32_le(2**31 + 413) || borsh({message, nonce[32], recipient, callbackUrl: None}) )

The wallet bundle (accountId, publicKey, signature, nonce) travels inside the opaque
userContextData blob of a Self.xyz proof, hex-encoded and NUL-padded.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import re
import struct
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519

from ..schemas import (
    NearSignatureVerification,
    ProofData,
    SignatureBlock,
    VerifiedAccountRecord,
)

__all__ = [
    "NEP413_TAG",
    "ParsedSignature",
    "SignatureCheck",
    "SignatureVerifier",
    "b58encode",
    "b58decode",
    "parse_user_context_data",
    "compute_nep413_hash",
    "extract_ed25519_public_key_hex",
    "verify_signature",
    "build_proof_data",
]

NEP413_TAG = 2**31 + 413
NONCE_LENGTH = 32

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


# --------------------------------------------------------------------------------------
# Base58 (NEAR public keys)
# --------------------------------------------------------------------------------------

def b58encode(b: bytes) -> str:
    n = int.from_bytes(b, "big")
    s = []
    while n > 0:
        n, r = divmod(n, 58)
        s.append(_B58_ALPHABET[r])
    s.reverse()
    pad = 0
    for ch in b:
        if ch == 0:
            pad += 1
        else:
            break
    return "1" * pad + "".join(s)


def b58decode(s: str) -> bytes:
    n = 0
    for ch in s:
        idx = _B58_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"invalid base58 character: {ch!r}")
        n = n * 58 + idx
    pad = 0
    for ch in s:
        if ch == "1":
            pad += 1
        else:
            break
    b = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    return b"\x00" * pad + b


# --------------------------------------------------------------------------------------
# Types
# --------------------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedSignature:
    account_id: str
    signature: str  # base64
    public_key: str  # "ed25519:<base58>"
    nonce: bytes
    challenge: Optional[str] = None
    recipient: Optional[str] = None

    @property
    def nonce_b64(self) -> str:
        return base64.b64encode(self.nonce).decode("ascii")


@dataclass(frozen=True)
class SignatureCheck:
    valid: bool
    error: Optional[str] = None


# --------------------------------------------------------------------------------------
# userContextData parsing
# --------------------------------------------------------------------------------------

def _decode_nonce(value: Any) -> Optional[bytes]:
    if isinstance(value, str):
        try:
            return base64.b64decode(value)
        except (binascii.Error, ValueError):
            return None
    if isinstance(value, list) and all(isinstance(x, int) and 0 <= x <= 255 for x in value):
        return bytes(value)
    return None


def parse_user_context_data(raw: Optional[str]) -> Optional[ParsedSignature]:
    """Extract the wallet signature bundle; None when the blob does not carry one."""
    if not raw:
        return None

    text = raw
    if len(raw) % 2 == 0 and _HEX_RE.fullmatch(raw):
        try:
            text = bytes.fromhex(raw).decode("utf-8", errors="replace")
        except ValueError:
            return None
    text = text.replace("\x00", "")

    start = text.find('{"accountId"')
    if start < 0:
        start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None

    try:
        data = json.loads(text[start : end + 1])
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    account_id = data.get("accountId")
    signature = data.get("signature")
    public_key = data.get("publicKey")
    nonce = _decode_nonce(data.get("nonce"))
    if not (account_id and signature and public_key and nonce):
        return None
    if not all(isinstance(v, str) for v in (account_id, signature, public_key)):
        return None

    challenge = data.get("challenge")
    recipient = data.get("recipient")
    return ParsedSignature(
        account_id=account_id,
        signature=signature,
        public_key=public_key,
        nonce=nonce,
        challenge=challenge if isinstance(challenge, str) else None,
        recipient=recipient if isinstance(recipient, str) else None,
    )


# --------------------------------------------------------------------------------------
# Hashing
# --------------------------------------------------------------------------------------

def _borsh_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def _nep413_payload(message: str, nonce: bytes, recipient: str) -> bytes:
    if len(nonce) != NONCE_LENGTH:
        raise ValueError(f"nonce must be {NONCE_LENGTH} bytes, got {len(nonce)}")
    return (
        struct.pack("<I", NEP413_TAG)
        + _borsh_string(message)
        + bytes(nonce)
        + _borsh_string(recipient)
        + b"\x00"  # callbackUrl: None
    )


def nep413_digest(message: str, nonce: Union[bytes, Sequence[int]], recipient: str) -> bytes:
    return hashlib.sha256(_nep413_payload(message, bytes(nonce), recipient)).digest()


def compute_nep413_hash(message: str, nonce: Union[bytes, Sequence[int]], recipient: str) -> str:
    return nep413_digest(message, nonce, recipient).hex()


# --------------------------------------------------------------------------------------
# Keys and verification
# --------------------------------------------------------------------------------------

def _public_key_bytes(near_public_key: str) -> bytes:
    key_type, sep, data = near_public_key.partition(":")
    if not sep:
        key_type, data = "ed25519", near_public_key
    if key_type.lower() != "ed25519":
        raise ValueError(f"Unsupported key type: {key_type}")
    raw = b58decode(data)
    if len(raw) != 32:
        raise ValueError(f"Invalid ed25519 public key length: {len(raw)}")
    return raw


def extract_ed25519_public_key_hex(near_public_key: str) -> str:
    return _public_key_bytes(near_public_key).hex()


def verify_signature(
    challenge: str,
    signature: str,
    public_key: str,
    nonce: Union[bytes, Sequence[int]],
    recipient: str,
) -> SignatureCheck:
    """Verify a NEP-413 signature. Never raises; failures come back as valid=False plus reason."""
    try:
        digest = nep413_digest(challenge, nonce, recipient)
        key = ed25519.Ed25519PublicKey.from_public_bytes(_public_key_bytes(public_key))
        sig = base64.b64decode(signature)
        key.verify(sig, digest)
        return SignatureCheck(valid=True)
    except InvalidSignature:
        return SignatureCheck(valid=False, error="Signature does not match public key")
    except Exception as e:  # noqa: BLE001
        return SignatureCheck(valid=False, error=str(e) or "Signature verification failed")


class SignatureVerifier:
    """Injectable wrapper around verify_signature (replaced by fakes in tests)."""

    def verify(
        self,
        challenge: str,
        signature: str,
        public_key: str,
        nonce: Union[bytes, Sequence[int]],
        recipient: str,
    ) -> SignatureCheck:
        return verify_signature(challenge, signature, public_key, nonce, recipient)


# --------------------------------------------------------------------------------------
# Display assembly
# --------------------------------------------------------------------------------------

def build_proof_data(
    record: VerifiedAccountRecord,
    parsed: Optional[ParsedSignature],
    challenge: str,
) -> Optional[ProofData]:
    if parsed is None:
        return None

    recipient = parsed.recipient or parsed.account_id
    return ProofData(
        nullifier=record.nullifier,
        user_id=record.user_id,
        attestation_id=record.attestation_id,
        verified_at=record.verified_at,
        zk_proof=record.self_proof.proof,
        public_signals=list(record.self_proof.public_signals),
        signature=SignatureBlock(
            account_id=parsed.account_id,
            public_key=parsed.public_key,
            signature=parsed.signature,
            nonce=parsed.nonce_b64,
            challenge=challenge,
            recipient=recipient,
        ),
        user_context_data=record.user_context_data,
        near_signature_verification=NearSignatureVerification(
            nep413_hash=compute_nep413_hash(challenge, parsed.nonce, recipient),
            public_key_hex=extract_ed25519_public_key_hex(parsed.public_key),
            signature_hex=base64.b64decode(parsed.signature).hex(),
        ),
    )
