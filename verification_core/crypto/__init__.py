from .nep413 import (
    ParsedSignature,
    SignatureCheck,
    SignatureVerifier,
    build_proof_data,
    compute_nep413_hash,
    extract_ed25519_public_key_hex,
    parse_user_context_data,
    verify_signature,
)

__all__ = [
    "ParsedSignature",
    "SignatureCheck",
    "SignatureVerifier",
    "build_proof_data",
    "compute_nep413_hash",
    "extract_ed25519_public_key_hex",
    "parse_user_context_data",
    "verify_signature",
]
