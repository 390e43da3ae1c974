# -*- coding: utf-8 -*-
"""
Verification reconciler.

Re-validates one on-chain verified account record: the ZK proof against the Celo
verifier and the NEP-413 wallet signature carried in userContextData. Both checks
run concurrently. `reconcile()` is total: it returns a result for every record and
never raises (cancellation aside).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Tuple

from ..config import DEFAULT_SIGNING_MESSAGE
from ..crypto.nep413 import ParsedSignature, SignatureVerifier, build_proof_data, parse_user_context_data
from ..errors import ZkVerifierUnavailable
from ..metrics import RECONCILE_OUTCOMES
from ..schemas import AccountWithStatus, ProofData, VerificationResult, VerifiedAccountRecord

__all__ = ["Reconciler", "UNPARSEABLE_SIGNATURE_ERROR"]

log = logging.getLogger("verification_core.engine.reconciler")

UNPARSEABLE_SIGNATURE_ERROR = "Could not parse signature data from userContextData"


class Reconciler:
    def __init__(
        self,
        zk_verifier: Any,
        signature_verifier: Optional[SignatureVerifier] = None,
        *,
        challenge: str = DEFAULT_SIGNING_MESSAGE,
    ):
        self._zk = zk_verifier
        self._sig = signature_verifier or SignatureVerifier()
        self._challenge = challenge

    async def _check_zk(self, record: VerifiedAccountRecord) -> Tuple[bool, Optional[str]]:
        try:
            attestation_id = int(record.attestation_id)
        except ValueError:
            return False, f"Invalid attestation id: {record.attestation_id!r}"
        if attestation_id < 0:
            return False, f"Invalid attestation id: {record.attestation_id!r}"
        try:
            check = await self._zk.verify(record.self_proof, attestation_id)
        except ZkVerifierUnavailable as e:
            log.warning("zk_verifier_unavailable", extra={"account_id": record.near_account_id, "err": str(e)})
            return False, f"ZK re-verification unavailable: {e}"
        except Exception as e:  # noqa: BLE001
            log.warning("zk_verifier_failed", extra={"account_id": record.near_account_id, "err": repr(e)})
            return False, str(e) or "ZK verification failed"
        return bool(check.is_valid), check.error

    async def _check_signature(
        self, record: VerifiedAccountRecord
    ) -> Tuple[Optional[ParsedSignature], bool, Optional[str]]:
        parsed = parse_user_context_data(record.user_context_data)
        if parsed is None:
            return None, False, UNPARSEABLE_SIGNATURE_ERROR
        result = self._sig.verify(
            self._challenge,
            parsed.signature,
            parsed.public_key,
            parsed.nonce,
            parsed.recipient or parsed.account_id,
        )
        if result.valid:
            return parsed, True, None
        return parsed, False, result.error or "Signature verification failed"

    def _proof_data(self, record: VerifiedAccountRecord, parsed: Optional[ParsedSignature]) -> Optional[ProofData]:
        try:
            return build_proof_data(record, parsed, self._challenge)
        except (ValueError, TypeError) as e:
            log.info("proof_data_unavailable", extra={"account_id": record.near_account_id, "err": str(e)})
            return None

    async def reconcile(self, record: VerifiedAccountRecord) -> AccountWithStatus:
        try:
            (zk_valid, zk_error), (parsed, sig_valid, sig_error) = await asyncio.gather(
                self._check_zk(record),
                self._check_signature(record),
            )
            verification = VerificationResult(
                zk_valid=zk_valid,
                signature_valid=sig_valid,
                error=zk_error or sig_error,
                zk_error=zk_error,
                signature_error=sig_error,
            )
            result = AccountWithStatus(
                account=record,
                verification=verification,
                proof_data=self._proof_data(record, parsed),
            )
        except Exception as e:  # noqa: BLE001
            log.exception("reconcile_failed", extra={"account_id": record.near_account_id})
            result = AccountWithStatus(
                account=record,
                verification=VerificationResult(
                    zk_valid=False,
                    signature_valid=False,
                    error=str(e) or "Verification failed",
                ),
                proof_data=None,
            )

        RECONCILE_OUTCOMES.labels(
            str(result.verification.zk_valid).lower(),
            str(result.verification.signature_valid).lower(),
        ).inc()
        return result
