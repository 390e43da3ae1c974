# -*- coding: utf-8 -*-
"""
Groth16 re-verification of stored Self.xyz proofs against the on-chain verifier on Celo.

The IdentityVerificationHub resolves the verifier contract for an attestation id
(`discloseVerifier(bytes32)`); the verifier's `verifyProof(a, b, c, pubSignals)` is a
pure view call, so stored proofs stay verifiable regardless of their age.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3

from ..errors import ZkVerifierUnavailable
from ..schemas import SelfProof

__all__ = ["ZkCheck", "CeloProofVerifier", "PUBLIC_SIGNALS_COUNT"]

log = logging.getLogger("verification_core.zk.celo")

T = TypeVar("T")

PUBLIC_SIGNALS_COUNT = 21
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

VERIFIER_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "uint256[2]", "name": "a", "type": "uint256[2]"},
            {"internalType": "uint256[2][2]", "name": "b", "type": "uint256[2][2]"},
            {"internalType": "uint256[2]", "name": "c", "type": "uint256[2]"},
            {"internalType": "uint256[21]", "name": "pubSignals", "type": "uint256[21]"},
        ],
        "name": "verifyProof",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    }
]

HUB_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"internalType": "bytes32", "name": "attestationId", "type": "bytes32"}],
        "name": "discloseVerifier",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    }
]


@dataclass(frozen=True)
class ZkCheck:
    is_valid: bool
    public_signals_count: int
    error: Optional[str] = None
    rpc_url: Optional[str] = None
    verifier_address: Optional[str] = None


class VerifierNotFound(Exception):
    """Hub has no verifier registered for the attestation id."""


ProofArgs = Tuple[List[int], List[List[int]], List[int], List[int]]


def proof_call_args(self_proof: SelfProof) -> ProofArgs:
    """Integer arguments for verifyProof; the G2 point `b` is passed with swapped coordinates."""
    p = self_proof.proof
    a = [int(x) for x in p.a]
    b = [
        [int(p.b[0][1]), int(p.b[0][0])],
        [int(p.b[1][1]), int(p.b[1][0])],
    ]
    c = [int(x) for x in p.c]
    signals = [int(s) for s in self_proof.public_signals]
    return a, b, c, signals


class CeloProofVerifier:
    def __init__(
        self,
        rpc_urls: Sequence[str],
        hub_address: str,
        *,
        timeout: float = 5.0,
        success_ttl: float = 300.0,
    ):
        if not rpc_urls:
            raise ValueError("at least one Celo RPC url is required")
        self._rpc_urls = list(rpc_urls)
        self._hub_address = hub_address
        self._timeout = timeout
        self._success_ttl = success_ttl
        self._last_good: Optional[Tuple[str, float]] = None
        self._verifiers: Dict[int, str] = {}

    # ---------- transport ----------

    def _make_web3(self, url: str) -> Any:
        return AsyncWeb3(AsyncHTTPProvider(url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=self._timeout)}))

    def _candidates(self) -> List[str]:
        urls = list(self._rpc_urls)
        if self._last_good is not None:
            url, at = self._last_good
            if time.monotonic() - at < self._success_ttl:
                urls = [url] + [u for u in urls if u != url]
            else:
                self._last_good = None
        return urls

    async def _with_failover(self, operation: Callable[[Any], Awaitable[T]]) -> Tuple[T, str]:
        errors: List[str] = []
        for url in self._candidates():
            try:
                result = await asyncio.wait_for(operation(self._make_web3(url)), timeout=self._timeout)
            except VerifierNotFound:
                raise
            except asyncio.TimeoutError:
                errors.append(f"timeout after {self._timeout}s")
            except Exception as e:  # noqa: BLE001
                errors.append(type(e).__name__)
            else:
                self._last_good = (url, time.monotonic())
                return result, url
            if self._last_good is not None and self._last_good[0] == url:
                self._last_good = None
            log.warning("celo_rpc_failed", extra={"attempt": len(errors), "err": errors[-1]})
        raise ZkVerifierUnavailable(f"All Celo RPC endpoints failed ({len(errors)} tried)")

    # ---------- contract calls ----------

    async def _disclose_verifier(self, w3: Any, attestation_id: int) -> str:
        hub = w3.eth.contract(address=AsyncWeb3.to_checksum_address(self._hub_address), abi=HUB_ABI)
        address = await hub.functions.discloseVerifier(attestation_id.to_bytes(32, "big")).call()
        if not address or int(str(address), 16) == 0:
            raise VerifierNotFound(f"Verifier contract not found for attestation ID: {attestation_id}")
        return str(address)

    async def _verify_proof(self, w3: Any, verifier_address: str, args: ProofArgs) -> bool:
        a, b, c, signals = args
        verifier = w3.eth.contract(address=AsyncWeb3.to_checksum_address(verifier_address), abi=VERIFIER_ABI)
        return bool(await verifier.functions.verifyProof(a, b, c, signals).call())

    async def verifier_address(self, attestation_id: int) -> str:
        cached = self._verifiers.get(attestation_id)
        if cached is not None:
            return cached
        address, _ = await self._with_failover(lambda w3: self._disclose_verifier(w3, attestation_id))
        self._verifiers[attestation_id] = address
        return address

    async def verify(self, self_proof: SelfProof, attestation_id: int) -> ZkCheck:
        """
        Re-verify a stored proof.

        Returns ZkCheck(is_valid=False, error=...) for malformed input, an unknown
        attestation id or a proof the verifier rejects. Raises ZkVerifierUnavailable
        when no endpoint could answer.
        """
        count = len(self_proof.public_signals)
        if count != PUBLIC_SIGNALS_COUNT:
            return ZkCheck(False, count, error=f"Expected {PUBLIC_SIGNALS_COUNT} public signals, got {count}")
        try:
            args = proof_call_args(self_proof)
        except ValueError:
            return ZkCheck(False, count, error="Proof contains non-numeric values")

        try:
            address = await self.verifier_address(attestation_id)
        except VerifierNotFound as e:
            return ZkCheck(False, count, error=str(e))

        is_valid, url = await self._with_failover(lambda w3: self._verify_proof(w3, address, args))
        log.debug("zk_proof_checked", extra={"attestation_id": attestation_id, "valid": is_valid})
        return ZkCheck(
            is_valid=is_valid,
            public_signals_count=count,
            error=None if is_valid else "ZK proof rejected by verifier",
            rpc_url=url,
            verifier_address=address,
        )
