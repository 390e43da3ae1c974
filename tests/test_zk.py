# -*- coding: utf-8 -*-
"""
Celo ZK re-verification: hub lookup, verifier call and RPC failover.
The web3 layer is replaced by overriding the transport/contract-call hooks.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from verification_core.errors import ZkVerifierUnavailable
from verification_core.zk.celo import ZERO_ADDRESS, CeloProofVerifier, VerifierNotFound, proof_call_args

from .factories import make_proof

URLS = ["https://rpc-a.example", "https://rpc-b.example", "https://rpc-c.example"]
VERIFIER = "0x1111111111111111111111111111111111111111"


class ScriptedVerifier(CeloProofVerifier):
    def __init__(self, *, down: Optional[List[str]] = None, verifier: str = VERIFIER, valid: bool = True, **kw: Any):
        super().__init__(URLS, "0x16ECBA51e18a4a7e61fdC417f0d47AFEeDfbed74", **kw)
        self.down = set(down or [])
        self.verifier = verifier
        self.valid = valid
        self.disclose_calls: List[str] = []
        self.verify_calls: List[Dict[str, Any]] = []

    def _make_web3(self, url: str) -> Any:
        return url

    async def _disclose_verifier(self, w3: Any, attestation_id: int) -> str:
        self.disclose_calls.append(w3)
        if w3 in self.down:
            raise ConnectionError(w3)
        if self.verifier == ZERO_ADDRESS:
            raise VerifierNotFound(f"Verifier contract not found for attestation ID: {attestation_id}")
        return self.verifier

    async def _verify_proof(self, w3: Any, verifier_address: str, args: Any) -> bool:
        self.verify_calls.append({"url": w3, "address": verifier_address, "args": args})
        if w3 in self.down:
            raise ConnectionError(w3)
        return self.valid


def test_proof_call_args_swaps_b_coordinates():
    a, b, c, signals = proof_call_args(make_proof())
    assert a == [1, 2]
    assert b == [[4, 3], [6, 5]]
    assert c == [7, 8]
    assert len(signals) == 21
    assert signals[0] == 100


@pytest.mark.anyio
async def test_valid_proof():
    v = ScriptedVerifier()
    check = await v.verify(make_proof(), 1)
    assert check.is_valid is True
    assert check.error is None
    assert check.public_signals_count == 21
    assert check.verifier_address == VERIFIER
    assert check.rpc_url == URLS[0]


@pytest.mark.anyio
async def test_rejected_proof():
    check = await ScriptedVerifier(valid=False).verify(make_proof(), 1)
    assert check.is_valid is False
    assert check.error == "ZK proof rejected by verifier"


@pytest.mark.anyio
async def test_wrong_signal_count_skips_rpc():
    v = ScriptedVerifier()
    check = await v.verify(make_proof(signals=20), 1)
    assert check.is_valid is False
    assert "21" in check.error
    assert v.disclose_calls == []


@pytest.mark.anyio
async def test_non_numeric_signal():
    proof = make_proof()
    proof.public_signals[3] = "0xnotanumber"
    check = await ScriptedVerifier().verify(proof, 1)
    assert check.is_valid is False
    assert check.error == "Proof contains non-numeric values"


@pytest.mark.anyio
async def test_unknown_attestation_id():
    v = ScriptedVerifier(verifier=ZERO_ADDRESS)
    check = await v.verify(make_proof(), 99)
    assert check.is_valid is False
    assert check.error == "Verifier contract not found for attestation ID: 99"
    # not an endpoint failure: no failover to other urls
    assert v.disclose_calls == [URLS[0]]


@pytest.mark.anyio
async def test_failover_and_last_good_endpoint():
    v = ScriptedVerifier(down=[URLS[0]])
    check = await v.verify(make_proof(), 1)
    assert check.is_valid is True
    assert check.rpc_url == URLS[1]
    assert v.disclose_calls == [URLS[0], URLS[1]]

    # next call starts with the endpoint that worked
    v.verify_calls.clear()
    await v.verify(make_proof(), 1)
    assert v.verify_calls[0]["url"] == URLS[1]


@pytest.mark.anyio
async def test_verifier_address_is_cached():
    v = ScriptedVerifier()
    await v.verify(make_proof(), 1)
    await v.verify(make_proof(), 1)
    assert len(v.disclose_calls) == 1
    assert len(v.verify_calls) == 2


@pytest.mark.anyio
async def test_all_endpoints_down():
    v = ScriptedVerifier(down=URLS)
    with pytest.raises(ZkVerifierUnavailable):
        await v.verify(make_proof(), 1)
    assert v.disclose_calls == URLS


def test_requires_rpc_urls():
    with pytest.raises(ValueError):
        CeloProofVerifier([], "0x16ECBA51e18a4a7e61fdC417f0d47AFEeDfbed74")
