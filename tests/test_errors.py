# -*- coding: utf-8 -*-
from __future__ import annotations

import pytest

from verification_core.errors import (
    ContractError,
    ContractErrorKind,
    classify_contract_failure,
    http_status_for,
    public_message_for,
)


@pytest.mark.parametrize("kind", list(ContractErrorKind))
def test_every_kind_has_status_and_message(kind):
    assert 400 <= http_status_for(kind) < 600
    assert public_message_for(kind)


@pytest.mark.parametrize(
    "kind,status",
    [
        (ContractErrorKind.NOT_CITIZEN, 403),
        (ContractErrorKind.ALREADY_VOTED, 400),
        (ContractErrorKind.VOTING_CLOSED, 400),
        (ContractErrorKind.PROPOSAL_NOT_ACTIVE, 400),
        (ContractErrorKind.DUPLICATE_IDENTITY, 409),
        (ContractErrorKind.ACCOUNT_ALREADY_VERIFIED, 409),
        (ContractErrorKind.CONTRACT_PAUSED, 503),
        (ContractErrorKind.ACCOUNT_NOT_FOUND, 404),
        (ContractErrorKind.ACCESS_KEY_NOT_FOUND, 404),
        (ContractErrorKind.RPC_UNAVAILABLE, 503),
        (ContractErrorKind.INVALID_RESPONSE, 502),
        (ContractErrorKind.UNKNOWN, 500),
    ],
)
def test_http_status_mapping(kind, status):
    assert http_status_for(kind) == status


@pytest.mark.parametrize(
    "panic,kind",
    [
        ("Smart contract panicked: Only verified citizens can vote", ContractErrorKind.NOT_CITIZEN),
        ("Smart contract panicked: Already voted on this proposal", ContractErrorKind.ALREADY_VOTED),
        ("Smart contract panicked: Voting period has ended", ContractErrorKind.VOTING_CLOSED),
        ("Smart contract panicked: Proposal is not active", ContractErrorKind.PROPOSAL_NOT_ACTIVE),
        ("Smart contract panicked: Nullifier already used", ContractErrorKind.DUPLICATE_IDENTITY),
        ("Smart contract panicked: Account already verified", ContractErrorKind.ACCOUNT_ALREADY_VERIFIED),
        ('{"ExecutionError":"Smart contract panicked: Contract is paused"}', ContractErrorKind.CONTRACT_PAUSED),
        ("Smart contract panicked: something unexpected", ContractErrorKind.UNKNOWN),
    ],
)
def test_classify_panic(panic, kind):
    err = classify_contract_failure(panic=panic, method="vote")
    assert isinstance(err, ContractError)
    assert err.kind is kind
    assert err.method == "vote"


def test_classify_panic_extracts_message():
    err = classify_contract_failure(panic='{"ExecutionError":"Smart contract panicked: Contract is paused"}')
    assert err.message == "Contract is paused"


def test_classify_query_error_with_guest_panic():
    text = 'wasm execution failed with error: FunctionCallError(HostError(GuestPanic { panic_msg: "Nullifier already used" }))'
    err = classify_contract_failure(query_error=text)
    assert err.kind is ContractErrorKind.DUPLICATE_IDENTITY


@pytest.mark.parametrize(
    "text,kind",
    [
        ("access key ed25519:abc does not exist while viewing", ContractErrorKind.ACCESS_KEY_NOT_FOUND),
        ("account nobody.testnet does not exist while viewing", ContractErrorKind.ACCOUNT_NOT_FOUND),
        ("something else went wrong", ContractErrorKind.UNKNOWN),
    ],
)
def test_classify_query_error(text, kind):
    assert classify_contract_failure(query_error=text).kind is kind


@pytest.mark.parametrize(
    "cause,kind",
    [
        ("UNKNOWN_ACCOUNT", ContractErrorKind.ACCOUNT_NOT_FOUND),
        ("UNKNOWN_ACCESS_KEY", ContractErrorKind.ACCESS_KEY_NOT_FOUND),
        ("TIMEOUT_ERROR", ContractErrorKind.RPC_UNAVAILABLE),
        ("INTERNAL_ERROR", ContractErrorKind.RPC_UNAVAILABLE),
        ("SOMETHING_NEW", ContractErrorKind.UNKNOWN),
    ],
)
def test_classify_rpc_error_cause(cause, kind):
    err = classify_contract_failure(rpc_error={"name": "HANDLER_ERROR", "cause": {"name": cause}, "message": "Server error"})
    assert err.kind is kind


def test_classify_rpc_error_with_panic_in_info():
    err = classify_contract_failure(
        rpc_error={
            "name": "HANDLER_ERROR",
            "cause": {
                "name": "CONTRACT_EXECUTION_ERROR",
                "info": {"error_message": "Smart contract panicked: Only verified citizens can vote"},
            },
        }
    )
    assert err.kind is ContractErrorKind.NOT_CITIZEN
