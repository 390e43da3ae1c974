# -*- coding: utf-8 -*-
"""Verification API routes."""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from ..deps import DependencyContainer, get_container
from ..errors import AppError
from ..logging_setup import set_context

router = APIRouter(prefix="/verification", tags=["verification"])

_NO_STORE = {"cache-control": "no-store"}


def require_admin(
    authorization: Optional[str] = Header(default=None),
    container: DependencyContainer = Depends(get_container),
) -> None:
    """Bearer check against VERIFY_ADMIN_TOKEN; with no token configured admin routes stay closed."""
    expected = container.settings.admin_token
    if expected is None:
        raise AppError("Forbidden", 403, "forbidden")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AppError("Unauthorized", 401, "unauthorized")
    if not hmac.compare_digest(token.strip().encode("utf-8"), expected.get_secret_value().encode("utf-8")):
        raise AppError("Forbidden", 403, "forbidden")


@router.get("/status")
async def verification_status(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    account_id: Optional[str] = Query(default=None, alias="accountId"),
    container: DependencyContainer = Depends(get_container),
) -> JSONResponse:
    status_code, body = await container.status.get_status(session_id, account_id)
    return JSONResponse(status_code=status_code, content=body, headers=_NO_STORE)


@router.get("/accounts")
async def verified_accounts(
    page: int = Query(default=0, alias="page"),
    page_size: int = Query(default=10, alias="pageSize"),
    container: DependencyContainer = Depends(get_container),
) -> JSONResponse:
    set_context(operation="list_verified_accounts")
    result = await container.listing.get_page(page, page_size)
    return JSONResponse(content=result.to_json_dict())


@router.get("/accounts/{account_id}")
async def verified_account(
    account_id: str,
    container: DependencyContainer = Depends(get_container),
) -> JSONResponse:
    set_context(operation="get_verified_account")
    entry = await container.listing.get_account(account_id)
    if entry is None:
        raise AppError("Account not verified", 404, "not_found")
    return JSONResponse(content=entry.to_json_dict())


@router.post("/accounts/invalidate", dependencies=[Depends(require_admin)])
async def invalidate_verified_accounts(
    container: DependencyContainer = Depends(get_container),
) -> JSONResponse:
    dropped = container.listing.invalidate()
    return JSONResponse(content={"invalidated": dropped})
