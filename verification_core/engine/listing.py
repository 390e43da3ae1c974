# -*- coding: utf-8 -*-
"""
Paginated verified-account listing.

Fetches the window [page*size, page*size+size) from the verification contract and
reconciles every record concurrently. Output order matches contract order; a record
whose reconciliation escapes with an exception still yields an entry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from ..config import VERIFICATIONS_CACHE_TAG
from ..errors import AppError
from ..schemas import (
    AccountWithStatus,
    VerificationResult,
    VerifiedAccountRecord,
    VerifiedAccountsPage,
    is_valid_account_id,
)
from .cache import TaggedTTLCache
from .reconciler import Reconciler

__all__ = ["ListingService", "gather_reconciled"]

log = logging.getLogger("verification_core.engine.listing")


def _failure_entry(record: VerifiedAccountRecord, exc: BaseException) -> AccountWithStatus:
    return AccountWithStatus(
        account=record,
        verification=VerificationResult(
            zk_valid=False,
            signature_valid=False,
            error=str(exc) or "Verification failed",
        ),
        proof_data=None,
    )


async def gather_reconciled(reconciler: Reconciler, records: Sequence[VerifiedAccountRecord]) -> List[AccountWithStatus]:
    """Concurrent map with per-task error capture; results keep input order."""
    outcomes = await asyncio.gather(*(reconciler.reconcile(r) for r in records), return_exceptions=True)
    results: List[AccountWithStatus] = []
    for record, outcome in zip(records, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            log.error(
                "reconcile_escaped",
                exc_info=outcome,
                extra={"account_id": record.near_account_id},
            )
            results.append(_failure_entry(record, outcome))
        else:
            results.append(outcome)
    return results


class ListingService:
    def __init__(
        self,
        contract: Any,
        reconciler: Reconciler,
        *,
        cache: Optional[TaggedTTLCache] = None,
        max_page_size: int = 100,
    ):
        self._contract = contract
        self._reconciler = reconciler
        self._cache = cache
        self._max_page_size = max_page_size

    def _validate(self, page: int, page_size: int) -> None:
        if page < 0 or not (1 <= page_size <= self._max_page_size):
            raise AppError("Invalid pagination parameters", 400, "invalid_request")

    async def _fetch_and_verify(self, page: int, page_size: int) -> VerifiedAccountsPage:
        records, total = await self._contract.get_verified_accounts(page * page_size, page_size)
        accounts = await gather_reconciled(self._reconciler, records)
        log.info(
            "verified_accounts_page",
            extra={"page": page, "page_size": page_size, "returned": len(accounts), "total": total},
        )
        return VerifiedAccountsPage(accounts=accounts, total=total, page=page, page_size=page_size)

    async def get_page(self, page: int, page_size: int) -> VerifiedAccountsPage:
        self._validate(page, page_size)
        if self._cache is None:
            return await self._fetch_and_verify(page, page_size)
        key = f"verified-accounts:{page * page_size}:{page_size}"
        return await self._cache.get_or_load(
            key,
            lambda: self._fetch_and_verify(page, page_size),
            tags=(VERIFICATIONS_CACHE_TAG,),
        )

    async def get_account(self, account_id: str) -> Optional[AccountWithStatus]:
        """Reconciled record for one account; None when the contract holds no verification for it."""
        if not is_valid_account_id(account_id):
            raise AppError("Invalid request", 400, "invalid_request")
        record = await self._contract.get_full_verification(account_id)
        if record is None:
            return None
        return await self._reconciler.reconcile(record)

    def invalidate(self) -> int:
        if self._cache is None:
            return 0
        dropped = self._cache.invalidate_tag(VERIFICATIONS_CACHE_TAG)
        log.info("verifications_cache_invalidated", extra={"entries": dropped})
        return dropped
