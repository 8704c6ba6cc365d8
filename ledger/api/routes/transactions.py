"""
Transaction routes.

List filters arrive as camelCase query parameters (walletId, startDate,
includeStats, ...) and are turned into one TransactionFilter, which drives
both the page and its stats.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ledger.api.dependencies import get_components, get_user_id
from ledger.api.responses import envelope, to_json
from ledger.models.ledger import (
    TransactionCreate,
    TransactionFilter,
    TransactionQuery,
    TransactionType,
    TransactionUpdate,
)
from ledger.orchestrator import LedgerComponents


router = APIRouter(prefix="/transactions", tags=["transactions"])


def transaction_filter(
    wallet_id: Optional[UUID] = Query(default=None, alias="walletId"),
    category: Optional[str] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
) -> TransactionFilter:
    return TransactionFilter(
        wallet_id=wallet_id,
        category=category,
        type=type,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("")
async def create_transaction(
    payload: TransactionCreate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    transaction = await components.transactions.create(user_id, payload)
    return envelope({"transaction": transaction}, status_code=201)


@router.get("")
async def list_transactions(
    filters: TransactionFilter = Depends(transaction_filter),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    include_stats: bool = Query(default=False, alias="includeStats"),
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    query = TransactionQuery(
        filters=filters,
        page=page,
        limit=limit or components.settings.ledger.default_page_limit,
        include_stats=include_stats,
    )
    result = await components.transactions.list(user_id, query)
    data = to_json(result)
    if result.stats is None:
        data.pop("stats", None)
    return envelope(data)


@router.get("/stats")
async def transaction_stats(
    filters: TransactionFilter = Depends(transaction_filter),
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    stats = await components.transactions.stats(user_id, filters)
    return envelope({"stats": stats})


@router.get("/suggest")
async def suggest_category(
    merchant: Optional[str] = Query(default=None),
    notes: Optional[str] = Query(default=None),
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    return envelope(components.transactions.suggest(merchant, notes))


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    transaction = await components.transactions.get(user_id, transaction_id)
    return envelope({"transaction": transaction})


@router.patch("/{transaction_id}")
async def update_transaction(
    transaction_id: UUID,
    patch: TransactionUpdate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    transaction = await components.transactions.update(user_id, transaction_id, patch)
    return envelope({"transaction": transaction})


@router.delete("/{transaction_id}")
async def delete_transaction(
    transaction_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    warnings = await components.transactions.delete(user_id, transaction_id)
    return envelope(
        {"warnings": warnings} if warnings else None,
        message="Transaction deleted successfully",
    )
