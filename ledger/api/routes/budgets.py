"""Budget routes."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from ledger.api.dependencies import get_components, get_user_id
from ledger.api.responses import envelope
from ledger.models.ledger import BudgetCreate, BudgetUpdate
from ledger.orchestrator import LedgerComponents


router = APIRouter(prefix="/budgets", tags=["budgets"])


@router.post("")
async def create_budget(
    payload: BudgetCreate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    budget = await components.budgets.create(user_id, payload)
    return envelope({"budget": budget}, status_code=201)


@router.get("")
async def list_budgets(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=1970, le=9999),
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    budgets = await components.budgets.list(user_id, month=month, year=year)
    return envelope({"budgets": budgets})


@router.get("/summary")
async def budget_summary(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1970, le=9999),
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    summary = await components.budget_aggregator.summarize(user_id, month, year)
    return envelope({"summary": summary})


@router.get("/{budget_id}")
async def get_budget(
    budget_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    budget = await components.budgets.get(user_id, budget_id)
    return envelope({"budget": budget})


@router.patch("/{budget_id}")
async def update_budget(
    budget_id: UUID,
    patch: BudgetUpdate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    result = await components.budgets.update(user_id, budget_id, patch)
    return envelope(result)


@router.delete("/{budget_id}")
async def delete_budget(
    budget_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    await components.budgets.delete(user_id, budget_id)
    return envelope(message="Budget deleted successfully")
