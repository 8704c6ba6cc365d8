"""Recurring rule routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from ledger.api.dependencies import get_components, get_user_id
from ledger.api.responses import envelope
from ledger.models.ledger import RecurringRuleCreate, RecurringRuleUpdate
from ledger.orchestrator import LedgerComponents


router = APIRouter(prefix="/recurring", tags=["recurring"])


@router.post("")
async def create_rule(
    payload: RecurringRuleCreate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    rule = await components.recurring.create(user_id, payload)
    return envelope({"recurringRule": rule}, status_code=201)


@router.get("")
async def list_rules(
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    rules = await components.recurring.list(user_id)
    return envelope({"rules": rules})


@router.get("/{rule_id}")
async def get_rule(
    rule_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    rule = await components.recurring.get(user_id, rule_id)
    return envelope({"rule": rule})


@router.patch("/{rule_id}")
async def update_rule(
    rule_id: UUID,
    patch: RecurringRuleUpdate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    rule = await components.recurring.update(user_id, rule_id, patch)
    return envelope({"rule": rule})


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    await components.recurring.delete(user_id, rule_id)
    return envelope(message="Recurring rule deleted successfully")
