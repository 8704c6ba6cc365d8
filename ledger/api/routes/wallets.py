"""Wallet routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from ledger.api.dependencies import get_components, get_user_id
from ledger.api.responses import envelope
from ledger.models.ledger import WalletCreate, WalletUpdate
from ledger.orchestrator import LedgerComponents


router = APIRouter(prefix="/wallets", tags=["wallets"])


@router.post("")
async def create_wallet(
    payload: WalletCreate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    wallet = await components.wallets.create_wallet(user_id, payload)
    return envelope({"wallet": wallet}, status_code=201)


@router.get("")
async def list_wallets(
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    wallets = await components.wallets.list_wallets(user_id)
    return envelope({"wallets": wallets})


@router.get("/{wallet_id}")
async def get_wallet(
    wallet_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    wallet = await components.wallets.get_wallet(user_id, wallet_id)
    return envelope({"wallet": wallet})


@router.put("/{wallet_id}")
async def update_wallet(
    wallet_id: UUID,
    payload: WalletUpdate,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    wallet = await components.wallets.update_wallet(user_id, wallet_id, payload)
    return envelope({"wallet": wallet})


@router.delete("/{wallet_id}")
async def delete_wallet(
    wallet_id: UUID,
    user_id: str = Depends(get_user_id),
    components: LedgerComponents = Depends(get_components),
):
    await components.wallets.delete_wallet(user_id, wallet_id)
    return envelope(message="Wallet deleted successfully")
