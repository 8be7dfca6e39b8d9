"""Credit balance and billing API endpoints.

- GET /api/credits - Balance plus recent ledger history
- POST /api/credits/signup-bonus - Grant the one-time welcome credits
- GET /api/billing/trialer-status - Whether the one-time trialer pack was bought
"""

from datetime import datetime
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field

from headshot.api.dependencies import get_current_user_id, get_ledger, get_uow_factory
from headshot.services.exceptions import DuplicateReferenceError
from headshot.services.ledger import LedgerService
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()
router = APIRouter(tags=["credits"])

TRIALER_PRODUCT = "trialer"


# Response Models


class CreditsDTO(BaseModel):
    balance: int
    total_earned: int
    total_spent: int


class CreditTransactionDTO(BaseModel):
    id: UUID
    amount: int = Field(..., description="Positive for grants, negative for spends")
    type: str
    description: str
    created_at: datetime


class CreditsResponse(BaseModel):
    credits: CreditsDTO
    transactions: list[CreditTransactionDTO]


class SignupBonusResponse(BaseModel):
    granted: bool = Field(..., description="False if the bonus had already been granted")
    balance: int


class TrialerStatusResponse(BaseModel):
    has_purchased: bool


# API Endpoints


@router.get("/api/credits", response_model=CreditsResponse)
async def get_credits(
    limit: int = Query(default=20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    ledger: LedgerService = Depends(get_ledger),
) -> CreditsResponse:
    """Return the caller's balance and most recent transactions (newest first)."""
    async with await uow_factory() as uow:
        balance = await ledger.get_balance(uow, user_id)
        history = await ledger.get_history(uow, user_id, limit=limit)

    return CreditsResponse(
        credits=CreditsDTO(
            balance=balance.balance,
            total_earned=balance.total_earned,
            total_spent=balance.total_spent,
        ),
        transactions=[
            CreditTransactionDTO(
                id=tx.id,
                amount=tx.amount,
                type=tx.type.value,
                description=tx.description,
                created_at=tx.created_at,
            )
            for tx in history
        ],
    )


@router.post("/api/credits/signup-bonus", response_model=SignupBonusResponse)
async def grant_signup_bonus(
    user_id: str = Depends(get_current_user_id),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    ledger: LedgerService = Depends(get_ledger),
) -> SignupBonusResponse:
    """Grant the welcome credits once per user; repeat calls are harmless."""
    try:
        async with await uow_factory() as uow:
            granted = await ledger.grant_signup_bonus(uow, user_id)
    except DuplicateReferenceError:
        # Lost the race to a concurrent request that granted it
        granted = False

    async with await uow_factory() as uow:
        balance = await ledger.get_balance(uow, user_id)

    if granted:
        logger.info("signup_bonus.granted", user_id=user_id, balance=balance.balance)
    return SignupBonusResponse(granted=granted, balance=balance.balance)


@router.get("/api/billing/trialer-status", response_model=TrialerStatusResponse)
async def get_trialer_status(
    x_user_id: Annotated[str | None, Header()] = None,
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    ledger: LedgerService = Depends(get_ledger),
) -> TrialerStatusResponse:
    """Anonymous callers have not purchased anything."""
    if not x_user_id or not x_user_id.strip():
        return TrialerStatusResponse(has_purchased=False)

    async with await uow_factory() as uow:
        has_purchased = await ledger.has_purchased(uow, x_user_id.strip(), TRIALER_PRODUCT)
    return TrialerStatusResponse(has_purchased=has_purchased)
