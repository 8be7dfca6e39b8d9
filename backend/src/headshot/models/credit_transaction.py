"""CreditTransaction entity - append-only ledger row."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from headshot.core.timezone import utcnow


class CreditTransactionType(str, Enum):
    """Business event behind a ledger row."""

    PAYMENT_REFILL = "payment_refill"
    SIGNUP_BONUS = "signup_bonus"
    GENERATION_SPENT = "generation_spent"
    GENERATION_REFUND = "generation_refund"


class CreditTransaction(SQLModel, table=True):
    """CreditTransaction records one signed credit movement.

    Positive amounts earn, negative amounts spend. A reference_id can be used
    at most once per user; NULL references are unconstrained.
    """

    __tablename__ = "credit_transactions"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("user_id", "reference_id", name="uq_credit_transactions_user_reference"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    amount: int
    type: CreditTransactionType = Field(index=True)
    reference_id: Optional[str] = Field(default=None, max_length=255)
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=utcnow, index=True)
