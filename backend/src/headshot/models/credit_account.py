"""CreditAccount entity - per-user credit balance aggregate."""

from datetime import datetime

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from headshot.core.timezone import utcnow


class CreditAccount(SQLModel, table=True):
    """CreditAccount holds the derived balance for one user.

    balance == total_earned - total_spent at all times.
    """

    __tablename__ = "credit_accounts"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
        CheckConstraint("total_earned >= 0", name="ck_credit_accounts_total_earned_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_credit_accounts_total_spent_non_negative"),
    )

    user_id: str = Field(primary_key=True, max_length=255)
    balance: int = Field(default=0, ge=0)
    total_earned: int = Field(default=0, ge=0)
    total_spent: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
