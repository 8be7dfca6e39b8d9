"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from headshot.models.credit_account import CreditAccount
from headshot.models.credit_transaction import CreditTransaction, CreditTransactionType
from headshot.models.generation_job import (
    GenerationJob,
    GenerationStatus,
    InvalidStateTransition,
)

__all__ = [
    "CreditAccount",
    "CreditTransaction",
    "CreditTransactionType",
    "GenerationJob",
    "GenerationStatus",
    "InvalidStateTransition",
]
