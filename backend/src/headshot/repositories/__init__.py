"""Repository layer for headshot backend.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from headshot.repositories.credit_account import CreditAccountRepository
from headshot.repositories.credit_transaction import CreditTransactionRepository
from headshot.repositories.generation_job import GenerationJobRepository

__all__ = [
    "CreditAccountRepository",
    "CreditTransactionRepository",
    "GenerationJobRepository",
]
