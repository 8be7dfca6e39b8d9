"""Credit ledger service.

Grants, deductions and reads over the credit_accounts / credit_transactions
tables. Every method takes the caller's UnitOfWork so a ledger movement can
commit atomically with other writes (e.g. a deduction together with the job
row it pays for).

Concurrency model:
- deduct() is one conditional UPDATE (balance >= amount); the balance can
  never go negative no matter how many requests race for the same user.
- One-time grants check has_reference_been_used() first as a fast path; the
  (user_id, reference_id) unique constraint is the authoritative guard and
  surfaces as DuplicateReferenceError.
"""

from dataclasses import dataclass

import structlog
from sqlalchemy.exc import IntegrityError

from headshot.models.credit_transaction import CreditTransaction, CreditTransactionType
from headshot.services.exceptions import DuplicateReferenceError, InsufficientCreditsError
from headshot.uow import UnitOfWork

logger = structlog.get_logger()

MAX_HISTORY_LIMIT = 100


@dataclass(frozen=True)
class CreditBalance:
    """Snapshot of a user's credit account."""

    balance: int
    total_earned: int
    total_spent: int


def signup_reference(user_id: str) -> str:
    return f"signup_{user_id}"


def purchase_reference(product_id: str, user_id: str) -> str:
    """Reference for products that may be bought once per user."""
    return f"{product_id}_{user_id}"


def refund_reference(job_id: str) -> str:
    return f"refund_{job_id}"


class LedgerService:
    """Service for credit grants, deductions and balance queries."""

    def __init__(
        self,
        signup_bonus_credits: int = 2,
        signup_bonus_description: str = "Welcome bonus for signing up",
    ):
        """Initialize ledger service.

        Args:
            signup_bonus_credits: Credits granted once per user on signup
            signup_bonus_description: Ledger description for the signup grant
        """
        self.signup_bonus_credits = signup_bonus_credits
        self.signup_bonus_description = signup_bonus_description

    async def grant(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        description: str,
        reference_id: str | None = None,
        transaction_type: CreditTransactionType = CreditTransactionType.PAYMENT_REFILL,
    ) -> CreditTransaction:
        """Add credits to a user's account and append a ledger row.

        Does not dedupe silently: callers guarding a one-time grant should call
        has_reference_been_used() first. A duplicate that slips through that
        check is rejected by the storage constraint.

        Args:
            uow: Active unit of work
            user_id: Receiving user
            amount: Positive number of credits
            description: Human-readable ledger description
            reference_id: Optional idempotency key, unique per user
            transaction_type: Business event type (default: payment_refill)

        Returns:
            The appended CreditTransaction

        Raises:
            ValueError: If amount is not a positive integer
            DuplicateReferenceError: If reference_id was already used for this user
        """
        _require_positive(amount)

        transaction = CreditTransaction(
            user_id=user_id,
            amount=amount,
            type=transaction_type,
            reference_id=reference_id,
            description=description,
        )
        try:
            await uow.credit_transactions.add(transaction)
        except IntegrityError as e:
            logger.warning(
                "ledger.duplicate_reference",
                user_id=user_id,
                reference_id=reference_id,
            )
            raise DuplicateReferenceError(user_id, reference_id or "") from e

        await uow.credit_accounts.credit(user_id, amount)

        logger.info(
            "ledger.granted",
            user_id=user_id,
            amount=amount,
            type=CreditTransactionType(transaction_type).value,
            reference_id=reference_id,
        )
        return transaction

    async def has_reference_been_used(
        self, uow: UnitOfWork, user_id: str, reference_id: str
    ) -> bool:
        """Return True if a ledger row with this reference exists for the user."""
        return await uow.credit_transactions.exists_for_reference(user_id, reference_id)

    async def deduct(
        self,
        uow: UnitOfWork,
        user_id: str,
        amount: int,
        description: str,
        reference_id: str | None = None,
    ) -> CreditTransaction:
        """Spend credits if the balance covers them.

        Args:
            uow: Active unit of work
            user_id: Paying user
            amount: Positive number of credits
            description: Human-readable ledger description
            reference_id: Optional idempotency key, unique per user

        Returns:
            The appended CreditTransaction (amount is negative)

        Raises:
            ValueError: If amount is not a positive integer
            InsufficientCreditsError: If balance < amount; nothing is written
        """
        _require_positive(amount)

        applied = await uow.credit_accounts.debit_if_sufficient(user_id, amount)
        if not applied:
            account = await uow.credit_accounts.get_by_user_id(user_id)
            available = account.balance if account else 0
            logger.info(
                "ledger.insufficient_credits",
                user_id=user_id,
                required=amount,
                available=available,
            )
            raise InsufficientCreditsError(user_id, amount, available)

        transaction = CreditTransaction(
            user_id=user_id,
            amount=-amount,
            type=CreditTransactionType.GENERATION_SPENT,
            reference_id=reference_id,
            description=description,
        )
        try:
            await uow.credit_transactions.add(transaction)
        except IntegrityError as e:
            raise DuplicateReferenceError(user_id, reference_id or "") from e

        logger.info("ledger.deducted", user_id=user_id, amount=amount, reference_id=reference_id)
        return transaction

    async def get_balance(self, uow: UnitOfWork, user_id: str) -> CreditBalance:
        """Return the user's balance; all zero for an account never created."""
        account = await uow.credit_accounts.get_by_user_id(user_id)
        if account is None:
            return CreditBalance(balance=0, total_earned=0, total_spent=0)
        return CreditBalance(
            balance=account.balance,
            total_earned=account.total_earned,
            total_spent=account.total_spent,
        )

    async def get_history(
        self, uow: UnitOfWork, user_id: str, limit: int = 20
    ) -> list[CreditTransaction]:
        """Return the user's ledger rows, newest first.

        Args:
            uow: Active unit of work
            user_id: Owning user
            limit: Maximum rows, clamped to 1..100
        """
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        return await uow.credit_transactions.list_by_user(user_id, limit=limit)

    async def grant_signup_bonus(self, uow: UnitOfWork, user_id: str) -> bool:
        """Grant the one-time signup bonus.

        Returns:
            True if credits were granted, False if the bonus was already granted

        Raises:
            DuplicateReferenceError: If a concurrent request granted it between
                the check and the insert (the transaction must be rolled back)
        """
        reference_id = signup_reference(user_id)
        if await self.has_reference_been_used(uow, user_id, reference_id):
            logger.debug("ledger.signup_bonus_already_granted", user_id=user_id)
            return False

        await self.grant(
            uow,
            user_id,
            self.signup_bonus_credits,
            self.signup_bonus_description,
            reference_id=reference_id,
            transaction_type=CreditTransactionType.SIGNUP_BONUS,
        )
        return True

    async def has_purchased(self, uow: UnitOfWork, user_id: str, product_id: str) -> bool:
        """Return True if a once-per-user product was already bought."""
        return await self.has_reference_been_used(
            uow, user_id, purchase_reference(product_id, user_id)
        )


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Credit amount must be a positive integer, got {amount!r}")
