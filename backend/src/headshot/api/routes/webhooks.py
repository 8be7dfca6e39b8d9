"""Payment webhook endpoint.

Grants purchased credits when the payment provider reports a completed
checkout. The provider retries on any non-2xx response, so every grant is
keyed by a reference id and replays answer 200 with ``duplicate: true``.
"""

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from headshot.api.dependencies import get_ledger, get_uow_factory, validate_payment_signature
from headshot.models.credit_transaction import CreditTransactionType
from headshot.services.exceptions import DuplicateReferenceError
from headshot.services.ledger import LedgerService, purchase_reference
from headshot.services.payments import get_tier_by_product_id
from headshot.uow import UnitOfWorkFactory

logger = structlog.get_logger()
router = APIRouter()

CHECKOUT_COMPLETED = "checkout.completed"


def parse_checkout(payload: dict[str, Any]) -> dict[str, str]:
    """Extract checkout id, product id and user id from a checkout event.

    Raises:
        ValueError: If a required field is missing
    """
    try:
        checkout = payload["object"]
        checkout_id = checkout["id"]

        product = checkout["product"]
        product_id = product["id"] if isinstance(product, dict) else product

        metadata = checkout.get("metadata") or {}
        user_id = metadata.get("user_id") or metadata.get("userId")
        if not user_id:
            raise ValueError("Missing metadata.user_id")
    except (KeyError, TypeError) as e:
        raise ValueError(f"Missing required field in payload: {e}") from e

    return {"checkout_id": str(checkout_id), "product_id": str(product_id), "user_id": str(user_id)}


@router.post("/payments")
async def receive_payment_webhook(
    raw_body: bytes = Depends(validate_payment_signature),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    ledger: LedgerService = Depends(get_ledger),
):
    """Receive a payment event and grant credits for completed checkouts.

    HTTP Status Codes:
        200: Credits granted, duplicate delivery, or event type ignored
        400: Malformed payload or unknown product
        401: Missing or invalid signature
        500: Storage failure (triggers provider retry)
    """
    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error("webhook.invalid_json", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid JSON payload: {str(e)}",
        )

    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Payload must be a JSON object"
        )

    event_type = payload.get("eventType")
    logger.info("webhook.received", event_id=payload.get("id"), event_type=event_type)

    if event_type != CHECKOUT_COMPLETED:
        return {"status": "ignored", "event_type": event_type}

    try:
        checkout = parse_checkout(payload)
    except ValueError as e:
        logger.error("webhook.malformed", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    tier = get_tier_by_product_id(checkout["product_id"])
    if tier is None:
        logger.error("webhook.unknown_product", product_id=checkout["product_id"])
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown product: {checkout['product_id']}",
        )

    user_id = checkout["user_id"]
    reference_id = (
        purchase_reference(tier.id, user_id) if tier.one_time_only else checkout["checkout_id"]
    )
    duplicate_response = {
        "status": "success",
        "duplicate": True,
        "checkout_id": checkout["checkout_id"],
    }

    try:
        async with await uow_factory() as uow:
            if await ledger.has_reference_been_used(uow, user_id, reference_id):
                logger.warning("webhook.duplicate", user_id=user_id, reference_id=reference_id)
                return duplicate_response

            await ledger.grant(
                uow,
                user_id,
                tier.credits,
                f"Credits from {tier.name}",
                reference_id=reference_id,
                transaction_type=CreditTransactionType.PAYMENT_REFILL,
            )
    except DuplicateReferenceError:
        logger.warning("webhook.duplicate_race", user_id=user_id, reference_id=reference_id)
        return duplicate_response
    except Exception as e:
        logger.error(
            "webhook.storage_error",
            error=str(e),
            error_type=type(e).__name__,
            checkout_id=checkout["checkout_id"],
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to grant credits",
        )

    logger.info(
        "webhook.credits_granted",
        user_id=user_id,
        tier=tier.id,
        credits=tier.credits,
        checkout_id=checkout["checkout_id"],
    )
    return {
        "status": "success",
        "duplicate": False,
        "checkout_id": checkout["checkout_id"],
        "credits_granted": tier.credits,
    }
