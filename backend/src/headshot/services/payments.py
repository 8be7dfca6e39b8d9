"""Payment webhook verification and the credit products it can grant.

The payment provider signs each webhook body with HMAC-SHA256 using the
shared webhook secret and sends the hex digest in the ``creem-signature``
header. verify_payment_signature MUST be called before the payload is parsed.
"""

import hashlib
import hmac
from dataclasses import dataclass


@dataclass(frozen=True)
class ProductTier:
    id: str
    name: str
    credits: int
    product_ids: tuple[str, ...]
    one_time_only: bool = False


PRODUCT_TIERS: tuple[ProductTier, ...] = (
    ProductTier(
        id="trialer",
        name="Trialer",
        credits=2,
        product_ids=("prod_2g4rjo9C62coHG16jrie6",),
        one_time_only=True,
    ),
    ProductTier(
        id="starter",
        name="Starter",
        credits=5,
        product_ids=("prod_4MJUT4Hc1kW2Nq6oIKz3os",),
    ),
    ProductTier(
        id="pro",
        name="Pro",
        credits=20,
        product_ids=("prod_6yroK3rnaFHSZoDcCMzJWp",),
    ),
    ProductTier(
        id="team",
        name="Team",
        credits=60,
        product_ids=("prod_team_one_time", "prod_team_monthly", "prod_team_yearly"),
    ),
)


def get_tier_by_id(tier_id: str) -> ProductTier | None:
    return next((tier for tier in PRODUCT_TIERS if tier.id == tier_id), None)


def get_tier_by_product_id(product_id: str) -> ProductTier | None:
    """Reverse lookup from the payment provider's product id."""
    return next((tier for tier in PRODUCT_TIERS if product_id in tier.product_ids), None)


def verify_payment_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Validate a payment webhook signature using HMAC-SHA256.

    Args:
        raw_body: Exact request body bytes, before any JSON parsing
        signature: Hex digest from the ``creem-signature`` header
        secret: Webhook signing secret from the payment dashboard

    Returns:
        True if the signature matches, False otherwise (including an empty secret)
    """
    if not secret:
        return False

    expected = hmac.new(
        key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256
    ).hexdigest()

    # Constant-time comparison; hex case is not significant
    return hmac.compare_digest(expected.encode(), signature.strip().lower().encode("utf-8"))
