"""Request-scoped dependencies: caller identity, webhook authenticity and the
services the lifespan placed on app.state.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from headshot.core.config import Settings
from headshot.services.generation import GenerationService
from headshot.services.ledger import LedgerService
from headshot.services.payments import verify_payment_signature
from headshot.services.styles import StyleCatalog
from headshot.uow import UnitOfWorkFactory


def get_settings() -> Settings:
    """Settings for the current request; tests override this dependency."""
    return Settings()  # type: ignore[call-arg]


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the calling user from the ``X-User-Id`` header.

    The header is set by the session layer in front of this service after it
    has authenticated the request.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id.strip()


async def validate_payment_signature(
    request: Request,
    creem_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate the payment webhook signature before processing the request.

    Reads the raw body and checks the HMAC-SHA256 signature from the
    ``creem-signature`` header.

    Returns:
        The unparsed body, so the route parses exactly the bytes that were signed

    Raises:
        HTTPException: 401 when the header is absent or does not match
    """
    if not creem_signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing creem-signature header"
        )

    # Must be the exact bytes received, before any JSON parsing
    raw_body = await request.body()

    is_valid = verify_payment_signature(
        raw_body=raw_body,
        signature=creem_signature,
        secret=settings.payment_webhook_secret,
    )
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    return raw_body


def get_uow_factory(request: Request) -> UnitOfWorkFactory:
    """Get UnitOfWork factory from app state."""
    return request.app.state.uow_factory


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_ledger(request: Request) -> LedgerService:
    return request.app.state.ledger


def get_style_catalog(request: Request) -> StyleCatalog:
    return request.app.state.styles
