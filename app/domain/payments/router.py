"""Payment router - FastAPI endpoints for Teori checkout and webhooks"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import ADMIN_API_TOKEN, TEORI_HTTP_TIMEOUT
from ...database import SessionLocal, get_db
from ...webhook_security import TeoriWebhookVerifier, constant_time_compare
from .client import TeoriApiClient
from .errors import ConfigurationError, ProviderApiError, ServiceDisabledError
from .references import booking_id_from_reference
from .repository import SiteSettingsRepository
from .schemas import CheckoutRequest, CheckoutResult, SettingsDiagnostics, WebhookAck
from .service import TeoriCheckoutService
from .signing import RequestSigner
from .settings import TeoriSettingsResolver
from .webhooks import TeoriWebhookProcessor, WebhookRejected

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments/teori", tags=["Payments"])
admin_router = APIRouter(prefix="/api/admin/teori", tags=["Admin"])

UNAVAILABLE_MESSAGE = "Payment method currently unavailable"
CHECKOUT_FAILED_MESSAGE = "Could not start payment, please try again"


def load_site_settings() -> dict[str, str]:
    """Read all site settings with a short-lived session"""
    db = SessionLocal()
    try:
        return SiteSettingsRepository.get_settings_map(db)
    finally:
        db.close()


# Process-wide resolver so the settings cache survives across requests
settings_resolver = TeoriSettingsResolver(load_site_settings)


def get_settings_resolver() -> TeoriSettingsResolver:
    """Dependency injection for the shared settings resolver"""
    return settings_resolver


def get_api_client(
    resolver: TeoriSettingsResolver = Depends(get_settings_resolver),
) -> TeoriApiClient:
    return TeoriApiClient(RequestSigner(resolver), timeout=TEORI_HTTP_TIMEOUT)


def get_checkout_service(
    db: Session = Depends(get_db),
    resolver: TeoriSettingsResolver = Depends(get_settings_resolver),
    client: TeoriApiClient = Depends(get_api_client),
) -> TeoriCheckoutService:
    """Dependency injection for TeoriCheckoutService"""
    return TeoriCheckoutService(db, resolver, client)


def get_webhook_processor(
    db: Session = Depends(get_db),
    resolver: TeoriSettingsResolver = Depends(get_settings_resolver),
) -> TeoriWebhookProcessor:
    return TeoriWebhookProcessor(db, TeoriWebhookVerifier(resolver))


@router.post("/create-checkout", response_model=CheckoutResult)
async def create_checkout(
    data: CheckoutRequest,
    service: TeoriCheckoutService = Depends(get_checkout_service),
):
    """Start (or reuse) a Teori checkout and return the payment link"""
    logger.info(f"📥 Teori checkout requested: reference={data.reference}, amount={data.amount}")
    if not data.external_booking_id:
        data = data.model_copy(
            update={"external_booking_id": booking_id_from_reference(data.reference)}
        )
    try:
        return await service.get_or_create_checkout(data)
    except (ConfigurationError, ServiceDisabledError) as e:
        logger.warning(f"⚠️ Teori checkout unavailable: {e}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE) from e
    except ProviderApiError as e:
        logger.error(f"❌ Teori checkout failed for {data.reference}: {e} (status={e.status})")
        raise HTTPException(status_code=502, detail=CHECKOUT_FAILED_MESSAGE) from e


@router.post("/webhook", response_model=WebhookAck)
async def handle_teori_webhook(
    request: Request,
    t: Optional[str] = Query(None),
    token: Optional[str] = Query(None),
    processor: TeoriWebhookProcessor = Depends(get_webhook_processor),
):
    """
    Handle Teori checkout status pushes

    The body is verified against the Teori-Signature header before parsing; orders
    created with a callback token also require it as the `t` query parameter.
    """
    raw_body = await request.body()
    signature = request.headers.get("teori-signature", "")
    try:
        outcome = processor.process(signature, raw_body, token=t or token or "")
    except WebhookRejected as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail) from None
    except SQLAlchemyError:
        raise HTTPException(status_code=500, detail="Webhook processing failed") from None

    return WebhookAck(received=True, status=outcome.status, updated=outcome.updated)


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    if not ADMIN_API_TOKEN or not constant_time_compare(x_admin_token or "", ADMIN_API_TOKEN):
        raise HTTPException(status_code=403, detail="Forbidden")


@admin_router.get(
    "/settings",
    response_model=SettingsDiagnostics,
    dependencies=[Depends(require_admin_token)],
)
async def get_teori_settings(
    force_reload: bool = Query(False),
    resolver: TeoriSettingsResolver = Depends(get_settings_resolver),
):
    """Resolved Teori settings with secrets masked"""
    try:
        return resolver.describe(force_reload=force_reload)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
