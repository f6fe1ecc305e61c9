"""
Teori Checkout Service
Idempotent checkout creation: reuses mirrored orders when possible, creates new
Teori orders otherwise, and recovers from ORDER_ALREADY_EXISTS conflicts.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import TeoriOrder
from .client import TeoriApiClient
from .errors import ProviderApiError, ProviderResponseError, ServiceDisabledError
from .references import generate_callback_token, sanitize_merchant_reference
from .repository import TeoriOrderRepository
from .schemas import CheckoutRequest, CheckoutResult
from .settings import ProviderSettings, TeoriSettingsResolver

logger = logging.getLogger(__name__)

VAT_RATE = 25
VAT_DIVISOR = Decimal("1.25")
CURRENCY = "SEK"
COUNTRY = "SE"
LANGUAGE = "sv-se"
PAYMENT_METHODS = ["Card", "Swish", "Invoice"]

TERMS_PATH = "/kopvillkor"
WEBHOOK_PATH = "/api/payments/teori/webhook"
ORDER_MANAGEMENT_PUSH_PATH = "/api/payments/teori/order-management-status"
ORDER_VALIDATION_PATH = "/api/payments/teori/order-validate"


def _json_number(value: Decimal) -> Union[int, float]:
    return int(value) if value == value.to_integral_value() else float(value)


def price_ex_vat(amount: Decimal) -> Decimal:
    """VAT-exclusive price for a 25% VAT inclusive amount, to two decimals"""
    return (Decimal(amount) / VAT_DIVISOR).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def build_order_payload(
    settings: ProviderSettings,
    request: CheckoutRequest,
    merchant_reference: str,
    callback_token: Optional[str] = None,
) -> dict:
    """Teori CreateOrder body. Amounts are SEK major units, never öre."""
    push_url = f"{settings.public_url}{WEBHOOK_PATH}"
    if callback_token:
        push_url = f"{push_url}?t={callback_token}"

    payload = {
        "MerchantApiKey": settings.api_key,
        "MerchantReference": merchant_reference,
        "Currency": CURRENCY,
        "Country": COUNTRY,
        "Language": LANGUAGE,
        "MerchantTermsUrl": f"{settings.public_url}{TERMS_PATH}",
        "MerchantConfirmationUrl": request.return_url,
        "MerchantCheckoutStatusPushUrl": push_url,
        "MerchantOrderManagementStatusPushUrl": f"{settings.public_url}{ORDER_MANAGEMENT_PUSH_PATH}",
        "MerchantOrderValidationUrl": f"{settings.public_url}{ORDER_VALIDATION_PATH}",
        "PaymentMethods": list(PAYMENT_METHODS),
        "OrderItems": [
            {
                "MerchantReference": merchant_reference,
                "Description": request.description,
                "Type": "Product",
                "Quantity": 1,
                "PricePerItemIncVat": _json_number(request.amount),
                "PricePerItemExVat": float(price_ex_vat(request.amount)),
                "VatRate": VAT_RATE,
            }
        ],
    }

    if request.has_customer:
        customer = {"Email": request.customer_email or ""}
        if request.customer_first_name or request.customer_last_name:
            customer["PersonalNumber"] = None
            customer["FirstName"] = request.customer_first_name or ""
            customer["LastName"] = request.customer_last_name or ""
        if request.customer_phone:
            customer["MobileNumber"] = request.customer_phone
        payload["Customer"] = customer

    return payload


class TeoriCheckoutService:
    """Service layer for Teori checkout orders"""

    def __init__(
        self,
        db: Session,
        resolver: TeoriSettingsResolver,
        client: TeoriApiClient,
        repo: Optional[TeoriOrderRepository] = None,
        token_factory: Callable[[], tuple[str, datetime]] = generate_callback_token,
    ):
        self.db = db
        self.resolver = resolver
        self.client = client
        self.repo = repo or TeoriOrderRepository()
        self.token_factory = token_factory

    def _require_enabled(self) -> ProviderSettings:
        settings = self.resolver.resolve()
        if not settings.enabled:
            logger.warning("⚠️ Teori checkout requested but service is disabled")
            raise ServiceDisabledError("Teori payment service is not enabled")
        return settings

    async def get_order(self, order_id: str) -> dict:
        """Live order from Teori"""
        settings = self.resolver.resolve()
        return await self.client.get_order(settings, order_id)

    def find_existing_order(self, external_booking_id: Optional[str]) -> Optional[TeoriOrder]:
        if not external_booking_id:
            return None
        try:
            return self.repo.get_by_external_booking_id(self.db, external_booking_id)
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ Failed to find existing Teori order for booking {external_booking_id}: {e}")
            return None

    def _find_by_merchant_reference(self, merchant_reference: str) -> Optional[TeoriOrder]:
        try:
            return self.repo.get_by_merchant_reference(self.db, merchant_reference)
        except SQLAlchemyError as e:
            logger.warning(
                f"⚠️ Lookup by merchant reference {merchant_reference} failed; "
                f"proceeding to create new Teori order: {e}"
            )
            return None

    def create_order_record(
        self,
        settings: ProviderSettings,
        request: CheckoutRequest,
        result: CheckoutResult,
        callback_token: Optional[str] = None,
        callback_token_expires_at: Optional[datetime] = None,
    ) -> Optional[TeoriOrder]:
        """Persist the mirror row. Failures are logged, never raised: the remote order exists."""
        try:
            order = self.repo.create_order(
                self.db,
                provider_order_id=result.checkout_id,
                merchant_reference=result.merchant_reference,
                amount=request.amount,
                environment=settings.environment,
                external_booking_id=request.external_booking_id,
                payment_link=result.checkout_url,
                callback_token=callback_token,
                callback_token_expires_at=callback_token_expires_at,
            )
        except SQLAlchemyError as e:
            logger.warning(
                f"⚠️ Order tracking failed but checkout succeeded for {result.checkout_id}: {e}"
            )
            return None

        logger.info(
            f"✅ Teori order record {order.id} created: order={result.checkout_id}, "
            f"reference={result.merchant_reference}"
        )
        return order

    def update_order_status(
        self, provider_order_id: str, status: str, payment_link: Optional[str] = None
    ) -> Optional[TeoriOrder]:
        """Record a provider-reported status on the mirror row; None if there is no row"""
        try:
            order = self.repo.get_by_provider_order_id(self.db, provider_order_id)
            if order is None:
                logger.warning(f"⚠️ No Teori order record for {provider_order_id}, status {status} not stored")
                return None
            return self._apply_status(order, status, payment_link)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to update Teori order status for {provider_order_id}: {e}")
            return None

    def _apply_status(
        self, order: TeoriOrder, status: Optional[str], payment_link: Optional[str]
    ) -> TeoriOrder:
        status_changed = bool(status) and status != order.status
        link_changed = bool(payment_link) and payment_link != order.payment_link
        order = self.repo.update_status(
            self.db,
            order,
            status=status if status_changed else None,
            payment_link=payment_link if link_changed else None,
        )
        if status_changed or link_changed:
            logger.info(
                f"🔄 Teori order {order.provider_order_id} updated: status={order.status}, "
                f"link_changed={link_changed}"
            )
        return order

    async def _reuse_existing(
        self, settings: ProviderSettings, order: TeoriOrder
    ) -> CheckoutResult:
        """Refetch the live order and reconcile the mirror. Provider errors propagate."""
        live = await self.client.get_order(settings, order.provider_order_id)
        if not isinstance(live, dict):
            raise ProviderResponseError(f"Unexpected GetOrder response for {order.provider_order_id}")
        live_link = live.get("PaymentLink")
        checkout_url = live_link or order.payment_link
        provider_order_id = order.provider_order_id
        merchant_reference = order.merchant_reference

        try:
            self._apply_status(order, live.get("Status"), live_link)
        except SQLAlchemyError as e:
            logger.warning(f"⚠️ Could not update Teori order record {provider_order_id}: {e}")

        return CheckoutResult(
            checkout_id=provider_order_id,
            checkout_url=checkout_url,
            merchant_reference=merchant_reference,
            is_existing=True,
        )

    async def _try_reuse(
        self, settings: ProviderSettings, order: TeoriOrder, source: str
    ) -> Optional[CheckoutResult]:
        logger.info(
            f"📦 Found existing Teori order {order.provider_order_id} by {source}, fetching current status"
        )
        try:
            return await self._reuse_existing(settings, order)
        except ProviderApiError as e:
            logger.warning(
                f"⚠️ Failed to fetch existing Teori order {order.provider_order_id} "
                f"(found by {source}); will create a new one: {e}"
            )
            return None

    async def _recover_existing(
        self, settings: ProviderSettings, merchant_reference: str
    ) -> Optional[CheckoutResult]:
        logger.warning(
            f"⚠️ Teori reported ORDER_ALREADY_EXISTS; attempting recovery via {merchant_reference}"
        )
        try:
            order = self.repo.get_by_merchant_reference(self.db, merchant_reference)
            if order is None:
                logger.warning(f"⚠️ No local Teori order record for {merchant_reference}, cannot recover")
                return None
            return await self._reuse_existing(settings, order)
        except (ProviderApiError, SQLAlchemyError) as e:
            logger.warning(f"⚠️ Recovery after ORDER_ALREADY_EXISTS failed for {merchant_reference}: {e}")
            return None

    async def create_checkout(
        self,
        request: CheckoutRequest,
        callback_token: Optional[str] = None,
        settings: Optional[ProviderSettings] = None,
    ) -> CheckoutResult:
        """Open a new Teori order without any idempotency checks"""
        settings = settings or self._require_enabled()
        merchant_reference = sanitize_merchant_reference(request.reference)
        payload = build_order_payload(settings, request, merchant_reference, callback_token)

        logger.info(
            f"💳 Creating Teori checkout: reference={merchant_reference}, amount={request.amount} {CURRENCY}, "
            f"has_customer={request.has_customer}"
        )
        data = await self.client.create_order(settings, payload)

        order_id = data.get("OrderId") if isinstance(data, dict) else None
        if not order_id:
            logger.error(f"❌ No OrderId in Teori response: {data}")
            raise ProviderResponseError("Invalid response from Teori: missing OrderId")

        logger.info(
            f"✅ Teori checkout created: order={order_id}, reference={merchant_reference}, "
            f"has_payment_link={bool(data.get('PaymentLink'))}"
        )
        return CheckoutResult(
            checkout_id=str(order_id),
            checkout_url=data.get("PaymentLink"),
            merchant_reference=merchant_reference,
            is_existing=False,
        )

    async def get_or_create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        """
        Return a checkout for this purchase, creating a Teori order only when no usable
        one exists.

        Order of checks:
        1. Settings resolved and Teori enabled
        2. Mirror by external booking id -> refetch live order and reuse
        3. Mirror by sanitized merchant reference -> refetch live order and reuse
        4. Create a new order; on ORDER_ALREADY_EXISTS recover via merchant reference
        5. Persist the mirror row (best-effort)

        There is no lock between lookup and create; concurrent callers are
        deduplicated by Teori's conflict response plus recovery.
        """
        settings = self._require_enabled()

        existing = self.find_existing_order(request.external_booking_id)
        if existing is not None:
            result = await self._try_reuse(settings, existing, "booking id")
            if result is not None:
                return result

        merchant_reference = sanitize_merchant_reference(request.reference)
        by_reference = self._find_by_merchant_reference(merchant_reference)
        if by_reference is not None:
            result = await self._try_reuse(settings, by_reference, "merchant reference")
            if result is not None:
                return result

        callback_token, callback_token_expires_at = self.token_factory()

        try:
            result = await self.create_checkout(request, callback_token=callback_token, settings=settings)
        except ProviderApiError as e:
            if e.is_order_already_exists:
                recovered = await self._recover_existing(settings, merchant_reference)
                if recovered is not None:
                    return recovered
            raise

        self.create_order_record(
            settings,
            request,
            result,
            callback_token=callback_token,
            callback_token_expires_at=callback_token_expires_at,
        )
        return result
