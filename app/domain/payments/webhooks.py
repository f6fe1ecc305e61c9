"""Teori webhook processing - signature check, callback token correlation, status update"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import TeoriOrder
from ...webhook_security import TeoriWebhookVerifier, constant_time_compare
from .repository import TeoriOrderRepository
from .settings import mask_secret

logger = logging.getLogger(__name__)


class WebhookRejected(Exception):
    """Webhook refused; carries the HTTP status to answer with"""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


@dataclass
class WebhookOutcome:
    order_id: str
    merchant_reference: str
    status: str
    updated: bool


class TeoriWebhookProcessor:
    """Validates an inbound Teori status push and records it on the order mirror"""

    def __init__(
        self,
        db: Session,
        verifier: TeoriWebhookVerifier,
        repo: Optional[TeoriOrderRepository] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.verifier = verifier
        self.repo = repo or TeoriOrderRepository()
        self.clock = clock

    def _find_order(self, order_id: str, merchant_reference: str) -> Optional[TeoriOrder]:
        try:
            order = None
            if order_id:
                order = self.repo.get_by_provider_order_id(self.db, order_id)
            if order is None and merchant_reference:
                order = self.repo.get_by_merchant_reference(self.db, merchant_reference)
            return order
        except SQLAlchemyError as e:
            logger.warning(
                f"⚠️ Failed to look up Teori order for webhook (order={order_id}, "
                f"reference={merchant_reference}): {e}"
            )
            return None

    def _check_callback_token(self, order: TeoriOrder, token: str) -> None:
        if not order.callback_token:
            return
        if not token:
            logger.warning(f"🚫 Missing callback token on webhook for tokenized order {order.provider_order_id}")
            raise WebhookRejected(401, "Missing token")
        if not constant_time_compare(token, order.callback_token):
            logger.warning(
                f"🚫 Invalid callback token on webhook for {order.provider_order_id}: {mask_secret(token)}"
            )
            raise WebhookRejected(401, "Invalid token")
        if order.callback_token_expires_at and order.callback_token_expires_at < self.clock():
            logger.warning(
                f"🚫 Expired callback token on webhook for {order.provider_order_id}: {mask_secret(token)}"
            )
            raise WebhookRejected(401, "Expired token")

    def process(
        self, signature: str, raw_body: Union[str, bytes], token: str = ""
    ) -> WebhookOutcome:
        if not self.verifier.verify(signature or "", raw_body):
            raise WebhookRejected(401, "Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.error("❌ Invalid JSON in Teori webhook")
            raise WebhookRejected(400, "Invalid JSON") from None
        if not isinstance(event, dict):
            raise WebhookRejected(400, "Invalid JSON")

        order_id = str(event.get("OrderId") or "")
        merchant_reference = str(event.get("MerchantReference") or "")
        status = str(event.get("Status") or "")

        logger.info(
            f"📥 Teori webhook: order={order_id}, reference={merchant_reference}, "
            f"status={status}, event={event.get('EventType', 'unknown')}"
        )

        if not status:
            logger.error(f"❌ Invalid Teori webhook data: order={order_id}, reference={merchant_reference}")
            raise WebhookRejected(400, "Invalid webhook data")

        order = self._find_order(order_id, merchant_reference)
        if order is None:
            logger.info(f"ℹ️ No local Teori order for webhook order={order_id}, acknowledging")
            return WebhookOutcome(order_id, merchant_reference, status, updated=False)

        self._check_callback_token(order, token)

        updated = False
        if status != order.status:
            try:
                self.repo.update_status(self.db, order, status=status)
                updated = True
            except SQLAlchemyError as e:
                logger.error(f"❌ Failed to store webhook status for {order.provider_order_id}: {e}")
                raise

        return WebhookOutcome(
            order_id=order.provider_order_id,
            merchant_reference=order.merchant_reference,
            status=status,
            updated=updated,
        )
