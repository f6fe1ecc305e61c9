"""Payment repository - Database operations for site settings and Teori order mirrors"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...models import SiteSetting, TeoriOrder


class SiteSettingsRepository:
    """Repository for the key-value settings store"""

    @staticmethod
    def get_settings_map(db: Session) -> dict[str, str]:
        """All settings as {key: value}, regardless of category"""
        rows = db.query(SiteSetting).all()
        return {row.key: row.value or "" for row in rows if row.key}


class TeoriOrderRepository:
    """Repository for Teori order mirror rows"""

    @staticmethod
    def get_by_external_booking_id(db: Session, external_booking_id: str) -> Optional[TeoriOrder]:
        return (
            db.query(TeoriOrder)
            .filter(TeoriOrder.external_booking_id == external_booking_id)
            .order_by(TeoriOrder.created_at.desc())
            .first()
        )

    @staticmethod
    def get_by_merchant_reference(db: Session, merchant_reference: str) -> Optional[TeoriOrder]:
        return (
            db.query(TeoriOrder)
            .filter(TeoriOrder.merchant_reference == merchant_reference)
            .order_by(TeoriOrder.created_at.desc())
            .first()
        )

    @staticmethod
    def get_by_provider_order_id(db: Session, provider_order_id: str) -> Optional[TeoriOrder]:
        return db.query(TeoriOrder).filter(TeoriOrder.provider_order_id == provider_order_id).first()

    @staticmethod
    def create_order(
        db: Session,
        provider_order_id: str,
        merchant_reference: str,
        amount: Decimal,
        environment: str,
        external_booking_id: Optional[str] = None,
        payment_link: Optional[str] = None,
        callback_token: Optional[str] = None,
        callback_token_expires_at: Optional[datetime] = None,
    ) -> TeoriOrder:
        order = TeoriOrder(
            external_booking_id=external_booking_id,
            provider_order_id=provider_order_id,
            merchant_reference=merchant_reference,
            amount=Decimal(amount).quantize(Decimal("0.01")),
            payment_link=payment_link,
            environment=environment,
            callback_token=callback_token,
            callback_token_expires_at=callback_token_expires_at,
        )
        db.add(order)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        return order

    @staticmethod
    def update_status(
        db: Session,
        order: TeoriOrder,
        status: Optional[str] = None,
        payment_link: Optional[str] = None,
        checked_at: Optional[datetime] = None,
    ) -> TeoriOrder:
        """Record a status check; status and payment link only change when given"""
        now = checked_at or datetime.utcnow()
        if status:
            order.status = status
        if payment_link:
            order.payment_link = payment_link
        order.last_status_check = now
        order.updated_at = now
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        return order
