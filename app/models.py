"""
Teori Checkout Models
Site settings key-value store and the local mirror of remote checkout orders
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text

from .database import Base


class SiteSetting(Base):
    """Key-value site configuration. Category is optional; many installs leave it empty."""

    __tablename__ = "site_settings"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class TeoriOrder(Base):
    """Local mirror of a Teori checkout order"""

    __tablename__ = "teori_orders"

    id = Column(Integer, primary_key=True, index=True)
    external_booking_id = Column(String(255), nullable=True, index=True)  # Idempotency key
    provider_order_id = Column(String(255), unique=True, nullable=False, index=True)
    # Sanitized reference sent to Teori; looked up before creating, not a DB constraint
    merchant_reference = Column(String(25), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)  # SEK, major units
    payment_link = Column(Text, nullable=True)
    environment = Column(String(20), nullable=False, default="sandbox")
    status = Column(String(50), nullable=False, default="pending")  # As reported by Teori
    callback_token = Column(String(128), nullable=True)
    callback_token_expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_status_check = Column(DateTime, nullable=True)
