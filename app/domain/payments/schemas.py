"""Payment domain schemas - Pydantic models for validation"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, field_validator

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("100000000")


class CheckoutRequest(BaseModel):
    """Schema for starting a Teori checkout"""

    amount: Decimal  # SEK, major units
    reference: str
    description: str
    return_url: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    external_booking_id: Optional[str] = None  # e.g. teori booking id; idempotency key

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("amount must be a positive number")
        if v >= MAX_AMOUNT:
            raise ValueError("amount is too large")
        # Mirror column is Numeric(10, 2)
        if v != v.quantize(CENT):
            raise ValueError("amount must have at most two decimal places")
        return v

    @field_validator("reference", "description", "return_url")
    @classmethod
    def validate_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("field is required")
        return v

    @property
    def has_customer(self) -> bool:
        return any(
            (
                self.customer_email,
                self.customer_phone,
                self.customer_first_name,
                self.customer_last_name,
            )
        )


class CheckoutResult(BaseModel):
    """Schema for a started (or reused) checkout"""

    checkout_id: str
    checkout_url: Optional[str] = None  # Best known link; may be stale for reused orders
    merchant_reference: str
    is_existing: bool


class WebhookAck(BaseModel):
    received: bool = True
    status: Optional[str] = None
    updated: bool = False


class SettingsDiagnostics(BaseModel):
    enabled: bool
    environment: str
    api_url: str
    public_url: str
    has_api_key: bool
    has_api_secret: bool
    api_key_masked: str
