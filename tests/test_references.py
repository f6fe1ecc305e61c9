import re
from datetime import datetime, timedelta

from app.domain.payments.references import (
    booking_id_from_reference,
    generate_callback_token,
    sanitize_merchant_reference,
)

REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,25}$")


def test_compliant_reference_is_unchanged():
    assert sanitize_merchant_reference("short-ref_1") == "short-ref_1"


def test_disallowed_characters_are_stripped():
    assert sanitize_merchant_reference("booking #42/a") == "booking42a"


def test_long_reference_is_shortened_to_valid_format():
    result = sanitize_merchant_reference("a" * 40)

    assert len(result) <= 25
    assert REFERENCE_PATTERN.match(result)
    assert result.startswith("ref_")


def test_sanitize_is_deterministic():
    reference = "teori_3f6c2a9e-1d2b-4c5d-8e9f-0a1b2c3d4e5f"
    assert sanitize_merchant_reference(reference) == sanitize_merchant_reference(reference)


def test_known_prefixes_are_kept_readable():
    assert sanitize_merchant_reference("teori_" + "x" * 30).startswith("teo_")
    assert sanitize_merchant_reference("handledar_" + "x" * 30).startswith("hdl_")
    assert sanitize_merchant_reference("session_" + "x" * 30).startswith("ses_")
    assert sanitize_merchant_reference("Booking_" + "x" * 30).startswith("bok_")


def test_long_inputs_with_shared_prefix_do_not_collide():
    first = sanitize_merchant_reference("teori_3f6c2a9e-1d2b-4c5d-8e9f-0a1b2c3d4e5f")
    second = sanitize_merchant_reference("teori_3f6c2a9e-1d2b-4c5d-8e9f-0a1b2c3d4e60")

    assert first != second
    assert REFERENCE_PATTERN.match(first)
    assert REFERENCE_PATTERN.match(second)


def test_hash_uses_original_input_not_cleaned_text():
    # Both clean to the same 30 characters; the hash must still differ
    first = sanitize_merchant_reference("booking " + "b" * 23)
    second = sanitize_merchant_reference("booking/" + "b" * 23)
    assert first != second


def test_empty_reference_still_produces_valid_reference():
    result = sanitize_merchant_reference("")
    assert REFERENCE_PATTERN.match(result)
    assert result.startswith("ref_")


def test_callback_token_has_enough_entropy_and_expiry():
    now = datetime(2026, 1, 1, 12, 0, 0)
    token, expires_at = generate_callback_token(now=now)

    assert re.fullmatch(r"[0-9a-f]{48}", token)
    assert expires_at == now + timedelta(hours=24)
    assert generate_callback_token()[0] != token


def test_booking_id_is_taken_from_teori_reference():
    assert booking_id_from_reference("teori_3f6c2a9e") == "3f6c2a9e"
    assert booking_id_from_reference("teori_") is None
    assert booking_id_from_reference("handledar_12") is None
    assert booking_id_from_reference("") is None
