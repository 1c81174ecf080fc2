from __future__ import annotations

from decimal import Decimal

import pytest

from storefront.services.promptpay import (
    crc16,
    format_amount,
    generate_payload,
    normalize_promptpay_id,
    qr_image_url,
    tlv,
)


def test_crc16_ccitt_false_check_value():
    # Standard check value for CRC-16/CCITT-FALSE
    assert crc16("123456789") == "29B1"


def test_crc16_is_zero_padded_uppercase_and_deterministic():
    assert crc16("") == "FFFF"
    value = crc16("00020101021229370016A000000677010111")
    assert value == crc16("00020101021229370016A000000677010111")
    assert len(value) == 4
    assert value == value.upper()


def test_tlv_formats_tag_length_value():
    assert tlv("53", "764") == "5303764"
    assert tlv("63", "") == "6300"
    assert tlv("54", "100.00") == "5406100.00"


def test_tlv_rejects_oversized_values_and_bad_tags():
    with pytest.raises(ValueError):
        tlv("01", "9" * 100)
    with pytest.raises(ValueError):
        tlv("1", "x")
    with pytest.raises(ValueError):
        tlv("๕๓", "764")
    with pytest.raises(ValueError):
        tlv("53\n", "764")
    tlv("01", "9" * 99)  # upper bound still fits


def test_mobile_numbers_are_rewritten_to_country_form():
    assert normalize_promptpay_id("0812345678") == "0066812345678"
    assert normalize_promptpay_id("081-234-5678") == "0066812345678"


def test_normalization_is_idempotent_and_passes_other_ids_through():
    assert normalize_promptpay_id("0066812345678") == "0066812345678"
    assert normalize_promptpay_id("1234567890123") == "1234567890123"
    # Malformed ids are not rejected
    assert normalize_promptpay_id("12-34") == "1234"


def test_non_ascii_digits_are_stripped():
    # Thai numerals are Unicode digits but not valid in the payload
    assert normalize_promptpay_id("๐๘๑๒๓๔๕๖๗๘") == ""
    assert normalize_promptpay_id("081-234-๕๖๗๘") == "081234"

    payload = generate_payload("081-234-๕๖๗๘", 100)
    assert payload.isascii()
    assert "0106081234" in payload


def test_amount_always_has_two_decimals():
    assert format_amount(100) == "100.00"
    assert format_amount(59.5) == "59.50"
    assert format_amount(Decimal("120.25")) == "120.25"


def test_payload_layout_for_mobile_number():
    payload = generate_payload("0812345678", 100)

    expected_prefix = (
        "000201"
        "010212"
        "2937" "0016A000000677010111" "01130066812345678"
        "5303764"
        "5406100.00"
        "5802TH"
    )
    assert payload.startswith(expected_prefix)
    assert payload[len(expected_prefix):len(expected_prefix) + 4] == "6304"
    assert payload[-4:] == crc16(expected_prefix + "6304")
    assert len(payload) == len(expected_prefix) + 8


def test_payload_is_byte_stable_and_honours_country_code():
    assert generate_payload("0812345678", 55) == generate_payload("081 234 5678", 55)
    assert "5802LA" in generate_payload("0812345678", 55, country_code="LA")


def test_qr_image_url_encodes_payload():
    payload = generate_payload("0812345678", 100)
    url = qr_image_url(payload, size=200)
    assert url.startswith("https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=")
    assert payload in url  # payload is alphanumeric plus '.', nothing to escape
    assert url.endswith("&format=png&margin=10")
