"""
PromptPay QR Payload Encoder

Builds EMVCo merchant-presented QR payload strings for Thai PromptPay
payments. Only the payload text is produced here; turning it into an
image is left to an external renderer (see ``qr_image_url``).

Payload layout (each field is Tag-Length-Value, two-digit tag and length):

    00 Payload format indicator   "01"
    01 Point of initiation        "12" (dynamic, amount included)
    29 Merchant account info      00=PromptPay AID, 01=normalized id
    53 Transaction currency       "764" (THB)
    54 Transaction amount         two decimals
    58 Country code               "TH"
    63 CRC                        CRC16-CCITT over everything before it + "6304"

Author: Khalil Bannouri
Version: 3.0.0
"""

import re
from decimal import Decimal
from typing import Union
from urllib.parse import quote

PROMPTPAY_AID = "A000000677010111"
CURRENCY_THB = "764"
PAYLOAD_FORMAT_INDICATOR = "01"
POINT_OF_INITIATION_DYNAMIC = "12"

TAG_PAYLOAD_FORMAT = "00"
TAG_POINT_OF_INITIATION = "01"
TAG_MERCHANT_ACCOUNT = "29"
TAG_CURRENCY = "53"
TAG_AMOUNT = "54"
TAG_COUNTRY = "58"
TAG_CRC = "63"

# Sub-tags inside the merchant account info block
SUBTAG_AID = "00"
SUBTAG_MOBILE = "01"

_NON_DIGITS = re.compile(r"[^0-9]")
_TAG_PATTERN = re.compile(r"[0-9]{2}")

Amount = Union[int, float, Decimal]


def tlv(tag: str, value: str) -> str:
    """
    Format one Tag-Length-Value field.

    Example:
        >>> tlv("53", "764")
        '5303764'
    """
    if not _TAG_PATTERN.fullmatch(tag):
        raise ValueError(f"TLV tag must be two digits, got {tag!r}")
    if len(value) > 99:
        raise ValueError(f"TLV value for tag {tag} is {len(value)} chars; maximum is 99")
    return f"{tag}{len(value):02d}{value}"


def crc16(data: str) -> str:
    """
    CRC16-CCITT (poly 0x1021, init 0xFFFF), MSB first.

    Each character contributes the low byte of its code point.
    Returns four uppercase hex digits.
    """
    crc = 0xFFFF
    for ch in data:
        crc ^= (ord(ch) & 0xFF) << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def format_amount(amount: Amount) -> str:
    """Two-decimal fixed amount. Callers are expected to pre-round."""
    return format(amount, ".2f")


def normalize_promptpay_id(raw_id: str) -> str:
    """
    Keep ASCII digits only and rewrite local mobile numbers to the 0066 form.

    ``0812345678`` becomes ``0066812345678``. Anything that is not a
    10-digit number starting with 0 (tax ids, already-normalized ids,
    malformed input) is returned as the stripped digits.
    """
    digits = _NON_DIGITS.sub("", raw_id)
    if len(digits) == 10 and digits.startswith("0"):
        return f"0066{digits[1:]}"
    return digits


def merchant_account_info(promptpay_id: str) -> str:
    """Tag 29 body: PromptPay AID followed by the normalized id."""
    return tlv(SUBTAG_AID, PROMPTPAY_AID) + tlv(SUBTAG_MOBILE, normalize_promptpay_id(promptpay_id))


def generate_payload(merchant_id: str, amount: Amount, country_code: str = "TH") -> str:
    """
    Build the full PromptPay payload string including its CRC field.

    Args:
        merchant_id: Mobile number or tax id; punctuation is ignored
        amount: Amount in baht; formatted with exactly two decimals
        country_code: ISO 3166 alpha-2 code, "TH" for PromptPay

    Returns:
        Payload text ready to be encoded into a QR image
    """
    body = "".join([
        tlv(TAG_PAYLOAD_FORMAT, PAYLOAD_FORMAT_INDICATOR),
        tlv(TAG_POINT_OF_INITIATION, POINT_OF_INITIATION_DYNAMIC),
        tlv(TAG_MERCHANT_ACCOUNT, merchant_account_info(merchant_id)),
        tlv(TAG_CURRENCY, CURRENCY_THB),
        tlv(TAG_AMOUNT, format_amount(amount)),
        tlv(TAG_COUNTRY, country_code),
    ])
    # The CRC covers its own tag and length
    checksum = crc16(body + TAG_CRC + "04")
    return body + tlv(TAG_CRC, checksum)


def qr_image_url(
    payload: str,
    size: int = 300,
    renderer_url: str = "https://api.qrserver.com/v1/create-qr-code/",
) -> str:
    """URL of a PNG rendering of ``payload`` from the external QR renderer."""
    return (
        f"{renderer_url}?size={size}x{size}"
        f"&data={quote(payload, safe='')}&format=png&margin=10"
    )
