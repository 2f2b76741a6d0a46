# schedcalc/utils.py
import os
import re
from datetime import date, datetime

from schedcalc.core.errors import InvalidAmount, InvalidDate

# Month/day layouts come before day/month ones, so "02/01/2024" always reads
# as February 1st; a day/month layout only wins when the first field is > 12.
DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%Y-%m-%d",
    "%m-%d-%Y",
    "%m-%d-%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d/%m/%Y",
)

VENDOR_PREFIXES = ("AplPay ", "TST* ", "SQC*", "GOOGLE *", "PAYPAL *")
MAX_VENDOR_LENGTH = 50

PAYMENT_KEYWORDS = (
    "online payment",
    "payment thank you",
    "payment - thank you",
    "autopay",
    "automatic payment",
    "paypal transfer",
    "venmo payment",
    "zelle payment",
    "wire transfer",
    "transfer to",
    "transfer from",
)

_STATE_CODE = re.compile(r"[A-Z]{2}")
_CLEAN_AMOUNT = re.compile(r"[$,\s]")


def parse_date(raw: str) -> date:
    value = (raw or "").strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise InvalidDate(f"Unable to parse date: {raw!r}")


def parse_amount(raw: str) -> float:
    """Parse a currency cell such as ``4.50``, ``-$1,200.00`` or ``(45.67)``."""
    value = (raw or "").strip()
    negative = value.startswith("(") and value.endswith(")")
    cleaned = _CLEAN_AMOUNT.sub("", value.strip("()"))
    try:
        amount = float(cleaned)
    except ValueError:
        raise InvalidAmount(f"Invalid amount: {raw!r}") from None
    return -amount if negative else amount


def _clean_vendor(vendor: str) -> str:
    vendor = vendor.strip()
    for prefix in VENDOR_PREFIXES:
        if vendor.startswith(prefix):
            vendor = vendor[len(prefix):]
            break

    words = vendor.split()
    if len(words) > 1 and _STATE_CODE.fullmatch(words[-1]):
        vendor = " ".join(words[:-1])

    return vendor[:MAX_VENDOR_LENGTH].strip()


def extract_vendor_name(description: str) -> str:
    """Turn a raw statement description into a display vendor name.

    Strips processor/wallet prefixes and a trailing state code, then caps the
    length. Cleaning repeats until the name stops changing, so feeding the
    result back in returns it unchanged.
    """
    vendor = description or ""
    while True:
        cleaned = _clean_vendor(vendor)
        if cleaned == vendor:
            return cleaned
        vendor = cleaned


def is_payment_transaction(description: str) -> bool:
    """True for card payments and transfers that only move money between accounts."""
    lowered = (description or "").lower()
    return any(keyword in lowered for keyword in PAYMENT_KEYWORDS)


def card_name_from_filename(filename: str) -> str:
    name = os.path.basename(filename or "")
    stem, _ext = os.path.splitext(name)
    return stem.replace("_", " ").strip()
