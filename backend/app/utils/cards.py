from __future__ import annotations

import re
from datetime import datetime

from app.utils.documents import digits_only

# Ordem importa: Elo e Hipercard possuem BINs que colidem com Visa/Master.
_BRAND_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Elo", re.compile(r"^(401178|401179|431274|438935|451416|457393|457631|457632|504175|506699|5067|509|627780|636297|636368|650|6516|6550)")),
    ("Hipercard", re.compile(r"^(606282|3841)")),
    ("Amex", re.compile(r"^3[47]")),
    ("Diners", re.compile(r"^3(0[0-5]|[68])")),
    ("JCB", re.compile(r"^35")),
    ("Discover", re.compile(r"^(6011|65|64[4-9])")),
    ("Master", re.compile(r"^(5[1-5]|2[2-7])")),
    ("Visa", re.compile(r"^4")),
]

_EXPIRATION_RE = re.compile(r"^(\d{2})/(\d{2}|\d{4})$")


def detect_card_brand(card_number: str) -> str:
    number = digits_only(card_number)
    for brand, pattern in _BRAND_PATTERNS:
        if pattern.match(number):
            return brand
    return "Visa"


def is_valid_card_number(card_number: str) -> bool:
    number = digits_only(card_number)
    return 13 <= len(number) <= 19


def parse_expiration(value: str) -> tuple[int, int] | None:
    """Retorna (mês, ano com 4 dígitos) para MM/YY ou MM/YYYY."""
    match = _EXPIRATION_RE.match((value or "").strip())
    if not match:
        return None
    month = int(match.group(1))
    year = int(match.group(2))
    if year < 100:
        year += 2000
    if not 1 <= month <= 12:
        return None
    return month, year


def is_expired(month: int, year: int, now: datetime | None = None) -> bool:
    reference = now or datetime.utcnow()
    return (year, month) < (reference.year, reference.month)


def normalize_expiration(value: str) -> str:
    """Formato exigido pelo gateway: MM/YYYY."""
    parsed = parse_expiration(value)
    if not parsed:
        raise ValueError("Invalid card expiration date")
    month, year = parsed
    return f"{month:02d}/{year}"


def is_valid_security_code(value: str) -> bool:
    return bool(re.fullmatch(r"\d{3,4}", (value or "").strip()))


def last_digits(card_number: str) -> str:
    return digits_only(card_number)[-4:]
