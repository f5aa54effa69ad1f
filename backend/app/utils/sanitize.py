from __future__ import annotations

import re
from typing import Any

_SENSITIVE_KEYS = {
    "merchantkey",
    "merchant_key",
    "cardnumber",
    "card_number",
    "securitycode",
    "security_code",
    "cvv",
    "cardtoken",
    "card_token",
    "cpf",
    "identity",
    "password",
}

_CARD_RE = re.compile(r"\b\d{13,19}\b")
_CPF_RE = re.compile(r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b")


def sanitize_text(text: str | None, *, secrets: tuple[str | None, ...] = ()) -> str:
    """Remove números de cartão, CPFs e segredos conhecidos de mensagens de log."""
    cleaned = str(text or "")
    for secret in secrets:
        if secret:
            cleaned = cleaned.replace(secret, "***")
    cleaned = _CARD_RE.sub(lambda m: f"****{m.group(0)[-4:]}", cleaned)
    return _CPF_RE.sub("***.***.***-**", cleaned)


def sanitize_payload(value: Any) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            if str(key).replace("-", "_").lower() in _SENSITIVE_KEYS:
                result[key] = "***"
            else:
                result[key] = sanitize_payload(item)
        return result
    if isinstance(value, list):
        return [sanitize_payload(item) for item in value]
    if isinstance(value, str):
        return sanitize_text(value)
    return value
