from __future__ import annotations

from functools import lru_cache

from email_validator import EmailNotValidError, validate_email


def digits_only(value: str | None) -> str:
    return ''.join(filter(str.isdigit, value or ""))


def normalize_cpf(value: str | None) -> str:
    return digits_only(value)


def is_valid_cpf(value: str | None) -> bool:
    """Valida os dígitos verificadores do CPF (aceita com ou sem máscara)."""
    cpf = normalize_cpf(value)
    if len(cpf) != 11 or cpf == cpf[0] * 11:
        return False
    for size in (9, 10):
        total = sum(int(cpf[i]) * (size + 1 - i) for i in range(size))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(cpf[size]):
            return False
    return True


def format_cpf(value: str | None) -> str:
    cpf = normalize_cpf(value)
    if len(cpf) != 11:
        return cpf
    return f"{cpf[:3]}.{cpf[3:6]}.{cpf[6:9]}-{cpf[9:]}"


def mask_cpf(value: str | None) -> str:
    cpf = normalize_cpf(value)
    if len(cpf) != 11:
        return "***"
    return f"***.{cpf[3:6]}.***-**"


@lru_cache(maxsize=256)
def _validate_format_only(candidate: str) -> str:
    info = validate_email(candidate, check_deliverability=False)
    return info.normalized or info.email


def normalize_email(value: str | None) -> str:
    """Normaliza o e-mail validando apenas a sintaxe (sem consulta DNS)."""
    candidate = (value or "").strip().lower()
    if not candidate:
        raise ValueError("E-mail is required")
    try:
        return _validate_format_only(candidate)
    except EmailNotValidError as exc:  # pragma: no cover - library error text varies
        raise ValueError(f"Invalid e-mail: {exc}") from exc
