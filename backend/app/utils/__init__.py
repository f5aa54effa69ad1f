from app.utils.documents import is_valid_cpf, mask_cpf, normalize_cpf, normalize_email
from app.utils.security import (
    create_access_token,
    decode_token,
    get_password_hash,
    verify_password,
)

__all__ = [
    "create_access_token",
    "decode_token",
    "get_password_hash",
    "verify_password",
    "is_valid_cpf",
    "mask_cpf",
    "normalize_cpf",
    "normalize_email",
]
