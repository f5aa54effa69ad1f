from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping
from uuid import uuid4

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings


class TokenType(str, Enum):
    ACCESS = "access"


class TokenRole(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def create_access_token(
    subject: str,
    role: TokenRole,
    extra_claims: Mapping[str, Any] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {
        "sub": subject,
        "role": role.value,
        "exp": expire,
        "token_type": TokenType.ACCESS.value,
        "jti": str(uuid4()),
    }
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def decode_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if "token_type" not in payload or "role" not in payload:
        raise ValueError("Invalid token payload")
    return payload
