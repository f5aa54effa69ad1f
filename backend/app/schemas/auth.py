from pydantic import BaseModel, EmailStr, field_validator

from app.utils.documents import normalize_cpf


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    subject_id: str


class CustomerLoginRequest(BaseModel):
    email: EmailStr
    cpf: str

    @field_validator("cpf")
    @classmethod
    def _digits(cls, value: str) -> str:
        return normalize_cpf(value)


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str
