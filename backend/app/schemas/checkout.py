from __future__ import annotations

from typing import List, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from app.utils.cards import is_valid_card_number, is_valid_security_code, parse_expiration
from app.utils.documents import digits_only, is_valid_cpf, normalize_cpf


class PetInput(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    species: str = "dog"
    breed: str | None = None
    age: int | None = Field(default=None, ge=0, le=40)
    sex: str | None = None
    weight: float | None = Field(default=None, ge=0)
    castrated: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Pet name is required")
        return stripped


class CustomerInput(BaseModel):
    full_name: str = Field(min_length=2, max_length=160)
    email: EmailStr
    phone: str | None = None
    cpf: str | None = None

    @field_validator("cpf")
    @classmethod
    def _validate_cpf(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        if not is_valid_cpf(value):
            raise ValueError("Invalid CPF")
        return normalize_cpf(value)


class AddressInput(BaseModel):
    cep: str
    address: str = Field(min_length=1)
    number: str = Field(min_length=1)
    complement: str | None = None
    district: str | None = None
    city: str = Field(min_length=1)
    state: str = Field(min_length=2, max_length=2)

    @field_validator("cep")
    @classmethod
    def _validate_cep(cls, value: str) -> str:
        digits = digits_only(value)
        if len(digits) != 8:
            raise ValueError("Invalid CEP")
        return digits

    @field_validator("state")
    @classmethod
    def _upper_state(cls, value: str) -> str:
        return value.upper()


class CardInput(BaseModel):
    card_number: str
    holder: str = Field(min_length=2)
    expiration_date: str
    security_code: str
    brand: str | None = None

    @field_validator("card_number")
    @classmethod
    def _validate_number(cls, value: str) -> str:
        if not is_valid_card_number(value):
            raise ValueError("Card number must have 13 to 19 digits")
        return digits_only(value)

    @field_validator("expiration_date")
    @classmethod
    def _validate_expiration(cls, value: str) -> str:
        if not parse_expiration(value):
            raise ValueError("Expiration date must be MM/YY or MM/YYYY")
        return value.strip()

    @field_validator("security_code")
    @classmethod
    def _validate_cvv(cls, value: str) -> str:
        if not is_valid_security_code(value):
            raise ValueError("Security code must have 3 or 4 digits")
        return value.strip()


class SaveCustomerDataRequest(BaseModel):
    client_id: UUID | None = None
    customer: CustomerInput
    plan_id: UUID
    pets: List[PetInput] = Field(min_length=1, max_length=10)
    billing_period: Literal["monthly", "annual"] | None = None
    coupon_code: str | None = None


class PetPriceLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    index: int
    name: str
    base_price_cents: int
    discount_percent: int
    price_cents: int


class QuoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plan_name: str
    billing_period: str
    lines: List[PetPriceLineRead]
    subtotal_cents: int
    coupon_code: str | None = None
    coupon_discount_cents: int = 0
    total_cents: int


class SaveCustomerDataResponse(BaseModel):
    client_id: UUID
    quote: QuoteRead


class CompleteRegistrationRequest(BaseModel):
    client_id: UUID
    cpf: str
    address: AddressInput

    @field_validator("cpf")
    @classmethod
    def _validate_cpf(cls, value: str) -> str:
        if not is_valid_cpf(value):
            raise ValueError("Invalid CPF")
        return normalize_cpf(value)


class CompleteRegistrationResponse(BaseModel):
    client_id: UUID
    reused_existing_client: bool = False


class SimpleProcessRequest(BaseModel):
    client_id: UUID | None = None
    customer: CustomerInput | None = None
    address: AddressInput | None = None
    plan_id: UUID
    pets: List[PetInput] = Field(min_length=1, max_length=10)
    payment_method: Literal["credit_card", "pix"]
    billing_period: Literal["monthly", "annual"] | None = None
    installments: int = Field(default=1, ge=1)
    card: CardInput | None = None
    coupon_code: str | None = None
    amount_cents: int | None = Field(default=None, description="Informational only; the server computes the price.")

    @model_validator(mode="after")
    def _check_consistency(self) -> "SimpleProcessRequest":
        if self.client_id is None and self.customer is None:
            raise ValueError("client_id or customer data is required")
        if self.payment_method == "credit_card" and self.card is None:
            raise ValueError("Card data is required for credit card payments")
        return self


class PixData(BaseModel):
    qr_code_base64: str | None = None
    copy_paste_code: str | None = None
    expires_at: str | None = None


class SimpleProcessResponse(BaseModel):
    status: Literal["approved", "pending"]
    payment_id: str
    client_id: UUID
    total_cents: int
    contract_ids: List[UUID] = Field(default_factory=list)
    receipt_id: UUID | None = None
    pix: PixData | None = None
    warnings: List[str] = Field(default_factory=list)


class InstallmentPaymentRequest(BaseModel):
    installment_id: str = Field(description="Installment UUID or 'virtual-<contract_id>'")
    payment_method: Literal["credit_card", "pix"]
    card: CardInput | None = None
    use_saved_card: bool = False

    @model_validator(mode="after")
    def _check_card(self) -> "InstallmentPaymentRequest":
        if self.payment_method == "credit_card" and self.card is None and not self.use_saved_card:
            raise ValueError("Card data is required for credit card payments")
        return self


class InstallmentPaymentResponse(BaseModel):
    status: Literal["approved", "pending"]
    payment_id: str
    installment_id: UUID
    installment_number: int
    amount_cents: int
    receipt_id: UUID | None = None
    next_installment_id: UUID | None = None
    pix: PixData | None = None
    warnings: List[str] = Field(default_factory=list)
