from __future__ import annotations

from uuid import UUID

from sqlmodel import Field

from app.models.base import TimestampedModel, UUIDModel


class Client(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "clients"

    full_name: str
    email: str = Field(index=True)
    phone: str | None = Field(default=None)
    cpf: str | None = Field(default=None, index=True, unique=True, max_length=11)
    cep: str | None = Field(default=None, max_length=8)
    address: str | None = Field(default=None)
    number: str | None = Field(default=None)
    complement: str | None = Field(default=None)
    district: str | None = Field(default=None)
    city: str | None = Field(default=None)
    state: str | None = Field(default=None, max_length=2)


class Pet(UUIDModel, TimestampedModel, table=True):
    __tablename__ = "pets"

    client_id: UUID = Field(foreign_key="clients.id", index=True)
    name: str
    species: str = Field(default="dog")
    breed: str | None = Field(default=None)
    age: int | None = Field(default=None)
    sex: str | None = Field(default=None)
    weight: float | None = Field(default=None)
    castrated: bool = Field(default=False)
    plan_id: UUID | None = Field(default=None, foreign_key="plans.id")
    is_active: bool = Field(default=True)
