from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlmodel import Session, select

from app.core.errors import BillingValidationError, NotFoundError
from app.core.logging_setup import logger
from app.models.client import Client, Pet
from app.models.contract import Contract, ContractInstallment, ContractStatus
from app.models.payment import PendingPayment
from app.models.plan import BillingPeriod, Plan
from app.schemas.checkout import AddressInput, CustomerInput
from app.services import billing_calendar
from app.services.ledger import InstallmentLedger
from app.utils.documents import mask_cpf, normalize_cpf, normalize_email

ACTIVE_CONTRACT_STATUSES = (
    ContractStatus.PENDING.value,
    ContractStatus.ACTIVE.value,
    ContractStatus.SUSPENDED.value,
)


def pet_key(name: str) -> str:
    return (name or "").strip().lower()


def generate_contract_number(pet_id: UUID, now: datetime | None = None) -> str:
    moment = now or datetime.utcnow()
    return f"UNIPET-{int(moment.timestamp() * 1000)}-{pet_id.hex[:4].upper()}"


def split_total(prices: Sequence[int], total_cents: int) -> list[int]:
    """Rateia o total efetivamente cobrado entre os pets, proporcional ao preço de cada um.

    A última linha absorve a diferença de arredondamento; a soma é sempre ``total_cents``.
    """
    subtotal = sum(prices)
    if not prices or subtotal == total_cents:
        return list(prices)
    if subtotal <= 0:
        return [total_cents] + [0] * (len(prices) - 1)
    shares = [price * total_cents // subtotal for price in prices[:-1]]
    shares.append(total_cents - sum(shares))
    return shares


class ProvisioningService:
    """Cliente, pets e contratos. Pets e contratos só são criados depois do pagamento aprovado."""

    def __init__(self, session: Session, ledger: InstallmentLedger | None = None) -> None:
        self.session = session
        self.ledger = ledger or InstallmentLedger(session)

    # ------------------------------------------------------------------
    # Clientes
    # ------------------------------------------------------------------

    def get_client(self, client_id: UUID) -> Client:
        client = self.session.get(Client, client_id)
        if not client:
            raise NotFoundError("Client not found")
        return client

    def get_by_cpf(self, cpf: str | None) -> Client | None:
        normalized = normalize_cpf(cpf)
        if not normalized:
            return None
        return self.session.exec(select(Client).where(Client.cpf == normalized)).first()

    def get_by_email(self, email: str | None) -> Client | None:
        if not email:
            return None
        return self.session.exec(select(Client).where(Client.email == normalize_email(email))).first()

    def find_client(self, *, cpf: str | None, email: str | None) -> Client | None:
        """Busca por CPF primeiro e, na falta, por e-mail."""
        return self.get_by_cpf(cpf) or self.get_by_email(email)

    def resolve_client(self, customer: CustomerInput, current_client_id: UUID | None = None) -> Client:
        current = self.session.get(Client, current_client_id) if current_client_id else None
        if current_client_id and not current:
            raise NotFoundError("Client not found")

        existing = self.get_by_cpf(customer.cpf)
        if existing and current and existing.id != current.id:
            self._discard_temporary_client(current)
            current = None
        target = existing or current or self.get_by_email(customer.email)

        if target is None:
            target = Client(
                full_name=customer.full_name.strip(),
                email=normalize_email(customer.email),
                phone=customer.phone,
                cpf=customer.cpf,
            )
            logger.info("Novo cliente criado para %s", target.email)
        else:
            target.full_name = customer.full_name.strip()
            submitted_email = normalize_email(customer.email)
            if submitted_email != target.email:
                # Cadastro localizado por CPF mantém o e-mail original
                if target is existing or self.get_by_email(submitted_email):
                    logger.info("Cliente %s mantém o e-mail cadastrado; novo e-mail informado ignorado", target.id)
                else:
                    target.email = submitted_email
            target.phone = customer.phone or target.phone
            if customer.cpf and not target.cpf:
                target.cpf = customer.cpf
            target.touch()
        self.session.add(target)
        self.session.commit()
        self.session.refresh(target)
        return target

    def attach_registration(self, client_id: UUID, cpf: str, address: AddressInput) -> tuple[Client, bool]:
        """Vincula CPF e endereço. Colisão de CPF reaproveita o cliente pré-existente."""
        client = self.get_client(client_id)
        normalized = normalize_cpf(cpf)
        reused = False
        existing = self.get_by_cpf(normalized)
        if existing and existing.id != client.id:
            logger.info(
                "CPF %s já pertence ao cliente %s; descartando cadastro temporário %s",
                mask_cpf(normalized),
                existing.id,
                client.id,
            )
            self._discard_temporary_client(client)
            if not existing.phone:
                existing.phone = client.phone
            client = existing
            reused = True
        client.cpf = normalized
        self._apply_address(client, address)
        client.touch()
        self.session.add(client)
        self.session.commit()
        self.session.refresh(client)
        return client, reused

    def _apply_address(self, client: Client, address: AddressInput) -> None:
        client.cep = address.cep
        client.address = address.address
        client.number = address.number
        client.complement = address.complement
        client.district = address.district
        client.city = address.city
        client.state = address.state

    def _discard_temporary_client(self, client: Client) -> None:
        has_pets = self.session.exec(select(Pet).where(Pet.client_id == client.id)).first()
        has_contracts = self.session.exec(select(Contract).where(Contract.client_id == client.id)).first()
        has_payments = self.session.exec(select(PendingPayment).where(PendingPayment.client_id == client.id)).first()
        if has_pets or has_contracts or has_payments:
            raise BillingValidationError("CPF already registered to another customer")
        self.session.delete(client)
        self.session.flush()

    # ------------------------------------------------------------------
    # Pets
    # ------------------------------------------------------------------

    def list_pets(self, client_id: UUID) -> list[Pet]:
        return list(self.session.exec(select(Pet).where(Pet.client_id == client_id)).all())

    def find_or_create_pets(self, client: Client, pets_data: Sequence[dict[str, Any]], plan_id: UUID | None = None) -> list[Pet]:
        existing = {pet_key(pet.name): pet for pet in self.list_pets(client.id)}
        pets: list[Pet] = []
        for data in pets_data:
            key = pet_key(data.get("name", ""))
            pet = existing.get(key)
            if pet:
                logger.info("Pet '%s' já cadastrado para o cliente %s; reutilizando", pet.name, client.id)
            else:
                pet = Pet(
                    client_id=client.id,
                    name=str(data["name"]).strip(),
                    species=data.get("species") or "dog",
                    breed=data.get("breed"),
                    age=data.get("age"),
                    sex=data.get("sex"),
                    weight=data.get("weight"),
                    castrated=bool(data.get("castrated", False)),
                    plan_id=plan_id,
                )
                self.session.add(pet)
                existing[key] = pet
            pets.append(pet)
        self.session.flush()
        return pets

    def pets_with_open_contract(self, client_id: UUID, plan_id: UUID, pet_names: Iterable[str]) -> list[str]:
        """Nomes de pets que já possuem contrato vigente neste plano."""
        wanted = {pet_key(name) for name in pet_names}
        rows = self.session.exec(
            select(Pet, Contract)
            .join(Contract, Contract.pet_id == Pet.id)
            .where(Pet.client_id == client_id)
            .where(Contract.plan_id == plan_id)
            .where(Contract.status.in_(ACTIVE_CONTRACT_STATUSES))
        ).all()
        return sorted({pet.name for pet, _ in rows if pet_key(pet.name) in wanted})

    # ------------------------------------------------------------------
    # Contratos
    # ------------------------------------------------------------------

    def provision_from_pending(
        self,
        pending: PendingPayment,
        now: datetime | None = None,
    ) -> list[tuple[Contract, ContractInstallment]]:
        """Cria pets, contratos e a primeira parcela (paga) de um checkout confirmado.

        Não faz commit: o chamador confirma a transação junto com o status do pagamento.
        """
        moment = now or datetime.utcnow()
        client = self.get_client(pending.client_id)
        plan = self.session.get(Plan, pending.plan_id)
        if not plan:
            raise NotFoundError("Plan not found")

        pets_data = list(pending.pets_data or [])
        pets = self.find_or_create_pets(client, pets_data, plan_id=plan.id)
        annual = pending.billing_period == BillingPeriod.ANNUAL.value
        prices = [int(data.get("price_cents") or 0) for data in pets_data]
        # Cupom vale só para o primeiro pagamento; contratos guardam o preço cheio
        first_shares = split_total(prices, pending.total_cents)
        created: list[tuple[Contract, ContractInstallment]] = []
        for pet, price, first_share in zip(pets, prices, first_shares):
            contract = Contract(
                client_id=client.id,
                pet_id=pet.id,
                plan_id=plan.id,
                contract_number=generate_contract_number(pet.id, moment),
                status=ContractStatus.ACTIVE.value,
                billing_period=pending.billing_period,
                start_date=moment,
                end_date=billing_calendar.period_end(moment, pending.billing_period),
                monthly_amount_cents=0 if annual else price,
                annual_amount_cents=price if annual else 0,
                payment_method=pending.payment_method,
                payment_id=pending.payment_id,
                proof_of_sale=pending.proof_of_sale,
                authorization_code=pending.authorization_code,
                tid=pending.tid,
                return_code=pending.return_code,
                return_message=pending.return_message,
                received_date=moment,
                card_token=pending.card_token,
                card_brand=pending.card_brand,
                card_last_digits=pending.card_last_digits,
            )
            self.session.add(contract)
            self.session.flush()
            installment = self.ledger.create_first_installment(
                contract,
                paid=True,
                payment_id=pending.payment_id,
                now=moment,
                amount_cents=first_share,
                commit=False,
            )
            created.append((contract, installment))
            logger.info("Contrato %s criado para o pet '%s'", contract.contract_number, pet.name)
        self.session.flush()
        return created
