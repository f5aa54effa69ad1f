from __future__ import annotations

from typing import Iterable

from sqlmodel import Session, select

from app.core.errors import BillingValidationError
from app.models.plan import BillingPeriod, Plan
from app.schemas.plan import PlanCreate

# Palavra-chave no nome do plano -> (periodicidade, desconto multi-pet, parcelas máximas)
PLAN_TYPE_RULES = {
    "BASIC": (BillingPeriod.MONTHLY.value, True, 1),
    "INFINITY": (BillingPeriod.MONTHLY.value, True, 1),
    "COMFORT": (BillingPeriod.ANNUAL.value, False, 12),
    "PLATINUM": (BillingPeriod.ANNUAL.value, False, 12),
}


def plan_type_defaults(name: str) -> tuple[str, bool, int] | None:
    upper = (name or "").upper()
    for keyword, rules in PLAN_TYPE_RULES.items():
        if keyword in upper:
            return rules
    return None


class PlanService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_active_plans(self) -> Iterable[Plan]:
        return self.session.exec(
            select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.display_order, Plan.base_price_cents)
        ).all()

    def list_plans(self) -> list[Plan]:
        return list(self.session.exec(select(Plan).order_by(Plan.display_order)).all())

    def create_plan(self, payload: PlanCreate) -> Plan:
        existing = self.session.exec(select(Plan).where(Plan.name == payload.name.strip())).first()
        if existing:
            raise BillingValidationError("Plan already exists")
        plan = Plan(**payload.model_dump())
        plan.name = plan.name.strip()
        defaults = plan_type_defaults(plan.name)
        if defaults:
            plan.billing_frequency, plan.multi_pet_discount, plan.max_installments = defaults
        self.session.add(plan)
        self.session.commit()
        self.session.refresh(plan)
        return plan

    def ensure_default_plans(self) -> list[Plan]:
        """Cria os planos padrão de forma idempotente."""
        defaults = [
            ("BASIC", "Consultas e vacinas essenciais", 10000, 1),
            ("INFINITY", "Cobertura ampla com mensalidade", 18000, 2),
            ("COMFORT", "Cobertura anual com exames", 15000, 3),
            ("PLATINUM", "Cobertura anual completa", 25000, 4),
        ]
        existing = {p.name: p for p in self.session.exec(select(Plan)).all()}
        created: list[Plan] = []
        for name, description, price, order in defaults:
            if name in existing:
                continue
            frequency, multi_pet, max_installments = PLAN_TYPE_RULES[name]
            plan = Plan(
                name=name,
                description=description,
                base_price_cents=price,
                billing_frequency=frequency,
                multi_pet_discount=multi_pet,
                max_installments=max_installments,
                display_order=order,
                is_active=True,
            )
            self.session.add(plan)
            created.append(plan)
        if created:
            self.session.commit()
            for p in created:
                self.session.refresh(p)
        return list(self.list_active_plans())
