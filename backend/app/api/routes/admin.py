from typing import List

from fastapi import APIRouter, Depends, status
from sqlmodel import Session

from app.api.deps import RequestContext, get_db, get_payment_gateway, guarded, require_admin
from app.schemas.admin import BillingJobsRead
from app.schemas.coupon import CouponCreate, CouponRead
from app.schemas.plan import PlanCreate, PlanRead
from app.services.audit import AuditService
from app.services.billing_scheduler import run_billing_scheduler
from app.services.coupon import CouponService
from app.services.gateway import PaymentGateway
from app.services.plan import PlanService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/plans", response_model=List[PlanRead])
def list_plans(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_admin),
) -> List[PlanRead]:
    return [PlanRead.model_validate(plan) for plan in PlanService(session).list_plans()]


@router.post("/plans", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_admin),
) -> PlanRead:
    plan = guarded(PlanService(session).create_plan, payload)
    AuditService(session).record_event(
        "plan_created", actor_type="admin", actor_id=context.admin_id, details={"plan": plan.name}
    )
    return PlanRead.model_validate(plan)


@router.post("/plans/seed", response_model=List[PlanRead], status_code=status.HTTP_201_CREATED)
def seed_default_plans(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_admin),
) -> List[PlanRead]:
    plans = PlanService(session).ensure_default_plans()
    return [PlanRead.model_validate(plan) for plan in plans]


@router.get("/coupons", response_model=List[CouponRead])
def list_coupons(
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_admin),
) -> List[CouponRead]:
    return [CouponRead.model_validate(coupon) for coupon in CouponService(session).list_coupons()]


@router.post("/coupons", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
def create_coupon(
    payload: CouponCreate,
    session: Session = Depends(get_db),
    context: RequestContext = Depends(require_admin),
) -> CouponRead:
    coupon = guarded(CouponService(session).create_coupon, **payload.model_dump())
    AuditService(session).record_event(
        "coupon_created", actor_type="admin", actor_id=context.admin_id, details={"code": coupon.code}
    )
    return CouponRead.model_validate(coupon)


@router.post("/jobs/billing", response_model=BillingJobsRead)
def run_billing_jobs(
    session: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    context: RequestContext = Depends(require_admin),
) -> BillingJobsRead:
    report = run_billing_scheduler(session, gateway)
    return BillingJobsRead.model_validate(report, from_attributes=True)
