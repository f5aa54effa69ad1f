from typing import List

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_db
from app.schemas.plan import PlanRead
from app.services.plan import PlanService

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=List[PlanRead])
def list_plans(session: Session = Depends(get_db)) -> List[PlanRead]:
    plans = PlanService(session).list_active_plans()
    return [PlanRead.model_validate(plan) for plan in plans]
