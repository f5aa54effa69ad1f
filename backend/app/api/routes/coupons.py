from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_db
from app.schemas.coupon import CouponPublic, CouponValidateRequest, CouponValidateResponse
from app.services.coupon import CouponService, coupon_discount

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=CouponValidateResponse)
def validate_coupon(payload: CouponValidateRequest, session: Session = Depends(get_db)) -> CouponValidateResponse:
    check = CouponService(session).validate(payload.code)
    if not check.valid or not check.coupon:
        return CouponValidateResponse(valid=False, reason=check.reason)
    coupon = check.coupon
    discount = coupon_discount(coupon, payload.total_cents) if payload.total_cents is not None else None
    return CouponValidateResponse(
        valid=True,
        coupon=CouponPublic(code=coupon.code, type=coupon.type, value=coupon.value),
        discount_cents=discount,
    )
