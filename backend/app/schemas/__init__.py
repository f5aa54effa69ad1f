from app.schemas import admin, auth, checkout, common, coupon, installment, payment, plan, receipt

__all__ = [
    "admin",
    "auth",
    "checkout",
    "common",
    "coupon",
    "installment",
    "payment",
    "plan",
    "receipt",
]
