from . import admin, auth, checkout, coupons, customer, health, payments, plans, webhooks

__all__ = [
    "admin",
    "auth",
    "checkout",
    "coupons",
    "customer",
    "health",
    "payments",
    "plans",
    "webhooks",
]
