# noqa: F401 to ensure models are imported for metadata
from app.models.admin import AdminUser
from app.models.audit import AuditLog
from app.models.client import Client, Pet
from app.models.contract import Contract, ContractInstallment
from app.models.coupon import Coupon
from app.models.payment import InstallmentPaymentAttempt, PendingPayment
from app.models.plan import Plan
from app.models.receipt import PaymentReceipt

__all__ = [
    "AdminUser",
    "AuditLog",
    "Client",
    "Pet",
    "Contract",
    "ContractInstallment",
    "Coupon",
    "InstallmentPaymentAttempt",
    "PendingPayment",
    "Plan",
    "PaymentReceipt",
]
