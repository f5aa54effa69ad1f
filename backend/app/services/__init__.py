from app.services.audit import AuditService
from app.services.auth import AuthService
from app.services.checkout import CheckoutService
from app.services.contract_status import ContractStatusService
from app.services.coupon import CouponService
from app.services.ledger import InstallmentLedger
from app.services.plan import PlanService
from app.services.pricing import PricingService
from app.services.provisioning import ProvisioningService
from app.services.receipt import ReceiptService
from app.services.reconciliation import ReconciliationService
from app.services.renewal import RenewalService

__all__ = [
    "AuditService",
    "AuthService",
    "CheckoutService",
    "ContractStatusService",
    "CouponService",
    "InstallmentLedger",
    "PlanService",
    "PricingService",
    "ProvisioningService",
    "ReceiptService",
    "ReconciliationService",
    "RenewalService",
]
