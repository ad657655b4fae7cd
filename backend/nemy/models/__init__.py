from nemy.models.user import User
from nemy.models.business import Business
from nemy.models.order import Order
from nemy.models.payment import Payment
from nemy.models.wallet import Wallet
from nemy.models.wallet_txn import WalletTxn
from nemy.models.order_event import OrderEvent
from nemy.models.notification import Notification
from nemy.models.platform_event import PlatformEvent
from nemy.models.idempotency_key import IdempotencyKey
from nemy.models.reconciliation_report import ReconciliationReport
from nemy.models.job_run import JobRun

__all__ = [
    "User",
    "Business",
    "Order",
    "Payment",
    "Wallet",
    "WalletTxn",
    "OrderEvent",
    "Notification",
    "PlatformEvent",
    "IdempotencyKey",
    "ReconciliationReport",
    "JobRun",
]
