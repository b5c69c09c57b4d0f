from marketplace_cod.models.activity_log import ActivityLog
from marketplace_cod.models.cod_reconciliation import CodReconciliation, ReconciliationStatus
from marketplace_cod.models.order import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusEntry,
    PaymentMethod,
)
from marketplace_cod.models.payout import Payout, PayoutEarningLine, PayoutMethod, PayoutStatus
from marketplace_cod.models.vendor import EarningStatus, Vendor, VendorEarning, VendorStatus

__all__ = [
    "ActivityLog",
    "CodReconciliation",
    "ReconciliationStatus",
    "FulfillmentStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusEntry",
    "PaymentMethod",
    "Payout",
    "PayoutEarningLine",
    "PayoutMethod",
    "PayoutStatus",
    "EarningStatus",
    "Vendor",
    "VendorEarning",
    "VendorStatus",
]
