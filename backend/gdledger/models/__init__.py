from gdledger.models.gd import GDCharge, GDEntry, GDItem, GDRetirementLog
from gdledger.models.inventory import InventoryBatch, InventoryLog
from gdledger.models.party import Bank, Customer, Payment, PaymentAllocation
from gdledger.models.sales import (
    SalesInvoice,
    SalesInvoiceItem,
    SalesReturn,
    TotalsAdjustment,
)

__all__ = [
    "GDEntry",
    "GDItem",
    "GDCharge",
    "GDRetirementLog",
    "InventoryBatch",
    "InventoryLog",
    "Customer",
    "Bank",
    "Payment",
    "PaymentAllocation",
    "SalesInvoice",
    "SalesInvoiceItem",
    "SalesReturn",
    "TotalsAdjustment",
]
