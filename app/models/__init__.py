# Modèles SQLAlchemy pour core-africare-practice
#
# Toutes les tables métier sont scopées par tenant_id.

from .appointment import Appointment, Service
from .audit import AuditLog
from .patient import Patient
from .pharmacy import (
    Medication,
    MedicationBatch,
    PurchaseOrder,
    PurchaseOrderItem,
    StockMovement,
    Supplier,
)
from .sale import Receipt, Sale, SaleItem
from .staff import Profile, StaffInvitation
from .tenant import SubscriptionLimit, Tenant

__all__ = [
    "Appointment",
    "AuditLog",
    "Medication",
    "MedicationBatch",
    "Patient",
    "Profile",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "Receipt",
    "Sale",
    "SaleItem",
    "Service",
    "StaffInvitation",
    "StockMovement",
    "SubscriptionLimit",
    "Supplier",
    "Tenant",
]
