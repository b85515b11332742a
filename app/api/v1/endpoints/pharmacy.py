"""Endpoints API de la pharmacie : médicaments, lots, fournisseurs, commandes et alertes."""

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.security import StaffContext, require_roles
from app.schemas.inventory import (
    BatchCreate,
    BatchResponse,
    InventoryItemUpsert,
    InventoryUpsertResult,
    MedicationDetail,
    MedicationListResponse,
    MedicationResponse,
    MedicationUpdate,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    RestockRequest,
    RestockResult,
    StockAlertsResponse,
    SupplierCreate,
    SupplierResponse,
    SupplierUpdate,
)
from app.schemas.responses import (
    create_responses,
    delete_responses,
    limited_create_responses,
    list_responses,
    read_responses,
    update_responses,
)
from app.schemas.utils import SanitizedSearchStr
from app.services import inventory_service

router = APIRouter()

PHARMACY_ROLES = ("admin", "pharmacist")
READ_ROLES = ("admin", "pharmacist", "doctor", "cashier")


# =============================================================================
# Médicaments
# =============================================================================


@router.post(
    "/medications",
    response_model=InventoryUpsertResult,
    summary="Créer ou mettre à jour un médicament",
    description=(
        "Sans id le médicament est créé (limite max_inventory_items), sinon il est "
        "mis à jour. Un lot est ajouté si batch_number, expiry_date et quantity sont fournis."
    ),
    responses=limited_create_responses(),
)
async def manage_inventory(
    data: InventoryItemUpsert,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> InventoryUpsertResult:
    return await inventory_service.manage_inventory(db, ctx, data)


@router.get(
    "/medications",
    response_model=MedicationListResponse,
    summary="Lister les médicaments",
    responses=list_responses(),
)
async def list_medications(
    search: SanitizedSearchStr | None = Query(None, description="Nom, catégorie ou code-barres"),
    include_inactive: bool = Query(False, description="Inclure les médicaments supprimés"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*READ_ROLES)),
) -> MedicationListResponse:
    return await inventory_service.list_medications(db, ctx.tenant_id, search, include_inactive)


@router.get(
    "/medications/{medication_id}",
    response_model=MedicationDetail,
    summary="Détail d'un médicament avec ses lots",
    responses=read_responses(),
)
async def get_medication(
    medication_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*READ_ROLES)),
) -> MedicationDetail:
    return await inventory_service.get_medication(db, ctx.tenant_id, medication_id)


@router.patch(
    "/medications/{medication_id}",
    response_model=MedicationResponse,
    summary="Modifier un médicament",
    responses=update_responses(),
)
async def update_medication(
    medication_id: uuid.UUID,
    data: MedicationUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> MedicationResponse:
    return await inventory_service.update_medication(db, ctx.tenant_id, medication_id, data)


@router.delete(
    "/medications/{medication_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un médicament",
    description="Suppression logique (is_active=false)",
    responses=delete_responses(),
)
async def delete_medication(
    medication_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> None:
    await inventory_service.delete_medication(db, ctx.tenant_id, medication_id)


# =============================================================================
# Lots et réapprovisionnement
# =============================================================================


@router.get(
    "/batches",
    response_model=list[BatchResponse],
    summary="Lister les lots",
    responses=list_responses(),
)
async def list_batches(
    medication_id: uuid.UUID | None = Query(None, description="Filtrer par médicament"),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*READ_ROLES)),
) -> list[BatchResponse]:
    return await inventory_service.list_batches(db, ctx.tenant_id, medication_id)


@router.post(
    "/batches",
    response_model=BatchResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ajouter un lot",
    responses=create_responses(),
)
async def add_batch(
    data: BatchCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> BatchResponse:
    return await inventory_service.add_batch(db, ctx, data)


@router.delete(
    "/batches/{batch_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Supprimer un lot",
    description="Supprime le lot et ses mouvements de stock",
    responses=delete_responses(),
)
async def delete_batch(
    batch_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> None:
    await inventory_service.delete_batch(db, ctx.tenant_id, batch_id)


@router.post(
    "/restock",
    response_model=RestockResult,
    summary="Réapprovisionner un médicament",
    responses=update_responses(),
)
async def restock_medication(
    data: RestockRequest,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> RestockResult:
    return await inventory_service.restock_medication(
        db, ctx, data.medication_id, data.quantity, data.reason, data.batch_id
    )


@router.get(
    "/stock-alerts",
    response_model=StockAlertsResponse,
    summary="Alertes de stock",
    description="Stock bas, lots proches de l'expiration et lots expirés",
    responses=list_responses(),
)
async def get_stock_alerts(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*READ_ROLES)),
) -> StockAlertsResponse:
    return await inventory_service.get_stock_alerts(db, ctx.tenant_id)


# =============================================================================
# Fournisseurs
# =============================================================================


@router.get(
    "/suppliers",
    response_model=list[SupplierResponse],
    summary="Lister les fournisseurs",
    responses=list_responses(),
)
async def list_suppliers(
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> list[SupplierResponse]:
    return await inventory_service.list_suppliers(db, ctx.tenant_id)


@router.post(
    "/suppliers",
    response_model=SupplierResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ajouter un fournisseur",
    responses=create_responses(),
)
async def add_supplier(
    data: SupplierCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> SupplierResponse:
    return await inventory_service.add_supplier(db, ctx, data)


@router.get(
    "/suppliers/{supplier_id}",
    response_model=SupplierResponse,
    summary="Récupérer un fournisseur",
    responses=read_responses(),
)
async def get_supplier(
    supplier_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> SupplierResponse:
    return await inventory_service.get_supplier(db, ctx.tenant_id, supplier_id)


@router.patch(
    "/suppliers/{supplier_id}",
    response_model=SupplierResponse,
    summary="Modifier un fournisseur",
    responses=update_responses(),
)
async def update_supplier(
    supplier_id: uuid.UUID,
    data: SupplierUpdate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> SupplierResponse:
    return await inventory_service.update_supplier(db, ctx.tenant_id, supplier_id, data)


# =============================================================================
# Bons de commande
# =============================================================================


@router.get(
    "/purchase-orders",
    response_model=list[PurchaseOrderResponse],
    summary="Lister les bons de commande",
    responses=list_responses(),
)
async def list_purchase_orders(
    order_status: Literal["pending", "delivered", "cancelled"] | None = Query(
        None, alias="status"
    ),
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> list[PurchaseOrderResponse]:
    return await inventory_service.list_purchase_orders(db, ctx.tenant_id, order_status)


@router.post(
    "/purchase-orders",
    response_model=PurchaseOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Créer un bon de commande",
    responses=create_responses(),
)
async def create_purchase_order(
    data: PurchaseOrderCreate,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> PurchaseOrderResponse:
    return await inventory_service.create_purchase_order(db, ctx, data)


@router.post(
    "/purchase-orders/{purchase_order_id}/deliver",
    response_model=PurchaseOrderResponse,
    summary="Réceptionner un bon de commande",
    description="Marque le bon livré et réapprovisionne chaque ligne",
    responses=update_responses(),
)
async def deliver_purchase_order(
    purchase_order_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    ctx: StaffContext = Depends(require_roles(*PHARMACY_ROLES)),
) -> PurchaseOrderResponse:
    return await inventory_service.deliver_purchase_order(db, ctx, purchase_order_id)
