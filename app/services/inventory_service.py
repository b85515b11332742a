"""Service métier de l'inventaire pharmacie.

Médicaments et lots, mouvements de stock, fournisseurs, bons de commande
et alertes. Toute entrée de stock (création de lot, réapprovisionnement,
livraison d'un bon de commande) écrit un mouvement dans ``stock_movements``.
"""

import logging
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.security import StaffContext
from app.models.pharmacy import (
    Medication,
    MedicationBatch,
    PurchaseOrder,
    PurchaseOrderItem,
    StockMovement,
    Supplier,
)
from app.schemas.inventory import (
    BatchAlert,
    BatchCreate,
    BatchResponse,
    InventoryItemUpsert,
    InventoryUpsertResult,
    LowStockAlert,
    MedicationDetail,
    MedicationListResponse,
    MedicationResponse,
    MedicationUpdate,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    RestockResult,
    StockAlertsResponse,
    StockMovementResponse,
    SupplierCreate,
    SupplierResponse,
    SupplierUpdate,
)
from app.services.patient_service import normalize_phone
from app.services.usage_service import enforce_usage_limit, invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

INVENTORY_LIMIT_MESSAGE = "Inventory limit reached. Current usage: {current}/{limit}"
REQUIRED_MEDICATION_FIELDS = ("name", "category", "dosage_form", "strength", "unit_price")

_MEDICATION_FIELDS = (
    "name",
    "category",
    "description",
    "dosage_form",
    "strength",
    "unit_price",
    "manufacturer",
    "barcode",
    "shelf_location",
)


def total_stock(medication: Medication, today: date | None = None) -> int:
    """Quantité totale des lots non expirés d'un médicament."""
    today = today or date.today()
    return sum(b.quantity for b in medication.batches if b.expiry_date >= today)


def _medication_response(medication: Medication, today: date | None = None) -> MedicationResponse:
    response = MedicationResponse.model_validate(medication)
    response.total_stock = total_stock(medication, today)
    return response


async def _get_medication(
    db: AsyncSession, tenant_id: uuid.UUID, medication_id: uuid.UUID
) -> Medication:
    result = await db.execute(
        select(Medication).where(Medication.id == medication_id, Medication.tenant_id == tenant_id)
    )
    medication = result.scalar_one_or_none()
    if medication is None:
        raise NotFoundError(resource_type="Medication", resource_id=medication_id)
    return medication


async def _get_batch(db: AsyncSession, tenant_id: uuid.UUID, batch_id: uuid.UUID) -> MedicationBatch:
    result = await db.execute(
        select(MedicationBatch).where(
            MedicationBatch.id == batch_id, MedicationBatch.tenant_id == tenant_id
        )
    )
    batch = result.scalar_one_or_none()
    if batch is None:
        raise NotFoundError(resource_type="MedicationBatch", resource_id=batch_id)
    return batch


# =============================================================================
# Médicaments
# =============================================================================


async def manage_inventory(
    db: AsyncSession, ctx: StaffContext, data: InventoryItemUpsert
) -> InventoryUpsertResult:
    """
    Crée ou met à jour un médicament, avec un lot optionnel.

    Pattern:
    1. Création (pas d'id) : limite d'inventaire du plan
    2. Champs obligatoires: name, category, dosage_form, strength, unit_price
    3. Insertion ou mise à jour du médicament
    4. Lot + mouvement "restock" si batch_number, expiry_date et quantity sont fournis

    Raises:
        UsageLimitExceededError: Limite d'inventaire atteinte
        BadRequestError: Champ obligatoire manquant
        NotFoundError: Médicament à mettre à jour absent du tenant
    """
    with tracer.start_as_current_span("manage_inventory") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))
        creating = data.id is None
        span.set_attribute("inventory.creating", creating)

        if creating:
            await enforce_usage_limit(
                db, ctx.tenant_id, "max_inventory_items", INVENTORY_LIMIT_MESSAGE
            )

        missing = [f for f in REQUIRED_MEDICATION_FIELDS if getattr(data, f) in (None, "")]
        if missing:
            raise BadRequestError(detail=f"Missing required fields: {', '.join(missing)}")

        values = {field: getattr(data, field) for field in _MEDICATION_FIELDS}
        if creating:
            medication = Medication(tenant_id=ctx.tenant_id, is_active=True, **values)
            db.add(medication)
            await db.flush()
        else:
            medication = await _get_medication(db, ctx.tenant_id, data.id)
            for field, value in values.items():
                if value is not None:
                    setattr(medication, field, value)

        batch = None
        if data.batch_number and data.expiry_date and data.quantity:
            batch = MedicationBatch(
                tenant_id=ctx.tenant_id,
                medication_id=medication.id,
                batch_number=data.batch_number,
                expiry_date=data.expiry_date,
                quantity=data.quantity,
                unit_price=data.batch_unit_price,
            )
            db.add(batch)
            await db.flush()
            db.add(
                StockMovement(
                    tenant_id=ctx.tenant_id,
                    medication_id=medication.id,
                    batch_id=batch.id,
                    movement_type="restock",
                    quantity=data.quantity,
                    reason="Initial batch",
                    created_by=ctx.profile_id,
                )
            )
            medication.last_restocked_at = datetime.now(UTC)

        await db.commit()
        await db.refresh(medication, attribute_names=["batches"])
        span.set_attribute("medication.id", str(medication.id))

        if creating:
            await invalidate_usage(ctx.tenant_id)
        logger.info(
            f"Médicament {medication.id} {'créé' if creating else 'mis à jour'} "
            f"pour le tenant {ctx.tenant_id}"
        )
        return InventoryUpsertResult(
            medication=_medication_response(medication),
            batch=BatchResponse.model_validate(batch) if batch else None,
            created=creating,
        )


async def update_medication(
    db: AsyncSession, tenant_id: uuid.UUID, medication_id: uuid.UUID, data: MedicationUpdate
) -> MedicationResponse:
    medication = await _get_medication(db, tenant_id, medication_id)
    reactivated = data.is_active is True and not medication.is_active
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(medication, field, value)
    await db.commit()
    await db.refresh(medication, attribute_names=["batches"])
    if reactivated or data.is_active is False:
        await invalidate_usage(tenant_id)
    return _medication_response(medication)


async def delete_medication(
    db: AsyncSession, tenant_id: uuid.UUID, medication_id: uuid.UUID
) -> None:
    """Suppression logique: le médicament reste référencé par les ventes passées."""
    medication = await _get_medication(db, tenant_id, medication_id)
    medication.is_active = False
    await db.commit()
    await invalidate_usage(tenant_id)
    logger.info(f"Médicament {medication_id} désactivé")


async def list_medications(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    search: str | None = None,
    include_inactive: bool = False,
) -> MedicationListResponse:
    """
    Liste les médicaments du tenant avec leur stock total.

    Args:
        search: Recherche partielle sur le nom, la catégorie ou le code-barres
        include_inactive: Inclure les médicaments supprimés
    """
    with tracer.start_as_current_span("list_medications") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        filters = [Medication.tenant_id == tenant_id]
        if not include_inactive:
            filters.append(Medication.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            filters.append(
                or_(
                    Medication.name.ilike(pattern),
                    Medication.category.ilike(pattern),
                    Medication.barcode.ilike(pattern),
                )
            )

        result = await db.execute(select(Medication).where(*filters).order_by(Medication.name))
        today = date.today()
        items = [_medication_response(m, today) for m in result.scalars().all()]
        span.set_attribute("medications.count", len(items))
        return MedicationListResponse(items=items, total=len(items))


async def get_medication(
    db: AsyncSession, tenant_id: uuid.UUID, medication_id: uuid.UUID
) -> MedicationDetail:
    medication = await _get_medication(db, tenant_id, medication_id)
    detail = MedicationDetail.model_validate(medication)
    detail.total_stock = total_stock(medication)
    return detail


# =============================================================================
# Lots
# =============================================================================


async def add_batch(db: AsyncSession, ctx: StaffContext, data: BatchCreate) -> BatchResponse:
    """
    Ajoute un lot à un médicament du tenant et trace l'entrée de stock.

    Raises:
        NotFoundError: Médicament absent du tenant
    """
    with tracer.start_as_current_span("add_batch") as span:
        span.set_attribute("medication.id", str(data.medication_id))

        medication = await _get_medication(db, ctx.tenant_id, data.medication_id)
        batch = MedicationBatch(tenant_id=ctx.tenant_id, **data.model_dump())
        db.add(batch)
        await db.flush()
        db.add(
            StockMovement(
                tenant_id=ctx.tenant_id,
                medication_id=medication.id,
                batch_id=batch.id,
                movement_type="restock",
                quantity=data.quantity,
                reason="New batch",
                created_by=ctx.profile_id,
            )
        )
        medication.last_restocked_at = datetime.now(UTC)
        await db.commit()
        await db.refresh(batch)

        span.set_attribute("batch.id", str(batch.id))
        return BatchResponse.model_validate(batch)


async def delete_batch(db: AsyncSession, tenant_id: uuid.UUID, batch_id: uuid.UUID) -> None:
    """Supprime un lot et ses mouvements de stock."""
    batch = await _get_batch(db, tenant_id, batch_id)
    await db.execute(
        delete(StockMovement).where(
            StockMovement.batch_id == batch.id, StockMovement.tenant_id == tenant_id
        )
    )
    await db.delete(batch)
    await db.commit()
    logger.info(f"Lot {batch_id} supprimé du tenant {tenant_id}")


async def list_batches(
    db: AsyncSession, tenant_id: uuid.UUID, medication_id: uuid.UUID | None = None
) -> list[BatchResponse]:
    filters = [MedicationBatch.tenant_id == tenant_id]
    if medication_id is not None:
        filters.append(MedicationBatch.medication_id == medication_id)
    result = await db.execute(
        select(MedicationBatch).where(*filters).order_by(MedicationBatch.expiry_date)
    )
    return [BatchResponse.model_validate(b) for b in result.scalars().all()]


async def _apply_restock(
    db: AsyncSession,
    ctx: StaffContext,
    medication: Medication,
    quantity: int,
    reason: str | None,
    batch_id: uuid.UUID | None = None,
    movement_type: str = "restock",
    reference_id: uuid.UUID | None = None,
) -> tuple[MedicationBatch, StockMovement]:
    """Ajoute ``quantity`` au lot ciblé sans committer."""
    if quantity <= 0:
        raise BadRequestError(detail="Restock quantity must be greater than zero")

    if batch_id is not None:
        batch = await _get_batch(db, ctx.tenant_id, batch_id)
        if batch.medication_id != medication.id:
            raise BadRequestError(detail="Batch does not belong to this medication")
    else:
        result = await db.execute(
            select(MedicationBatch)
            .where(
                MedicationBatch.tenant_id == ctx.tenant_id,
                MedicationBatch.medication_id == medication.id,
            )
            .order_by(MedicationBatch.expiry_date.desc())
            .limit(1)
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            raise BadRequestError(
                detail=f"Medication {medication.id} has no batch to restock; add a batch first"
            )

    batch.quantity += quantity
    movement = StockMovement(
        tenant_id=ctx.tenant_id,
        medication_id=medication.id,
        batch_id=batch.id,
        movement_type=movement_type,
        quantity=quantity,
        reference_id=reference_id,
        reason=reason,
        created_by=ctx.profile_id,
    )
    db.add(movement)
    medication.last_restocked_at = datetime.now(UTC)
    return batch, movement


async def restock_medication(
    db: AsyncSession,
    ctx: StaffContext,
    medication_id: uuid.UUID,
    quantity: int,
    reason: str | None = None,
    batch_id: uuid.UUID | None = None,
) -> RestockResult:
    """
    Réapprovisionne un médicament.

    Le lot ciblé est ``batch_id`` ou, à défaut, le lot du médicament dont
    l'expiration est la plus tardive.

    Raises:
        BadRequestError: Quantité nulle ou aucun lot disponible
        NotFoundError: Médicament ou lot absent du tenant
    """
    with tracer.start_as_current_span("restock_medication") as span:
        span.set_attribute("medication.id", str(medication_id))
        span.set_attribute("restock.quantity", quantity)

        medication = await _get_medication(db, ctx.tenant_id, medication_id)
        batch, movement = await _apply_restock(
            db, ctx, medication, quantity, reason or "Manual restock", batch_id
        )
        await db.commit()
        await db.refresh(batch)
        await db.refresh(movement)

        span.add_event("Stock réapprovisionné")
        return RestockResult(
            batch=BatchResponse.model_validate(batch),
            movement=StockMovementResponse.model_validate(movement),
        )


# =============================================================================
# Fournisseurs
# =============================================================================


async def list_suppliers(db: AsyncSession, tenant_id: uuid.UUID) -> list[SupplierResponse]:
    result = await db.execute(
        select(Supplier).where(Supplier.tenant_id == tenant_id).order_by(Supplier.name)
    )
    return [SupplierResponse.model_validate(s) for s in result.scalars().all()]


async def _get_supplier(db: AsyncSession, tenant_id: uuid.UUID, supplier_id: uuid.UUID) -> Supplier:
    result = await db.execute(
        select(Supplier).where(Supplier.id == supplier_id, Supplier.tenant_id == tenant_id)
    )
    supplier = result.scalar_one_or_none()
    if supplier is None:
        raise NotFoundError(resource_type="Supplier", resource_id=supplier_id)
    return supplier


async def get_supplier(
    db: AsyncSession, tenant_id: uuid.UUID, supplier_id: uuid.UUID
) -> SupplierResponse:
    return SupplierResponse.model_validate(await _get_supplier(db, tenant_id, supplier_id))


async def add_supplier(db: AsyncSession, ctx: StaffContext, data: SupplierCreate) -> SupplierResponse:
    values = data.model_dump()
    if values.get("phone_number"):
        values["phone_number"] = normalize_phone(values["phone_number"])
    supplier = Supplier(tenant_id=ctx.tenant_id, created_by=ctx.profile_id, **values)
    db.add(supplier)
    await db.commit()
    await db.refresh(supplier)
    return SupplierResponse.model_validate(supplier)


async def update_supplier(
    db: AsyncSession, tenant_id: uuid.UUID, supplier_id: uuid.UUID, data: SupplierUpdate
) -> SupplierResponse:
    supplier = await _get_supplier(db, tenant_id, supplier_id)
    updates = data.model_dump(exclude_unset=True)
    if updates.get("phone_number"):
        updates["phone_number"] = normalize_phone(updates["phone_number"])
    for field, value in updates.items():
        setattr(supplier, field, value)
    await db.commit()
    await db.refresh(supplier)
    return SupplierResponse.model_validate(supplier)


# =============================================================================
# Alertes
# =============================================================================


async def get_stock_alerts(
    db: AsyncSession, tenant_id: uuid.UUID, today: date | None = None
) -> StockAlertsResponse:
    """
    Calcule les alertes de stock du tenant.

    - stock bas: stock total non expiré <= LOW_STOCK_THRESHOLD (médicaments actifs)
    - expiration proche: 0 <= jours restants <= EXPIRY_WARNING_DAYS (un lot
      qui expire aujourd'hui est encore vendable)
    - expirés: lots dont la date est passée et qui ont encore du stock
    """
    with tracer.start_as_current_span("get_stock_alerts") as span:
        span.set_attribute("tenant.id", str(tenant_id))
        today = today or date.today()

        result = await db.execute(
            select(Medication)
            .where(Medication.tenant_id == tenant_id, Medication.is_active.is_(True))
            .order_by(Medication.name)
        )
        medications = result.scalars().all()

        low_stock: list[LowStockAlert] = []
        expiring: list[BatchAlert] = []
        expired: list[BatchAlert] = []
        for medication in medications:
            quantity = total_stock(medication, today)
            if quantity <= settings.LOW_STOCK_THRESHOLD:
                low_stock.append(
                    LowStockAlert(
                        medication_id=medication.id,
                        name=medication.name,
                        strength=medication.strength,
                        total_quantity=quantity,
                    )
                )
            for batch in medication.batches:
                days = (batch.expiry_date - today).days
                alert = BatchAlert(
                    batch_id=batch.id,
                    medication_id=medication.id,
                    medication_name=medication.name,
                    batch_number=batch.batch_number,
                    expiry_date=batch.expiry_date,
                    quantity=batch.quantity,
                    days_until_expiry=days,
                )
                if days < 0 and batch.quantity > 0:
                    expired.append(alert)
                elif 0 <= days <= settings.EXPIRY_WARNING_DAYS:
                    expiring.append(alert)

        expiring.sort(key=lambda a: a.expiry_date)
        span.set_attribute("alerts.low_stock", len(low_stock))
        span.set_attribute("alerts.expiring", len(expiring))
        span.set_attribute("alerts.expired", len(expired))
        return StockAlertsResponse(low_stock=low_stock, expiring_soon=expiring, expired=expired)


# =============================================================================
# Bons de commande
# =============================================================================


async def create_purchase_order(
    db: AsyncSession, ctx: StaffContext, data: PurchaseOrderCreate
) -> PurchaseOrderResponse:
    """
    Crée un bon de commande en attente.

    Raises:
        NotFoundError: Fournisseur ou médicament absent du tenant
    """
    with tracer.start_as_current_span("create_purchase_order") as span:
        span.set_attribute("supplier.id", str(data.supplier_id))

        await _get_supplier(db, ctx.tenant_id, data.supplier_id)
        medication_ids = {item.medication_id for item in data.items}
        found = set(
            (
                await db.execute(
                    select(Medication.id).where(
                        Medication.tenant_id == ctx.tenant_id, Medication.id.in_(medication_ids)
                    )
                )
            ).scalars()
        )
        missing = medication_ids - found
        if missing:
            raise NotFoundError(resource_type="Medication", resource_id=next(iter(missing)))

        order = PurchaseOrder(
            tenant_id=ctx.tenant_id,
            supplier_id=data.supplier_id,
            status="pending",
            created_by=ctx.profile_id,
        )
        total = Decimal("0")
        for item in data.items:
            line_total = item.unit_price * item.quantity
            total += line_total
            order.items.append(
                PurchaseOrderItem(
                    tenant_id=ctx.tenant_id,
                    medication_id=item.medication_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=line_total,
                )
            )
        order.total_amount = total

        db.add(order)
        await db.commit()
        await db.refresh(order, attribute_names=["items"])

        span.set_attribute("purchase_order.id", str(order.id))
        logger.info(f"Bon de commande {order.id} créé ({len(data.items)} lignes, total {total})")
        return PurchaseOrderResponse.model_validate(order)


async def list_purchase_orders(
    db: AsyncSession, tenant_id: uuid.UUID, status: str | None = None
) -> list[PurchaseOrderResponse]:
    filters = [PurchaseOrder.tenant_id == tenant_id]
    if status:
        filters.append(PurchaseOrder.status == status)
    result = await db.execute(
        select(PurchaseOrder).where(*filters).order_by(PurchaseOrder.created_at.desc())
    )
    return [PurchaseOrderResponse.model_validate(po) for po in result.scalars().all()]


async def deliver_purchase_order(
    db: AsyncSession, ctx: StaffContext, purchase_order_id: uuid.UUID
) -> PurchaseOrderResponse:
    """
    Marque un bon de commande livré et réapprovisionne chaque ligne.

    Raises:
        NotFoundError: Bon de commande absent du tenant
        ConflictError: Bon de commande déjà livré ou annulé
    """
    with tracer.start_as_current_span("deliver_purchase_order") as span:
        span.set_attribute("purchase_order.id", str(purchase_order_id))

        result = await db.execute(
            select(PurchaseOrder).where(
                PurchaseOrder.id == purchase_order_id, PurchaseOrder.tenant_id == ctx.tenant_id
            )
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(resource_type="PurchaseOrder", resource_id=purchase_order_id)
        if order.status != "pending":
            raise ConflictError(detail=f"Purchase order is already {order.status}")

        reason = f"Purchase Order #{order.id}"
        for item in order.items:
            medication = await _get_medication(db, ctx.tenant_id, item.medication_id)
            await _apply_restock(
                db,
                ctx,
                medication,
                item.quantity,
                reason,
                movement_type="purchase_order",
                reference_id=order.id,
            )

        order.status = "delivered"
        order.delivery_date = datetime.now(UTC)
        await db.commit()
        await db.refresh(order, attribute_names=["items"])

        await publish(
            subject_for("purchase_order", "delivered"),
            {
                "tenant_id": str(ctx.tenant_id),
                "purchase_order_id": str(order.id),
                "total_amount": str(order.total_amount),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )
        return PurchaseOrderResponse.model_validate(order)

