"""Service de caisse : paiements en attente, encaissements et reçus."""

import logging
import secrets
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import String, func, literal_column, select, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.events import publish, subject_for
from app.core.exceptions import BadRequestError, ConflictError, NotFoundError
from app.core.security import StaffContext
from app.core.ttl_cache import sales_cache
from app.models.appointment import Appointment, Service
from app.models.patient import Patient
from app.models.pharmacy import Medication
from app.models.sale import Receipt, Sale
from app.schemas.cashier import (
    CashPaymentResponse,
    PaymentHistoryItem,
    PaymentHistoryResponse,
    PendingAppointment,
    PendingPaymentsResponse,
    PendingSale,
    ReceiptData,
    ReceiptMedicationLine,
    ReceiptResponse,
)
from app.services.usage_service import invalidate_usage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Ventes encore encaissables (une vente remboursée ne repasse jamais à "paid")
PAYABLE_SALE_STATUSES = ("unpaid", "pending")

RECEIPT_SEPARATOR = "-" * 40


def appointment_amount_due(appointment: Appointment) -> Decimal:
    """Prix de la prestation (0 pour une prestation libre sans tarif)."""
    if appointment.service is not None:
        return appointment.service.price
    return Decimal("0")


def generate_receipt_number(now: datetime | None = None) -> str:
    """Numéro de reçu ``RCP-YYYYMMDD-XXXXXX``."""
    now = now or datetime.now(UTC)
    return f"RCP-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def format_amount(amount: Decimal) -> str:
    return f"{settings.CURRENCY_LABEL} {amount:.2f}"


def format_receipt(data: ReceiptData) -> str:
    """Formate un reçu en texte imprimable."""
    lines = [
        f"Receipt #{data.receipt_number}",
        f"Date: {data.issued_at:%Y-%m-%d %H:%M}",
        "",
        f"Patient: {data.patient_name or 'Unknown Patient'}",
        "",
        "Medication Details:",
    ]
    if data.medications:
        lines.extend(
            f"- {line.name} ({line.quantity} x {format_amount(line.unit_price)}) "
            f"= {format_amount(line.total)}"
            for line in data.medications
        )
    else:
        lines.append("No medications")
    lines += [
        "",
        f"Medication Total: {format_amount(data.medication_total)}",
        "",
        "Appointment/Services:",
    ]
    if data.service_name:
        lines.append(f"- {data.service_name} = {format_amount(data.appointment_total)}")
    else:
        lines.append("No appointments")
    lines += [
        "",
        f"Appointment Total: {format_amount(data.appointment_total)}",
        "",
        RECEIPT_SEPARATOR,
        f"Grand Total: {format_amount(data.grand_total)}",
        f"Payment Method: {data.payment_method}",
        RECEIPT_SEPARATOR,
    ]
    return "\n".join(lines)


# =============================================================================
# Paiements en attente
# =============================================================================


async def _pending(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID | None = None
) -> PendingPaymentsResponse:
    appointment_filters = [
        Appointment.tenant_id == tenant_id,
        Appointment.payment_status == "unpaid",
        Appointment.status != "cancelled",
    ]
    sale_filters = [Sale.tenant_id == tenant_id, Sale.payment_status.in_(("unpaid", "pending"))]
    if patient_id is not None:
        appointment_filters.append(Appointment.patient_id == patient_id)
        sale_filters.append(Sale.patient_id == patient_id)

    appointment_rows = await db.execute(
        select(Appointment, Patient.full_name)
        .join(Patient, Patient.id == Appointment.patient_id)
        .where(*appointment_filters)
        .order_by(Appointment.date, Appointment.time)
    )
    appointments = [
        PendingAppointment(
            id=appointment.id,
            patient_id=appointment.patient_id,
            patient_name=patient_name,
            service_name=appointment.service.name if appointment.service else appointment.custom_service,
            date=appointment.date,
            time=appointment.time,
            amount_due=appointment_amount_due(appointment),
        )
        for appointment, patient_name in appointment_rows.all()
    ]

    sale_rows = await db.execute(
        select(Sale, Patient.full_name)
        .outerjoin(Patient, Patient.id == Sale.patient_id)
        .where(*sale_filters)
        .order_by(Sale.created_at.desc())
    )
    sales = [
        PendingSale(
            id=sale.id,
            patient_id=sale.patient_id,
            patient_name=patient_name,
            total_amount=sale.total_amount,
            created_at=sale.created_at,
        )
        for sale, patient_name in sale_rows.all()
    ]

    total_due = sum((a.amount_due for a in appointments), Decimal("0")) + sum(
        (s.total_amount for s in sales), Decimal("0")
    )
    return PendingPaymentsResponse(
        appointments=appointments,
        sales=sales,
        appointment_count=len(appointments),
        sale_count=len(sales),
        total_due=total_due,
    )


async def get_pending_payments(db: AsyncSession, tenant_id: uuid.UUID) -> PendingPaymentsResponse:
    """Rendez-vous et ventes non payés du tenant, avec nombres et montant total dû."""
    with tracer.start_as_current_span("get_pending_payments") as span:
        span.set_attribute("tenant.id", str(tenant_id))
        return await _pending(db, tenant_id)


async def get_unpaid_items(
    db: AsyncSession, tenant_id: uuid.UUID, patient_id: uuid.UUID
) -> PendingPaymentsResponse:
    return await _pending(db, tenant_id, patient_id)


# =============================================================================
# Encaissement
# =============================================================================


async def process_cash_payment(
    db: AsyncSession,
    ctx: StaffContext,
    item_type: str,
    item_id: uuid.UUID,
    amount: Decimal | None = None,
) -> CashPaymentResponse:
    """
    Encaisse en espèces un rendez-vous ou une vente.

    Raises:
        NotFoundError: Élément absent du tenant
        ConflictError: Élément déjà payé, remboursé ou annulé
    """
    with tracer.start_as_current_span("process_cash_payment") as span:
        span.set_attribute("payment.item_type", item_type)
        span.set_attribute("payment.item_id", str(item_id))

        now = datetime.now(UTC)
        if item_type == "appointment":
            result = await db.execute(
                select(Appointment).where(
                    Appointment.id == item_id, Appointment.tenant_id == ctx.tenant_id
                )
            )
            appointment = result.scalar_one_or_none()
            if appointment is None:
                raise NotFoundError(resource_type="Appointment", resource_id=item_id)
            if appointment.status == "cancelled":
                raise ConflictError(detail="Appointment is cancelled")
            if appointment.payment_status != "unpaid":
                raise ConflictError(detail=f"Appointment is already {appointment.payment_status}")

            paid = amount if amount is not None else appointment_amount_due(appointment)
            appointment.payment_status = "paid"
            appointment.payment_method = "cash"
            appointment.amount_paid = paid
            appointment.payment_date = now
        elif item_type == "sale":
            result = await db.execute(
                select(Sale).where(Sale.id == item_id, Sale.tenant_id == ctx.tenant_id)
            )
            sale = result.scalar_one_or_none()
            if sale is None:
                raise NotFoundError(resource_type="Sale", resource_id=item_id)
            if sale.payment_status not in PAYABLE_SALE_STATUSES:
                raise ConflictError(detail=f"Sale is already {sale.payment_status}")

            paid = sale.total_amount
            sale.payment_status = "paid"
            sale.payment_method = "cash"
        else:
            raise BadRequestError(detail=f"Unknown item type: {item_type}")

        await db.commit()

        if item_type == "sale":
            sales_cache.invalidate_tenant(ctx.tenant_id)
            await invalidate_usage(ctx.tenant_id)
        await publish(
            subject_for("payment", "received"),
            {
                "tenant_id": str(ctx.tenant_id),
                "item_type": item_type,
                "item_id": str(item_id),
                "amount": str(paid),
                "payment_method": "cash",
                "received_by": str(ctx.profile_id),
                "timestamp": now.isoformat(),
            },
        )
        logger.info(f"Paiement espèces {item_type} {item_id}: {paid}")
        return CashPaymentResponse(
            item_type=item_type,
            item_id=item_id,
            amount=paid,
            payment_method="cash",
            payment_status="paid",
            paid_at=now,
        )


async def get_payment_history(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
) -> PaymentHistoryResponse:
    """
    Ventes et rendez-vous payés, du plus récent au plus ancien.

    Les deux sources sont fusionnées par un ``UNION ALL``; le tri, la
    pagination et le total sont calculés par PostgreSQL.
    """
    sale_filters = [Sale.tenant_id == tenant_id, Sale.payment_status == "paid"]
    appointment_filters = [
        Appointment.tenant_id == tenant_id,
        Appointment.payment_status == "paid",
        Appointment.payment_date.is_not(None),
    ]
    if start is not None:
        sale_filters.append(Sale.created_at >= start)
        appointment_filters.append(Appointment.payment_date >= start)
    if end is not None:
        sale_filters.append(Sale.created_at <= end)
        appointment_filters.append(Appointment.payment_date <= end)

    paid_sales = select(
        literal_column("'sale'", String).label("item_type"),
        Sale.id.label("item_id"),
        Sale.patient_id.label("patient_id"),
        Sale.total_amount.label("amount"),
        Sale.payment_method.label("payment_method"),
        Sale.created_at.label("paid_at"),
    ).where(*sale_filters)
    paid_appointments = (
        select(
            literal_column("'appointment'", String).label("item_type"),
            Appointment.id.label("item_id"),
            Appointment.patient_id.label("patient_id"),
            func.coalesce(Appointment.amount_paid, Service.price, 0).label("amount"),
            Appointment.payment_method.label("payment_method"),
            Appointment.payment_date.label("paid_at"),
        )
        .outerjoin(Service, Service.id == Appointment.service_id)
        .where(*appointment_filters)
    )
    history = union_all(paid_sales, paid_appointments).subquery("payment_history")

    total = (await db.execute(select(func.count()).select_from(history))).scalar_one()
    rows = await db.execute(
        select(history)
        .order_by(history.c.paid_at.desc(), history.c.item_id)
        .offset(skip)
        .limit(limit)
    )
    items = [PaymentHistoryItem(**row._mapping) for row in rows.all()]

    return PaymentHistoryResponse(items=items, total=total, skip=skip, limit=limit)


# =============================================================================
# Reçus
# =============================================================================


async def generate_receipt(
    db: AsyncSession,
    ctx: StaffContext,
    sale_id: uuid.UUID | None = None,
    appointment_id: uuid.UUID | None = None,
) -> ReceiptResponse:
    """
    Génère et enregistre un reçu pour une vente et/ou un rendez-vous.

    Raises:
        BadRequestError: Aucun identifiant fourni
        NotFoundError: Vente ou rendez-vous absent du tenant
    """
    if sale_id is None and appointment_id is None:
        raise BadRequestError(detail="sale_id or appointment_id is required")

    with tracer.start_as_current_span("generate_receipt") as span:
        span.set_attribute("tenant.id", str(ctx.tenant_id))

        now = datetime.now(UTC)
        patient_id = None
        payment_method = None
        medications: list[ReceiptMedicationLine] = []
        medication_total = Decimal("0")
        service_name = None
        appointment_total = Decimal("0")

        if sale_id is not None:
            result = await db.execute(
                select(Sale).where(Sale.id == sale_id, Sale.tenant_id == ctx.tenant_id)
            )
            sale = result.scalar_one_or_none()
            if sale is None:
                raise NotFoundError(resource_type="Sale", resource_id=sale_id)
            names = dict(
                (
                    await db.execute(
                        select(Medication.id, Medication.name).where(
                            Medication.id.in_({item.medication_id for item in sale.items})
                        )
                    )
                ).all()
            )
            medications = [
                ReceiptMedicationLine(
                    name=names.get(item.medication_id, "Unknown Medication"),
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total_price,
                )
                for item in sale.items
            ]
            medication_total = sale.total_amount
            patient_id = sale.patient_id
            payment_method = sale.payment_method

        if appointment_id is not None:
            result = await db.execute(
                select(Appointment).where(
                    Appointment.id == appointment_id, Appointment.tenant_id == ctx.tenant_id
                )
            )
            appointment = result.scalar_one_or_none()
            if appointment is None:
                raise NotFoundError(resource_type="Appointment", resource_id=appointment_id)
            service_name = (
                appointment.service.name if appointment.service else appointment.custom_service
            )
            appointment_total = appointment.amount_paid or appointment_amount_due(appointment)
            patient_id = patient_id or appointment.patient_id
            payment_method = payment_method or appointment.payment_method

        patient_name = None
        if patient_id is not None:
            patient_name = await db.scalar(select(Patient.full_name).where(Patient.id == patient_id))

        data = ReceiptData(
            receipt_number=generate_receipt_number(now),
            issued_at=now,
            patient_name=patient_name,
            medications=medications,
            medication_total=medication_total,
            service_name=service_name,
            appointment_total=appointment_total,
            payment_method=payment_method or "cash",
        )

        receipt = Receipt(
            tenant_id=ctx.tenant_id,
            receipt_number=data.receipt_number,
            sale_id=sale_id,
            appointment_id=appointment_id,
            amount=data.grand_total,
            medication_total=medication_total,
            appointment_total=appointment_total,
            payment_method=data.payment_method,
            created_by=ctx.profile_id,
        )
        db.add(receipt)
        await db.commit()
        await db.refresh(receipt)

        span.set_attribute("receipt.number", receipt.receipt_number)
        return ReceiptResponse(
            id=receipt.id,
            receipt_number=receipt.receipt_number,
            sale_id=receipt.sale_id,
            appointment_id=receipt.appointment_id,
            amount=receipt.amount,
            medication_total=receipt.medication_total,
            appointment_total=receipt.appointment_total,
            payment_method=receipt.payment_method,
            created_at=receipt.created_at,
            text=format_receipt(data),
        )
