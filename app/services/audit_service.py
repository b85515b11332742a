"""Service du journal d'audit.

Les entrées sont ajoutées à la session courante : elles sont validées (ou
annulées) avec la transaction de l'opération qu'elles décrivent.
"""

import logging
import uuid
from typing import Any

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog
from app.schemas.audit import AuditLogListResponse, AuditLogResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SYSTEM_ACTOR = "system"


def record_audit(
    db: AsyncSession,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: dict[str, Any] | None = None,
    created_by: Any = SYSTEM_ACTOR,
    tenant_id: uuid.UUID | None = None,
) -> AuditLog:
    """
    Ajoute une entrée d'audit à la session (commit à la charge de l'appelant).

    Args:
        action: Action tracée (ex: "payment_completed", "webhook_error")
        entity_type: Type d'entité concernée (ex: "subscription", "sale")
        entity_id: Identifiant de l'entité
        details: Données complémentaires sérialisables en JSON
        created_by: Profil, utilisateur Keycloak ou "system"
        tenant_id: Tenant concerné, si connu
    """
    entry = AuditLog(
        tenant_id=tenant_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details or {},
        created_by=str(created_by),
    )
    db.add(entry)
    logger.info(f"Audit: {action} {entity_type}={entity_id} par {created_by}")
    return entry


async def list_audit_logs(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    entity_type: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> AuditLogListResponse:
    """Liste les entrées d'audit d'un tenant, les plus récentes d'abord."""
    with tracer.start_as_current_span("list_audit_logs") as span:
        span.set_attribute("tenant.id", str(tenant_id))

        filters = [AuditLog.tenant_id == tenant_id]
        if entity_type:
            filters.append(AuditLog.entity_type == entity_type)

        total = await db.scalar(select(func.count()).select_from(AuditLog).where(*filters))
        result = await db.execute(
            select(AuditLog)
            .where(*filters)
            .order_by(AuditLog.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        items = [AuditLogResponse.model_validate(row) for row in result.scalars().all()]
        span.set_attribute("audit.count", len(items))

        return AuditLogListResponse(items=items, total=total or 0, skip=skip, limit=limit)
