"""Invalidation des caches mémoire locaux à la réception d'événements.

Chaque worker garde son propre cache des listes de ventes par tenant. Une
vente écrite sur un autre worker est propagée ici.
"""

import logging

from app.core.events import subject_for, subscribe
from app.core.ttl_cache import sales_cache

logger = logging.getLogger(__name__)


@subscribe(subject_for("sale", "created"))
@subscribe(subject_for("sale", "updated"))
async def invalidate_sales_cache(payload: dict) -> None:
    tenant_id = payload.get("tenant_id")
    if not tenant_id:
        logger.warning(f"Événement vente sans tenant_id ignoré: {payload}")
        return
    removed = sales_cache.invalidate_tenant(tenant_id)
    logger.debug(f"{removed} entrée(s) du cache ventes invalidée(s) pour le tenant {tenant_id}")


@subscribe(subject_for("payment", "received"))
async def invalidate_sales_cache_on_payment(payload: dict) -> None:
    """Un encaissement espèces d'une vente change son statut dans les listes en cache."""
    if payload.get("item_type") != "sale":
        return
    await invalidate_sales_cache(payload)
