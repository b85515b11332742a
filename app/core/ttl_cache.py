"""
Cache mémoire par tenant avec expiration (TTL).

Utilisé pour les listes de ventes et le patient "vente rapide" de chaque
tenant. Chaque entrée mémorise son tenant : une lecture faite au nom d'un
autre tenant supprime l'entrée et renvoie None, ce qui empêche toute fuite
de données entre tenants même en cas de collision de clé.

L'expiration est vérifiée à la lecture, il n'y a pas de tâche de purge.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    tenant_id: str
    expires_at: float


class TenantTTLCache:
    """
    Cache clé/valeur en mémoire, scoppé par tenant.

    Attributes:
        name: Nom du cache (logs)
        default_ttl: Durée de vie par défaut en secondes

    Example:
        ```python
        cache = TenantTTLCache("sales", default_ttl=300)
        cache.set(f"sales-{tenant_id}-today", payload, tenant_id=tenant_id)
        cached = cache.get(f"sales-{tenant_id}-today", tenant_id=tenant_id)
        ```
    """

    def __init__(
        self,
        name: str,
        default_ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str, tenant_id: Any) -> Any | None:
        """
        Lit une entrée pour le tenant donné.

        Returns:
            La valeur, ou None si absente, expirée ou appartenant à un autre tenant
        """
        tenant = str(tenant_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if entry.tenant_id != tenant:
                logger.warning(
                    f"Cache '{self.name}': tenant mismatch pour {key} "
                    f"(attendu={tenant}, trouvé={entry.tenant_id}), entrée supprimée"
                )
                del self._entries[key]
                return None

            if self._clock() >= entry.expires_at:
                del self._entries[key]
                logger.debug(f"Cache '{self.name}' EXPIRED: {key}")
                return None

            logger.debug(f"Cache '{self.name}' HIT: {key}")
            return entry.value

    def set(self, key: str, value: Any, tenant_id: Any, ttl: float | None = None) -> None:
        expires_at = self._clock() + (ttl if ttl is not None else self.default_ttl)
        with self._lock:
            self._entries[key] = CacheEntry(
                value=value, tenant_id=str(tenant_id), expires_at=expires_at
            )

    def invalidate_pattern(self, pattern: str) -> int:
        """Supprime les entrées dont la clé contient ``pattern``."""
        with self._lock:
            keys = [key for key in self._entries if pattern in key]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"Cache '{self.name}': {len(keys)} entrée(s) invalidée(s) pour '{pattern}'")
        return len(keys)

    def invalidate_tenant(self, tenant_id: Any) -> int:
        tenant = str(tenant_id)
        with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.tenant_id == tenant]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def invalidate_sale(self, sale_id: Any) -> int:
        return self.invalidate_pattern(f"sale-{sale_id}")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


sales_cache = TenantTTLCache("sales", default_ttl=settings.SALES_CACHE_TTL)
quick_sale_cache = TenantTTLCache("quick_sale_patient", default_ttl=settings.QUICK_SALE_CACHE_TTL)

__all__ = ["CacheEntry", "TenantTTLCache", "quick_sale_cache", "sales_cache"]
