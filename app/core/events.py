"""
Façade du système d'événements - core-africare-practice.

Les services importent ``publish`` depuis ce module plutôt que depuis le
backend, pour pouvoir changer de broker sans toucher au code métier.

Usage:
    from app.core.events import publish, subject_for

    await publish(subject_for("sale", "created"), {"sale_id": str(sale.id)})
"""

from app.core.events_redis import dispatch, lifespan, publish, subject_for, subscribe

_BACKEND = "redis"
_BACKEND_VERSION = "Redis Pub/Sub"

__all__ = [
    "dispatch",
    "get_backend_info",
    "lifespan",
    "publish",
    "subject_for",
    "subscribe",
]


def get_backend_info() -> dict:
    """
    Retourne les informations sur le backend messaging actif.

    Example:
        >>> from app.core.events import get_backend_info
        >>> get_backend_info()["backend"]
        'redis'
    """
    return {
        "backend": _BACKEND,
        "version": _BACKEND_VERSION,
        "module": "app.core.events_redis",
    }
