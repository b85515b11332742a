"""
Messaging Redis Pub/Sub - core-africare-practice.

Les services publient des événements métier après commit
(``practice.sale.created``, ``practice.subscription.updated``, ...).
Chaque worker s'abonne aux sujets enregistrés via ``@subscribe`` pour
invalider ses caches mémoire locaux. Le client Redis initialisé ici est
aussi partagé avec ``app.core.cache``.

Pas de persistance garantie : un événement publié sans abonné est perdu,
ce qui est acceptable pour de l'invalidation de cache et des notifications.

Usage:
    from app.core.events import publish, subscribe

    @subscribe("practice.sale.created")
    async def handle_sale_created(payload: dict):
        ...

    await publish("practice.sale.created", {"tenant_id": "...", "sale_id": "..."})
"""

import asyncio
import json
import logging
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel

from app.core.config import settings
from app.core.retry import async_retry_with_backoff

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SUBJECT_PREFIX = "practice"

# Client Redis global (créé au démarrage, réutilisé)
redis_client: redis.Redis | None = None

# Registre des handlers
handlers: dict[str, list[Callable[[dict], Awaitable[None]]]] = {}

# Task de consommation
consumer_task: asyncio.Task | None = None


def subject_for(entity: str, action: str) -> str:
    """Construit un sujet d'événement (ex: ``practice.sale.created``)."""
    return f"{SUBJECT_PREFIX}.{entity}.{action}"


@async_retry_with_backoff(max_attempts=5, exceptions=(redis.ConnectionError, redis.TimeoutError))
async def init_redis():
    """Initialise le client Redis au démarrage (Redis peut démarrer après le service)."""
    global redis_client
    redis_client = redis.from_url(
        settings.REDIS_URL,
        db=settings.REDIS_DB,
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
    )
    await redis_client.ping()
    logger.info(f"Redis client initialisé: {settings.REDIS_URL}")


async def close_redis():
    """Ferme le client Redis proprement."""
    global redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis client fermé")


async def publish(
    subject: str,
    payload: dict | BaseModel,
    max_retries: int = 3,
    raise_on_failure: bool = False,
) -> str | None:
    """
    Publie un événement via Redis Pub/Sub.

    Args:
        subject: Sujet de l'événement (ex: "practice.sale.created")
        payload: Données de l'événement (dict ou Pydantic model)
        max_retries: Nombre maximum de tentatives (défaut: 3)
        raise_on_failure: Relever l'exception après la dernière tentative

    Returns:
        ID du message publié, ou None si la publication a échoué

    Note:
        Les services publient après le commit : un échec de publication ne doit
        pas annuler une écriture déjà validée, d'où ``raise_on_failure=False``
        par défaut.
    """
    if isinstance(payload, BaseModel):
        payload_dict = payload.model_dump(mode="json")
    else:
        payload_dict = payload

    if redis_client is None:
        logger.warning(f"Redis non initialisé, événement '{subject}' non publié")
        return None

    message_id = str(uuid.uuid4())
    event_data = {
        "id": message_id,
        "subject": subject,
        "timestamp": datetime.now(UTC).isoformat(),
        "data": payload_dict,
    }

    span_attributes = {
        "messaging.system": "redis",
        "messaging.destination": subject,
        "messaging.message.id": message_id,
    }

    with tracer.start_as_current_span(
        f"publish.{subject}", kind=trace.SpanKind.PRODUCER, attributes=span_attributes
    ) as span:
        for attempt in range(max_retries):
            try:
                await redis_client.publish(subject, json.dumps(event_data, default=str))
                logger.debug(f"Événement '{subject}' publié avec ID: {message_id}")
                span.add_event("Événement publié", {"attempt": attempt + 1})
                return message_id

            except Exception as e:
                wait_time = 2**attempt  # Backoff: 1s, 2s, 4s

                if attempt < max_retries - 1:
                    logger.warning(
                        f"Échec publication '{subject}' (tentative {attempt + 1}/{max_retries}): {e}. "
                        f"Retry dans {wait_time}s"
                    )
                    span.add_event(
                        f"Retry après échec (tentative {attempt + 1})",
                        {"error": str(e), "wait_time": wait_time},
                    )
                    await asyncio.sleep(wait_time)
                else:
                    error_msg = f"Échec définitif publication '{subject}' après {max_retries} tentatives: {e}"
                    logger.error(error_msg, exc_info=True)
                    span.set_status(Status(StatusCode.ERROR, error_msg))
                    span.record_exception(e)
                    if raise_on_failure:
                        raise
    return None


def subscribe(subject: str):
    """Décorateur pour enregistrer un handler."""

    def decorator(func: Callable[[dict], Awaitable[None]]) -> Callable[[dict], Awaitable[None]]:
        handlers.setdefault(subject, []).append(func)
        logger.info(f"Handler '{func.__name__}' enregistré pour '{subject}'")
        return func

    return decorator


async def dispatch(subject: str, raw_message: str) -> int:
    """
    Exécute les handlers enregistrés pour un message reçu.

    Returns:
        Nombre de handlers exécutés avec succès
    """
    event_data = json.loads(raw_message)
    payload = event_data.get("data", {})

    span_attributes = {
        "messaging.system": "redis",
        "messaging.destination": subject,
        "messaging.message.id": event_data.get("id") or "",
    }

    with tracer.start_as_current_span(
        f"consume.{subject}", kind=trace.SpanKind.CONSUMER, attributes=span_attributes
    ) as span:
        executed = 0
        failed = 0
        for handler in handlers.get(subject, []):
            try:
                await handler(payload)
                executed += 1
            except Exception as e:
                failed += 1
                logger.error(
                    f"Erreur handler '{handler.__name__}' pour '{subject}': {e}", exc_info=True
                )
                span.record_exception(e)

        span.set_attributes({"handlers.executed": executed, "handlers.failed": failed})
        return executed


async def consume_messages():
    """Boucle de consommation Redis Pub/Sub sur tous les sujets enregistrés."""
    if not handlers:
        logger.warning("Aucun handler enregistré, consommation Redis inactive")
        return

    pubsub = redis_client.pubsub()
    for subject in handlers:
        await pubsub.subscribe(subject)
        logger.info(f"Abonné au sujet Redis: {subject}")

    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            subject = message["channel"]
            try:
                await dispatch(subject, message["data"])
            except json.JSONDecodeError as e:
                logger.error(f"Erreur décodage JSON pour '{subject}': {e}")
            except Exception as e:
                logger.error(f"Erreur traitement événement '{subject}': {e}", exc_info=True)

    except asyncio.CancelledError:
        logger.info("Consommation Redis annulée")
    finally:
        await pubsub.unsubscribe()
        await pubsub.aclose()


async def start_consuming():
    """Démarre la consommation d'événements Redis."""
    global consumer_task

    if not handlers:
        logger.warning("Aucun handler enregistré, consommation Redis non démarrée")
        return

    consumer_task = asyncio.create_task(consume_messages(), name="redis_consumer")
    logger.info(f"Consommation Redis démarrée pour {len(handlers)} subject(s)")


async def stop_consuming():
    """Arrête la consommation d'événements Redis."""
    global consumer_task

    if consumer_task and not consumer_task.done():
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass
        logger.info("Consommation Redis arrêtée")
    consumer_task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie FastAPI pour Redis."""
    await init_redis()
    await start_consuming()
    logger.info(f"Redis messaging initialisé (URL: {settings.REDIS_URL})")

    try:
        yield
    finally:
        await stop_consuming()
        await close_redis()
        logger.info("Redis messaging arrêté proprement")


__all__ = ["dispatch", "lifespan", "publish", "subject_for", "subscribe"]
