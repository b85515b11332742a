"""Endpoint webhook Stripe pour les abonnements.

Stripe → vérification signature (HMAC-SHA256, tolérance timestamp)
       → validation Pydantic de l'événement
       → traitement synchrone (tenant, limites, audit)
       → 200 {"received": true, "event_type": ...}

Une signature absente, invalide ou expirée est rejetée (400) avant toute
modification. Une erreur de traitement est tracée dans le journal d'audit
et retournée en 500 pour que Stripe rejoue l'événement.
"""

import logging

from fastapi import APIRouter, Depends, Request
from opentelemetry import trace
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.core.exceptions import BadRequestError, InternalServerError, RFC9457Exception
from app.core.webhook_security import verify_stripe_request
from app.schemas.responses import create_responses
from app.schemas.subscription import StripeEvent, WebhookReceived
from app.services import subscription_service

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

router = APIRouter()


@router.post(
    "/stripe",
    response_model=WebhookReceived,
    summary="Webhook Stripe",
    description="Reçoit et applique les événements d'abonnement Stripe signés",
    responses=create_responses(),
)
async def receive_stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> WebhookReceived:
    """
    Endpoint webhook Stripe.

    Raises:
        BadRequestError: Signature absente/invalide ou événement malformé
        InternalServerError: Échec du traitement (audit ``webhook_error``)
    """
    with tracer.start_as_current_span("receive_stripe_webhook") as span:
        payload = await verify_stripe_request(request)
        span.add_event("Signature webhook vérifiée")

        try:
            event = StripeEvent.model_validate_json(payload)
        except ValidationError as e:
            raise BadRequestError(detail="Invalid webhook payload") from e

        span.set_attribute("stripe.event_id", event.id)
        span.set_attribute("stripe.event_type", event.type)
        logger.info(f"Webhook Stripe reçu: type={event.type}, id={event.id}")

        try:
            return await subscription_service.handle_stripe_event(db, event)
        except RFC9457Exception:
            raise
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            logger.error(f"Erreur lors du traitement du webhook: {e}", exc_info=True)
            raise InternalServerError(detail="Webhook processing failed") from e
