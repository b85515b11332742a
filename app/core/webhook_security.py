"""Module de sécurité pour la vérification des webhooks Stripe.

Stripe signe chaque requête avec le header ``Stripe-Signature`` :
``t=<timestamp>,v1=<signature>[,v1=<signature>...]``. La signature est un
HMAC-SHA256 du message ``"{t}.{payload}"`` avec le secret du endpoint.
Une requête est acceptée si au moins une signature ``v1`` correspond et si
le timestamp est dans la fenêtre de tolérance.
"""

import hashlib
import hmac
import logging
import time

from fastapi import Request

from app.core.config import settings
from app.core.exceptions import BadRequestError
from app.schemas.subscription import WebhookVerificationResponse

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
SIGNATURE_SCHEME = "v1"
# Décalage d'horloge toléré pour un timestamp dans le futur
MAX_CLOCK_SKEW = 60


def compute_signature(payload: bytes, secret: str, timestamp: str) -> str:
    """
    Calcule la signature HMAC-SHA256 d'un payload webhook.

    Args:
        payload: Corps brut de la requête
        secret: Secret de signature du endpoint (whsec_...)
        timestamp: Valeur ``t`` du header

    Returns:
        Signature hexadécimale (64 caractères)
    """
    signed_payload = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    """
    Découpe le header Stripe-Signature.

    Returns:
        Tuple (timestamp, signatures v1). Les schémas inconnus sont ignorés.
    """
    timestamp = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == SIGNATURE_SCHEME:
            signatures.append(value)
    return timestamp, signatures


def verify_stripe_signature(
    payload: bytes,
    header: str,
    secret: str | None = None,
    tolerance: int | None = None,
    now: float | None = None,
) -> WebhookVerificationResponse:
    """
    Vérifie la signature d'un webhook Stripe.

    Args:
        payload: Corps brut de la requête
        header: Valeur du header Stripe-Signature
        secret: Secret (utilise settings.STRIPE_WEBHOOK_SECRET par défaut)
        tolerance: Âge maximal du timestamp en secondes
        now: Horloge courante (epoch), injectable pour les tests

    Returns:
        WebhookVerificationResponse avec verified=True si valide
    """
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    tolerance = tolerance or settings.STRIPE_SIGNATURE_TOLERANCE
    now = time.time() if now is None else now

    timestamp, signatures = parse_signature_header(header)
    if not timestamp:
        return WebhookVerificationResponse(verified=False, reason="Timestamp manquant")
    if not signatures:
        return WebhookVerificationResponse(verified=False, reason="Aucune signature v1")

    try:
        request_time = int(timestamp)
    except ValueError:
        logger.warning(f"Timestamp webhook invalide: {timestamp}")
        return WebhookVerificationResponse(
            verified=False, reason=f"Timestamp invalide: {timestamp}"
        )

    age = now - request_time
    if age > tolerance:
        logger.warning(f"Webhook expiré: timestamp={timestamp}, age={age:.0f}s")
        return WebhookVerificationResponse(verified=False, reason=f"Webhook expiré (>{tolerance}s)")
    if age < -MAX_CLOCK_SKEW:
        logger.warning(f"Webhook avec timestamp dans le futur: {timestamp}")
        return WebhookVerificationResponse(verified=False, reason="Timestamp dans le futur")

    expected_signature = compute_signature(payload, secret, timestamp)

    # Comparaison constant-time
    if not any(hmac.compare_digest(sig.lower(), expected_signature) for sig in signatures):
        logger.warning(f"Signature webhook invalide: attendue={expected_signature[:10]}...")
        return WebhookVerificationResponse(verified=False, reason="Signature invalide")

    logger.debug("Webhook signature vérifiée avec succès")
    return WebhookVerificationResponse(verified=True)


async def verify_stripe_request(request: Request) -> bytes:
    """
    Extrait et vérifie la signature d'une requête webhook Stripe.

    Returns:
        Corps brut de la requête (à parser après vérification)

    Raises:
        BadRequestError: Header manquant ou signature invalide
    """
    header = request.headers.get(SIGNATURE_HEADER)
    if not header:
        logger.error("Header Stripe-Signature manquant")
        raise BadRequestError(detail="Missing stripe-signature header")

    body = await request.body()
    verification = verify_stripe_signature(payload=body, header=header)
    if not verification.verified:
        logger.error(f"Webhook signature invalide: {verification.reason}")
        raise BadRequestError(detail=f"Invalid webhook signature: {verification.reason}")

    return body


def generate_signature_header(
    payload: str, secret: str | None = None, timestamp: int | None = None
) -> str:
    """
    Génère un header Stripe-Signature valide (tests et outillage local).

    Args:
        payload: Corps du webhook (string JSON)
        secret: Secret à utiliser (défaut: settings.STRIPE_WEBHOOK_SECRET)
        timestamp: Epoch à signer (défaut: maintenant)
    """
    secret = secret or settings.STRIPE_WEBHOOK_SECRET
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = compute_signature(payload.encode("utf-8"), secret, ts)
    return f"t={ts},{SIGNATURE_SCHEME}={signature}"
