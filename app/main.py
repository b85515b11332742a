from opentelemetry.instrumentation import auto_instrumentation

auto_instrumentation.initialize()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers

# Import automatique de tous les handlers d'événements
import app.events
from app.api.v1 import api as api_v1
from app.core.config import settings
from app.core.database import create_db_and_tables
from app.core.events import lifespan as events_lifespan
from app.core.ttl_cache import quick_sale_cache, sales_cache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Cycle de vie du service practice.

    Hors staging/production, le schéma est créé au démarrage; ailleurs il
    est géré par Alembic. Redis (événements et cache) est initialisé par le
    lifespan des événements. Les caches en mémoire sont vidés à l'arrêt.
    """
    logger.info(f"=== Démarrage {settings.PROJECT_NAME} ({settings.ENVIRONMENT}) ===")

    if settings.ENVIRONMENT in ("development", "test"):
        await create_db_and_tables()
    else:
        logger.info("Schéma géré par Alembic, création des tables ignorée")

    if not (settings.STRIPE_PRO_PRICE_ID and settings.STRIPE_ENTERPRISE_PRICE_ID):
        logger.warning(
            "Prix Stripe non configurés: le plan sera lu dans metadata.plan_type des événements"
        )

    async with events_lifespan(app):
        logger.info("=== Démarrage terminé ===")
        yield
        logger.info("=== Arrêt ===")

    sales_cache.clear()
    quick_sale_cache.clear()
    logger.info("=== Arrêt terminé ===")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.get_api_prefix()}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Exception handlers RFC 9457 Problem Details
config_rfc9457 = RFC9457Config(
    base_url="about:blank",
    include_trace_id=True,
    expose_internal_errors=settings.DEBUG,
    include_error_pages=False,
)
setup_rfc9457_handlers(app, config=config_rfc9457)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.ALLOWED_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware Trusted Hosts
if settings.ENVIRONMENT != "development":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.TRUSTED_HOSTS,
    )

app.include_router(api_v1.router, prefix=settings.get_api_prefix("v1"))
