"""
Configuration et initialisation de la base de données pour core-africare-practice.

Base de données: PostgreSQL avec SQLAlchemy 2.0 et AsyncSession.
Toutes les tables métier portent un tenant_id : l'isolation entre tenants
est assurée par les services, qui filtrent systématiquement sur ce champ.
"""

import logging
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime

from sqlalchemy import DateTime, Uuid, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class pour tous les modèles SQLAlchemy."""

    pass


class UUIDPrimaryKeyMixin:
    """Clé primaire UUID générée côté application."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TenantMixin:
    """Rattache une ligne à un tenant (cabinet ou pharmacie)."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, nullable=False, index=True, comment="Tenant propriétaire de la ligne"
    )


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Date de création",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Date de dernière modification",
    )


# Engine SQLAlchemy 2.0
engine = create_async_engine(str(settings.SQLALCHEMY_DATABASE_URI), echo=False)

# Session factory
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Obtient une session de base de données."""
    async with async_session_maker() as session:
        yield session


async def create_db_and_tables():
    """Crée toutes les tables."""
    # Importer les modèles pour enregistrer les tables dans Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"{len(Base.metadata.tables)} tables vérifiées/créées")


get_db = get_session
