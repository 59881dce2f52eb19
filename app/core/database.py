"""
Configuration et initialisation de la base de données pour core-curanet-consent.

Base de données: PostgreSQL avec SQLAlchemy 2.0 et AsyncSession.
Le moteur est créé ici, mais le coeur métier ne l'utilise jamais directement:
chaque requête reçoit une session qui est enveloppée dans un SqlAlchemyStore
(voir app/repositories/sql_store.py).
"""

import logging
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class pour tous les modèles SQLAlchemy."""

    pass


engine = create_async_engine(str(settings.SQLALCHEMY_DATABASE_URI), echo=False)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Obtient une session de base de données."""
    async with async_session_maker() as session:
        yield session
