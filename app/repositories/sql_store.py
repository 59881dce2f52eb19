"""Implémentation PostgreSQL (SQLAlchemy 2.0 async) des interfaces de stockage.

Toutes les requêtes sont construites avec des expressions SQLAlchemy
(paramètres liés), jamais par concaténation de chaînes.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import StorageError
from app.core.integrity import compute_entry_hash
from app.models.audit import AuditChainHead, AuditEntry
from app.models.consent import ConsentGrant
from app.models.identity import HealthProfile, Identity
from app.models.verification import VerificationCode
from app.repositories.base import (
    AuditEntryDraft,
    AuditFilter,
    AuditRepository,
    ConsentFilter,
    ConsentRepository,
    IdentityRepository,
    Store,
    VerificationCodeRepository,
)

logger = logging.getLogger(__name__)


class SqlAuditRepository(AuditRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, draft: AuditEntryDraft) -> AuditEntry:
        # Tête de chaîne créée au besoin puis verrouillée: les ajouts
        # concurrents pour un même sujet s'exécutent l'un après l'autre.
        await self._session.execute(
            pg_insert(AuditChainHead)
            .values(subject_id=draft.subject_id, last_hash=None, last_sequence=None)
            .on_conflict_do_nothing(index_elements=[AuditChainHead.subject_id])
        )
        result = await self._session.execute(
            select(AuditChainHead)
            .where(AuditChainHead.subject_id == draft.subject_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        head = result.scalar_one()

        entry = AuditEntry(
            subject_id=draft.subject_id,
            actor_id=draft.actor_id,
            action=draft.action,
            details=draft.details,
            timestamp=draft.timestamp,
            ip_address=draft.ip_address,
            user_agent=draft.user_agent,
            prev_hash=head.last_hash,
            entry_hash=compute_entry_hash(
                prev_hash=head.last_hash,
                subject_id=draft.subject_id,
                actor_id=draft.actor_id,
                action=draft.action,
                details=draft.details,
                timestamp=draft.timestamp,
                ip_address=draft.ip_address,
                user_agent=draft.user_agent,
            ),
        )
        self._session.add(entry)
        await self._session.flush()

        head.last_hash = entry.entry_hash
        head.last_sequence = entry.sequence
        await self._session.flush()
        return entry

    async def query(self, filters: AuditFilter) -> list[AuditEntry]:
        stmt = select(AuditEntry)
        if filters.subject_id is not None:
            stmt = stmt.where(AuditEntry.subject_id == filters.subject_id)
        if filters.actor_id is not None:
            stmt = stmt.where(AuditEntry.actor_id == filters.actor_id)
        if filters.action is not None:
            stmt = stmt.where(AuditEntry.action == filters.action)
        if filters.since is not None:
            stmt = stmt.where(AuditEntry.timestamp >= filters.since)
        if filters.until is not None:
            stmt = stmt.where(AuditEntry.timestamp <= filters.until)
        stmt = stmt.order_by(AuditEntry.timestamp.desc(), AuditEntry.sequence.desc()).limit(filters.limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def chain(self, subject_id: str) -> list[AuditEntry]:
        result = await self._session.execute(
            select(AuditEntry).where(AuditEntry.subject_id == subject_id).order_by(AuditEntry.sequence.asc())
        )
        return list(result.scalars().all())


class SqlIdentityRepository(IdentityRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, identity_id: str, *, lock: bool = False) -> Identity | None:
        stmt = select(Identity).where(Identity.id == identity_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, identity_ids: list[str]) -> list[Identity]:
        if not identity_ids:
            return []
        result = await self._session.execute(
            select(Identity).where(Identity.id.in_(identity_ids)).order_by(Identity.id)
        )
        return list(result.scalars().all())

    async def get_by_email(self, email: str) -> Identity | None:
        result = await self._session.execute(select(Identity).where(Identity.email == email))
        return result.scalar_one_or_none()

    async def get_profile(self, identity_id: str) -> HealthProfile | None:
        result = await self._session.execute(select(HealthProfile).where(HealthProfile.user_id == identity_id))
        return result.scalar_one_or_none()

    async def add_profile(self, profile: HealthProfile) -> None:
        self._session.add(profile)
        await self._session.flush()

    async def bulk_update(self, identity_ids: list[str], values: dict[str, Any]) -> int:
        result = await self._session.execute(
            update(Identity)
            .where(Identity.id.in_(identity_ids))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount


class SqlConsentRepository(ConsentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _not_lapsed(now: datetime):
        return or_(ConsentGrant.expires_at.is_(None), ConsentGrant.expires_at > now)

    @staticmethod
    def _request_pending(now: datetime):
        return or_(ConsentGrant.request_expires_at.is_(None), ConsentGrant.request_expires_at > now)

    async def add(self, consent: ConsentGrant) -> None:
        self._session.add(consent)
        await self._session.flush()

    async def get(self, consent_id: str, *, lock: bool = False) -> ConsentGrant | None:
        stmt = select(ConsentGrant).where(ConsentGrant.id == consent_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_open(self, patient_id: str, provider_id: str, now: datetime) -> ConsentGrant | None:
        result = await self._session.execute(
            select(ConsentGrant)
            .where(
                ConsentGrant.patient_id == patient_id,
                ConsentGrant.provider_id == provider_id,
                or_(
                    (ConsentGrant.status == "REQUESTED") & self._request_pending(now),
                    (ConsentGrant.status == "ACTIVE") & self._not_lapsed(now),
                ),
            )
            .order_by(ConsentGrant.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_active(self, patient_id: str, provider_id: str, now: datetime) -> ConsentGrant | None:
        result = await self._session.execute(
            select(ConsentGrant)
            .where(
                ConsentGrant.patient_id == patient_id,
                ConsentGrant.provider_id == provider_id,
                ConsentGrant.status == "ACTIVE",
                self._not_lapsed(now),
            )
            .order_by(ConsentGrant.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def search(self, filters: ConsentFilter, now: datetime) -> list[ConsentGrant]:
        stmt = select(ConsentGrant)
        if filters.patient_id is not None:
            stmt = stmt.where(ConsentGrant.patient_id == filters.patient_id)
        if filters.provider_id is not None:
            stmt = stmt.where(ConsentGrant.provider_id == filters.provider_id)
        if filters.statuses:
            stmt = stmt.where(ConsentGrant.status.in_(filters.statuses))
        if filters.active_only:
            stmt = stmt.where(ConsentGrant.status == "ACTIVE", self._not_lapsed(now))
        stmt = stmt.order_by(ConsentGrant.created_at.desc()).limit(filters.limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_lapsed(self, now: datetime, limit: int) -> list[ConsentGrant]:
        result = await self._session.execute(
            select(ConsentGrant)
            .where(ConsentGrant.status == "ACTIVE", ConsentGrant.expires_at <= now)
            .order_by(ConsentGrant.expires_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())


class SqlVerificationCodeRepository(VerificationCodeRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, code: VerificationCode) -> None:
        self._session.add(code)
        await self._session.flush()

    async def find_usable(
        self, subject_id: str, target_value: str, code_hash: str, now: datetime
    ) -> VerificationCode | None:
        result = await self._session.execute(
            select(VerificationCode)
            .where(
                VerificationCode.subject_id == subject_id,
                VerificationCode.target_value == target_value,
                VerificationCode.code_hash == code_hash,
                VerificationCode.used_at.is_(None),
                VerificationCode.expires_at > now,
            )
            .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_used(self, code_id: int, now: datetime) -> bool:
        result = await self._session.execute(
            update(VerificationCode)
            .where(
                VerificationCode.id == code_id,
                VerificationCode.used_at.is_(None),
                VerificationCode.expires_at > now,
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def sum_attempts(self, subject_id: str, target_value: str, since: datetime) -> int:
        result = await self._session.execute(
            select(func.coalesce(func.sum(VerificationCode.attempts), 0)).where(
                VerificationCode.subject_id == subject_id,
                VerificationCode.target_value == target_value,
                VerificationCode.created_at > since,
            )
        )
        return int(result.scalar_one())

    async def latest_since(
        self, subject_id: str, target_value: str, since: datetime
    ) -> VerificationCode | None:
        result = await self._session.execute(
            select(VerificationCode)
            .where(
                VerificationCode.subject_id == subject_id,
                VerificationCode.target_value == target_value,
                VerificationCode.created_at > since,
            )
            .order_by(VerificationCode.created_at.desc(), VerificationCode.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def increment_attempts(self, code_id: int) -> None:
        await self._session.execute(
            update(VerificationCode)
            .where(VerificationCode.id == code_id)
            .values(attempts=VerificationCode.attempts + 1)
            .execution_options(synchronize_session=False)
        )


class SqlAlchemyStore(Store):
    """Unit of Work au-dessus d'une AsyncSession fournie par l'appelant."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._depth = 0
        self.identities = SqlIdentityRepository(session)
        self.consents = SqlConsentRepository(session)
        self.audit = SqlAuditRepository(session)
        self.codes = SqlVerificationCodeRepository(session)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlAlchemyStore"]:
        outermost = self._depth == 0
        self._depth += 1
        try:
            yield self
            if outermost:
                await self._session.commit()
        except SQLAlchemyError as e:
            if outermost:
                await self._session.rollback()
            logger.error(f"Erreur de persistance, transaction annulée: {e}")
            raise StorageError(f"Storage operation failed: {e.__class__.__name__}") from e
        except BaseException:
            if outermost:
                await self._session.rollback()
            raise
        finally:
            self._depth -= 1
