"""
Tests d'intégration PostgreSQL du SqlAlchemyStore.

Ces tests utilisent un vrai PostgreSQL sur le port 5433 (docker-compose.test.yaml):
verrous de ligne, compare-and-swap et chaîne d'audit relue depuis la base.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select, text

from app.core.exceptions import ConsentConflictError, InvalidCodeError
from app.models.audit import AuditEntry
from app.models.identity import Identity
from app.repositories import SqlAlchemyStore
from app.repositories.base import AuditFilter
from app.services.audit_service import AuditAction, AuditTrail
from app.services.bulk_service import BulkActionCoordinator
from app.services.consent_service import ConsentLifecycleManager
from app.services.verification_service import CodeVerificationEngine
from tests.fakes import RecordingDelivery


async def _seed_identities(session_maker, *specs):
    async with session_maker() as session:
        for identity_id, role, status in specs:
            session.add(Identity(id=identity_id, role=role, status=status, is_verified=False))
        await session.commit()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_audit_chain_survives_reload_and_detects_tampering(session_maker):
    """La chaîne relue depuis la base est valide, puis rompue par une modification SQL."""
    async with session_maker() as session:
        audit = AuditTrail(SqlAlchemyStore(session))
        for status in ["suspended", "active", "pending_approval"]:
            await audit.record(
                subject_id="U1",
                actor_id="admin1",
                action=AuditAction.STATUS_UPDATED,
                details={"newStatus": status, "at": datetime.now(UTC)},
            )

    async with session_maker() as session:
        audit = AuditTrail(SqlAlchemyStore(session))
        result = await audit.verify_chain("U1")
        assert result.valid is True
        assert result.checked == 3

        entries = await audit.query(AuditFilter(subject_id="U1"))
        assert [entry.details["newStatus"] for entry in entries] == ["pending_approval", "active", "suspended"]
        middle = entries[1].sequence

    # Le schéma de test est créé sans le trigger Alembic: simule une altération directe
    async with session_maker() as session:
        await session.execute(
            text("UPDATE audit_entries SET details = CAST(:details AS JSON) WHERE sequence = :sequence"),
            {"details": '{"newStatus": "suspended"}', "sequence": middle},
        )
        await session.commit()

    async with session_maker() as session:
        result = await AuditTrail(SqlAlchemyStore(session)).verify_chain("U1")
        assert result.valid is False
        assert result.broken_at == middle


@pytest.mark.integration
@pytest.mark.asyncio
async def test_audit_entry_cannot_be_updated_through_orm(session_maker):
    async with session_maker() as session:
        await AuditTrail(SqlAlchemyStore(session)).record(
            subject_id="U1", actor_id="admin1", action="STATUS_UPDATED", details={}
        )

    async with session_maker() as session:
        entry = (await session.execute(select(AuditEntry))).scalar_one()
        entry.action = "FORGED"
        with pytest.raises(ValueError, match="immutable"):
            await session.flush()
        await session.rollback()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_concurrent_appends_keep_one_chain(session_maker):
    """Des ajouts concurrents pour un sujet forment une seule chaîne linéaire."""

    async def append(index: int):
        async with session_maker() as session:
            await AuditTrail(SqlAlchemyStore(session)).record(
                subject_id="U1", actor_id="admin1", action="STATUS_UPDATED", details={"index": index}
            )

    await asyncio.gather(*(append(index) for index in range(5)))

    async with session_maker() as session:
        result = await AuditTrail(SqlAlchemyStore(session)).verify_chain("U1")
    assert result.valid is True
    assert result.checked == 5


@pytest.mark.integration
@pytest.mark.asyncio
async def test_concurrent_requests_create_single_consent(session_maker):
    """Deux demandes simultanées pour le même couple: une seule aboutit."""
    await _seed_identities(session_maker, ("P1", "patient", "active"), ("D1", "doctor", "active"))

    async def request():
        async with session_maker() as session:
            store = SqlAlchemyStore(session)
            return await ConsentLifecycleManager(store, AuditTrail(store)).request_consent(
                "P1", "D1", "D1", "Suivi"
            )

    results = await asyncio.gather(request(), request(), return_exceptions=True)

    assert sum(1 for result in results if isinstance(result, ConsentConflictError)) == 1
    assert sum(1 for result in results if not isinstance(result, Exception)) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_consent_lifecycle_and_sweep(session_maker):
    await _seed_identities(session_maker, ("P1", "patient", "active"), ("D1", "doctor", "active"))
    now = datetime.now(UTC)

    async with session_maker() as session:
        store = SqlAlchemyStore(session)
        manager = ConsentLifecycleManager(store, AuditTrail(store))
        consent = await manager.request_consent("P1", "D1", "D1", "Suivi")
        await manager.grant_consent(consent.id, "P1", expires_at=now + timedelta(hours=1))
        assert await manager.authorize_access("P1", "D1") is True
        consent_id = consent.id

    async with session_maker() as session:
        store = SqlAlchemyStore(session)
        manager = ConsentLifecycleManager(store, AuditTrail(store))
        assert await manager.expire_lapsed(now=now + timedelta(hours=2)) == 1
        consent = await manager.get_consent(consent_id)
        assert consent.status == "EXPIRED"
        assert consent.access_count == 1

        chain = await AuditTrail(store).verify_chain("P1")
        assert chain.valid is True
        assert chain.checked == 3


@pytest.mark.integration
@pytest.mark.asyncio
async def test_verification_code_single_winner(session_maker):
    """Deux vérifications concurrentes du même code: un seul succès."""
    delivery = RecordingDelivery()
    async with session_maker() as session:
        code = await CodeVerificationEngine(SqlAlchemyStore(session), delivery).issue("U1", "a@x.com")

    async def verify():
        async with session_maker() as session:
            return await CodeVerificationEngine(SqlAlchemyStore(session), delivery).verify("U1", "a@x.com", code)

    results = await asyncio.gather(verify(), verify(), return_exceptions=True)

    assert sum(1 for result in results if isinstance(result, InvalidCodeError)) == 1
    assert sum(1 for result in results if not isinstance(result, Exception)) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_bulk_update_and_audit_in_one_transaction(session_maker):
    await _seed_identities(
        session_maker,
        ("U1", "patient", "active"),
        ("U2", "patient", "active"),
        ("U3", "doctor", "pending_approval"),
    )

    async with session_maker() as session:
        store = SqlAlchemyStore(session)
        result = await BulkActionCoordinator(store, AuditTrail(store)).apply_bulk(
            "suspend", ["U1", "U2", "U3"], "admin1", "policy violation"
        )
    assert result.affected == 3

    async with session_maker() as session:
        statuses = (await session.execute(select(Identity.status))).scalars().all()
        entries = (await session.execute(select(AuditEntry))).scalars().all()

    assert set(statuses) == {"suspended"}
    assert [entry.action for entry in entries] == ["BULK status suspended"] * 3


@pytest.mark.integration
@pytest.mark.asyncio
async def test_lapsed_request_no_longer_blocks_pair(session_maker):
    """Une demande sans réponse au-delà de son échéance n'est plus ouverte."""
    await _seed_identities(session_maker, ("P1", "patient", "active"), ("D1", "doctor", "active"))
    now = datetime.now(UTC)

    async with session_maker() as session:
        store = SqlAlchemyStore(session)
        first = await ConsentLifecycleManager(store, AuditTrail(store)).request_consent("P1", "D1", "D1", "Suivi")

    async with session_maker() as session:
        store = SqlAlchemyStore(session)
        manager = ConsentLifecycleManager(store, AuditTrail(store), clock=lambda: now + timedelta(days=3))
        again = await manager.request_consent("P1", "D1", "D1", "Suivi")

    assert again.id != first.id
