"""
Interfaces de stockage du sous-système consentement / audit.

Ce module définit le contrat que tout adaptateur de stockage doit
implémenter. Les services reçoivent un Store explicitement (pas de client
global): en production un SqlAlchemyStore enveloppant une AsyncSession, en
test un double en mémoire.

Pattern: Repository + Unit of Work.

Toutes les garanties d'exclusivité (usage unique des codes, atomicité des
actions groupées, ordre de la chaîne d'audit) sont portées par le stockage:
écritures conditionnelles, transactions, verrous de ligne.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.models.audit import AuditEntry
from app.models.consent import ConsentGrant
from app.models.identity import HealthProfile, Identity
from app.models.verification import VerificationCode

# =============================================================================
# Filtres explicites (chaque champ renseigné devient un prédicat paramétré)
# =============================================================================


@dataclass(frozen=True)
class AuditEntryDraft:
    """Entrée d'audit à sceller et persister."""

    subject_id: str
    actor_id: str
    action: str
    details: dict[str, Any]
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class AuditFilter:
    """Critères de lecture du journal d'audit (tri: timestamp décroissant)."""

    subject_id: str | None = None
    actor_id: str | None = None
    action: str | None = None
    since: datetime | None = None
    until: datetime | None = None
    limit: int = 50


@dataclass(frozen=True)
class ConsentFilter:
    """Critères de lecture des consentements (tri: created_at décroissant)."""

    patient_id: str | None = None
    provider_id: str | None = None
    statuses: tuple[str, ...] = field(default_factory=tuple)
    active_only: bool = False
    limit: int = 100


# =============================================================================
# Repositories
# =============================================================================


class AuditRepository(ABC):
    """Journal append-only: ajout scellé et lectures uniquement."""

    @abstractmethod
    async def append(self, draft: AuditEntryDraft) -> AuditEntry:
        """Scelle l'entrée avec le sceau précédent du sujet et la persiste."""

    @abstractmethod
    async def query(self, filters: AuditFilter) -> list[AuditEntry]:
        """Entrées correspondant aux filtres, timestamp décroissant, limit appliquée."""

    @abstractmethod
    async def chain(self, subject_id: str) -> list[AuditEntry]:
        """Toutes les entrées d'un sujet dans l'ordre d'écriture."""


class IdentityRepository(ABC):
    @abstractmethod
    async def get(self, identity_id: str, *, lock: bool = False) -> Identity | None:
        """Charge une identité (verrou de ligne si lock=True)."""

    @abstractmethod
    async def get_many(self, identity_ids: list[str]) -> list[Identity]:
        """Charge les identités existantes parmi identity_ids."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Identity | None: ...

    @abstractmethod
    async def get_profile(self, identity_id: str) -> HealthProfile | None: ...

    @abstractmethod
    async def add_profile(self, profile: HealthProfile) -> None: ...

    @abstractmethod
    async def bulk_update(self, identity_ids: list[str], values: dict[str, Any]) -> int:
        """Applique values à toutes les identités en une seule instruction. Retourne le nombre de lignes."""


class ConsentRepository(ABC):
    @abstractmethod
    async def add(self, consent: ConsentGrant) -> None: ...

    @abstractmethod
    async def get(self, consent_id: str, *, lock: bool = False) -> ConsentGrant | None: ...

    @abstractmethod
    async def find_open(self, patient_id: str, provider_id: str, now: datetime) -> ConsentGrant | None:
        """Demande REQUESTED ou consentement ACTIVE non échu pour le couple."""

    @abstractmethod
    async def find_active(self, patient_id: str, provider_id: str, now: datetime) -> ConsentGrant | None:
        """Consentement ACTIVE non échu le plus récent pour le couple."""

    @abstractmethod
    async def search(self, filters: ConsentFilter, now: datetime) -> list[ConsentGrant]: ...

    @abstractmethod
    async def list_lapsed(self, now: datetime, limit: int) -> list[ConsentGrant]:
        """Consentements encore ACTIVE dont expires_at est dépassé (verrouillés)."""


class VerificationCodeRepository(ABC):
    @abstractmethod
    async def add(self, code: VerificationCode) -> None: ...

    @abstractmethod
    async def find_usable(
        self, subject_id: str, target_value: str, code_hash: str, now: datetime
    ) -> VerificationCode | None:
        """Code non utilisé, non expiré, le plus récent pour (sujet, cible, hash)."""

    @abstractmethod
    async def mark_used(self, code_id: int, now: datetime) -> bool:
        """Compare-and-swap sur used_at IS NULL. True seulement pour le gagnant."""

    @abstractmethod
    async def sum_attempts(self, subject_id: str, target_value: str, since: datetime) -> int:
        """Somme des tentatives des codes émis depuis since pour (sujet, cible)."""

    @abstractmethod
    async def latest_since(
        self, subject_id: str, target_value: str, since: datetime
    ) -> VerificationCode | None:
        """Code le plus récemment émis depuis since pour (sujet, cible)."""

    @abstractmethod
    async def increment_attempts(self, code_id: int) -> None:
        """attempts = attempts + 1, de façon atomique."""


# =============================================================================
# Unit of Work
# =============================================================================


class Store(ABC):
    """
    Point d'accès unique au stockage pour une requête.

    transaction() ouvre une unité de travail; les appels imbriqués
    rejoignent la transaction englobante et seule la plus externe valide.
    Toute erreur de persistance est remontée sous forme de StorageError
    après annulation.
    """

    identities: IdentityRepository
    consents: ConsentRepository
    audit: AuditRepository
    codes: VerificationCodeRepository

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager["Store"]: ...
