# Modèles SQLAlchemy pour core-curanet-consent
#
# - Identity / HealthProfile: comptes et horodatage de vérification médecin
# - ConsentGrant: consentements patient -> professionnel
# - AuditEntry / AuditChainHead: journal d'audit scellé par sujet
# - VerificationCode: codes à usage unique (hash uniquement)

from .audit import AuditChainHead, AuditEntry
from .consent import CONSENT_SCOPES, CONSENT_STATUSES, ConsentGrant
from .identity import IDENTITY_ROLES, IDENTITY_STATUSES, HealthProfile, Identity
from .verification import VerificationCode

__all__ = [
    "CONSENT_SCOPES",
    "CONSENT_STATUSES",
    "IDENTITY_ROLES",
    "IDENTITY_STATUSES",
    "AuditChainHead",
    "AuditEntry",
    "ConsentGrant",
    "HealthProfile",
    "Identity",
    "VerificationCode",
]
