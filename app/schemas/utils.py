"""Annotations Pydantic réutilisables pour validation.

Ce module centralise les types annotés pour assurer la cohérence
de la validation à travers tous les schémas Pydantic du service.
"""

from typing import Annotated

from pydantic import EmailStr, Field, StringConstraints

# Chaînes avec contraintes
NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]

# Identifiants
HealthId = Annotated[
    str,
    StringConstraints(min_length=1, max_length=64, strip_whitespace=True),
    Field(description="Health ID opaque de l'identité", examples=["CN-7F3A-0921"]),
]
ConsentId = Annotated[str, Field(max_length=36, description="Identifiant du consentement (UUID)")]

# Métadonnées
Email = Annotated[EmailStr, Field(description="Adresse email valide")]
Reason = Annotated[str, Field(max_length=2000, description="Motif libre, enregistré dans l'audit")]

# Codes de vérification (6 chiffres)
VerificationCodeStr = Annotated[
    str,
    StringConstraints(pattern=r"^\d{6}$", strip_whitespace=True),
    Field(description="Code à 6 chiffres reçu par email", examples=["482913"]),
]
