"""Primitives HMAC-SHA256 pour les codes à usage unique et la chaîne d'audit.

- Les codes de vérification ne sont jamais stockés en clair: seul leur
  HMAC (clé OTP_HASH_SECRET) est persisté et sert de clé de recherche.
- Chaque entrée d'audit est scellée avec le hash de l'entrée précédente du
  même sujet (clé AUDIT_CHAIN_SECRET), ce qui rend détectable toute
  modification ou suppression a posteriori.
"""

import hashlib
import hmac
import json
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings


def hash_code(code: str, secret: str | None = None) -> str:
    """
    Calcule le hash à sens unique d'un code de vérification.

    Args:
        code: Code en clair (6 chiffres)
        secret: Clé HMAC (utilise settings.OTP_HASH_SECRET par défaut)

    Returns:
        Hash hexadécimal (64 caractères)
    """
    secret = secret or settings.OTP_HASH_SECRET
    return hmac.new(secret.encode("utf-8"), code.strip().encode("utf-8"), hashlib.sha256).hexdigest()


def canonical_json(value: Any) -> str:
    """Sérialisation JSON déterministe (clés triées, séparateurs compacts)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str, ensure_ascii=False)


def _normalize_timestamp(timestamp: datetime) -> str:
    # Les bases sans fuseau renvoient des datetimes naïfs (UTC): même rendu dans les deux cas
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(UTC).replace(tzinfo=None)
    return timestamp.isoformat(timespec="microseconds")


def compute_entry_hash(
    *,
    prev_hash: str | None,
    subject_id: str,
    actor_id: str,
    action: str,
    details: dict[str, Any],
    timestamp: datetime,
    ip_address: str | None,
    user_agent: str | None,
    secret: str | None = None,
) -> str:
    """
    Calcule le sceau d'une entrée d'audit.

    Le message signé est: prev_hash + "." + JSON canonique des champs.

    Args:
        prev_hash: Sceau de l'entrée précédente du même sujet (None pour la première)
        subject_id, actor_id, action, details, timestamp, ip_address, user_agent:
            Champs immuables de l'entrée
        secret: Clé HMAC (utilise settings.AUDIT_CHAIN_SECRET par défaut)

    Returns:
        Sceau hexadécimal (64 caractères)
    """
    secret = secret or settings.AUDIT_CHAIN_SECRET
    body = canonical_json(
        {
            "subject_id": subject_id,
            "actor_id": actor_id,
            "action": action,
            "details": details,
            "timestamp": _normalize_timestamp(timestamp),
            "ip_address": ip_address,
            "user_agent": user_agent,
        }
    )
    signed_payload = f"{prev_hash or ''}.".encode() + body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def seals_match(expected: str, actual: str | None) -> bool:
    """Comparaison en temps constant de deux sceaux."""
    if actual is None:
        return False
    return hmac.compare_digest(expected.lower(), actual.lower())
