"""
Publication d'événements via Redis Pub/Sub - core-curanet-consent.

Le sous-système ne consomme aucun événement: il publie uniquement les
messages destinés au service de notification (livraison des codes de
vérification). Un message non délivré n'est jamais ignoré en silence:
après épuisement des tentatives l'exception remonte à l'appelant.

Usage:
    from app.core.events import publish, lifespan

    await publish("notification.email.verification_code", {"to": "a@b.c"})

    app = FastAPI(lifespan=lifespan)
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import BaseModel
from redis.exceptions import RedisError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.core.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Client Redis global (créé au démarrage, réutilisé)
redis_client: redis.Redis | None = None


class EventBusUnavailableError(Exception):
    """Le client Redis n'est pas initialisé."""


async def init_redis():
    """Initialise le client Redis au démarrage."""
    global redis_client
    redis_client = redis.from_url(
        settings.REDIS_URL,
        db=settings.REDIS_DB,
        decode_responses=True,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
    )
    await redis_client.ping()
    logger.info(f"Redis client initialisé: {settings.REDIS_URL}")


async def close_redis():
    """Ferme le client Redis proprement."""
    global redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None
        logger.info("Redis client fermé")


def _log_retry(retry_state) -> None:
    exception = retry_state.outcome.exception()
    logger.warning(
        f"Échec publication (tentative {retry_state.attempt_number}): {exception}. "
        f"Nouvel essai après backoff"
    )


async def publish(
    subject: str,
    payload: dict | BaseModel,
    max_retries: int | None = None,
    min_wait_seconds: float = 1,
) -> str:
    """
    Publie un événement via Redis Pub/Sub.

    Args:
        subject: Sujet de l'événement (ex: "notification.email.verification_code")
        payload: Données de l'événement (dict ou modèle Pydantic)
        max_retries: Nombre maximum de tentatives (défaut: CODE_DELIVERY_MAX_ATTEMPTS)
        min_wait_seconds: Attente initiale du backoff exponentiel

    Returns:
        Identifiant du message publié

    Raises:
        EventBusUnavailableError: Si Redis n'est pas initialisé
        RedisError: Si toutes les tentatives échouent
    """
    if redis_client is None:
        raise EventBusUnavailableError("Redis client not initialized")

    payload_dict = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else payload
    message_id = str(uuid.uuid4())
    event_data = {
        "id": message_id,
        "subject": subject,
        "timestamp": datetime.now(UTC).isoformat(),
        "data": payload_dict,
    }
    attempts = max_retries or settings.CODE_DELIVERY_MAX_ATTEMPTS

    span_attributes = {
        "messaging.system": "redis",
        "messaging.destination": subject,
        "messaging.message.id": message_id,
    }

    with tracer.start_as_current_span(
        f"publish.{subject}", kind=trace.SpanKind.PRODUCER, attributes=span_attributes
    ) as span:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((RedisError, OSError)),
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=min_wait_seconds, max=10),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    await redis_client.publish(subject, json.dumps(event_data))
        except (RedisError, OSError) as e:
            error_msg = f"Échec définitif publication '{subject}' après {attempts} tentatives: {e}"
            logger.error(error_msg)
            span.set_status(Status(StatusCode.ERROR, error_msg))
            span.record_exception(e)
            raise

        logger.debug(f"Événement '{subject}' publié avec ID: {message_id}")
        span.add_event("Événement publié avec succès")
        return message_id


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestionnaire de cycle de vie FastAPI pour Redis."""
    await init_redis()
    logger.info(f"Redis messaging initialisé (URL: {settings.REDIS_URL})")

    yield

    await close_redis()
    logger.info("Redis messaging arrêté proprement")


__all__ = ["EventBusUnavailableError", "close_redis", "init_redis", "lifespan", "publish"]
