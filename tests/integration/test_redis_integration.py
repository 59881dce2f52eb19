"""
Tests d'intégration Redis pour la publication des codes de vérification.

Ces tests utilisent un vrai Redis 7 sur le port 6380 (docker-compose.test.yaml).
"""

import asyncio
import json
from unittest.mock import patch

import pytest
from redis.asyncio import Redis

from app.core.events import publish
from app.services.verification_service import EventBusCodeDelivery


async def _next_message(pubsub, timeout: float = 2.0):
    """Attend le prochain message publié (hors confirmations d'abonnement)."""
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            return message
    return None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_publish_reaches_subscriber(redis_client: Redis):
    """Un abonné au sujet reçoit l'enveloppe JSON complète."""
    # Arrange
    pubsub = redis_client.pubsub()
    await pubsub.subscribe("notification.test")

    # Act
    with patch("app.core.events.redis_client", redis_client):
        message_id = await publish("notification.test", {"to": "a@x.com"})

    # Assert
    message = await _next_message(pubsub)
    await pubsub.aclose()

    assert message is not None
    event_data = json.loads(message["data"])
    assert event_data["id"] == message_id
    assert event_data["data"] == {"to": "a@x.com"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_code_delivery_publishes_verification_message(redis_client: Redis):
    pubsub = redis_client.pubsub()
    await pubsub.subscribe("notification.email.verification_code")

    with patch("app.core.events.redis_client", redis_client):
        delivered = await EventBusCodeDelivery().send(
            "a@x.com", {"subject_id": "U1", "code": "482913", "expires_in_minutes": 10}
        )

    message = await _next_message(pubsub)
    await pubsub.aclose()

    assert delivered is True
    event_data = json.loads(message["data"])
    assert event_data["data"]["code"] == "482913"
    assert event_data["data"]["to"] == "a@x.com"
