"""
Tests d'intégration Redis pour core-africare-practice.

Ces tests utilisent un vrai Redis 7 sur le port 6380 (docker-compose.test.yaml).
"""

import asyncio
import json
from unittest.mock import patch

import pytest
from redis.asyncio import Redis

from app.core import events_redis
from app.core.cache import (
    cache_get,
    cache_key_dashboard,
    cache_key_usage,
    cache_set,
    invalidate_tenant_cache,
)


@pytest.fixture
def shared_client(redis_client: Redis):
    """Branche le client de test comme client applicatif (cache et événements)."""
    with patch.object(events_redis, "redis_client", redis_client):
        yield redis_client


@pytest.mark.integration
async def test_cache_set_get_with_ttl(shared_client: Redis, tenant_id):
    key = cache_key_usage(tenant_id)

    assert await cache_set(key, '{"plan_type": "free"}', ttl=60) is True
    assert await cache_get(key) == '{"plan_type": "free"}'

    ttl = await shared_client.ttl(key)
    assert 0 < ttl <= 60


@pytest.mark.integration
async def test_invalidate_tenant_cache(shared_client: Redis, tenant_id):
    """Seules les clés du tenant concerné sont supprimées."""
    other_tenant = "00000000-0000-0000-0000-000000000001"
    await cache_set(cache_key_usage(tenant_id), "{}")
    await cache_set(cache_key_dashboard(tenant_id), "{}")
    await cache_set(cache_key_usage(other_tenant), "{}")

    await invalidate_tenant_cache(tenant_id)

    assert await cache_get(cache_key_usage(tenant_id)) is None
    assert await cache_get(cache_key_dashboard(tenant_id)) is None
    assert await cache_get(cache_key_usage(other_tenant)) == "{}"


@pytest.mark.integration
async def test_publish_reaches_subscriber(shared_client: Redis, tenant_id):
    """Un événement publié est reçu sur le canal du sujet."""
    subject = events_redis.subject_for("sale", "created")
    pubsub = shared_client.pubsub()
    await pubsub.subscribe(subject)
    await pubsub.get_message(timeout=1.0)

    message_id = await events_redis.publish(subject, {"tenant_id": str(tenant_id)})

    message = None
    for _ in range(20):
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.5)
        if message:
            break
        await asyncio.sleep(0.05)
    await pubsub.unsubscribe(subject)
    await pubsub.aclose()

    assert message_id is not None
    assert message is not None
    body = json.loads(message["data"])
    assert body["data"]["tenant_id"] == str(tenant_id)
