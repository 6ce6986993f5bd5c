"""Tests for the WebSocket connection hub."""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from transport import ConnectionHub
from tests.conftest import NAMESPACE


def fake_websocket():
    websocket = Mock()
    websocket.send_text = AsyncMock()
    return websocket


class TestDeliver:

    @pytest.mark.asyncio
    async def test_sends_only_to_local_sparks(self, redis_client):
        hub = ConnectionHub(redis_client, NAMESPACE)
        local = fake_websocket()
        hub.register("s1", local)

        delivered = await hub.deliver(["s1", "s2"], {"text": "hi"})

        assert delivered == 1
        local.send_text.assert_awaited_once_with(json.dumps({"text": "hi"}))

    @pytest.mark.asyncio
    async def test_failed_send_does_not_stop_others(self, redis_client):
        hub = ConnectionHub(redis_client, NAMESPACE)
        broken = fake_websocket()
        broken.send_text.side_effect = RuntimeError("closed")
        healthy = fake_websocket()
        hub.register("broken", broken)
        hub.register("healthy", healthy)

        assert await hub.deliver(["broken", "healthy"], "x") == 1
        healthy.send_text.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unregistered_spark_not_delivered(self, redis_client):
        hub = ConnectionHub(redis_client, NAMESPACE)
        websocket = fake_websocket()
        hub.register("s1", websocket)
        hub.unregister("s1")

        assert await hub.deliver(["s1"], "x") == 0
        websocket.send_text.assert_not_awaited()


class TestForward:

    @pytest.mark.asyncio
    async def test_forward_reaches_listening_instance(self, redis_client):
        hub = ConnectionHub(redis_client, NAMESPACE)
        websocket = fake_websocket()
        hub.register("s1", websocket)
        await hub.start()

        try:
            await hub.forward_to_sparks(["s1", "elsewhere"], {"text": "hi"})
            for _ in range(100):
                if websocket.send_text.await_count:
                    break
                await asyncio.sleep(0.01)
        finally:
            await hub.stop()

        websocket.send_text.assert_awaited_once_with(json.dumps({"text": "hi"}))

    @pytest.mark.asyncio
    async def test_forward_publishes_on_namespace_channel(self):
        client = Mock()
        client.publish = AsyncMock(return_value=2)
        hub = ConnectionHub(client, NAMESPACE)

        assert await hub.forward_to_sparks(["s1"], "x") == 2
        client.publish.assert_awaited_once_with(
            f"{NAMESPACE}:forward", json.dumps({"sparks": ["s1"], "data": "x"})
        )


class TestListenerLifecycle:

    @pytest.mark.asyncio
    async def test_restart_waits_for_new_subscription(self, redis_client):
        hub = ConnectionHub(redis_client, NAMESPACE)
        websocket = fake_websocket()
        hub.register("s1", websocket)

        await hub.start()
        await hub.stop()
        assert not hub._subscribed.is_set()

        await hub.start()
        try:
            assert hub._subscribed.is_set()
            # published straight after start() must reach the new subscription
            assert await hub.forward_to_sparks(["s1"], "again") == 1
            for _ in range(100):
                if websocket.send_text.await_count:
                    break
                await asyncio.sleep(0.01)
        finally:
            await hub.stop()

        websocket.send_text.assert_awaited_once_with(json.dumps("again"))

    @pytest.mark.asyncio
    async def test_dropped_connection_is_logged(self, caplog):
        async def dropped_listen():
            raise RedisConnectionError("connection lost")
            yield  # pragma: no cover

        pubsub = Mock()
        pubsub.subscribe = AsyncMock()
        pubsub.listen = dropped_listen
        pubsub.aclose = AsyncMock()
        client = Mock()
        client.pubsub = Mock(return_value=pubsub)
        hub = ConnectionHub(client, NAMESPACE)

        with caplog.at_level(logging.ERROR, logger="transport"):
            await hub.start()
            for _ in range(100):
                if hub._listener.done():
                    break
                await asyncio.sleep(0.01)
            await hub.stop()

        assert any("connection lost" in record.getMessage() for record in caplog.records)
        assert all(record.levelno == logging.ERROR for record in caplog.records if "connection lost" in record.getMessage())
        pubsub.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_subscribe_failure_surfaces_from_start(self):
        pubsub = Mock()
        pubsub.subscribe = AsyncMock(side_effect=RedisConnectionError("refused"))
        pubsub.aclose = AsyncMock()
        client = Mock()
        client.pubsub = Mock(return_value=pubsub)
        hub = ConnectionHub(client, NAMESPACE)

        with pytest.raises(RedisConnectionError):
            await hub.start()
