from unittest.mock import AsyncMock

import fakeredis
import pytest
import pytest_asyncio

from adapter import RoomsAdapter
from schemas.rooms import AdapterOptions

NAMESPACE = "namespace"
ADDRESS = "http://10.0.2.15:8888"
IDENTIFIER = "1700000000000"
SERVER_INSTANCE = f"{ADDRESS}_{IDENTIFIER}"


def room_key(room: str, server_instance: str = SERVER_INSTANCE) -> str:
    return f"{NAMESPACE}:rooms:{server_instance}:{room}"


def spark_key(spark_id: str) -> str:
    return f"{NAMESPACE}:sparks:{spark_id}"


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def forward():
    return AsyncMock(return_value=None)


@pytest.fixture
def options():
    return AdapterOptions(
        namespace=NAMESPACE,
        identifier=IDENTIFIER,
        room_refresh_interval=30,
        heartbeat_interval=30,
    )


@pytest_asyncio.fixture
async def adapter(redis_client, forward, options):
    adapter = RoomsAdapter(redis_client, forward, ADDRESS, options=options)
    await adapter.start()
    yield adapter
    await adapter.stop()
