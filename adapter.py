import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Union

import redis.asyncio as redis

from backend import RedisRoomsBackend
from broadcast import BroadcastRouter, ForwardToSparks
from errors import ConfigurationError
from logging_config import get_logger
from redis_keys import SERVER_INSTANCE
from refresher import ErrorObserver, TTLRefresher
from schemas.rooms import AdapterOptions, BroadcastOptions

logger = get_logger(__name__)

AddressSource = Union[str, Callable[[], Optional[str]]]


class RoomAdapter(ABC):
    """What a transport needs from a room store."""

    @abstractmethod
    async def add(self, spark_id: str, room: str) -> None: ...

    @abstractmethod
    async def delete(self, spark_id: str, room: Optional[str] = None) -> None: ...

    @abstractmethod
    async def get(self, spark_id: Optional[str] = None) -> List[str]: ...

    @abstractmethod
    async def clients(self, room: str) -> List[str]: ...

    @abstractmethod
    async def empty(self, room: str) -> None: ...

    @abstractmethod
    async def is_empty(self, room: str) -> bool: ...

    @abstractmethod
    async def clear(self) -> None: ...

    @abstractmethod
    async def broadcast(self, data: Any, options: Optional[BroadcastOptions] = None) -> None: ...


class RoomsAdapter(RoomAdapter):
    """Cluster wide room membership backed by Redis.

    ``address`` is this server's transport address, or a callable returning
    it once the transport knows it. It is resolved exactly once, in
    ``start()``, together with the boot identifier so a restarted process
    never picks up the room keys of the one that crashed.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        forward: ForwardToSparks,
        address: AddressSource,
        options: Optional[AdapterOptions] = None,
        on_error: Optional[ErrorObserver] = None,
    ):
        if not callable(forward):
            raise ConfigurationError("forward must be a callable delivering payloads to spark ids")
        if address is None:
            raise ConfigurationError("no server address source given")

        self.options = options or AdapterOptions()
        self.identifier = self.options.identifier or str(int(time.time() * 1000))
        self.address = address
        self.backend = RedisRoomsBackend(redis_client, self.options)
        self.refresher = TTLRefresher(self.backend, on_error=on_error)
        self.router = BroadcastRouter(self.backend, forward)

    @property
    def server_instance(self) -> Optional[str]:
        return self.backend.server_instance

    async def start(self) -> None:
        if self.backend.server_instance is None:
            address = self.address() if callable(self.address) else self.address
            if not address:
                raise ConfigurationError("server address is not available")
            self.backend.server_instance = SERVER_INSTANCE.format(address=address, identifier=self.identifier)
            logger.info(f"Rooms adapter running as server instance {self.backend.server_instance}")
        self.refresher.start()

    async def stop(self) -> None:
        await self.refresher.stop()

    async def heartbeat(self, spark_id: str) -> None:
        await self.refresher.refresh_spark(spark_id)

    async def add(self, spark_id: str, room: str) -> None:
        await self.backend.add(spark_id, room)

    async def delete(self, spark_id: str, room: Optional[str] = None) -> None:
        await self.backend.delete(spark_id, room)

    async def get(self, spark_id: Optional[str] = None) -> List[str]:
        return await self.backend.get(spark_id)

    async def clients(self, room: str) -> List[str]:
        return await self.backend.clients(room)

    async def empty(self, room: str) -> None:
        await self.backend.empty(room)

    async def is_empty(self, room: str) -> bool:
        return await self.backend.is_empty(room)

    async def clear(self) -> None:
        await self.backend.clear()

    async def broadcast(self, data: Any, options: Optional[BroadcastOptions] = None) -> None:
        await self.router.broadcast(data, options)
