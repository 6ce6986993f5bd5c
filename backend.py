import math
from typing import List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from constants import REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from errors import ConfigurationError, StoreOperationError
from logging_config import get_logger
from redis_keys import (
    ALL_ROOM_KEYS_PATTERN,
    NAMESPACE_PATTERN,
    ROOM_KEYS_PATTERN,
    ROOM_SPARKS_KEY,
    SPARK_ROOMS_KEY,
    escape_pattern,
    room_from_key,
)
from results import validate_results
from scanner import KeyScanner
from schemas.rooms import AdapterOptions

logger = get_logger(__name__)


def create_redis_client() -> redis.Redis:
    logger.info(f"Creating Redis client for {REDIS_HOST}:{REDIS_PORT}")
    return redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)


def ttl_seconds(interval: float, drift_factor: float) -> int:
    """TTL for a key refreshed every ``interval`` seconds; always outlives the next refresh."""
    return math.ceil(interval * drift_factor)


def _check_id(name: str, value) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")


class RedisRoomsBackend:
    """Room membership kept as two mirrored Redis set indexes.

    ``{ns}:rooms:{server_instance}:{room}`` holds the sparks in a room on one
    server, so a dead server's rooms expire on their own. ``{ns}:sparks:{id}``
    holds the rooms of one spark. The two are written in the same pipeline but
    are not transactional across failures; they converge on the next write or
    on expiry.
    """

    def __init__(self, redis_client: redis.Redis, options: AdapterOptions):
        if not isinstance(redis_client, redis.Redis):
            raise ConfigurationError("redis_client is not an instance of redis.asyncio.Redis")

        self.redis_client = redis_client
        self.options = options
        self.namespace = options.namespace
        self.scanner = KeyScanner(redis_client)
        self.room_ttl = ttl_seconds(options.room_refresh_interval, options.drift_factor)
        self.spark_ttl = ttl_seconds(options.heartbeat_interval, options.drift_factor)
        self.server_instance: Optional[str] = None
        logger.info(
            f"Initializing RedisRoomsBackend namespace={self.namespace} "
            f"room_ttl={self.room_ttl}s spark_ttl={self.spark_ttl}s"
        )

    def room_key(self, room: str) -> str:
        if self.server_instance is None:
            raise ConfigurationError("server instance is not known yet, call start() first")
        return ROOM_SPARKS_KEY.format(namespace=self.namespace, server_instance=self.server_instance, room=room)

    def spark_key(self, spark_id: str) -> str:
        return SPARK_ROOMS_KEY.format(namespace=self.namespace, spark_id=spark_id)

    def room_keys_pattern(self, room: str) -> str:
        return ROOM_KEYS_PATTERN.format(namespace=escape_pattern(self.namespace), room=escape_pattern(room))

    async def execute_pipeline(self, pipe) -> list:
        try:
            results = await pipe.execute(raise_on_error=False)
        except RedisError as e:
            logger.error(f"Pipeline submission failed: {e}", exc_info=True)
            raise StoreOperationError(f"Pipeline failed: {e}") from e
        return validate_results(results)

    async def _command(self, description: str, coro):
        try:
            return await coro
        except RedisError as e:
            logger.error(f"Redis {description} failed: {e}", exc_info=True)
            raise StoreOperationError(f"{description} failed: {e}") from e

    async def add(self, spark_id: str, room: str) -> None:
        _check_id("spark_id", spark_id)
        _check_id("room", room)
        if ":" in room:
            raise ValueError("room must not contain ':'")

        room_key = self.room_key(room)
        spark_key = self.spark_key(spark_id)
        logger.debug(f"Adding spark {spark_id} to room {room}")

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.sadd(room_key, spark_id)
        pipe.expire(room_key, self.room_ttl)
        pipe.sadd(spark_key, room)
        pipe.expire(spark_key, self.spark_ttl)
        await self.execute_pipeline(pipe)

    async def delete(self, spark_id: str, room: Optional[str] = None) -> None:
        """Remove a spark from ``room``, or from every room it is in when ``room`` is None."""
        _check_id("spark_id", spark_id)
        if room is None:
            await self._delete_from_all_rooms(spark_id)
            return
        _check_id("room", room)

        logger.debug(f"Removing spark {spark_id} from room {room}")
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.srem(self.room_key(room), spark_id)
        pipe.srem(self.spark_key(spark_id), room)
        await self.execute_pipeline(pipe)

    async def _delete_from_all_rooms(self, spark_id: str) -> None:
        spark_key = self.spark_key(spark_id)
        rooms = await self._command(f"SMEMBERS {spark_key}", self.redis_client.smembers(spark_key))
        logger.debug(f"Removing spark {spark_id} from all {len(rooms)} rooms")

        pipe = self.redis_client.pipeline(transaction=True)
        for room in rooms:
            pipe.srem(self.room_key(room), spark_id)
        pipe.delete(spark_key)
        await self.execute_pipeline(pipe)

    async def get(self, spark_id: Optional[str] = None) -> List[str]:
        """Rooms of ``spark_id``, or every room on every server when it is None."""
        if spark_id is not None:
            _check_id("spark_id", spark_id)
            spark_key = self.spark_key(spark_id)
            rooms = await self._command(f"SMEMBERS {spark_key}", self.redis_client.smembers(spark_key))
            return sorted(rooms)

        pattern = ALL_ROOM_KEYS_PATTERN.format(namespace=escape_pattern(self.namespace))
        keys = await self.scanner.scan_keys(pattern, self.options.keys_scan_count)
        return sorted({room_from_key(key) for key in keys})

    async def clients(self, room: str) -> List[str]:
        _check_id("room", room)
        keys = await self.scanner.scan_keys(self.room_keys_pattern(room), self.options.keys_scan_count)
        # A spark lives on exactly one server, so no dedup across keys
        return await self.scanner.scan_set_members(sorted(keys), self.options.members_scan_count)

    async def empty(self, room: str) -> None:
        _check_id("room", room)
        keys = await self.scanner.scan_keys(self.room_keys_pattern(room), self.options.keys_scan_count)
        if not keys:
            logger.debug(f"Room {room} has no keys on any server, nothing to empty")
            return
        spark_ids = await self.scanner.scan_set_members(sorted(keys), self.options.members_scan_count)
        logger.info(f"Emptying room {room}: {len(keys)} server keys, {len(spark_ids)} sparks")

        pipe = self.redis_client.pipeline(transaction=True)
        pipe.delete(*keys)
        for spark_id in spark_ids:
            pipe.srem(self.spark_key(spark_id), room)
        await self.execute_pipeline(pipe)

    async def is_empty(self, room: str) -> bool:
        _check_id("room", room)
        keys = await self.scanner.scan_keys(self.room_keys_pattern(room), self.options.keys_scan_count)
        return len(keys) == 0

    async def clear(self) -> None:
        """Delete every key in the namespace, including other servers' live data."""
        pattern = NAMESPACE_PATTERN.format(namespace=escape_pattern(self.namespace))
        keys = await self.scanner.scan_keys(pattern, self.options.keys_scan_count)
        logger.warning(f"Clearing namespace {self.namespace}: deleting {len(keys)} keys")
        if keys:
            await self._command(f"DEL {pattern}", self.redis_client.delete(*keys))
