import asyncio
import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from fastapi import WebSocket
from redis.exceptions import RedisError

from logging_config import get_logger
from redis_keys import FORWARD_CHANNEL

logger = get_logger(__name__)


class ConnectionHub:
    """WebSocket connections held by this instance, plus cluster forwarding.

    ``forward_to_sparks`` publishes once on a shared Redis channel; every
    instance listens on it and delivers to whichever of the sparks it holds.
    Delivery is at most once: a spark whose instance is down simply misses it.
    """

    def __init__(self, redis_client: redis.Redis, namespace: str):
        self.redis_client = redis_client
        self.channel = FORWARD_CHANNEL.format(namespace=namespace)
        # Format: {spark_id: websocket}
        self.connections: Dict[str, WebSocket] = {}
        self._listener: Optional[asyncio.Task] = None
        self._subscribed = asyncio.Event()

    def register(self, spark_id: str, websocket: WebSocket):
        self.connections[spark_id] = websocket
        logger.debug(f"Registered spark {spark_id} (local connections: {len(self.connections)})")

    def unregister(self, spark_id: str):
        self.connections.pop(spark_id, None)
        logger.debug(f"Unregistered spark {spark_id} (local connections: {len(self.connections)})")

    async def forward_to_sparks(self, spark_ids: List[str], payload: Any) -> int:
        message = json.dumps({"sparks": spark_ids, "data": payload})
        receivers = await self.redis_client.publish(self.channel, message)
        logger.debug(f"Forwarded payload for {len(spark_ids)} sparks to {receivers} instances")
        return receivers

    async def deliver(self, spark_ids: List[str], payload: Any) -> int:
        """Send ``payload`` to the sparks in ``spark_ids`` connected here."""
        local = [(spark_id, self.connections[spark_id]) for spark_id in spark_ids if spark_id in self.connections]
        if not local:
            return 0

        text = json.dumps(payload)
        results = await asyncio.gather(*(ws.send_text(text) for _, ws in local), return_exceptions=True)
        delivered = 0
        for (spark_id, _), result in zip(local, results):
            if isinstance(result, Exception):
                logger.warning(f"Error sending to spark {spark_id}: {result}")
            else:
                delivered += 1
        logger.debug(f"Delivered payload to {delivered}/{len(local)} local sparks")
        return delivered

    async def start(self):
        if self._listener is None or self._listener.done():
            self._subscribed.clear()
            self._listener = asyncio.create_task(self._listen())
            subscribed = asyncio.ensure_future(self._subscribed.wait())
            await asyncio.wait({subscribed, self._listener}, return_when=asyncio.FIRST_COMPLETED)
            if self._listener.done():
                # subscribe failed; surface its error
                subscribed.cancel()
                self._listener.result()

    async def stop(self):
        if self._listener is None:
            return
        self._listener.cancel()
        try:
            await self._listener
        except asyncio.CancelledError:
            pass
        self._listener = None
        self._subscribed.clear()

    async def _listen(self):
        logger.info(f"Starting Redis pub/sub listener on {self.channel}")
        pubsub = self.redis_client.pubsub()
        try:
            await pubsub.subscribe(self.channel)
            self._subscribed.set()
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    forwarded = json.loads(message["data"])
                    await self.deliver(forwarded["sparks"], forwarded["data"])
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.error(f"Dropping malformed forward message on {self.channel}: {e}")
        except asyncio.CancelledError:
            logger.info(f"Redis listener task cancelled for channel: {self.channel}")
            raise
        except RedisError as e:
            logger.error(f"Redis listener on {self.channel} stopped, forwarded payloads will not be delivered here: {e}", exc_info=True)
            if not self._subscribed.is_set():
                raise
        finally:
            await pubsub.aclose()
            logger.debug(f"Closed pub/sub connection for channel: {self.channel}")
