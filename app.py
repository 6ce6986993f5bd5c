from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from routers.rooms import rooms_router
from adapter import RoomsAdapter
from backend import create_redis_client
from constants import (
    HEARTBEAT_INTERVAL,
    HOST,
    PORT,
    ROOM_REFRESH_INTERVAL,
    ROOMS_IDENTIFIER,
    ROOMS_NAMESPACE,
    SERVER_ADDRESS,
)
from errors import RoomsError
from schemas.rooms import AdapterOptions, BroadcastOptions
from transport import ConnectionHub
import uuid
import json
from datetime import datetime
from logging_config import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = create_redis_client()
    await redis_client.ping()
    logger.info("Redis client connected successfully")

    options = AdapterOptions(
        namespace=ROOMS_NAMESPACE,
        identifier=ROOMS_IDENTIFIER,
        room_refresh_interval=ROOM_REFRESH_INTERVAL,
        heartbeat_interval=HEARTBEAT_INTERVAL,
    )
    hub = ConnectionHub(redis_client, options.namespace)
    adapter = RoomsAdapter(
        redis_client,
        hub.forward_to_sparks,
        SERVER_ADDRESS or f"http://{HOST}:{PORT}",
        options=options,
    )

    await hub.start()
    await adapter.start()
    app.state.hub = hub
    app.state.adapter = adapter
    try:
        yield
    finally:
        await adapter.stop()
        await hub.stop()
        await redis_client.aclose()
        logger.info("Rooms adapter and Redis connections shut down")


app = FastAPI(lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)

logger.info("FastAPI application initialized")


async def handle_message(adapter: RoomsAdapter, spark_id: str, message: dict) -> dict:
    """Apply one client message and return the reply to send back."""
    message_type = message.get("type")

    if message_type == "heartbeat":
        await adapter.heartbeat(spark_id)
        return {"type": "heartbeat"}

    if message_type == "join":
        await adapter.add(spark_id, message.get("room"))
        return {"type": "joined", "room": message["room"]}

    if message_type == "leave":
        # No room means leave every room
        room = message.get("room")
        await adapter.delete(spark_id, room)
        return {"type": "left", "room": room}

    if message_type == "rooms":
        return {"type": "rooms", "rooms": await adapter.get(spark_id)}

    if message_type == "broadcast":
        options = BroadcastOptions(rooms=message.get("rooms") or [], except_=message.get("except") or [])
        payload = {
            "type": "message",
            "from": spark_id,
            "data": message.get("data"),
            "timestamp": datetime.now().isoformat(),
        }
        await adapter.broadcast([payload], options)
        return {"type": "sent"}

    raise ValueError(f"Unknown message type: {message_type}")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """One spark per WebSocket connection.

    Messages are JSON objects with a ``type`` of heartbeat, join, leave,
    rooms or broadcast. Clients should send a heartbeat at least every
    HEARTBEAT_INTERVAL seconds or their room list expires.
    """
    adapter: RoomsAdapter = websocket.app.state.adapter
    hub: ConnectionHub = websocket.app.state.hub
    spark_id = uuid.uuid4().hex

    await websocket.accept()
    hub.register(spark_id, websocket)
    logger.info(f"Spark {spark_id} connected")

    try:
        await websocket.send_text(json.dumps({"type": "system", "spark_id": spark_id}))
        while True:
            data = await websocket.receive_text()
            try:
                reply = await handle_message(adapter, spark_id, json.loads(data))
            except (json.JSONDecodeError, AttributeError, ValueError) as e:
                logger.warning(f"Rejected message from spark {spark_id}: {e}")
                reply = {"type": "error", "message": str(e)}
            except RoomsError as e:
                logger.error(f"Room operation failed for spark {spark_id}: {e}", exc_info=True)
                reply = {"type": "error", "message": "Room operation failed"}
            await websocket.send_text(json.dumps(reply))
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected normally for spark {spark_id}")
    finally:
        hub.unregister(spark_id)
        try:
            await adapter.delete(spark_id)
        except RoomsError as e:
            # Spark key expires on its own without heartbeats
            logger.error(f"Could not remove spark {spark_id} from its rooms: {e}", exc_info=True)
