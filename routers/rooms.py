from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import BroadcastOptions, BroadcastRequest, ClientsResponse, IsEmptyResponse, RoomsResponse
from adapter import RoomAdapter
from errors import RoomsError
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


def get_adapter(request: Request) -> RoomAdapter:
    return request.app.state.adapter


def client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def run(description: str, operation):
    try:
        return await operation
    except ValueError as e:
        logger.warning(f"{description} rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except RoomsError as e:
        logger.error(f"Error during {description}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to {description}")


@rooms_router.get("/rooms", response_model=RoomsResponse)
async def list_rooms(request: Request):
    rooms = await run("list rooms", get_adapter(request).get())
    return RoomsResponse(rooms=rooms)


@rooms_router.get("/rooms/{room}/clients", response_model=ClientsResponse)
async def room_clients(room: str, request: Request):
    clients = await run("list room clients", get_adapter(request).clients(room))
    return ClientsResponse(room=room, clients=clients)


@rooms_router.get("/rooms/{room}/empty", response_model=IsEmptyResponse)
async def room_is_empty(room: str, request: Request):
    is_empty = await run("check room", get_adapter(request).is_empty(room))
    return IsEmptyResponse(room=room, is_empty=is_empty)


@rooms_router.delete("/rooms/{room}", status_code=204)
async def empty_room(room: str, request: Request):
    logger.info(f"Empty room request for {room} from {client_host(request)}")
    await run("empty room", get_adapter(request).empty(room))


@rooms_router.put("/rooms/{room}/sparks/{spark_id}", status_code=204)
async def add_spark(room: str, spark_id: str, request: Request):
    await run("add spark", get_adapter(request).add(spark_id, room))


@rooms_router.delete("/rooms/{room}/sparks/{spark_id}", status_code=204)
async def remove_spark(room: str, spark_id: str, request: Request):
    await run("remove spark", get_adapter(request).delete(spark_id, room))


@rooms_router.get("/sparks/{spark_id}/rooms", response_model=RoomsResponse)
async def spark_rooms(spark_id: str, request: Request):
    rooms = await run("list spark rooms", get_adapter(request).get(spark_id))
    return RoomsResponse(rooms=rooms)


@rooms_router.delete("/sparks/{spark_id}", status_code=204)
async def remove_spark_everywhere(spark_id: str, request: Request):
    await run("remove spark", get_adapter(request).delete(spark_id))


@rooms_router.post("/broadcast", status_code=202)
async def broadcast(body: BroadcastRequest, request: Request):
    options = BroadcastOptions(rooms=body.rooms, except_=body.except_, transformer=lambda data: data)
    await run("broadcast", get_adapter(request).broadcast(body.data, options))
    return {"message": "Broadcast forwarded"}


@rooms_router.delete("/rooms", status_code=204)
async def clear_rooms(request: Request):
    # Maintenance only: wipes membership of every server in the namespace
    logger.warning(f"Clear request from {client_host(request)}")
    await run("clear rooms", get_adapter(request).clear())
