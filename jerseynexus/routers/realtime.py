from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from jerseynexus.db.session import get_engine
from jerseynexus.models import Order
from jerseynexus.routers.auth import user_from_token
from jerseynexus.services.notifier import manager

router = APIRouter()


def _authenticate(bind: Engine, token: str) -> tuple[int, bool, str]:
    with Session(bind) as session:
        user = user_from_token(token, session)
        return user.id, user.is_admin, user.role.value


def _order_owner(bind: Engine, order_id: int) -> Optional[int]:
    with Session(bind) as session:
        order = session.get(Order, order_id)
        return order.user_id if order else None


def _parse_order_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return None


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    bind: Engine = Depends(get_engine),
):
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return
    try:
        user_id, is_admin, role = await run_in_threadpool(_authenticate, bind, token)
    except HTTPException as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(exc.detail))
        return

    await manager.connect(websocket, user_id, is_admin)
    await websocket.send_json({"event": "connected", "data": {"userId": user_id, "role": role}})
    try:
        while True:
            message = await websocket.receive_json()
            await _handle_message(websocket, message, user_id, is_admin, bind)
    except WebSocketDisconnect:
        logger.info(f"websocket disconnected for user {user_id}")
    except ValueError as e:
        # Non-JSON frame
        logger.debug(f"websocket for user {user_id} sent invalid data: {e}")
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        manager.disconnect(websocket)


async def _handle_message(websocket: WebSocket, message: dict, user_id: int, is_admin: bool, bind: Engine):
    kind = message.get("type") if isinstance(message, dict) else None
    if kind not in ("join_order", "leave_order"):
        await websocket.send_json({"event": "error", "data": {"message": "Unknown message"}})
        return
    order_id = _parse_order_id(message.get("orderId"))
    if order_id is None:
        await websocket.send_json({"event": "error", "data": {"message": "Invalid order id"}})
        return

    # Same room name the order events are emitted to
    room = f"order:{order_id}"
    if kind == "leave_order":
        manager.leave(websocket, room)
        await websocket.send_json({"event": "left_order", "data": {"orderId": order_id}})
        return

    owner_id = await run_in_threadpool(_order_owner, bind, order_id)
    if owner_id is None or (owner_id != user_id and not is_admin):
        await websocket.send_json({"event": "error", "data": {"message": "Order not found"}})
        return
    manager.join(websocket, room)
    await websocket.send_json({"event": "joined_order", "data": {"orderId": order_id}})
