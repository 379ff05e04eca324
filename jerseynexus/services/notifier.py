from collections import defaultdict
from typing import Dict, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from loguru import logger


class ConnectionManager:
    """In-process websocket rooms: user:<id>, admin and order:<id>."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, websocket: WebSocket, user_id: int, is_admin: bool = False):
        await websocket.accept()
        self.join(websocket, f"user:{user_id}")
        if is_admin:
            self.join(websocket, "admin")
        logger.info(f"websocket connected for user {user_id} (admin={is_admin})")

    def join(self, websocket: WebSocket, room: str):
        self.rooms[room].add(websocket)

    def leave(self, websocket: WebSocket, room: str):
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self.rooms[room]

    def disconnect(self, websocket: WebSocket):
        for room in list(self.rooms):
            self.leave(websocket, room)

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def emit(self, room: str, event: str, data: dict):
        message = {"event": event, "data": jsonable_encoder(data)}
        for websocket in list(self.rooms.get(room, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                # Dead socket; nothing is queued for it
                logger.debug(f"dropping websocket from {room}: {e}")
                self.disconnect(websocket)

    async def order_updated(self, order: dict):
        await self.emit(f"user:{order['userId']}", "order_updated", order)
        await self.emit("admin", "order_updated", order)
        await self.emit(f"order:{order['orderId']}", "order_status_changed", order)

    async def new_order(self, order: dict):
        await self.emit("admin", "new_order", order)

    async def payment_updated(self, payment: dict):
        user_id = payment.get("userId")
        if user_id is not None:
            await self.emit(f"user:{user_id}", "payment_updated", payment)
        await self.emit("admin", "payment_updated", payment)

    async def profile_updated(self, user_id: int, profile: dict):
        await self.emit(f"user:{user_id}", "profile_updated", profile)


manager = ConnectionManager()
