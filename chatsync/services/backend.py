# -*- coding: utf-8 -*-
"""
Persistence/transport boundary consumed by the sync engine.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from chatsync.config import SERVER_URL
from chatsync.services.api_client import APIClient
from chatsync.services.socket_client import SocketClient

PushCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
DropCallback = Callable[[], None]


class Subscription(Protocol):
    async def close(self) -> None: ...


class ChatBackend(Protocol):
    async def check_ready(self) -> bool: ...

    async def list_rooms(self, user_id: str) -> list[dict[str, Any]]: ...

    async def list_messages(self, room_id: str, since: datetime) -> list[dict[str, Any]]: ...

    async def send_message(self, room_id: str, sender_id: str, content: str) -> dict[str, Any]: ...

    async def mark_read(self, room_id: str) -> None: ...

    async def get_profile(self, user_id: str) -> dict[str, Any] | None: ...

    async def subscribe_messages(
        self,
        room_id: str,
        on_insert: PushCallback,
        on_drop: DropCallback | None = None,
    ) -> Subscription: ...

    async def subscribe_room_changes(
        self,
        on_change: PushCallback,
        on_drop: DropCallback | None = None,
    ) -> Subscription: ...


class RemoteBackend:
    """REST for request/response calls, Socket.IO for the push feeds."""

    def __init__(
        self,
        server_url: str = SERVER_URL,
        access_token: str = '',
        api: APIClient | None = None,
        socket: SocketClient | None = None,
    ):
        self.server_url = server_url.rstrip('/')
        self._access_token = access_token
        self.api = api or APIClient(self.server_url, access_token=access_token)
        self.socket = socket or SocketClient()

    async def connect(self) -> None:
        await self.socket.connect(self.server_url, access_token=self._access_token)

    async def close(self) -> None:
        try:
            await self.socket.disconnect()
        finally:
            await self.api.close()

    async def check_ready(self) -> bool:
        return await self.api.check_ready()

    async def list_rooms(self, user_id: str) -> list[dict[str, Any]]:
        return await self.api.list_rooms(user_id)

    async def list_messages(self, room_id: str, since: datetime) -> list[dict[str, Any]]:
        return await self.api.list_messages(room_id, since)

    async def send_message(self, room_id: str, sender_id: str, content: str) -> dict[str, Any]:
        return await self.api.send_message(room_id, sender_id, content)

    async def mark_read(self, room_id: str) -> None:
        await self.api.mark_read(room_id)

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return await self.api.get_profile(user_id)

    async def subscribe_messages(self, room_id, on_insert, on_drop=None):
        return await self.socket.subscribe_messages(room_id, on_insert, on_drop)

    async def subscribe_room_changes(self, on_change, on_drop=None):
        return await self.socket.subscribe_room_changes(on_change, on_drop)
