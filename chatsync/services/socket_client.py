# -*- coding: utf-8 -*-
"""
Socket.IO push channel wrapper.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable

import socketio

from chatsync.config import SOCKET_TRANSPORTS
from chatsync.errors import SubscriptionDropped

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
DropCallback = Callable[[], None]

ROOM_LIST_KEY = 'rooms'


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class SocketSubscription:
    def __init__(
        self,
        owner: 'SocketClient',
        key: str,
        callback: EventCallback,
        on_drop: DropCallback | None = None,
    ):
        self._owner = owner
        self.key = key
        self.callback = callback
        self.on_drop = on_drop
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._owner._release(self)

    def _mark_dropped(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.on_drop:
            self.on_drop()


class SocketClient:
    def __init__(self, client: socketio.AsyncClient | None = None):
        self._client = client or socketio.AsyncClient(reconnection=True, logger=False, engineio_logger=False)
        self._handlers: dict[str, list[EventCallback]] = {}
        self._subscriptions: dict[str, list[SocketSubscription]] = {}
        self._register_internal_handlers()

    @property
    def connected(self) -> bool:
        return bool(self._client.connected)

    def _register_internal_handlers(self) -> None:
        @self._client.on('connect')
        async def _on_connect():
            await self._emit_local('connect', {})

        @self._client.on('disconnect')
        async def _on_disconnect(*_args):
            self._drop_all()
            await self._emit_local('disconnect', {})

        @self._client.on('new_message')
        async def _on_new_message(data):
            await self._dispatch_message(data or {})

        @self._client.on('room_updated')
        async def _on_room_updated(data):
            await self._dispatch(ROOM_LIST_KEY, data or {})

        @self._client.on('error')
        async def _on_error(data):
            await self._emit_local('error', data or {})

    async def _emit_local(self, event: str, payload: dict[str, Any]) -> None:
        for callback in list(self._handlers.get(event, [])):
            await _call(callback, payload)

    async def _dispatch_message(self, payload: dict[str, Any]) -> None:
        room_id = str(payload.get('room_id') or '').strip()
        if not room_id:
            return
        await self._dispatch(f'room:{room_id}', payload)

    async def _dispatch(self, key: str, payload: dict[str, Any]) -> None:
        for subscription in list(self._subscriptions.get(key, [])):
            if subscription.closed:
                continue
            try:
                await _call(subscription.callback, payload)
            except Exception as exc:
                logger.error(f"Push handler for {key} failed: {exc}")

    def _drop_all(self) -> None:
        dropped = [sub for subs in self._subscriptions.values() for sub in subs]
        self._subscriptions.clear()
        if dropped:
            logger.warning(f"Push channel disconnected; {len(dropped)} subscriptions dropped")
        for subscription in dropped:
            subscription._mark_dropped()

    def on(self, event: str, callback: EventCallback) -> None:
        self._handlers.setdefault(event, []).append(callback)

    async def connect(self, server_url: str, access_token: str = '') -> None:
        headers = {}
        if access_token:
            headers['Authorization'] = f'Bearer {access_token}'
        await self._client.connect(server_url.rstrip('/'), headers=headers, transports=SOCKET_TRANSPORTS)

    async def disconnect(self) -> None:
        if self._client.connected:
            await self._client.disconnect()

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        await self._client.emit(event, payload)

    async def _subscribe(
        self,
        key: str,
        join_event: str,
        join_payload: dict[str, Any],
        callback: EventCallback,
        on_drop: DropCallback | None,
    ) -> SocketSubscription:
        if not self._client.connected:
            raise SubscriptionDropped('Push channel is not connected')
        subscription = SocketSubscription(self, key, callback, on_drop)
        first = not self._subscriptions.get(key)
        self._subscriptions.setdefault(key, []).append(subscription)
        if first:
            try:
                await self.emit(join_event, join_payload)
            except Exception as exc:
                self._subscriptions.pop(key, None)
                raise SubscriptionDropped(f'Subscribe to {key} failed: {exc}') from exc
        return subscription

    async def _release(self, subscription: SocketSubscription) -> None:
        subs = self._subscriptions.get(subscription.key, [])
        if subscription in subs:
            subs.remove(subscription)
        if subs:
            return
        self._subscriptions.pop(subscription.key, None)
        if not self._client.connected:
            return
        if subscription.key == ROOM_LIST_KEY:
            await self.emit('unsubscribe_room_list', {})
        else:
            await self.emit('leave_room', {'room_id': subscription.key.split(':', 1)[1]})

    async def subscribe_messages(
        self,
        room_id: str,
        on_insert: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> SocketSubscription:
        return await self._subscribe(
            f'room:{room_id}',
            'join_room',
            {'room_id': room_id},
            on_insert,
            on_drop,
        )

    async def subscribe_room_changes(
        self,
        on_change: EventCallback,
        on_drop: DropCallback | None = None,
    ) -> SocketSubscription:
        return await self._subscribe(ROOM_LIST_KEY, 'subscribe_room_list', {}, on_change, on_drop)
