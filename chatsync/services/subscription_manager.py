# -*- coding: utf-8 -*-
"""
Push feed lifecycle: one session-long room-list feed and at most one active
per-room message feed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterator

from chatsync.retry import backoff_delays

logger = logging.getLogger(__name__)

FeedCallback = Callable[[dict[str, Any]], Awaitable[None] | None]

ROOM_LIST_FEED = 'rooms'


class FeedHandle:
    def __init__(self, key: str, callback: FeedCallback, room_id: str | None = None):
        self.key = key
        self.room_id = room_id
        self.callback = callback
        self.subscription = None
        self.closed = False
        self.dropped = False
        self._retry_task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self.subscription is not None and not self.closed and not self.dropped

    def __repr__(self) -> str:
        state = 'closed' if self.closed else ('active' if self.active else 'pending')
        return f'<FeedHandle {self.key} {state}>'


class SubscriptionManager:
    def __init__(self, backend, *, retry_delays: Callable[[], Iterator[float]] = backoff_delays):
        self._backend = backend
        self._retry_delays = retry_delays
        self._room_handle: FeedHandle | None = None
        self._list_handle: FeedHandle | None = None

    @property
    def room_handle(self) -> FeedHandle | None:
        return self._room_handle

    @property
    def list_handle(self) -> FeedHandle | None:
        return self._list_handle

    @property
    def active_room_id(self) -> str | None:
        return self._room_handle.room_id if self._room_handle else None

    def handles(self) -> list[FeedHandle]:
        return [handle for handle in (self._list_handle, self._room_handle) if handle is not None]

    async def open_room_feed(self, room_id: str, on_insert: FeedCallback) -> FeedHandle:
        room_id = str(room_id)
        current = self._room_handle
        if current is not None and not current.closed and current.room_id == room_id:
            return current
        if current is not None:
            await self.close(current)

        handle = FeedHandle(f'room:{room_id}', on_insert, room_id=room_id)
        # claim the slot before awaiting so a concurrent switch closes this handle
        self._room_handle = handle
        await self._subscribe(handle)
        return handle

    async def open_room_list_feed(self, on_change: FeedCallback) -> FeedHandle:
        current = self._list_handle
        if current is not None and not current.closed:
            return current
        handle = FeedHandle(ROOM_LIST_FEED, on_change)
        self._list_handle = handle
        await self._subscribe(handle)
        return handle

    async def close(self, handle: FeedHandle | None) -> None:
        if handle is None or handle.closed:
            return
        handle.closed = True
        if self._room_handle is handle:
            self._room_handle = None
        if self._list_handle is handle:
            self._list_handle = None

        task = handle._retry_task
        handle._retry_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

        subscription = handle.subscription
        handle.subscription = None
        if subscription is not None:
            try:
                await subscription.close()
            except Exception as exc:
                logger.warning(f"Closing feed {handle.key} failed: {exc}")

    async def close_all(self) -> None:
        for handle in self.handles():
            await self.close(handle)

    def _factory(self, handle: FeedHandle):
        async def _deliver(payload: dict[str, Any]) -> None:
            if handle.closed:
                return
            result = handle.callback(payload)
            if inspect.isawaitable(result):
                await result

        def _dropped() -> None:
            self._handle_drop(handle)

        if handle.room_id is None:
            return self._backend.subscribe_room_changes(_deliver, _dropped)
        return self._backend.subscribe_messages(handle.room_id, _deliver, _dropped)

    async def _subscribe(self, handle: FeedHandle) -> bool:
        try:
            subscription = await self._factory(handle)
        except Exception as exc:
            logger.warning(f"Subscribe to {handle.key} failed: {exc}")
            self._handle_drop(handle)
            return False
        if handle.closed:
            # closed while the subscribe call was in flight
            try:
                await subscription.close()
            except Exception as exc:
                logger.warning(f"Closing feed {handle.key} failed: {exc}")
            return False
        handle.subscription = subscription
        handle.dropped = False
        return True

    def _handle_drop(self, handle: FeedHandle) -> None:
        if handle.closed:
            return
        handle.dropped = True
        handle.subscription = None
        if handle._retry_task is not None and not handle._retry_task.done():
            return
        logger.warning(f"Feed {handle.key} dropped; resubscribing")
        handle._retry_task = asyncio.ensure_future(self._resubscribe(handle))

    async def _resubscribe(self, handle: FeedHandle) -> None:
        for delay in self._retry_delays():
            await asyncio.sleep(delay)
            if handle.closed:
                return
            try:
                subscription = await self._factory(handle)
            except Exception as exc:
                logger.warning(f"Resubscribe to {handle.key} failed: {exc}")
                continue
            if handle.closed:
                try:
                    await subscription.close()
                except Exception as exc:
                    logger.warning(f"Closing feed {handle.key} failed: {exc}")
                return
            handle.subscription = subscription
            handle.dropped = False
            handle._retry_task = None
            logger.info(f"Feed {handle.key} restored")
            return
