# -*- coding: utf-8 -*-
"""
Conversation sync engine.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from chatsync.config import AUTO_SELECT_FIRST_ROOM, PLACEHOLDER_PREFIX
from chatsync.errors import (
    CapabilityUnavailable,
    EngineNotReady,
    FetchFailure,
    InvalidMessage,
    SendFailure,
    SyncError,
)
from chatsync.models import Message, Room, parse_timestamp, utc_now
from chatsync.services.message_store import MessageStore
from chatsync.services.profile_resolver import ProfileResolver
from chatsync.services.room_registry import CapabilityProbe, RoomRegistry
from chatsync.services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]

_DELETE_ACTIONS = ('deleted', 'delete', 'room_deleted')


class EngineState(str, Enum):
    UNINITIALIZED = 'uninitialized'
    PROBING = 'probing'
    READY = 'ready'
    BLOCKED = 'blocked'
    CLOSED = 'closed'


class SyncEngine:
    def __init__(
        self,
        backend,
        user: dict[str, Any],
        *,
        profiles: ProfileResolver | None = None,
        registry: RoomRegistry | None = None,
        store: MessageStore | None = None,
        subscriptions: SubscriptionManager | None = None,
        clock: Callable[[], datetime] = utc_now,
        auto_select_first_room: bool = AUTO_SELECT_FIRST_ROOM,
    ):
        self.backend = backend
        self.user = dict(user or {})
        self.user_id = str(self.user.get('id') or '').strip()
        if not self.user_id:
            raise ValueError('Session user id is required')

        self.profiles = profiles if profiles is not None else ProfileResolver(backend, session_user=self.user)
        self.registry = registry or RoomRegistry(backend, probe=CapabilityProbe(backend))
        self.probe = self.registry.probe
        self.store = store or MessageStore(self.profiles)
        self.subscriptions = subscriptions or SubscriptionManager(backend)
        self._clock = clock
        self._auto_select_first_room = bool(auto_select_first_room)

        self.state = EngineState.UNINITIALIZED
        self.blocked_reason = ''
        self.current_room_id: str | None = None
        self.last_error: SyncError | None = None
        self.room_errors: dict[str, FetchFailure] = {}

        self._loaded_rooms: set[str] = set()
        self._removed_rooms: set[str] = set()
        self._fetches: dict[str, asyncio.Task] = {}
        self._pending_sends: dict[str, str] = {}
        self._handlers: dict[str, list[Listener]] = {}
        self._listener_tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> 'SyncEngine':
        await self.start()
        return self

    async def __aexit__(self, *_exc_info) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # listeners
    # ------------------------------------------------------------------
    def on(self, event: str, callback: Listener) -> None:
        self._handlers.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Listener) -> None:
        callbacks = self._handlers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._handlers.get(event, [])):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._listener_tasks.add(task)
                    task.add_done_callback(lambda done, name=event: self._listener_done(name, done))
            except Exception as exc:
                logger.error(f"Listener for {event} failed: {exc}")

    def _listener_done(self, event: str, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Listener for {event} failed: {exc}")

    def _set_state(self, state: EngineState) -> None:
        if self.state is state:
            return
        self.state = state
        self._emit('state_changed', state)

    def _report(self, error: SyncError) -> None:
        self.last_error = error
        self._emit('error', error)

    def _require_ready(self) -> None:
        if self.state is EngineState.BLOCKED:
            raise CapabilityUnavailable(self.blocked_reason or 'Chat backend is unavailable')
        if self.state is not EngineState.READY:
            raise EngineNotReady(f'Sync engine is {self.state.value}')

    @property
    def ready(self) -> bool:
        return self.state is EngineState.READY

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> EngineState:
        if self.state is not EngineState.UNINITIALIZED:
            return self.state

        self._set_state(EngineState.PROBING)
        ready = await self.probe.check()
        if self.state is not EngineState.PROBING:
            # shut down while probing
            return self.state
        if not ready:
            self.blocked_reason = self.probe.reason or 'Chat backend is unavailable'
            self._set_state(EngineState.BLOCKED)
            self._report(CapabilityUnavailable(self.blocked_reason))
            return self.state

        self._set_state(EngineState.READY)
        await self.subscriptions.open_room_list_feed(self._on_room_change)
        if not self.ready:
            return self.state
        rooms = await self.refresh_rooms()
        if self._auto_select_first_room and self.current_room_id is None and rooms and self.ready:
            await self.select_room(rooms[0].id)
        return self.state

    async def shutdown(self) -> None:
        if self.state is EngineState.CLOSED:
            return
        self._set_state(EngineState.CLOSED)
        self.current_room_id = None
        await self.subscriptions.close_all()
        # a listener may be the caller
        pending = [task for task in self._listener_tasks if task is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # rooms
    # ------------------------------------------------------------------
    def rooms(self) -> list[Room]:
        return self.registry.rooms()

    def total_unread(self) -> int:
        return self.registry.total_unread()

    async def refresh_rooms(self) -> list[Room]:
        self._require_ready()
        try:
            rooms = await self.registry.load_rooms(self.user_id)
        except FetchFailure as exc:
            self._report(exc)
            return self.registry.rooms()
        if self.state is not EngineState.READY:
            return []
        if self.last_error is not None and self.last_error.room_id is None:
            self.last_error = None
        self._emit('rooms_changed', rooms)
        return rooms

    async def mark_read(self, room_id: str) -> bool:
        self._require_ready()
        room_id = str(room_id)
        self.registry.reset_unread(room_id)
        self._emit('rooms_changed', self.registry.rooms())
        return await self.registry.mark_read(room_id)

    async def select_room(self, room_id: str) -> list[Message]:
        self._require_ready()
        room_id = str(room_id)
        self.current_room_id = room_id

        handle = self.subscriptions.room_handle
        if handle is not None and handle.room_id != room_id:
            await self.subscriptions.close(handle)

        if room_id not in self._loaded_rooms:
            await self._fetch_room(room_id)
        if not self.ready or self.current_room_id != room_id:
            # switched away while loading; the fetched batch is kept for later
            return self.current_messages()

        await self.mark_read(room_id)
        if not self.ready or self.current_room_id != room_id:
            return self.current_messages()

        await self.subscriptions.open_room_feed(room_id, lambda payload: self._on_room_message(room_id, payload))
        return self.current_messages()

    # ------------------------------------------------------------------
    # messages
    # ------------------------------------------------------------------
    def visible_messages(self, room_id: str, now: datetime | None = None) -> list[Message]:
        return self.store.visible_messages(str(room_id), now or self._clock())

    def current_messages(self, now: datetime | None = None) -> list[Message]:
        if self.current_room_id is None:
            return []
        return self.visible_messages(self.current_room_id, now)

    @property
    def pending_sends(self) -> int:
        return len(self._pending_sends)

    async def refresh_messages(self, room_id: str | None = None) -> list[Message]:
        self._require_ready()
        target = str(room_id or self.current_room_id or '')
        if not target:
            return []
        await self._fetch_room(target)
        return self.visible_messages(target)

    async def _fetch_room(self, room_id: str) -> bool:
        task = self._fetches.get(room_id)
        if task is None:
            task = asyncio.ensure_future(self._load_messages(room_id))
            self._fetches[room_id] = task

            def _forget(done: asyncio.Task, key: str = room_id) -> None:
                if self._fetches.get(key) is done:
                    self._fetches.pop(key, None)

            task.add_done_callback(_forget)
        return await asyncio.shield(task)

    def _accepting(self, room_id: str) -> bool:
        return self.state is EngineState.READY and room_id not in self._removed_rooms

    async def _load_messages(self, room_id: str) -> bool:
        since = self._clock() - self.store.window
        try:
            payloads = await self.backend.list_messages(room_id, since)
        except Exception as exc:
            failure = FetchFailure(f'Failed to load messages: {exc}', room_id=room_id)
            logger.warning(f"Message fetch for room {room_id} failed: {exc}")
            self.room_errors[room_id] = failure
            if self.state is EngineState.READY:
                self._report(failure)
            return False

        messages = []
        for payload in payloads or []:
            message = Message.from_dict(payload, room_id=room_id)
            if message is not None:
                messages.append(message)
        senders = {message.sender_id for message in messages if message.sender_profile is None}
        await asyncio.gather(*(self.profiles.resolve(sender_id) for sender_id in senders))

        if not self._accepting(room_id):
            return False
        self.store.insert_fetched(room_id, messages)
        self._loaded_rooms.add(room_id)
        self.room_errors.pop(room_id, None)
        self._emit('messages_changed', room_id)
        return True

    async def send(self, room_id: str, sender_id: str, content: str) -> Message:
        self._require_ready()
        room_id = str(room_id)
        sender_id = str(sender_id)
        text = str(content or '').strip()
        if not text:
            raise InvalidMessage('Message content is empty', room_id=room_id)

        profile = await self.profiles.resolve(sender_id)
        now = self._clock()
        placeholder = Message(
            id=f'{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}',
            room_id=room_id,
            sender_id=sender_id,
            content=text,
            created_at=now,
            updated_at=now,
            sender_profile=profile,
        )
        placeholder_id = self.store.insert_optimistic(room_id, placeholder)
        self._pending_sends[placeholder_id] = room_id
        self.registry.apply_room_activity(
            room_id, text, now, reset_unread=True, from_self=sender_id == self.user_id
        )
        self._emit('messages_changed', room_id)
        self._emit('rooms_changed', self.registry.rooms())

        try:
            payload = await self.backend.send_message(room_id, sender_id, text)
            canonical = Message.from_dict(payload, room_id=room_id)
            if canonical is None:
                raise ValueError('backend returned an invalid message record')
        except Exception as exc:
            self._pending_sends.pop(placeholder_id, None)
            self.store.rollback(room_id, placeholder_id)
            logger.warning(f"Send to room {room_id} failed: {exc}")
            failure = SendFailure(
                f'Failed to send message: {exc}',
                room_id=room_id,
                placeholder_id=placeholder_id,
                content=text,
            )
            self._emit('messages_changed', room_id)
            self._emit('error', failure)
            raise failure from exc

        self._pending_sends.pop(placeholder_id, None)
        if not self._accepting(room_id):
            self.store.rollback(room_id, placeholder_id)
            return canonical
        stored = self.store.reconcile(room_id, canonical, placeholder_id)
        self._emit('messages_changed', room_id)
        return stored

    # ------------------------------------------------------------------
    # push feeds
    # ------------------------------------------------------------------
    async def _apply_pushed_message(self, room_id: str, payload: dict[str, Any]) -> Message | None:
        message = Message.from_dict(payload, room_id=room_id)
        if message is None:
            logger.debug(f"Ignoring malformed push message for room {room_id}")
            return None
        if message.sender_profile is None:
            await self.profiles.resolve(message.sender_id)
        if not self._accepting(room_id):
            return None
        stored = self.store.reconcile(room_id, message)
        self._emit('messages_changed', room_id)
        return stored

    async def _on_room_message(self, room_id: str, payload: dict[str, Any]) -> None:
        if not self._accepting(room_id):
            return
        message = await self._apply_pushed_message(room_id, payload)
        if message is None:
            return
        self.registry.apply_room_activity(
            room_id,
            message.content,
            message.created_at,
            reset_unread=room_id == self.current_room_id,
            from_self=message.sender_id == self.user_id,
        )
        self._emit('rooms_changed', self.registry.rooms())

    async def _on_room_change(self, payload: dict[str, Any]) -> None:
        if self.state is not EngineState.READY:
            return
        action = str(payload.get('action') or payload.get('event') or '').strip().lower()
        room_data = payload.get('room') if isinstance(payload.get('room'), dict) else payload
        room_id = str(room_data.get('id') or room_data.get('room_id') or '').strip()
        if not room_id:
            return

        if action in _DELETE_ACTIONS:
            await self._forget_room(room_id)
            self._emit('rooms_changed', self.registry.rooms())
            return

        self._removed_rooms.discard(room_id)
        existing = self.registry.get(room_id)
        self.registry.upsert(room_data)
        if existing is not None:
            at = parse_timestamp(room_data.get('last_message_time') or room_data.get('last_activity_at'))
            preview = room_data.get('last_message')
            if preview is None:
                preview = room_data.get('preview')
            # a redelivered or stale event carries no newer activity
            if at is not None and preview is not None and (
                existing.last_activity_at is None or at > existing.last_activity_at
            ):
                sender_id = str(room_data.get('last_sender_id') or '')
                self.registry.apply_room_activity(
                    room_id,
                    str(preview),
                    at,
                    reset_unread=room_id == self.current_room_id,
                    from_self=bool(sender_id) and sender_id == self.user_id,
                )

        message_data = payload.get('message')
        if isinstance(message_data, dict):
            await self._apply_pushed_message(room_id, message_data)
        self._emit('rooms_changed', self.registry.rooms())

    async def _forget_room(self, room_id: str) -> None:
        self.registry.remove(room_id)
        self._removed_rooms.add(room_id)
        self._loaded_rooms.discard(room_id)
        self.store.discard(room_id)
        if self.current_room_id == room_id:
            self.current_room_id = None
            await self.subscriptions.close(self.subscriptions.room_handle)

    # ------------------------------------------------------------------
    # diagnostics
    # ------------------------------------------------------------------
    def diagnostics(self) -> dict[str, Any]:
        return {
            'state': self.state.value,
            'blocked_reason': self.blocked_reason,
            'registry_status': self.registry.status.value,
            'rooms': len(self.registry.rooms()),
            'loaded_rooms': sorted(self._loaded_rooms),
            'current_room_id': self.current_room_id,
            'feeds': [repr(handle) for handle in self.subscriptions.handles()],
            'pending_sends': self.pending_sends,
            'cached_profiles': len(self.profiles),
            'last_error': str(self.last_error) if self.last_error else '',
        }
