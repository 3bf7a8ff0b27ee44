# -*- coding: utf-8 -*-

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from chatsync.errors import SubscriptionDropped

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def ts(seconds: float = 0.0) -> str:
    return (NOW + timedelta(seconds=seconds)).isoformat()


class FakeSubscription:
    def __init__(self, key: str, callback, on_drop=None):
        self.key = key
        self.callback = callback
        self.on_drop = on_drop
        self.closed = False
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    async def push(self, payload: dict) -> None:
        await self.callback(payload)

    def drop(self) -> None:
        self.closed = True
        if self.on_drop:
            self.on_drop()


class FakeBackend:
    def __init__(self, *, ready=True, rooms=None, messages=None, profiles=None):
        self.ready = ready
        self.rooms = list(rooms or [])
        self.messages: dict[str, list[dict]] = {k: list(v) for k, v in (messages or {}).items()}
        self.profiles: dict[str, dict] = dict(profiles or {})
        self.rooms_error: Exception | None = None
        self.fetch_errors: dict[str, Exception] = {}
        self.fetch_gates: dict[str, asyncio.Event] = {}
        self.send_error: Exception | None = None
        self.send_gate: asyncio.Event | None = None
        self.send_created_at = ts(1)
        self.next_ids: list[str] = []
        self.profile_error: Exception | None = None
        self.mark_read_error: Exception | None = None
        self.subscribe_failures = 0
        self.subscriptions: list[FakeSubscription] = []
        self.calls: dict[str, list] = {
            'check_ready': [],
            'list_rooms': [],
            'list_messages': [],
            'send_message': [],
            'mark_read': [],
            'get_profile': [],
        }
        self._id_counter = 0

    async def check_ready(self) -> bool:
        self.calls['check_ready'].append(())
        if isinstance(self.ready, Exception):
            raise self.ready
        return bool(self.ready)

    async def list_rooms(self, user_id):
        self.calls['list_rooms'].append(user_id)
        if self.rooms_error:
            raise self.rooms_error
        return [dict(room) for room in self.rooms]

    async def list_messages(self, room_id, since):
        self.calls['list_messages'].append((room_id, since))
        gate = self.fetch_gates.get(room_id)
        if gate is not None:
            await gate.wait()
        if room_id in self.fetch_errors:
            raise self.fetch_errors[room_id]
        return [dict(message) for message in self.messages.get(room_id, [])]

    async def send_message(self, room_id, sender_id, content):
        self.calls['send_message'].append((room_id, sender_id, content))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.send_error:
            raise self.send_error
        if self.next_ids:
            message_id = self.next_ids.pop(0)
        else:
            self._id_counter += 1
            message_id = f'm-{self._id_counter}'
        return {
            'id': message_id,
            'room_id': room_id,
            'user_id': sender_id,
            'content': content,
            'created_at': self.send_created_at,
            'updated_at': self.send_created_at,
        }

    async def mark_read(self, room_id):
        self.calls['mark_read'].append(room_id)
        if self.mark_read_error:
            raise self.mark_read_error

    async def get_profile(self, user_id):
        self.calls['get_profile'].append(user_id)
        if self.profile_error:
            raise self.profile_error
        return self.profiles.get(user_id)

    def _subscribe(self, key, callback, on_drop):
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise SubscriptionDropped('push channel is not connected')
        subscription = FakeSubscription(key, callback, on_drop)
        self.subscriptions.append(subscription)
        return subscription

    async def subscribe_messages(self, room_id, on_insert, on_drop=None):
        return self._subscribe(f'room:{room_id}', on_insert, on_drop)

    async def subscribe_room_changes(self, on_change, on_drop=None):
        return self._subscribe('rooms', on_change, on_drop)

    def live(self, key: str | None = None) -> list[FakeSubscription]:
        return [s for s in self.subscriptions if not s.closed and (key is None or s.key == key)]


def message_payload(message_id, room_id='r1', sender='u2', content='hi', seconds=0.0):
    return {
        'id': message_id,
        'room_id': room_id,
        'user_id': sender,
        'content': content,
        'created_at': ts(seconds),
        'updated_at': ts(seconds),
    }


@pytest.fixture
def backend():
    return FakeBackend(
        rooms=[
            {'id': 'r1', 'name': 'General', 'last_message': 'old', 'last_message_time': ts(-600), 'unread_count': 2},
            {'id': 'r2', 'name': 'Field Ops', 'last_message': 'older', 'last_message_time': ts(-1200), 'unread_count': 0},
        ],
        profiles={'u2': {'full_name': 'Dana Field', 'avatar_url': 'https://cdn.example/dana.png'}},
    )


@pytest.fixture
def session_user():
    return {'id': 'u1', 'email': 'me@example.com', 'user_metadata': {'name': 'Me'}}
