# -*- coding: utf-8 -*-
"""
Rooms visible to the current user with preview and unread summary.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any

from chatsync.errors import FetchFailure
from chatsync.models import Room

logger = logging.getLogger(__name__)


class RegistryStatus(str, Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    READY = 'ready'
    ERROR = 'error'
    BLOCKED = 'blocked'


class CapabilityProbe:
    """Runs the backend readiness check at most once; concurrent callers share the result."""

    def __init__(self, backend):
        self._backend = backend
        self._task: asyncio.Task | None = None
        self.reason = ''

    @property
    def checked(self) -> bool:
        return self._task is not None and self._task.done()

    async def _run(self) -> bool:
        try:
            ready = bool(await self._backend.check_ready())
        except Exception as exc:
            self.reason = f'Chat backend capability check failed: {exc}'
            logger.error(self.reason)
            return False
        if not ready:
            self.reason = 'Chat backend reported that chat is not set up'
            logger.error(self.reason)
        return ready

    async def check(self) -> bool:
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        return await asyncio.shield(self._task)


class RoomRegistry:
    def __init__(self, backend, probe: CapabilityProbe | None = None):
        self._backend = backend
        self.probe = probe or CapabilityProbe(backend)
        self._rooms: dict[str, Room] = {}
        self.status = RegistryStatus.IDLE
        self.last_error: FetchFailure | None = None

    @property
    def blocked_reason(self) -> str:
        return self.probe.reason if self.status == RegistryStatus.BLOCKED else ''

    def rooms(self) -> list[Room]:
        """Rooms ordered by most recent activity first."""
        def _sort_key(room: Room):
            ts = room.last_activity_at.timestamp() if room.last_activity_at else float('-inf')
            return (ts, room.name)

        return sorted(self._rooms.values(), key=_sort_key, reverse=True)

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(str(room_id))

    def __contains__(self, room_id: object) -> bool:
        return str(room_id) in self._rooms

    def total_unread(self) -> int:
        return sum(room.unread_count for room in self._rooms.values())

    async def load_rooms(self, user_id: str) -> list[Room]:
        if not await self.probe.check():
            self.status = RegistryStatus.BLOCKED
            return []

        self.status = RegistryStatus.LOADING
        try:
            payloads = await self._backend.list_rooms(user_id)
        except Exception as exc:
            self.status = RegistryStatus.ERROR
            self.last_error = FetchFailure(f'Failed to load chat rooms: {exc}')
            logger.warning(str(self.last_error))
            raise self.last_error from exc

        rooms: dict[str, Room] = {}
        for payload in payloads or []:
            room = Room.from_dict(payload)
            if room is not None:
                rooms[room.id] = room
        self._rooms = rooms
        self.status = RegistryStatus.READY
        self.last_error = None
        return self.rooms()

    def upsert(self, payload: dict[str, Any]) -> Room | None:
        incoming = Room.from_dict(payload)
        if incoming is None:
            return None
        existing = self._rooms.get(incoming.id)
        if existing is None:
            self._rooms[incoming.id] = incoming
            return incoming
        merged = replace(
            existing,
            name=incoming.name or existing.name,
            description=incoming.description if 'description' in payload else existing.description,
            role_access=incoming.role_access or existing.role_access,
        )
        self._rooms[merged.id] = merged
        return merged

    def remove(self, room_id: str) -> bool:
        return self._rooms.pop(str(room_id), None) is not None

    def apply_room_activity(
        self,
        room_id: str,
        preview_text: str,
        at: datetime,
        *,
        reset_unread: bool,
        from_self: bool = False,
    ) -> Room | None:
        room = self._rooms.get(str(room_id))
        if room is None:
            return None
        newest = room.last_activity_at is None or at >= room.last_activity_at
        if reset_unread:
            unread = 0
        elif from_self:
            unread = room.unread_count
        else:
            unread = room.unread_count + 1
        updated = replace(
            room,
            preview=preview_text.strip() if newest else room.preview,
            last_activity_at=at if newest else room.last_activity_at,
            unread_count=unread,
        )
        self._rooms[updated.id] = updated
        return updated

    def reset_unread(self, room_id: str) -> Room | None:
        room = self._rooms.get(str(room_id))
        if room is None:
            return None
        updated = replace(room, unread_count=0)
        self._rooms[updated.id] = updated
        return updated

    async def mark_read(self, room_id: str) -> bool:
        """Zero the unread counter now, then write the read receipt (best effort)."""
        self.reset_unread(room_id)
        try:
            await self._backend.mark_read(str(room_id))
        except Exception as exc:
            # the local reset stays
            logger.warning(f"Read receipt for room {room_id} failed: {exc}")
            return False
        return True

    def clear(self) -> None:
        self._rooms.clear()
        self.status = RegistryStatus.IDLE
        self.last_error = None
