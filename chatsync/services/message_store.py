# -*- coding: utf-8 -*-
"""
Per-room message collections and the reconciliation step.

Messages arrive from three origins: fetched batches, optimistic local sends
and the push feed. Every mutation here is synchronous so a single event loop
turn applies it as a whole.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from chatsync.config import DUPLICATE_MATCH_SECONDS, MESSAGE_WINDOW_HOURS
from chatsync.models import Message, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

WINDOW = timedelta(hours=MESSAGE_WINDOW_HOURS)
MATCH_TOLERANCE = timedelta(seconds=DUPLICATE_MATCH_SECONDS)


@dataclass(frozen=True)
class _Slot:
    seq: int
    message: Message


class MessageStore:
    def __init__(self, profiles=None, *, window: timedelta = WINDOW, match_tolerance: timedelta = MATCH_TOLERANCE):
        self._profiles = profiles
        self.window = window
        self.match_tolerance = match_tolerance
        self._rooms: dict[str, list[_Slot]] = {}
        self._seq = itertools.count()

    def room_ids(self) -> list[str]:
        return list(self._rooms)

    def has_room(self, room_id: str) -> bool:
        return str(room_id) in self._rooms

    def discard(self, room_id: str) -> bool:
        return self._rooms.pop(str(room_id), None) is not None

    def clear(self) -> None:
        self._rooms.clear()

    def _slots(self, room_id: str) -> list[_Slot]:
        return self._rooms.setdefault(str(room_id), [])

    def _commit(self, room_id: str, slots: list[_Slot]) -> None:
        self._rooms[str(room_id)] = slots

    def _with_profile(self, message: Message, previous: Message | None = None) -> Message:
        if message.sender_profile is not None:
            return message
        profile = None
        if previous is not None and previous.sender_id == message.sender_id:
            profile = previous.sender_profile
        if profile is None and self._profiles is not None:
            profile = self._profiles.cached(message.sender_id)
        return replace(message, sender_profile=profile) if profile is not None else message

    @staticmethod
    def _ordered(slots: list[_Slot]) -> list[Message]:
        return [slot.message for slot in sorted(slots, key=lambda s: (s.message.created_at, s.seq))]

    def messages(self, room_id: str) -> list[Message]:
        """Every stored message of the room, window not applied."""
        return self._ordered(self._rooms.get(str(room_id), []))

    def visible_messages(self, room_id: str, now: datetime | None = None) -> list[Message]:
        cutoff = (parse_timestamp(now) or utc_now()) - self.window
        slots = [slot for slot in self._rooms.get(str(room_id), []) if slot.message.created_at > cutoff]
        return self._ordered(slots)

    def get(self, room_id: str, message_id: str) -> Message | None:
        for slot in self._rooms.get(str(room_id), []):
            if slot.message.id == message_id:
                return slot.message
        return None

    def _index_of(self, slots: list[_Slot], message_id: str) -> int | None:
        for index, slot in enumerate(slots):
            if slot.message.id == message_id:
                return index
        return None

    def _match_candidate(self, slots: list[_Slot], canonical: Message) -> int | None:
        # only unresolved placeholders; a slot already holding a canonical record never matches
        best: int | None = None
        for index, slot in enumerate(slots):
            entry = slot.message
            if not entry.is_placeholder:
                continue
            if entry.sender_id != canonical.sender_id or entry.content != canonical.content:
                continue
            if abs(entry.created_at - canonical.created_at) > self.match_tolerance:
                continue
            if best is None or slot.seq < slots[best].seq:
                best = index
        return best

    def _replace_at(self, slots: list[_Slot], index: int, message: Message) -> list[_Slot]:
        previous = slots[index]
        updated = list(slots)
        updated[index] = _Slot(seq=previous.seq, message=self._with_profile(message, previous.message))
        return updated

    def _append(self, slots: list[_Slot], message: Message) -> list[_Slot]:
        return [*slots, _Slot(seq=next(self._seq), message=self._with_profile(message))]

    def insert_fetched(self, room_id: str, batch: list[Message]) -> int:
        """Merge a server batch; returns how many new entries were added."""
        slots = self._slots(room_id)
        added = 0
        for message in batch:
            if self._index_of(slots, message.id) is not None:
                continue
            candidate = self._match_candidate(slots, message)
            if candidate is not None:
                slots = self._replace_at(slots, candidate, message)
                continue
            slots = self._append(slots, message)
            added += 1
        self._commit(room_id, slots)
        return added

    def insert_optimistic(self, room_id: str, placeholder: Message) -> str:
        slots = self._slots(room_id)
        self._commit(room_id, self._append(slots, placeholder))
        return placeholder.id

    def reconcile(self, room_id: str, canonical: Message, placeholder_id: str | None = None) -> Message:
        """
        Merge a canonical record into the room.

        Resolution order: the named placeholder if it is still present, an
        entry already holding the same canonical id, a matching unresolved
        placeholder (same sender, same content, created within the match
        tolerance), and finally a plain append. The first three replace the
        existing slot in place and keep its insertion order.
        """
        slots = self._slots(room_id)

        index = self._index_of(slots, placeholder_id) if placeholder_id else None
        if index is not None:
            duplicate = self._index_of(slots, canonical.id)
            if duplicate is not None and duplicate != index:
                # the push copy landed as its own entry; the placeholder slot wins
                logger.debug(f"Dropping separate copy of {canonical.id} in room {room_id}")
                placeholder_slot = slots[index]
                slots = [slot for slot in slots if slot.message.id != canonical.id]
                index = slots.index(placeholder_slot)
        if index is None:
            index = self._index_of(slots, canonical.id)
            if index is not None:
                logger.debug(f"Duplicate delivery of {canonical.id} in room {room_id}")
        if index is None:
            index = self._match_candidate(slots, canonical)
            if index is not None:
                logger.debug(f"Placeholder {slots[index].message.id} matched by {canonical.id} in room {room_id}")

        if index is None:
            slots = self._append(slots, canonical)
            index = len(slots) - 1
        else:
            slots = self._replace_at(slots, index, canonical)
        self._commit(room_id, slots)
        return slots[index].message

    def rollback(self, room_id: str, placeholder_id: str) -> bool:
        slots = self._rooms.get(str(room_id))
        if not slots:
            return False
        remaining = [slot for slot in slots if slot.message.id != placeholder_id]
        if len(remaining) == len(slots):
            return False
        self._commit(room_id, remaining)
        return True
