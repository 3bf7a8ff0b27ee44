# -*- coding: utf-8 -*-
"""
Room, message and profile records.

Records are immutable; every change produces a new object via
``dataclasses.replace`` so a reader never sees a half-updated entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from chatsync.config import PLACEHOLDER_PREFIX


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(raw: object) -> datetime | None:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    text = str(raw).strip()
    if not text:
        return None
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
        for fmt in ('%Y-%m-%d %H:%M:%S', '%Y-%m-%dT%H:%M:%S'):
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def format_timestamp(value: datetime | None) -> str:
    if value is None:
        return ''
    return value.astimezone(timezone.utc).isoformat()


def is_placeholder_id(message_id: str) -> bool:
    return str(message_id or '').startswith(PLACEHOLDER_PREFIX)


@dataclass(frozen=True)
class Profile:
    user_id: str
    display_name: str
    avatar_url: str

    @staticmethod
    def from_dict(data: dict[str, Any]) -> 'Profile | None':
        if not isinstance(data, dict):
            return None
        user_id = str(data.get('user_id') or data.get('id') or '').strip()
        name = str(
            data.get('display_name')
            or data.get('name')
            or data.get('full_name')
            or ''
        ).strip()
        avatar = str(
            data.get('avatar_url')
            or data.get('profileImage')
            or data.get('profile_image')
            or ''
        ).strip()
        if not user_id or not name or not avatar:
            return None
        return Profile(user_id=user_id, display_name=name, avatar_url=avatar)

    def to_dict(self) -> dict[str, str]:
        return {
            'user_id': self.user_id,
            'display_name': self.display_name,
            'avatar_url': self.avatar_url,
        }


@dataclass(frozen=True)
class Message:
    id: str
    room_id: str
    sender_id: str
    content: str
    created_at: datetime
    updated_at: datetime
    sender_profile: Profile | None = None

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    @staticmethod
    def from_dict(data: dict[str, Any], *, room_id: str | None = None) -> 'Message | None':
        if not isinstance(data, dict):
            return None
        message_id = str(data.get('id') or '').strip()
        resolved_room = str(data.get('room_id') or room_id or '').strip()
        sender_id = str(data.get('sender_id') or data.get('user_id') or '').strip()
        created_at = parse_timestamp(data.get('created_at'))
        if not message_id or not resolved_room or not sender_id or created_at is None:
            return None
        updated_at = parse_timestamp(data.get('updated_at')) or created_at
        profile_data = data.get('sender_profile') or data.get('user')
        profile = None
        if isinstance(profile_data, dict):
            profile = Profile.from_dict({'user_id': sender_id, **profile_data})
        return Message(
            id=message_id,
            room_id=resolved_room,
            sender_id=sender_id,
            content=str(data.get('content') or ''),
            created_at=created_at,
            updated_at=updated_at,
            sender_profile=profile,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'room_id': self.room_id,
            'sender_id': self.sender_id,
            'content': self.content,
            'created_at': format_timestamp(self.created_at),
            'updated_at': format_timestamp(self.updated_at),
            'sender_profile': self.sender_profile.to_dict() if self.sender_profile else None,
        }


@dataclass(frozen=True)
class Room:
    id: str
    name: str = ''
    description: str | None = None
    role_access: str = ''
    preview: str = ''
    last_activity_at: datetime | None = None
    unread_count: int = 0

    @staticmethod
    def from_dict(data: dict[str, Any]) -> 'Room | None':
        if not isinstance(data, dict):
            return None
        room_id = str(data.get('id') or data.get('room_id') or '').strip()
        if not room_id:
            return None
        try:
            unread = max(0, int(data.get('unread_count') or 0))
        except (TypeError, ValueError):
            unread = 0
        description = data.get('description')
        return Room(
            id=room_id,
            name=str(data.get('name') or ''),
            description=str(description) if description is not None else None,
            role_access=str(data.get('role_access') or ''),
            preview=str(data.get('preview') or data.get('last_message') or ''),
            last_activity_at=parse_timestamp(
                data.get('last_activity_at') or data.get('last_message_time')
            ),
            unread_count=unread,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'role_access': self.role_access,
            'preview': self.preview,
            'last_activity_at': format_timestamp(self.last_activity_at),
            'unread_count': self.unread_count,
        }
