# -*- coding: utf-8 -*-
"""
Participant profile lookup with an in-memory LRU cache.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any
from urllib.parse import quote

from chatsync.config import FALLBACK_AVATAR_URL, FALLBACK_NAME_ID_LENGTH, PROFILE_CACHE_SIZE
from chatsync.errors import ProfileLookupFailure
from chatsync.models import Profile

logger = logging.getLogger(__name__)


def fallback_avatar_url(name: str) -> str:
    return FALLBACK_AVATAR_URL.format(name=quote(str(name or ''), safe=''))


def fallback_profile(user_id: str) -> Profile:
    name = f'User {str(user_id)[:FALLBACK_NAME_ID_LENGTH]}'
    return Profile(user_id=str(user_id), display_name=name, avatar_url=fallback_avatar_url(name))


class ProfileResolver:
    """
    Resolves user ids to display profiles.

    Entries are never refreshed during a session. When ``max_entries`` is
    positive the least recently used entry is evicted once the cache is full;
    ``0`` keeps every profile for the lifetime of the resolver.
    """

    def __init__(self, backend, *, session_user: dict[str, Any] | None = None, max_entries: int = PROFILE_CACHE_SIZE):
        self._backend = backend
        self._session_user = session_user or {}
        self._max_entries = max(0, int(max_entries or 0))
        self._cache: OrderedDict[str, Profile] = OrderedDict()

    def set_session_user(self, session_user: dict[str, Any] | None) -> None:
        previous_id = str(self._session_user.get('id') or '')
        self._session_user = session_user or {}
        if previous_id:
            self._cache.pop(previous_id, None)

    def cached(self, user_id: str) -> Profile | None:
        profile = self._cache.get(str(user_id))
        if profile is not None:
            self._cache.move_to_end(str(user_id))
        return profile

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def _store(self, profile: Profile) -> Profile:
        self._cache[profile.user_id] = profile
        self._cache.move_to_end(profile.user_id)
        if self._max_entries:
            while len(self._cache) > self._max_entries:
                self._cache.popitem(last=False)
        return profile

    def _session_profile(self, user_id: str) -> Profile:
        metadata = self._session_user.get('user_metadata') or {}
        if not isinstance(metadata, dict):
            metadata = {}
        name = str(
            metadata.get('name')
            or metadata.get('full_name')
            or metadata.get('username')
            or self._session_user.get('display_name')
            or self._session_user.get('email')
            or 'You'
        )
        avatar = str(
            metadata.get('profileImage')
            or metadata.get('avatar_url')
            or self._session_user.get('avatar_url')
            or ''
        )
        return Profile(user_id=user_id, display_name=name, avatar_url=avatar or fallback_avatar_url(name))

    async def _lookup(self, user_id: str) -> Profile | None:
        try:
            payload = await self._backend.get_profile(user_id)
        except Exception as exc:
            raise ProfileLookupFailure(f'Profile lookup for {user_id} failed: {exc}') from exc
        if not payload or not isinstance(payload, dict):
            return None
        name = str(
            payload.get('display_name')
            or payload.get('full_name')
            or payload.get('name')
            or payload.get('email')
            or ''
        ).strip()
        if not name:
            name = fallback_profile(user_id).display_name
        avatar = str(payload.get('avatar_url') or '').strip() or fallback_avatar_url(name)
        return Profile(user_id=user_id, display_name=name, avatar_url=avatar)

    async def resolve(self, user_id: str) -> Profile:
        user_id = str(user_id)
        cached = self.cached(user_id)
        if cached is not None:
            return cached

        if user_id and user_id == str(self._session_user.get('id') or ''):
            return self._store(self._session_profile(user_id))

        try:
            profile = await self._lookup(user_id)
        except ProfileLookupFailure as exc:
            logger.warning(str(exc))
            profile = None
        except Exception as exc:
            logger.warning(f"Profile payload for {user_id} is unusable: {exc}")
            profile = None
        if profile is None:
            profile = fallback_profile(user_id)
        return self._store(profile)
