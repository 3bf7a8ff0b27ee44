# -*- coding: utf-8 -*-
"""
Error types raised by the sync engine.
"""

from __future__ import annotations


class SyncError(RuntimeError):
    retryable = False

    def __init__(self, message: str, *, room_id: str | None = None):
        super().__init__(message)
        self.room_id = room_id


class CapabilityUnavailable(SyncError):
    """The backend failed the startup probe; nothing else will work this session."""


class EngineNotReady(SyncError):
    pass


class FetchFailure(SyncError):
    retryable = True


class SendFailure(SyncError):
    retryable = True

    def __init__(self, message: str, *, room_id: str, placeholder_id: str, content: str):
        super().__init__(message, room_id=room_id)
        self.placeholder_id = placeholder_id
        self.content = content


class InvalidMessage(SyncError, ValueError):
    pass


class ProfileLookupFailure(SyncError):
    pass


class SubscriptionDropped(SyncError):
    retryable = True
