# -*- coding: utf-8 -*-
"""
Real-time conversation sync engine.
"""

from chatsync.errors import (
    CapabilityUnavailable,
    EngineNotReady,
    FetchFailure,
    InvalidMessage,
    SendFailure,
    SubscriptionDropped,
    SyncError,
)
from chatsync.models import Message, Profile, Room
from chatsync.sync_engine import EngineState, SyncEngine

__version__ = '1.0.0'

__all__ = [
    'CapabilityUnavailable',
    'EngineNotReady',
    'EngineState',
    'FetchFailure',
    'InvalidMessage',
    'Message',
    'Profile',
    'Room',
    'SendFailure',
    'SubscriptionDropped',
    'SyncEngine',
    'SyncError',
]
