# -*- coding: utf-8 -*-
"""
Chat sync engine settings.
"""

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or '').strip().lower()
    if raw in ('1', 'true', 'yes', 'on'):
        return True
    if raw in ('0', 'false', 'no', 'off'):
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ============================================================================
# Server
# ============================================================================
SERVER_URL = (os.environ.get('CHATSYNC_SERVER_URL') or 'http://localhost:5000').rstrip('/')
REQUEST_TIMEOUT_SECONDS = _env_float('CHATSYNC_REQUEST_TIMEOUT', 15.0)
SOCKET_TRANSPORTS = ['websocket', 'polling']

# ============================================================================
# Message view
# ============================================================================
MESSAGE_WINDOW_HOURS = _env_int('CHATSYNC_WINDOW_HOURS', 24)
DUPLICATE_MATCH_SECONDS = 10  # same sender + same content within this gap = same message
PLACEHOLDER_PREFIX = 'temp-'

# ============================================================================
# Profiles
# ============================================================================
PROFILE_CACHE_SIZE = _env_int('CHATSYNC_PROFILE_CACHE_SIZE', 1000)  # 0 = unbounded
FALLBACK_NAME_ID_LENGTH = 6
FALLBACK_AVATAR_URL = 'https://ui-avatars.com/api/?name={name}&background=4f46e5&color=fff&size=128'

# ============================================================================
# Push channel
# ============================================================================
RESUBSCRIBE_BACKOFF_START = 1  # seconds
RESUBSCRIBE_MAX_DELAY = 30  # seconds

# ============================================================================
# Engine behavior
# ============================================================================
AUTO_SELECT_FIRST_ROOM = _env_bool('CHATSYNC_AUTO_SELECT_FIRST_ROOM', False)

# ============================================================================
# Logging
# ============================================================================
LOG_LEVEL = (os.environ.get('CHATSYNC_LOG_LEVEL') or 'INFO').strip().upper()
LOG_FILE = (os.environ.get('CHATSYNC_LOG_FILE') or '').strip()
