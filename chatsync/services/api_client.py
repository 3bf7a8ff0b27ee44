# -*- coding: utf-8 -*-
"""
HTTP API wrapper for the chat backend.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from chatsync.config import REQUEST_TIMEOUT_SECONDS
from chatsync.models import format_timestamp


class ApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int, error_code: str = ''):
        super().__init__(message)
        self.status_code = int(status_code)
        self.error_code = str(error_code or '')


class APIClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        access_token: str = '',
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip('/')
        self._timeout = timeout
        self._transport = transport
        self._client = self._build_client()
        self._access_token = access_token or ''

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self._timeout, transport=self._transport)

    async def update_base_url(self, base_url: str) -> None:
        self.base_url = base_url.rstrip('/')
        await self._client.aclose()
        self._client = self._build_client()

    def set_access_token(self, access_token: str) -> None:
        self._access_token = access_token or ''

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._access_token:
            headers['Authorization'] = f'Bearer {self._access_token}'
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        response = await self._client.request(
            method,
            path,
            json=json_data,
            params=params,
            headers=self._headers(headers),
        )
        content_type = response.headers.get('content-type', '')
        payload: Any = {}
        if 'application/json' in content_type:
            payload = response.json()

        if response.status_code >= 400:
            error_code = ''
            if isinstance(payload, dict):
                message = payload.get('error') or f'HTTP {response.status_code}'
                error_code = str(payload.get('error_code') or '')
            else:
                message = f'HTTP {response.status_code}'
            raise ApiError(str(message), status_code=response.status_code, error_code=error_code)

        return payload

    async def check_ready(self) -> bool:
        payload = await self._request('GET', '/api/chat/ready')
        return bool(isinstance(payload, dict) and payload.get('ready'))

    async def list_rooms(self, user_id: str) -> list[dict[str, Any]]:
        payload = await self._request('GET', '/api/rooms', params={'user_id': user_id})
        if isinstance(payload, dict):
            payload = payload.get('rooms') or []
        return payload if isinstance(payload, list) else []

    async def list_messages(self, room_id: str, since: datetime) -> list[dict[str, Any]]:
        payload = await self._request(
            'GET',
            f'/api/rooms/{quote(str(room_id))}/messages',
            params={'since': format_timestamp(since)},
        )
        if isinstance(payload, dict):
            payload = payload.get('messages') or []
        return payload if isinstance(payload, list) else []

    async def send_message(self, room_id: str, sender_id: str, content: str) -> dict[str, Any]:
        payload = await self._request(
            'POST',
            f'/api/rooms/{quote(str(room_id))}/messages',
            json_data={'sender_id': sender_id, 'content': content},
        )
        if isinstance(payload, dict) and isinstance(payload.get('message'), dict):
            return payload['message']
        return payload if isinstance(payload, dict) else {}

    async def mark_read(self, room_id: str) -> None:
        await self._request('POST', f'/api/rooms/{quote(str(room_id))}/read')

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        try:
            payload = await self._request('GET', f'/api/profiles/{quote(str(user_id))}')
        except ApiError as exc:
            if exc.status_code == 404:
                return None
            raise
        return payload if isinstance(payload, dict) and payload else None
