# -*- coding: utf-8 -*-

from __future__ import annotations

import pytest

from chatsync.services.profile_resolver import ProfileResolver, fallback_avatar_url, fallback_profile

from conftest import FakeBackend


@pytest.mark.asyncio
async def test_resolve_caches_backend_profile(backend):
    resolver = ProfileResolver(backend)

    first = await resolver.resolve('u2')
    second = await resolver.resolve('u2')

    assert first.display_name == 'Dana Field'
    assert first.avatar_url == 'https://cdn.example/dana.png'
    assert second is first
    assert backend.calls['get_profile'] == ['u2']


@pytest.mark.asyncio
async def test_missing_profile_falls_back_and_is_cached():
    backend = FakeBackend()
    resolver = ProfileResolver(backend)

    profile = await resolver.resolve('abcdef123456')
    await resolver.resolve('abcdef123456')

    assert profile.display_name == 'User abcdef'
    assert profile.avatar_url == (
        'https://ui-avatars.com/api/?name=User%20abcdef&background=4f46e5&color=fff&size=128'
    )
    assert backend.calls['get_profile'] == ['abcdef123456']


@pytest.mark.asyncio
async def test_lookup_failure_yields_fallback():
    backend = FakeBackend(profiles={'u9': {'full_name': 'Nine'}})
    backend.profile_error = RuntimeError('boom')
    resolver = ProfileResolver(backend)

    profile = await resolver.resolve('u9')

    assert profile == fallback_profile('u9')


@pytest.mark.asyncio
async def test_profile_without_avatar_gets_generated_one():
    backend = FakeBackend(profiles={'u3': {'full_name': 'Kim Lee'}})
    resolver = ProfileResolver(backend)

    profile = await resolver.resolve('u3')

    assert profile.display_name == 'Kim Lee'
    assert profile.avatar_url == fallback_avatar_url('Kim Lee')


@pytest.mark.asyncio
async def test_session_user_resolves_without_backend_call(session_user):
    backend = FakeBackend()
    resolver = ProfileResolver(backend, session_user=session_user)

    profile = await resolver.resolve('u1')

    assert profile.display_name == 'Me'
    assert profile.avatar_url == fallback_avatar_url('Me')
    assert backend.calls['get_profile'] == []


@pytest.mark.asyncio
async def test_session_user_falls_back_to_email():
    backend = FakeBackend()
    resolver = ProfileResolver(backend, session_user={'id': 'u1', 'email': 'me@example.com'})

    profile = await resolver.resolve('u1')

    assert profile.display_name == 'me@example.com'


@pytest.mark.asyncio
async def test_lru_evicts_least_recently_used():
    backend = FakeBackend()
    resolver = ProfileResolver(backend, max_entries=2)

    await resolver.resolve('a')
    await resolver.resolve('b')
    resolver.cached('a')
    await resolver.resolve('c')

    assert len(resolver) == 2
    assert resolver.cached('b') is None
    assert resolver.cached('a') is not None
    assert resolver.cached('c') is not None


@pytest.mark.asyncio
async def test_zero_capacity_is_unbounded():
    resolver = ProfileResolver(FakeBackend(), max_entries=0)

    for index in range(50):
        await resolver.resolve(f'user-{index}')

    assert len(resolver) == 50


@pytest.mark.asyncio
async def test_non_dict_payload_yields_fallback():
    backend = FakeBackend(profiles={'abcdef123': ['unexpected']})
    resolver = ProfileResolver(backend)

    profile = await resolver.resolve('abcdef123')

    assert profile == fallback_profile('abcdef123')
