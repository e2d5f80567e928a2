import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from admin_gate.auth.identity import Identity, SessionState
from admin_gate.auth.role_cache import RETENTION_FACTOR, CachedRole, RedisRoleCache, RoleCache
from admin_gate.auth.role_resolver import ROLE_ACTION, ROLE_PROCEDURE, RoleResolver, RoleState
from admin_gate.auth.role_validator import get_user_role, require_role
from admin_gate.auth.roles import Role
from admin_gate.errors import InsufficientRoleError, RemoteInvocationError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _invoker(result=None, side_effect=None) -> MagicMock:
    invoker = MagicMock()
    invoker.invoke = AsyncMock(return_value=result, side_effect=side_effect)
    return invoker


def _session(user_id: str = "user-1", token: str = "tok-1") -> SessionState:
    return SessionState.authenticated(Identity(user_id=user_id, access_token=token))


@pytest.mark.anyio
async def test_no_session_never_calls_remote():
    invoker = _invoker({"role": "owner"})
    resolver = RoleResolver(invoker, RoleCache())

    state = await resolver.resolve(SessionState.anonymous())

    assert state == RoleState(role=None, is_loading=False)
    assert state.level == 99
    assert not state.is_admin
    invoker.invoke.assert_not_called()


@pytest.mark.anyio
async def test_loading_session_reports_loading_without_remote_call():
    invoker = _invoker({"role": "owner"})
    resolver = RoleResolver(invoker, RoleCache())

    state = await resolver.resolve(SessionState.loading())

    assert state.is_loading
    invoker.invoke.assert_not_called()


@pytest.mark.anyio
async def test_resolve_calls_role_action_with_access_token():
    invoker = _invoker({"role": "admin"})
    resolver = RoleResolver(invoker, RoleCache())

    state = await resolver.resolve(_session())

    assert state.role is Role.ADMIN
    assert state.is_admin and not state.is_owner
    invoker.invoke.assert_awaited_once_with(
        ROLE_PROCEDURE, {"action": ROLE_ACTION}, access_token="tok-1"
    )


@pytest.mark.anyio
async def test_missing_role_defaults_to_user():
    resolver = RoleResolver(_invoker({}), RoleCache())

    state = await resolver.resolve(_session())

    assert state.role is Role.USER
    assert state.level == 4
    assert not state.is_admin


@pytest.mark.anyio
async def test_unknown_role_ranks_below_every_defined_role(caplog):
    resolver = RoleResolver(_invoker({"role": "superuser"}), RoleCache())

    with caplog.at_level(logging.WARNING, logger="admin_gate.roles"):
        state = await resolver.resolve(_session())

    assert state.role is None
    assert state.level == 99
    assert not state.is_admin
    assert "superuser" in caplog.text


@pytest.mark.anyio
async def test_fresh_cache_entry_avoids_remote_call():
    clock = FakeClock()
    invoker = _invoker({"role": "moderator"})
    resolver = RoleResolver(invoker, RoleCache(ttl_seconds=300, clock=clock))

    await resolver.resolve(_session())
    clock.now += 299
    state = await resolver.resolve(_session())

    assert state.role is Role.MODERATOR
    assert invoker.invoke.await_count == 1


@pytest.mark.anyio
async def test_stale_cache_entry_is_refetched():
    clock = FakeClock()
    invoker = _invoker({"role": "moderator"})
    resolver = RoleResolver(invoker, RoleCache(ttl_seconds=300, clock=clock))

    await resolver.resolve(_session())
    clock.now += 300
    invoker.invoke.return_value = {"role": "admin"}
    state = await resolver.resolve(_session())

    assert state.role is Role.ADMIN
    assert invoker.invoke.await_count == 2


@pytest.mark.anyio
async def test_force_bypasses_fresh_entry():
    invoker = _invoker({"role": "user"})
    resolver = RoleResolver(invoker, RoleCache())

    await resolver.resolve(_session())
    await resolver.resolve(_session(), force=True)

    assert invoker.invoke.await_count == 2


@pytest.mark.anyio
async def test_concurrent_resolves_share_one_fetch():
    release = asyncio.Event()

    async def slow_invoke(*args, **kwargs):
        await release.wait()
        return {"role": "admin"}

    invoker = MagicMock()
    invoker.invoke = AsyncMock(side_effect=slow_invoke)
    resolver = RoleResolver(invoker, RoleCache())

    first = asyncio.ensure_future(resolver.resolve(_session()))
    second = asyncio.ensure_future(resolver.resolve(_session()))
    await asyncio.sleep(0)
    release.set()
    states = await asyncio.gather(first, second)

    assert [state.role for state in states] == [Role.ADMIN, Role.ADMIN]
    assert invoker.invoke.await_count == 1


@pytest.mark.anyio
async def test_fetch_error_propagates_and_keeps_cache():
    clock = FakeClock()
    cache = RoleCache(ttl_seconds=300, clock=clock)
    invoker = _invoker({"role": "admin"})
    resolver = RoleResolver(invoker, cache)
    await resolver.resolve(_session())
    clock.now += 301

    invoker.invoke.side_effect = RemoteInvocationError("network down")
    with pytest.raises(RemoteInvocationError):
        await resolver.resolve(_session())

    entry = await cache.get("user-1")
    assert entry is not None and entry.role is Role.ADMIN


async def _cached_role(resolver: RoleResolver, user_id: str = "user-1"):
    entry = await resolver.cache.get(user_id)
    assert entry is not None
    return entry.role


@pytest.mark.anyio
async def test_on_focus_skips_fresh_entry():
    invoker = _invoker({"role": "user"})
    resolver = RoleResolver(invoker, RoleCache())
    await resolver.resolve(_session())

    assert await resolver.on_focus(_session().user) is False
    assert invoker.invoke.await_count == 1


@pytest.mark.anyio
async def test_on_focus_refetches_stale_entry_with_current_token():
    clock = FakeClock()
    invoker = _invoker({"role": "user"})
    resolver = RoleResolver(invoker, RoleCache(ttl_seconds=300, clock=clock))
    await resolver.resolve(_session("user-1", "tok-old"))
    clock.now += 1000

    invoker.invoke.return_value = {"role": "admin"}
    refreshed = await resolver.on_focus(Identity(user_id="user-1", access_token="tok-new"))

    assert refreshed is True
    invoker.invoke.assert_awaited_with(
        ROLE_PROCEDURE, {"action": ROLE_ACTION}, access_token="tok-new"
    )
    assert await _cached_role(resolver) is Role.ADMIN


@pytest.mark.anyio
async def test_on_focus_fetches_caller_not_yet_cached():
    invoker = _invoker({"role": "moderator"})
    resolver = RoleResolver(invoker, RoleCache())

    assert await resolver.on_focus(Identity(user_id="user-7", access_token="tok-7")) is True
    assert await _cached_role(resolver, "user-7") is Role.MODERATOR


@pytest.mark.anyio
async def test_on_focus_failure_keeps_previous_entry(caplog):
    clock = FakeClock()
    invoker = _invoker({"role": "moderator"})
    resolver = RoleResolver(invoker, RoleCache(ttl_seconds=300, clock=clock))
    await resolver.resolve(_session())
    clock.now += 400

    invoker.invoke.side_effect = RemoteInvocationError("boom")
    with caplog.at_level(logging.WARNING, logger="admin_gate.roles"):
        refreshed = await resolver.on_focus(_session().user)

    assert refreshed is False
    assert await _cached_role(resolver) is Role.MODERATOR
    assert "Focus refresh failed" in caplog.text


@pytest.mark.anyio
async def test_locks_are_released_after_resolution():
    resolver = RoleResolver(_invoker({"role": "user"}), RoleCache())

    for index in range(50):
        await resolver.resolve(_session(f"user-{index}", f"tok-{index}"))

    assert len(resolver._locks) == 0


@pytest.mark.anyio
async def test_lock_survives_while_another_resolve_waits():
    release = asyncio.Event()

    async def slow_invoke(*args, **kwargs):
        await release.wait()
        return {"role": "admin"}

    invoker = MagicMock()
    invoker.invoke = AsyncMock(side_effect=slow_invoke)
    resolver = RoleResolver(invoker, RoleCache())

    first = asyncio.ensure_future(resolver.resolve(_session()))
    second = asyncio.ensure_future(resolver.resolve(_session()))
    await asyncio.sleep(0)
    assert len(resolver._locks) == 1

    release.set()
    await asyncio.gather(first, second)
    assert len(resolver._locks) == 0


@pytest.mark.anyio
async def test_role_cache_evicts_entries_past_retention():
    clock = FakeClock()
    cache = RoleCache(ttl_seconds=300, clock=clock)
    resolver = RoleResolver(_invoker({"role": "user"}), cache)
    for index in range(1000):
        await resolver.resolve(_session(f"user-{index}", f"tok-{index}"))

    clock.now += 300 * RETENTION_FACTOR
    await resolver.resolve(_session("late", "tok-late"))

    assert len(cache) == 1
    assert await cache.get("user-0") is None


@pytest.mark.anyio
async def test_role_cache_keeps_stale_entries_within_retention():
    clock = FakeClock()
    cache = RoleCache(ttl_seconds=300, clock=clock)
    await cache.set("user-1", Role.ADMIN)
    clock.now += 400

    await cache.set("user-2", Role.USER)

    entry = await cache.get("user-1")
    assert entry is not None and not cache.is_fresh(entry)


@pytest.mark.anyio
async def test_role_cache_caps_size_by_evicting_oldest():
    clock = FakeClock()
    cache = RoleCache(ttl_seconds=300, clock=clock, max_entries=3)
    for user_id in ("a", "b", "c"):
        await cache.set(user_id, Role.USER)
        clock.now += 1
    await cache.set("a", Role.ADMIN)

    await cache.set("d", Role.USER)

    assert len(cache) == 3
    assert await cache.get("b") is None
    assert (await cache.get("a")).role is Role.ADMIN


def test_role_cache_rejects_non_positive_max_entries():
    with pytest.raises(ValueError, match="max_entries"):
        RoleCache(max_entries=0)


def test_role_cache_rejects_non_positive_ttl():
    with pytest.raises(ValueError, match="ttl_seconds"):
        RoleCache(ttl_seconds=0)


@pytest.mark.anyio
async def test_redis_role_cache_round_trips_role_with_ttl():
    redis = AsyncMock()
    cache = RedisRoleCache(redis, ttl_seconds=120)

    await cache.set("user-1", Role.ADMIN)
    redis.set.assert_awaited_once_with("role:user-1", "admin", ex=120)

    redis.get.return_value = "admin"
    entry = await cache.get("user-1")
    assert entry is not None
    assert entry.role is Role.ADMIN
    assert cache.is_fresh(entry)


@pytest.mark.anyio
async def test_redis_role_cache_stores_unknown_role_as_empty_marker():
    redis = AsyncMock()
    cache = RedisRoleCache(redis)

    await cache.set("user-1", None)

    redis.set.assert_awaited_once_with("role:user-1", "", ex=300)


@pytest.mark.anyio
async def test_redis_role_cache_miss_returns_none():
    redis = AsyncMock()
    redis.get.return_value = None

    assert await RedisRoleCache(redis).get("user-1") is None


@pytest.mark.anyio
async def test_redis_errors_are_logged_and_treated_as_miss(caplog):
    redis = AsyncMock()
    redis.get.side_effect = RedisError("connection lost")
    cache = RedisRoleCache(redis)

    with caplog.at_level(logging.ERROR, logger="admin_gate.roles"):
        entry = await cache.get("user-1")

    assert entry is None
    assert "operation=GET" in caplog.text
    assert "role:user-1" in caplog.text


@pytest.mark.anyio
async def test_redis_role_cache_clear_deletes_role_keys():
    redis = AsyncMock()

    async def keys(*args, **kwargs):
        for key in ("role:a", "role:b"):
            yield key

    redis.scan_iter = MagicMock(side_effect=keys)
    await RedisRoleCache(redis).clear()

    redis.scan_iter.assert_called_once_with(match="role:*")
    assert [call.args for call in redis.delete.await_args_list] == [("role:a",), ("role:b",)]


@pytest.mark.anyio
async def test_resolver_with_redis_cache_skips_fetch_on_hit():
    redis = AsyncMock()
    redis.get.return_value = "owner"
    invoker = _invoker({"role": "user"})
    resolver = RoleResolver(invoker, RedisRoleCache(redis))

    state = await resolver.resolve(_session())

    assert state.role is Role.OWNER
    invoker.invoke.assert_not_called()


@pytest.mark.anyio
async def test_get_user_role_calls_procedure_with_user_id():
    invoker = _invoker("moderator")

    role = await get_user_role(invoker, "user-9")

    assert role is Role.MODERATOR
    invoker.invoke.assert_awaited_once_with("get_user_role", {"_user_id": "user-9"})


@pytest.mark.anyio
async def test_get_user_role_falls_back_to_user_on_error():
    invoker = _invoker(side_effect=RemoteInvocationError("db error"))

    assert await get_user_role(invoker, "user-9") is Role.USER


@pytest.mark.anyio
async def test_get_user_role_defaults_when_none_assigned():
    assert await get_user_role(_invoker(None), "user-9") is Role.USER
    assert await get_user_role(_invoker({"role": "owner"}), "user-9") is Role.OWNER


@pytest.mark.anyio
async def test_require_role_passes_equal_or_higher_privilege():
    assert await require_role(_invoker("owner"), "user-1", Role.ADMIN) is Role.OWNER
    assert await require_role(_invoker("admin"), "user-1", Role.ADMIN) is Role.ADMIN


@pytest.mark.anyio
async def test_require_role_raises_with_required_and_current():
    with pytest.raises(InsufficientRoleError) as exc_info:
        await require_role(_invoker("moderator"), "user-1", Role.ADMIN)

    assert exc_info.value.message == "Insufficient permissions. Required: admin, current: moderator"
    assert exc_info.value.status_code == 403


@pytest.mark.anyio
async def test_require_role_rejects_unknown_role():
    with pytest.raises(InsufficientRoleError, match="current: unknown"):
        await require_role(_invoker("superuser"), "user-1", Role.USER)


def test_cached_role_is_immutable():
    entry = CachedRole(role=Role.USER, fetched_at=0.0)
    with pytest.raises(AttributeError):
        entry.role = Role.OWNER  # type: ignore[misc]


def test_role_flags_are_false_while_loading():
    state = RoleState(is_loading=True)

    assert state.level == 99
    assert not state.is_admin
    assert not state.is_owner


@pytest.mark.parametrize(
    "role, is_admin, is_owner",
    [
        (Role.OWNER, True, True),
        (Role.ADMIN, True, False),
        (Role.MODERATOR, False, False),
        (Role.USER, False, False),
    ],
)
def test_role_flags_follow_level_thresholds(role, is_admin, is_owner):
    state = RoleState(role=role)

    assert state.is_admin is is_admin
    assert state.is_owner is is_owner
