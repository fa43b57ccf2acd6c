"""Tests for wican_agent.connection_manager -- connect/retry state machine."""

from __future__ import annotations

import asyncio
import time

import pytest

from wican_agent.connection_manager import ConnectionManager
from wican_agent.device.simulation import SimulationTransport
from wican_agent.exceptions import RetriesExhausted
from wican_agent.schemas import ConnectionState, DeviceIdentity, RetryPolicy


def _manager(
    scenario: dict, identity: DeviceIdentity, policy: RetryPolicy
) -> tuple[ConnectionManager, SimulationTransport]:
    transport = SimulationTransport(scenario=scenario)
    return ConnectionManager(transport, identity, policy), transport


@pytest.mark.asyncio
async def test_connects_on_first_attempt(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager({"replies": []}, identity, fast_policy)
    assert manager.state is ConnectionState.DISCONNECTED

    handle = await manager.ensure_connected()

    assert handle.is_alive()
    assert manager.state is ConnectionState.CONNECTED
    assert transport.connect_attempts == 1


@pytest.mark.asyncio
async def test_reuses_live_handle(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager({"replies": []}, identity, fast_policy)
    first = await manager.ensure_connected()
    second = await manager.ensure_connected()
    assert first is second
    assert transport.connect_attempts == 1


@pytest.mark.asyncio
async def test_retries_until_success(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager(
        {"connect_failures": 2, "replies": []}, identity, fast_policy
    )
    await manager.ensure_connected()
    assert manager.state is ConnectionState.CONNECTED
    assert transport.connect_attempts == 3


@pytest.mark.asyncio
async def test_retries_exhausted_after_max_attempts(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager(
        {"connect_failures": -1, "replies": []}, identity, fast_policy
    )
    with pytest.raises(RetriesExhausted) as excinfo:
        await manager.ensure_connected()

    assert transport.connect_attempts == fast_policy.max_attempts
    assert excinfo.value.attempts == fast_policy.max_attempts
    assert manager.state is ConnectionState.FAILED
    assert manager.failure_reason is not None
    assert transport.forget_count == 1


@pytest.mark.asyncio
async def test_each_failed_attempt_fills_its_timeout_slot(
    identity: DeviceIdentity,
) -> None:
    """Fast failures are spaced one timeout apart: ~attempts * timeout."""
    policy = RetryPolicy(max_attempts=3, timeout_seconds=0.1)
    manager, _ = _manager({"connect_failures": -1, "replies": []}, identity, policy)

    started = time.monotonic()
    with pytest.raises(RetriesExhausted):
        await manager.ensure_connected()
    elapsed = time.monotonic() - started

    assert 0.28 <= elapsed < 1.0


@pytest.mark.asyncio
async def test_hanging_attempts_are_bounded_by_timeout(
    identity: DeviceIdentity,
) -> None:
    policy = RetryPolicy(max_attempts=3, timeout_seconds=0.05)
    manager, transport = _manager(
        {"connect_failures": -1, "connect_hang": True, "replies": []},
        identity,
        policy,
    )

    started = time.monotonic()
    with pytest.raises(RetriesExhausted, match="timed out"):
        await manager.ensure_connected()
    elapsed = time.monotonic() - started

    assert transport.connect_attempts == 3
    assert 0.14 <= elapsed < 1.0


@pytest.mark.asyncio
async def test_auth_failure_is_retried_then_exhausted(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager(
        {"reject_pairing": True, "replies": []}, identity, fast_policy
    )
    with pytest.raises(RetriesExhausted, match="rejected passkey"):
        await manager.ensure_connected()
    assert transport.connect_attempts == fast_policy.max_attempts


@pytest.mark.asyncio
async def test_failed_state_starts_fresh_sequence(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager(
        {"connect_failures": 3, "replies": []}, identity, fast_policy
    )
    with pytest.raises(RetriesExhausted):
        await manager.ensure_connected()
    assert manager.state is ConnectionState.FAILED

    await manager.ensure_connected()
    assert manager.state is ConnectionState.CONNECTED
    assert manager.failure_reason is None
    assert transport.connect_attempts == 4


@pytest.mark.asyncio
async def test_invalidate_forces_reconnect(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager({"replies": []}, identity, fast_policy)
    await manager.ensure_connected()

    await manager.invalidate()
    assert manager.state is ConnectionState.DISCONNECTED
    assert not transport.is_connected()

    await manager.ensure_connected()
    assert transport.connect_attempts == 2


@pytest.mark.asyncio
async def test_dead_link_detected_on_next_call(
    identity: DeviceIdentity, fast_policy: RetryPolicy
) -> None:
    manager, transport = _manager({"replies": []}, identity, fast_policy)
    await manager.ensure_connected()
    await transport.disconnect()  # link dropped behind the manager's back

    handle = await manager.ensure_connected()
    assert handle.is_alive()
    assert transport.connect_attempts == 2


@pytest.mark.asyncio
async def test_cancel_during_connect_resets_state(identity: DeviceIdentity) -> None:
    policy = RetryPolicy(max_attempts=5, timeout_seconds=10)
    manager, _ = _manager(
        {"connect_failures": -1, "connect_hang": True, "replies": []},
        identity,
        policy,
    )
    task = asyncio.ensure_future(manager.ensure_connected())
    await asyncio.sleep(0.02)
    assert manager.state is ConnectionState.CONNECTING

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert manager.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_persistent_failure_lasts_attempts_times_timeout(
    identity: DeviceIdentity,
) -> None:
    policy = RetryPolicy(max_attempts=5, timeout_seconds=0.06)
    manager, transport = _manager(
        {"connect_failures": -1, "replies": []}, identity, policy
    )

    started = time.monotonic()
    with pytest.raises(RetriesExhausted):
        await manager.ensure_connected()
    elapsed = time.monotonic() - started

    assert transport.connect_attempts == 5
    assert 0.29 <= elapsed < 1.5


@pytest.mark.asyncio
async def test_close_waits_for_connect_in_progress(identity: DeviceIdentity) -> None:
    policy = RetryPolicy(max_attempts=1, timeout_seconds=0.1)
    manager, transport = _manager(
        {"connect_failures": -1, "connect_hang": True, "replies": []},
        identity,
        policy,
    )
    connecting = asyncio.ensure_future(manager.ensure_connected())
    await asyncio.sleep(0.02)
    assert manager.state is ConnectionState.CONNECTING

    await manager.close()

    # close() only ran once the connect sequence had released the lock.
    assert connecting.done()
    with pytest.raises(RetriesExhausted):
        connecting.result()
    assert manager.state is ConnectionState.DISCONNECTED
    assert not transport.is_connected()
