from __future__ import annotations

import asyncio
from typing import List

import pytest

from motion_gateway import (
    MotionMessage,
    RequestCorrelator,
    RetryPolicy,
    RequestState,
    SupersededError,
    RequestTimeoutError,
    TransportError,
    ClientClosedError,
)

from conftest import FAST_RETRY

HANDLE = "ReadDeviceAckf008d1c0ffee0001"

def read_request() -> MotionMessage:
    return MotionMessage.request("ReadDevice", mac="f008d1c0ffee0001", device_type="10000000")

def read_ack() -> MotionMessage:
    return MotionMessage.parse_inbound(
        b'{"msgType":"ReadDeviceAck","mac":"f008d1c0ffee0001","deviceType":"10000000","data":{}}')

def test_retry_policy_schedule() -> None:
    policy = RetryPolicy()
    assert [ policy.delay_for_attempt(i) for i in range(4) ] == [0.4, 0.8, 1.2, 1.6]
    final = policy.delay_for_attempt(4)
    assert 2.0 <= final <= 2.25
    assert policy.max_retries == 4
    assert policy.total_wait_time() == pytest.approx(0.4 + 0.8 + 1.2 + 1.6 + 2.25)

def test_retry_policy_rejects_negative_retries() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_retries=-1)

@pytest.mark.asyncio
async def test_resolves_on_matching_ack() -> None:
    sent: List[MotionMessage] = []
    correlator = RequestCorrelator(sent.append, retry_policy=FAST_RETRY)
    task = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    assert len(sent) == 1
    assert sent[0].msg_id is not None
    ack = read_ack()
    assert correlator.match(ack)
    assert await task is ack
    assert correlator.pending_count == 0
    assert not correlator.match(ack)

@pytest.mark.asyncio
async def test_timeout_after_full_retry_schedule() -> None:
    sent: List[MotionMessage] = []
    correlator = RequestCorrelator(sent.append, retry_policy=FAST_RETRY)
    with pytest.raises(RequestTimeoutError):
        await correlator.send_and_await(read_request(), HANDLE)
    assert len(sent) == 1 + FAST_RETRY.max_retries
    ids = [ int(m.msg_id or 0) for m in sent ]
    assert all(b > a for a, b in zip(ids, ids[1:]))
    assert correlator.pending_count == 0

@pytest.mark.asyncio
async def test_timeout_is_a_builtin_timeout_error() -> None:
    correlator = RequestCorrelator(lambda m: None, retry_policy=RetryPolicy(delays=(0.01,), max_retries=0))
    with pytest.raises(TimeoutError):
        await correlator.send_and_await(read_request(), HANDLE)

@pytest.mark.asyncio
async def test_late_reply_to_earlier_attempt_wins() -> None:
    sent: List[MotionMessage] = []
    policy = RetryPolicy(delays=(0.01, 5.0), max_retries=4)
    correlator = RequestCorrelator(sent.append, retry_policy=policy)
    task = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    for _ in range(100):
        if len(sent) >= 2:
            break
        await asyncio.sleep(0.01)
    assert len(sent) == 2
    assert sent[0].msg_id != sent[1].msg_id
    # The reply carries no msgID, so it satisfies the single waiter for the handle
    correlator.match(read_ack())
    ack = await task
    assert ack.msg_type == "ReadDeviceAck"
    assert correlator.pending_count == 0

@pytest.mark.asyncio
async def test_second_request_supersedes_first() -> None:
    sent: List[MotionMessage] = []
    correlator = RequestCorrelator(sent.append, retry_policy=RetryPolicy(delays=(5.0,), final_delay=5.0))
    first = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    first_request = correlator._outstanding[HANDLE]
    second = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    assert first_request.state == RequestState.SUPERSEDED
    assert first_request.timer is None
    assert correlator._outstanding[HANDLE] is not first_request
    assert correlator.pending_count == 1
    with pytest.raises(SupersededError):
        await first
    ack = read_ack()
    correlator.match(ack)
    assert await second is ack
    assert correlator.pending_count == 0

@pytest.mark.asyncio
async def test_different_handles_are_independent() -> None:
    correlator = RequestCorrelator(lambda m: None, retry_policy=RetryPolicy(delays=(5.0,), final_delay=5.0))
    other = MotionMessage.request("ReadDevice", mac="f008d1c0ffee0002", device_type="10000000")
    t1 = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    t2 = asyncio.create_task(correlator.send_and_await(other, other.ack_wait_handle))
    await asyncio.sleep(0)
    assert correlator.pending_count == 2
    ack2 = MotionMessage.parse_inbound(b'{"msgType":"ReadDeviceAck","mac":"f008d1c0ffee0002","data":{}}')
    correlator.match(ack2)
    assert await t2 is ack2
    assert not t1.done()
    correlator.match(read_ack())
    await t1
    assert correlator.pending_count == 0

@pytest.mark.asyncio
async def test_send_failure_rejects_immediately() -> None:
    attempts: List[MotionMessage] = []

    def failing_transmit(message: MotionMessage) -> None:
        attempts.append(message)
        raise OSError("network unreachable")

    correlator = RequestCorrelator(failing_transmit, retry_policy=FAST_RETRY)
    with pytest.raises(TransportError) as exc_info:
        await correlator.send_and_await(read_request(), HANDLE)
    assert isinstance(exc_info.value.__cause__, OSError)
    assert correlator.pending_count == 0
    await asyncio.sleep(0.05)
    # The retry timer was discarded
    assert len(attempts) == 1

@pytest.mark.asyncio
async def test_fail_all_rejects_pending() -> None:
    correlator = RequestCorrelator(lambda m: None, retry_policy=RetryPolicy(delays=(5.0,), final_delay=5.0))
    task = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    assert correlator.fail_all(TransportError("boom")) == 1
    with pytest.raises(TransportError):
        await task
    assert correlator.pending_count == 0

@pytest.mark.asyncio
async def test_close_rejects_pending_with_client_closed() -> None:
    correlator = RequestCorrelator(lambda m: None, retry_policy=RetryPolicy(delays=(5.0,), final_delay=5.0))
    task = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    assert correlator.close() == 1
    with pytest.raises(ClientClosedError):
        await task

@pytest.mark.asyncio
async def test_cancelled_caller_removes_waiter() -> None:
    sent: List[MotionMessage] = []
    correlator = RequestCorrelator(sent.append, retry_policy=FAST_RETRY)
    task = asyncio.create_task(correlator.send_and_await(read_request(), HANDLE))
    await asyncio.sleep(0)
    assert correlator.is_pending(HANDLE)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert not correlator.is_pending(HANDLE)
    await asyncio.sleep(0.05)
    assert len(sent) == 1
