#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
RequestCorrelator -- Matches acknowledgements to outstanding requests over an unordered,
lossy datagram transport.

Each request waits under a "wait handle" derived from the acknowledgement it expects
(see motion_message.make_wait_handle). At most one request may wait under a given handle;
a newer request supersedes the older one. Every attempt gets a fresh msgID and a timer
from the RetryPolicy; when the timer expires the request is retransmitted until the retry
ceiling is reached. The first acknowledgement received for a handle resolves the waiter,
even if it answers an earlier attempt.

Per request, the sequence of states is:

    SENT(attempt) -> MATCHED | SENT(attempt + 1) | SUPERSEDED | TRANSPORT_FAILED | TIMED_OUT | CLOSED
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import random
from enum import Enum

from .internal_types import *
from .pkg_logging import logger
from .constants import RETRY_DELAYS, FINAL_RETRY_DELAY, RETRY_JITTER, MAX_RETRIES
from .exceptions import (
    TransportError,
    ClientClosedError,
    SupersededError,
    RequestTimeoutError,
  )
from .message_id import MessageIdGenerator
from .motion_message import MotionMessage

Transmitter = Callable[[MotionMessage], None]
"""Sends one serialized message. Raises OSError or TransportError if it cannot be sent."""

class RequestState(Enum):
    SENT = "sent"
    MATCHED = "matched"
    SUPERSEDED = "superseded"
    TRANSPORT_FAILED = "transport_failed"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"

TERMINAL_STATES = frozenset(s for s in RequestState if s != RequestState.SENT)

class RetryPolicy:
    """The backoff schedule for retransmitting unacknowledged requests."""

    delays: Tuple[float, ...]
    """Per-attempt wait times (in seconds) for the first attempts."""

    final_delay: float
    """Wait time for attempts beyond `delays`, before jitter."""

    jitter: float
    """Maximum random jitter added to final_delay."""

    max_retries: int
    """Number of retransmissions after the initial attempt."""

    def __init__(
            self,
            delays: Sequence[float]=RETRY_DELAYS,
            final_delay: float=FINAL_RETRY_DELAY,
            jitter: float=RETRY_JITTER,
            max_retries: int=MAX_RETRIES,
          ):
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.delays = tuple(delays)
        self.final_delay = final_delay
        self.jitter = jitter
        self.max_retries = max_retries

    def delay_for_attempt(self, attempt: int) -> float:
        """Returns the time to wait for a reply to the given attempt (0 is the initial send)."""
        if attempt < len(self.delays):
            return self.delays[attempt]
        return self.final_delay + random.uniform(0.0, self.jitter)

    def total_wait_time(self) -> float:
        """Returns the worst-case time from first send to timeout, including maximum jitter."""
        total = 0.0
        for attempt in range(self.max_retries + 1):
            if attempt < len(self.delays):
                total += self.delays[attempt]
            else:
                total += self.final_delay + self.jitter
        return total

    def __repr__(self) -> str:
        return (f"RetryPolicy(delays={self.delays}, final_delay={self.final_delay}, "
                f"jitter={self.jitter}, max_retries={self.max_retries})")

class OutstandingRequest:
    """A request waiting for its acknowledgement."""

    wait_handle: str
    message: MotionMessage
    """The request as submitted, without a msgID."""

    sent_message: Optional[MotionMessage] = None
    """The most recently transmitted copy, including its msgID."""

    future: Future[MotionMessage]
    attempt: int = 0
    timer: Optional[asyncio.TimerHandle] = None
    state: RequestState = RequestState.SENT

    def __init__(self, wait_handle: str, message: MotionMessage, future: Future[MotionMessage]):
        self.wait_handle = wait_handle
        self.message = message
        self.future = future

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def resolve(self, ack: MotionMessage) -> None:
        self.cancel_timer()
        self.state = RequestState.MATCHED
        if not self.future.done():
            self.future.set_result(ack)

    def fail(self, state: RequestState, exc: BaseException) -> None:
        assert state in TERMINAL_STATES and state != RequestState.MATCHED
        self.cancel_timer()
        self.state = state
        if not self.future.done():
            self.future.set_exception(exc)

    def __str__(self) -> str:
        return f"OutstandingRequest({self.wait_handle}, attempt={self.attempt}, state={self.state.value})"

    def __repr__(self) -> str:
        return str(self)

class RequestCorrelator:
    """Owns the map of wait handle to OutstandingRequest for one client."""

    transmit: Transmitter
    id_generator: MessageIdGenerator
    retry_policy: RetryPolicy
    _outstanding: Dict[str, OutstandingRequest]

    def __init__(
            self,
            transmit: Transmitter,
            id_generator: Optional[MessageIdGenerator]=None,
            retry_policy: Optional[RetryPolicy]=None,
          ):
        self.transmit = transmit
        self.id_generator = MessageIdGenerator() if id_generator is None else id_generator
        self.retry_policy = RetryPolicy() if retry_policy is None else retry_policy
        self._outstanding = {}

    @property
    def pending_count(self) -> int:
        return len(self._outstanding)

    def is_pending(self, wait_handle: str) -> bool:
        return wait_handle in self._outstanding

    async def send_and_await(self, message: MotionMessage, wait_handle: str) -> MotionMessage:
        """Send a request and wait for the acknowledgement matching wait_handle.

        Raises:
            SupersededError:     Another request was submitted for the same wait_handle.
            TransportError:      The request could not be sent.
            RequestTimeoutError: No acknowledgement arrived after all retries.
            ClientClosedError:   The client was closed while waiting.
        """
        loop = asyncio.get_running_loop()
        previous = self._outstanding.pop(wait_handle, None)
        if previous is not None:
            logger.debug(f"Superseding {previous}")
            previous.fail(RequestState.SUPERSEDED, SupersededError(f"Request for {wait_handle} was superseded by a newer request"))

        request = OutstandingRequest(wait_handle, message, loop.create_future())
        self._outstanding[wait_handle] = request
        request.future.add_done_callback(lambda f: self._on_future_done(request))
        self._send_attempt(request)
        return await request.future

    def _send_attempt(self, request: OutstandingRequest) -> None:
        loop = asyncio.get_running_loop()
        sent_message = request.message.with_msg_id(self.id_generator.next_id())
        request.sent_message = sent_message
        request.state = RequestState.SENT
        delay = self.retry_policy.delay_for_attempt(request.attempt)
        request.timer = loop.call_later(delay, self._on_timer_expired, request)
        logger.debug(f"Sending attempt {request.attempt} for {request.wait_handle} (timeout {delay:.3f}s): {sent_message}")
        try:
            self.transmit(sent_message)
        except (OSError, TransportError) as e:
            self._remove(request)
            exc = e if isinstance(e, TransportError) else TransportError(f"Failed sending request for {request.wait_handle}: {e}")
            if exc is not e:
                exc.__cause__ = e
            request.fail(RequestState.TRANSPORT_FAILED, exc)

    def _on_timer_expired(self, request: OutstandingRequest) -> None:
        request.timer = None
        if request.done or self._outstanding.get(request.wait_handle) is not request:
            return
        if request.attempt < self.retry_policy.max_retries:
            request.attempt += 1
            logger.debug(f"No reply for {request.wait_handle}; retrying (attempt {request.attempt})")
            self._send_attempt(request)
        else:
            self._remove(request)
            request.fail(
                RequestState.TIMED_OUT,
                RequestTimeoutError(f"No reply for {request.wait_handle} after {request.attempt + 1} attempts"),
              )

    def _on_future_done(self, request: OutstandingRequest) -> None:
        # The awaiting task was cancelled
        if request.future.cancelled() and not request.done:
            logger.debug(f"Caller cancelled {request}")
            self._remove(request)
            request.cancel_timer()
            request.state = RequestState.CLOSED

    def _remove(self, request: OutstandingRequest) -> None:
        if self._outstanding.get(request.wait_handle) is request:
            del self._outstanding[request.wait_handle]

    def match(self, ack: MotionMessage) -> bool:
        """Resolve the request waiting for this acknowledgement, if any.

        Returns True if a waiter was resolved.
        """
        request = self._outstanding.pop(ack.wait_handle, None)
        if request is None:
            logger.debug(f"No outstanding request for {ack.wait_handle}; ignoring {ack}")
            return False
        logger.debug(f"Matched {ack.wait_handle} on attempt {request.attempt}")
        request.resolve(ack)
        return True

    def fail_all(self, exc: BaseException, state: RequestState=RequestState.TRANSPORT_FAILED) -> int:
        """Fail every outstanding request with exc. Returns the number of requests failed."""
        requests = list(self._outstanding.values())
        self._outstanding.clear()
        for request in requests:
            request.fail(state, exc)
        return len(requests)

    def close(self, exc: Optional[BaseException]=None) -> int:
        """Fail every outstanding request because the client is closing."""
        closed_exc = ClientClosedError("Gateway client was closed")
        if exc is not None:
            closed_exc.__cause__ = exc
        return self.fail_all(closed_exc, RequestState.CLOSED)
