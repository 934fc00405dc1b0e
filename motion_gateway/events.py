#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Delivery of unsolicited gateway messages (Heartbeat and Report) and client-level errors
to any number of subscribers.

Two interfaces are provided:

  1. SubscriberList.subscribe(callback), which returns a function that removes the
     subscription. Callbacks are invoked synchronously, in arrival order.
  2. MotionEventSubscriber, an async context manager/iterator that queues events for
     a consuming task until the context is exited or the client is closed.
"""

from __future__ import annotations

import asyncio
import time
import datetime

from .internal_types import *
from .pkg_logging import logger
from .motion_message import MotionMessage

if TYPE_CHECKING:
    from .gateway import MotionGateway

MAX_QUEUE_SIZE = 1000

_T = TypeVar('_T')

class MotionEventInfo:
    """An unsolicited message received from a gateway."""

    src_addr: HostAndPort
    """The source address of the message"""

    message: MotionMessage
    """The decoded message"""

    monotonic_time: float
    """The local time (in seconds) since an arbitrary point in the past at which
       the message was received, as returned by time.monotonic()."""

    utc_time: datetime.datetime
    """The UTC time at which the message was received."""

    def __init__(self, src_addr: HostAndPort, message: MotionMessage) -> None:
        self.src_addr = src_addr
        self.message = message
        self.monotonic_time = time.monotonic()
        self.utc_time = datetime.datetime.now(datetime.timezone.utc)

    @property
    def msg_type(self) -> Optional[str]:
        return self.message.msg_type

    @property
    def mac(self) -> Optional[str]:
        return self.message.mac

    @property
    def data(self) -> Any:
        return self.message.data

    def __str__(self) -> str:
        return f"MotionEventInfo({self.src_addr}: {self.message})"

    def __repr__(self) -> str:
        return str(self)

class SubscriberList(Generic[_T]):
    """An ordered set of callbacks that are each handed every dispatched value."""

    name: str
    _callbacks: Dict[int, Callable[[_T], None]]
    _i_next: int = 0

    def __init__(self, name: str):
        self.name = name
        self._callbacks = {}

    def subscribe(self, callback: Callable[[_T], None]) -> Unsubscribe:
        i = self._i_next
        self._i_next += 1
        self._callbacks[i] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(i, None)

        return unsubscribe

    def __len__(self) -> int:
        return len(self._callbacks)

    def dispatch(self, value: _T) -> None:
        for callback in list(self._callbacks.values()):
            try:
                callback(value)
            except Exception as e:
                logger.warning(f"{self.name} subscriber raised exception processing {value}: {e}")

class MotionEventSubscriber(
        AsyncContextManager['MotionEventSubscriber'],
        AsyncIterable[MotionEventInfo]
      ):
    """Queues heartbeats and reports from a MotionGateway for consumption by a task.

    Usage:
        async with gateway.subscribe_events() as subscriber:
            async for event in subscriber:
                print(event.message)
    """

    gateway: MotionGateway
    queue: asyncio.Queue[Optional[MotionEventInfo]]
    eos: bool = False
    _unsubscribers: List[Unsubscribe]

    def __init__(self, gateway: MotionGateway, max_queue_size: int=MAX_QUEUE_SIZE):
        self.gateway = gateway
        self.queue = asyncio.Queue(max_queue_size)
        self._unsubscribers = []

    async def __aenter__(self) -> MotionEventSubscriber:
        self._unsubscribers = [
            self.gateway.subscribe_heartbeat(self.on_event),
            self.gateway.subscribe_report(self.on_event),
            self.gateway.subscribe_close(self.on_end_of_stream),
          ]
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        self._unsubscribe_all()
        self.on_end_of_stream(None)
        return False

    def _unsubscribe_all(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()

    def on_event(self, event: MotionEventInfo) -> None:
        if not self.eos:
            try:
                self.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Queue full, dropping event: {event}")

    def on_end_of_stream(self, exc: Optional[BaseException]=None) -> None:
        if not self.eos:
            self.eos = True
            try:
                # wake up any waiting tasks
                self.queue.put_nowait(None)
            except asyncio.QueueFull:
                # queue is full so waiters will wake up soon
                pass

    async def receive(self) -> Optional[MotionEventInfo]:
        """Returns the next event, or None once the stream has ended."""
        if self.eos and self.queue.empty():
            return None
        result = await self.queue.get()
        self.queue.task_done()
        return result

    async def iter_events(self) -> AsyncIterator[MotionEventInfo]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[MotionEventInfo]:
        return self.iter_events()
