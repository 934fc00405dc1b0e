#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MotionSocket -- An abstract base class for a set of gateway protocol sockets that can:

  1. Listen on a unicast port and/or a multicast group
  2. Receive and decode MotionMessages from gateways and hand them to the subclass
  3. Send MotionMessages to a remote multicast or unicast address

  Subclasses must implement the add_socket_bindings() method to create and bind the sockets that
  will be used to receive and send datagrams, and override message_received() to do something
  with decoded messages.
"""

from __future__ import annotations


import asyncio
from asyncio import Future
import socket
from abc import abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .exceptions import MotionGatewayError, TransportError, DecodeError
from .motion_message import MotionMessage

class MotionSocketBinding:
    """
    An encapsulation of the binding of a MotionSocket to a single low-level
    bound datagram socket.

    Instances of this class are created prior to loop.create_datagram_endpoint,
    and are later bound to the _MotionSocketProtocol instance that is created by
    loop.create_datagram_endpoint.
    """

    motion_socket: Optional[MotionSocket] = None
    """The MotionSocket that is bound to this low-level socket. """

    index: int = -1
    """The index of this socket binding within MotionSocket. Set to -1 until this socket binding is added."""

    sock: Optional[socket.socket] = None
    """The low-level socket that is bound to this MotionSocket."""

    _protocol: Optional[_MotionSocketProtocol] = None
    """The adapter between the asyncio transport and this MotionSocket."""

    _transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport that is bound to this MotionSocket."""

    unicast_addr: HostAndPort
    """The local ip address and port associated with this binding."""

    sockname: str
    """The name of the socket as it should be displayed in logs, etc"""

    def __init__(
            self,
            sock: Optional[socket.socket],
            unicast_addr: Optional[HostAndPort]=None,
            sockname: Optional[str]=None
          ):
        self.sock = sock
        if unicast_addr is None:
            assert sock is not None
            unicast_addr = sock.getsockname()
            assert isinstance(unicast_addr, tuple)
        self.unicast_addr = unicast_addr
        if sockname is None:
            sockname = f"{unicast_addr[0]}:{unicast_addr[1]}"
        self.sockname = sockname

    def attach_to_motion_socket(self, motion_socket: MotionSocket, index: int) -> None:
        if self.index >= 0:
            raise MotionGatewayError(f"Attempt to reattach MotionSocketBinding: {self}")
        self.motion_socket = motion_socket
        self.index = index

    @property
    def transport(self) -> Optional[asyncio.DatagramTransport]:
        return self._transport

    @transport.setter
    def transport(self, transport: Optional[asyncio.DatagramTransport]) -> None:
        if transport != self._transport:
            assert self._transport is None or transport is None
        self._transport = transport

    @property
    def protocol(self) -> Optional[_MotionSocketProtocol]:
        return self._protocol

    @protocol.setter
    def protocol(self, protocol: _MotionSocketProtocol) -> None:
        if protocol != self._protocol:
            assert self._protocol is None
        self._protocol = protocol

    def sendto(self, message: MotionMessage, addr: HostAndPort) -> None:
        """Send a message. Raises TransportError if the binding is not open."""
        logger.debug(f"Sending MotionMessage via {self} to {addr}: {message}")
        if self.transport is None or self.transport.is_closing():
            raise TransportError(f"Cannot send on closed socket {self}")
        self.transport.sendto(message.raw_data, addr)

    def __str__(self) -> str:
        return f"MotionSocketBinding({self.index}: {self.sockname})"

    def __repr__(self) -> str:
        return str(self)

class _MotionSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and MotionSocket. There is one instance of this class
       created for each low-level socket that is created.
       """
    socket_binding: MotionSocketBinding

    def __init__(self, socket_binding: MotionSocketBinding):
        self.socket_binding = socket_binding
        socket_binding.protocol = self

    @property
    def motion_socket(self) -> MotionSocket:
        assert self.socket_binding.motion_socket is not None
        return self.socket_binding.motion_socket

    @property
    def transport(self) -> Optional[asyncio.DatagramTransport]:
        return self.socket_binding.transport

    @transport.setter
    def transport(self, transport: Optional[asyncio.DatagramTransport]) -> None:
        self.socket_binding.transport = transport

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        # asyncio datagram transports do not inherit from asyncio.DatagramTransport
        assert self.transport is None
        try:
            self.transport = transport # type: ignore[assignment]
            self.motion_socket.connection_made(self.socket_binding)
        except BaseException as e:
            self.motion_socket.set_final_exception(e)
            raise

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        try:
            self.motion_socket.datagram_received(self.socket_binding, addr, data)
        except BaseException as e:
            self.motion_socket.set_final_exception(e)
            raise

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        try:
            self.motion_socket.error_received(self.socket_binding, exc)
        except BaseException as e:
            self.motion_socket.set_final_exception(e)
            raise

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        try:
            self.motion_socket.connection_lost(self.socket_binding, exc)
        except BaseException as e:
            self.motion_socket.set_final_exception(e)
            raise
        self.transport = None


class MotionSocket(AsyncContextManager['MotionSocket']):
    """
    An abstract async gateway protocol socket set that can:

      1. Listen on a unicast port and/or a multicast group
      2. Receive and decode MotionMessages from gateways and hand them to message_received()
      3. Send MotionMessages to a remote multicast or unicast address

      Subclasses must implement the add_socket_bindings() method to create and bind the sockets that
      will be used to receive and send datagrams.
    """

    socket_bindings: List[MotionSocketBinding]
    """A list of MotionSocketBinding instances, one for each low-level socket that is in use."""

    final_result: Optional[Future[None]] = None
    """A future that is set when the MotionSocket is stopped. None until start() is called."""

    last_seen_address: Optional[str] = None
    """The source IP address of the most recent successfully decoded datagram."""

    def __init__(self):
        self.socket_bindings = []

    @property
    def started(self) -> bool:
        return self.final_result is not None

    @property
    def closed(self) -> bool:
        return self.final_result is not None and self.final_result.done()

    def add_socket_binding(self, socket_binding: MotionSocketBinding) -> None:
        if socket_binding.index >= 0:
            raise MotionGatewayError(f"Attempt to reattach MotionSocketBinding: {socket_binding}")
        i = len(self.socket_bindings)
        self.socket_bindings.append(socket_binding)
        socket_binding.attach_to_motion_socket(self, i)
        logger.debug(f"Added socket binding {i}: {socket_binding}")

    @abstractmethod
    async def add_socket_bindings(self) -> None:
        """Abstract method that creates and binds the sockets that will be used to receive
           and send datagrams, and adds them with self.add_socket_binding().
           Must be overridden by subclasses."""
        raise NotImplementedError()

    async def open_socket_binding(self, socket_binding: MotionSocketBinding) -> None:
        """Creates the asyncio datagram endpoint for a bound socket."""
        loop = asyncio.get_running_loop()
        untyped_transport, protocol = await loop.create_datagram_endpoint(
            lambda: _MotionSocketProtocol(socket_binding),
            sock=socket_binding.sock
          )
        transport: asyncio.DatagramTransport = untyped_transport # type: ignore[assignment]
        assert isinstance(protocol, _MotionSocketProtocol)
        logger.debug(f"Created datagram endpoint for {socket_binding}. transport={transport}, protocol={protocol}")
        socket_binding.protocol = protocol
        if socket_binding.transport is None:
            socket_binding.transport = transport

    async def finish_start(self) -> None:
        """Called after the sockets are up and running.  Subclasses can override to do additional
           initialization."""
        pass

    async def start(self) -> None:
        if self.final_result is not None:
            raise MotionGatewayError("MotionSocket has already been started")
        self.final_result = asyncio.get_running_loop().create_future()
        try:
            await self.add_socket_bindings()
            if len(self.socket_bindings) == 0:
                raise TransportError("No datagram sockets were added to MotionSocket")

            for socket_binding in self.socket_bindings:
                await self.open_socket_binding(socket_binding)

            await self.finish_start()

        except BaseException as e:
            self.set_final_exception(e)
            try:
                await self.wait_for_done()
            except BaseException:
                pass
            raise

    async def stop(self) -> None:
        """Stops the MotionSocket."""
        self.set_final_result()

    async def wait_for_done(self) -> None:
        if self.final_result is not None:
            await self.final_result

    async def stop_and_wait(self) -> None:
        await self.stop()
        await self.wait_for_done()

    def connection_made(self, socket_binding: MotionSocketBinding) -> None:
        """Called when a connection is made."""
        logger.debug(f"Connection made: {socket_binding}")

    def datagram_received(self, socket_binding: MotionSocketBinding, addr: HostAndPort, data: bytes) -> None:
        """Called when some datagram is received. Decodes it and passes it to message_received()."""
        try:
            message = MotionMessage.parse_inbound(data)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable datagram from {addr} on {socket_binding}, raw=[{data!r}]: {e}")
            self.decode_error_received(socket_binding, addr, e)
            return
        self.last_seen_address = addr[0]
        logger.debug(f"Received message from {addr} on {socket_binding}: {message}")
        self.message_received(socket_binding, addr, message)

    def message_received(self, socket_binding: MotionSocketBinding, addr: HostAndPort, message: MotionMessage) -> None:
        """Called with each successfully decoded message.  Subclasses should override."""
        pass

    def decode_error_received(self, socket_binding: MotionSocketBinding, addr: HostAndPort, exc: DecodeError) -> None:
        """Called when an inbound datagram cannot be decoded.  Subclasses can override."""
        pass

    def error_received(self, socket_binding: MotionSocketBinding, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        logger.info(f"Error received from transport {socket_binding}: {exc}")
        self.socket_error_received(socket_binding, exc)

    def socket_error_received(self, socket_binding: MotionSocketBinding, exc: Exception) -> None:
        """Called when a socket reports an error. The sockets stay open.  Subclasses can override."""
        pass

    def connection_lost(self, socket_binding: MotionSocketBinding, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Connection to transport lost on {socket_binding}, exc={exc}")
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(exc)

    def on_close(self, exc: Optional[BaseException]) -> None:
        """Called once, before the transports are closed.  Subclasses can override to release
           dependents."""
        pass

    def _close_all_transports(self) -> None:
        for socket_binding in self.socket_bindings:
            if not socket_binding.transport is None:
                try:
                    socket_binding.transport.close()
                except Exception as e:
                    logger.error(f"Error closing transport on {socket_binding}: {e}")
                socket_binding.transport = None

    def _close_all_socks(self) -> None:
        for socket_binding in self.socket_bindings:
            if not socket_binding.sock is None:
                try:
                    socket_binding.sock.close()
                    socket_binding.sock = None
                except Exception as e:
                    logger.error(f"Error closing socket on {socket_binding}: {e}")

    def _shutdown(self, exc: Optional[BaseException]) -> None:
        try:
            self.on_close(exc)
        finally:
            self._close_all_transports()
            self._close_all_socks()

    def set_final_exception(self, exc: BaseException) -> None:
        assert not exc is None
        if self.final_result is not None and not self.final_result.done():
            logger.debug(f"MotionSocket: Setting final exception: {exc}")
            self.final_result.set_exception(exc)
            # final_result may never be awaited
            self.final_result.exception()
            self._shutdown(exc)

    def set_final_result(self) -> None:
        if self.final_result is not None and not self.final_result.done():
            logger.debug(f"MotionSocket: Setting final result to success")
            self.final_result.set_result(None)
            self._shutdown(None)

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if exc is None:
            self.set_final_result()
        else:
            self.set_final_exception(exc)
        try:
            # ensure that final_result has been awaited
            await self.wait_for_done()
        except Exception:
            pass
        return False
