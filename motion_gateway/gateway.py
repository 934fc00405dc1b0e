#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
MotionGateway -- A client for a motorized blind gateway that can:

  1. List the devices paired with the gateway, learning the session token
  2. Read the status of one or all blinds
  3. Send position/angle/operation commands to a blind, with an AccessToken derived
     from the gateway's secret key
  4. Deliver the Heartbeat and Report messages the gateway multicasts to subscribers

Requests are multicast until the gateway's unicast address is learned from its first
reply (or given explicitly), and are retransmitted with backoff until acknowledged.
"""

from __future__ import annotations


import asyncio
import socket
import struct
import sys

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    MULTICAST_ADDRESS,
    UDP_PORT_SEND,
    UDP_PORT_RECEIVE,
    MULTICAST_TTL,
    PROTOCOL_VERSION,
    DEVICE_TYPE_GATEWAY,
    MSG_GET_DEVICE_LIST,
    MSG_READ_DEVICE,
    MSG_WRITE_DEVICE,
    MSG_GET_DEVICE_LIST_ACK,
    MSG_HEARTBEAT,
    MSG_REPORT,
    POSITION_FIELDS,
    POSITION_RANGE,
    ANGLE_FIELDS,
    ANGLE_RANGE,
  )
from .exceptions import (
    TransportError,
    ClientClosedError,
    ValidationError,
    AuthError,
    DecodeError,
    GatewayActionError,
  )
from .access_token import derive_access_token
from .message_id import MessageIdGenerator, Clock
from .motion_message import MotionMessage
from .motion_socket import MotionSocket, MotionSocketBinding
from .correlation import RequestCorrelator, RetryPolicy
from .events import SubscriberList, MotionEventInfo, MotionEventSubscriber
from .util import get_local_ip_addresses

def _check_range(data: Mapping[str, Any], name: str, min_value: float, max_value: float) -> None:
    value = data.get(name)
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"invalid {name} {value!r}: must be a number")
    if not min_value <= value <= max_value:
        raise ValidationError(f"invalid {name} {value}: must be between {min_value} and {max_value}")

def validate_write_data(data: Mapping[str, Any]) -> None:
    """Raises ValidationError if a target position or angle in a WriteDevice payload is out of range."""
    for name in POSITION_FIELDS:
        _check_range(data, name, *POSITION_RANGE)
    for name in ANGLE_FIELDS:
        _check_range(data, name, *ANGLE_RANGE)

class MotionGateway(MotionSocket, AsyncContextManager['MotionGateway']):
    """
    An asyncio client for a motorized blind gateway.

    Usage:
        async with MotionGateway(key="xxxxxxxx-xxxx-xx") as gateway:
            for status in await gateway.read_all_devices():
                print(status.data)

    Sockets are opened by start() (or entering the context); facade calls on a client that
    has not been started start it.
    """

    key: Optional[str]
    """The gateway's secret key, used to derive AccessTokens."""

    session_token: Optional[str]
    """The most recent session token received from the gateway."""

    gateway_address: Optional[str]
    """An explicit gateway unicast address. If None, the last-seen address or the multicast group is used."""

    bind_address: Optional[str]
    """The local IPv4 address to bind to and join the multicast group on. If None, all interfaces are used."""

    multicast_address: str = MULTICAST_ADDRESS
    """The multicast group that requests are sent to until the gateway address is known."""

    send_port: int = UDP_PORT_SEND
    """The port the gateway receives requests on."""

    receive_port: int = UDP_PORT_RECEIVE
    """The port the gateway multicasts heartbeats and reports to."""

    listen_for_broadcasts: bool = True
    """If True, a socket is bound to receive_port and joined to the multicast group."""

    include_loopback: bool = False
    """If True, the multicast group is also joined on loopback interfaces."""

    id_generator: MessageIdGenerator
    correlator: RequestCorrelator

    command_binding: Optional[MotionSocketBinding] = None
    """The socket used to send requests and receive their acknowledgements."""

    broadcast_binding: Optional[MotionSocketBinding] = None
    """The socket joined to the multicast group, if listen_for_broadcasts is True."""

    def __init__(
            self,
            key: Optional[str]=None,
            token: Optional[str]=None,
            gateway_address: Optional[str]=None,
            bind_address: Optional[str]=None,
            multicast_address: str=MULTICAST_ADDRESS,
            send_port: int=UDP_PORT_SEND,
            receive_port: int=UDP_PORT_RECEIVE,
            listen_for_broadcasts: bool=True,
            include_loopback: bool=False,
            retry_policy: Optional[RetryPolicy]=None,
            clock: Optional[Clock]=None,
          ) -> None:
        super().__init__()
        self.key = key
        self.session_token = token
        self.gateway_address = gateway_address
        self.bind_address = bind_address
        self.multicast_address = multicast_address
        self.send_port = send_port
        self.receive_port = receive_port
        self.listen_for_broadcasts = listen_for_broadcasts
        self.include_loopback = include_loopback
        self.id_generator = MessageIdGenerator(clock)
        self.correlator = RequestCorrelator(self._transmit, self.id_generator, retry_policy)
        self._heartbeat_subscribers: SubscriberList[MotionEventInfo] = SubscriberList('heartbeat')
        self._report_subscribers: SubscriberList[MotionEventInfo] = SubscriberList('report')
        self._error_subscribers: SubscriberList[BaseException] = SubscriberList('error')
        self._close_subscribers: SubscriberList[Optional[BaseException]] = SubscriberList('close')

    #@override
    async def add_socket_bindings(self) -> None:
        """Creates the command socket and, if enabled, the multicast listener socket."""
        try:
            self.command_binding = self._create_command_binding()
            self.add_socket_binding(self.command_binding)
            if self.listen_for_broadcasts:
                self.broadcast_binding = self._create_broadcast_binding()
                self.add_socket_binding(self.broadcast_binding)
        except OSError as e:
            raise TransportError(f"Unable to create gateway sockets: {e}") from e

    def _create_command_binding(self) -> MotionSocketBinding:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            if self.bind_address is not None:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(self.bind_address))
            sock.bind(('' if self.bind_address is None else self.bind_address, 0))
        except OSError:
            sock.close()
            raise
        bound_addr = sock.getsockname()
        return MotionSocketBinding(sock, unicast_addr=bound_addr, sockname=f"command {bound_addr[0]}:{bound_addr[1]}")

    def _create_broadcast_binding(self) -> MotionSocketBinding:
        group_bin = socket.inet_aton(self.multicast_address)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            # Multicast listeners MUST bind to 0.0.0.0:<port> to receive multicast packets
            sock.bind(('', self.receive_port))
            if self.bind_address is None:
                interface_addresses = get_local_ip_addresses(include_loopback=self.include_loopback)
            else:
                interface_addresses = [ self.bind_address ]
            n_joined = 0
            for interface_address in interface_addresses:
                mreq = group_bin + socket.inet_aton(interface_address)
                logger.debug(f"Joining multicast group {self.multicast_address} on {interface_address}")
                try:
                    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
                    n_joined += 1
                except OSError as e:
                    if self.bind_address is not None:
                        raise
                    logger.warning(f"Unable to join multicast group {self.multicast_address} on {interface_address}: {e}")
            if n_joined == 0:
                mreq = group_bin + struct.pack('=I', socket.INADDR_ANY)
                logger.debug(f"Joining multicast group {self.multicast_address} on INADDR_ANY")
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError:
            sock.close()
            raise
        return MotionSocketBinding(
            sock,
            unicast_addr=('0.0.0.0', self.receive_port),
            sockname=f"broadcast {self.multicast_address}:{self.receive_port}"
          )

    @property
    def destination(self) -> str:
        """The address requests are sent to: the explicit gateway address, else the last-seen
           gateway address, else the multicast group."""
        if self.gateway_address is not None:
            return self.gateway_address
        if self.last_seen_address is not None:
            return self.last_seen_address
        return self.multicast_address

    def _transmit(self, message: MotionMessage) -> None:
        binding = self.command_binding
        if binding is None:
            raise TransportError("Gateway client has not been started")
        binding.sendto(message, (self.destination, self.send_port))

    #@override
    def message_received(self, socket_binding: MotionSocketBinding, addr: HostAndPort, message: MotionMessage) -> None:
        token = message.token
        if token is not None and token != self.session_token:
            logger.debug(f"Session token updated by {message.msg_type} from {addr}")
            self.session_token = token
        if message.is_ack:
            if message.msg_type == MSG_GET_DEVICE_LIST_ACK:
                protocol_version = message.protocol_version
                if protocol_version is not None and protocol_version != PROTOCOL_VERSION:
                    logger.warning(f"Gateway at {addr[0]} reports unexpected ProtocolVersion {protocol_version!r}")
            self.correlator.match(message)
        elif message.msg_type == MSG_HEARTBEAT:
            self._heartbeat_subscribers.dispatch(MotionEventInfo(addr, message))
        elif message.msg_type == MSG_REPORT:
            self._report_subscribers.dispatch(MotionEventInfo(addr, message))

    #@override
    def decode_error_received(self, socket_binding: MotionSocketBinding, addr: HostAndPort, exc: DecodeError) -> None:
        self._error_subscribers.dispatch(exc)

    #@override
    def socket_error_received(self, socket_binding: MotionSocketBinding, exc: Exception) -> None:
        error = TransportError(f"Socket error on {socket_binding}: {exc}")
        error.__cause__ = exc
        if socket_binding is self.command_binding and self.correlator.pending_count > 0:
            n = self.correlator.fail_all(error)
            logger.debug(f"Failed {n} outstanding requests after socket error: {exc}")
        else:
            self._error_subscribers.dispatch(error)

    #@override
    def on_close(self, exc: Optional[BaseException]) -> None:
        n = self.correlator.close(exc)
        if n > 0:
            logger.debug(f"Rejected {n} outstanding requests on close")
        self._close_subscribers.dispatch(exc)

    def subscribe_heartbeat(self, callback: Callable[[MotionEventInfo], None]) -> Unsubscribe:
        """Call `callback` with every Heartbeat received. Returns a function that unsubscribes."""
        return self._heartbeat_subscribers.subscribe(callback)

    def subscribe_report(self, callback: Callable[[MotionEventInfo], None]) -> Unsubscribe:
        """Call `callback` with every Report received. Returns a function that unsubscribes."""
        return self._report_subscribers.subscribe(callback)

    def subscribe_error(self, callback: Callable[[BaseException], None]) -> Unsubscribe:
        """Call `callback` with errors that no pending request could receive: undecodable
           datagrams and socket errors. Returns a function that unsubscribes."""
        return self._error_subscribers.subscribe(callback)

    def subscribe_close(self, callback: Callable[[Optional[BaseException]], None]) -> Unsubscribe:
        """Call `callback` once when the client closes. Returns a function that unsubscribes."""
        return self._close_subscribers.subscribe(callback)

    def subscribe_events(self, max_queue_size: Optional[int]=None) -> MotionEventSubscriber:
        """Returns an async context manager/iterator over received heartbeats and reports."""
        if max_queue_size is None:
            return MotionEventSubscriber(self)
        return MotionEventSubscriber(self, max_queue_size=max_queue_size)

    @property
    def access_token(self) -> str:
        """The AccessToken for the current key and session token.

        Raises AuthError if either is missing."""
        if not self.key:
            raise AuthError("missing key or accessToken")
        if not self.session_token:
            raise AuthError("missing token or accessToken (call get_device_list)")
        return derive_access_token(self.key, self.session_token)

    async def ensure_started(self) -> None:
        if not self.started:
            await self.start()
        elif self.closed:
            raise ClientClosedError("Gateway client is closed")

    async def get_device_list(self) -> MotionMessage:
        """Returns the GetDeviceListAck, whose data is a list of {mac, deviceType} and whose token
           becomes the session token."""
        await self.ensure_started()
        request = MotionMessage.request(MSG_GET_DEVICE_LIST)
        ack = await self.correlator.send_and_await(request, request.ack_wait_handle)
        if ack.token is not None:
            self.session_token = ack.token
        return ack

    async def read_device(self, mac: str, device_type: str) -> MotionMessage:
        """Returns the ReadDeviceAck for one device."""
        if not mac:
            raise ValidationError("A device MAC is required")
        await self.ensure_started()
        request = MotionMessage.request(MSG_READ_DEVICE, mac=mac, device_type=device_type)
        return await self.correlator.send_and_await(request, request.ack_wait_handle)

    async def read_all_devices(self) -> List[MotionMessage]:
        """Lists the devices and reads every one except the gateway itself, concurrently.

        If any read fails, the others are cancelled and the failure is raised."""
        device_list = await self.get_device_list()
        devices = [
            d for d in device_list.device_list()
                if d.get('deviceType') != DEVICE_TYPE_GATEWAY and isinstance(d.get('mac'), str) and d['mac']
          ]
        tasks = [
            asyncio.ensure_future(self.read_device(str(d['mac']), str(d.get('deviceType'))))
            for d in devices
          ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return list(results)

    async def write_device(
            self,
            mac: str,
            device_type: str,
            data: Mapping[str, Any],
            access_token: Optional[str]=None,
          ) -> MotionMessage:
        """Sends a WriteDevice command and returns the WriteDeviceAck.

        Parameters:
            mac:          The device MAC.
            device_type:  The device's deviceType code.
            data:         The command; e.g., {"operation": Operation.Stop} or {"targetPosition": 50}.
                            Positions must be in [0, 100] and angles in [0, 180].
            access_token: The AccessToken to send. If None, it is derived from the key and the
                            session token.

        Raises ValidationError or AuthError before sending if the command cannot be sent, and
        GatewayActionError if the gateway reports that the command failed.
        """
        if not mac:
            raise ValidationError("A device MAC is required")
        validate_write_data(data)
        if not access_token:
            access_token = self.access_token
        await self.ensure_started()
        request = MotionMessage.request(
            MSG_WRITE_DEVICE,
            mac=mac,
            device_type=device_type,
            data=dict(data),
            access_token=access_token,
          )
        ack = await self.correlator.send_and_await(request, request.ack_wait_handle)
        if ack.action_result:
            raise GatewayActionError(f"Gateway rejected WriteDevice for {mac}: {ack.action_result}")
        return ack

    async def __aenter__(self) -> MotionGateway:
        await super().__aenter__()
        return self
