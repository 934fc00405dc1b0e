# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package motion_gateway implements a client for the UDP JSON protocol spoken by motorized
window-blind gateways.

The gateway bridges a wireless mesh of blind motors to the local IP network. Clients multicast
JSON requests (GetDeviceList, ReadDevice, WriteDevice) to 238.0.0.18:32100 and receive
acknowledgements on the same socket; the gateway also multicasts Heartbeat and Report messages
to port 32101. Commands that move blinds must carry an AccessToken derived from the gateway's
secret key and the session token it hands out with the device list.

The protocol is not publicly documented; this package follows the behavior of the vendor's
gateways as observed on the network.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort, Unsubscribe

from .exceptions import (
    MotionGatewayError,
    TransportError,
    ClientClosedError,
    DecodeError,
    ValidationError,
    AuthError,
    InvalidKeyError,
    InvalidTokenError,
    SupersededError,
    RequestTimeoutError,
    GatewayActionError,
  )

from .access_token import derive_access_token
from .message_id import MessageIdGenerator
from .motion_message import MotionMessage, make_wait_handle
from .motion_socket import MotionSocket, MotionSocketBinding
from .correlation import RequestCorrelator, RetryPolicy, RequestState, OutstandingRequest
from .events import MotionEventInfo, MotionEventSubscriber, SubscriberList
from .gateway import MotionGateway, validate_write_data
from .util import battery_info
from .constants import (
    MULTICAST_ADDRESS,
    UDP_PORT_SEND,
    UDP_PORT_RECEIVE,
    PROTOCOL_VERSION,
    DEVICE_TYPE_GATEWAY,
    DEVICE_TYPE_BLIND,
    DEVICE_TYPE_TDBU,
    DEVICE_TYPE_DR,
    DEVICE_TYPES,
    BlindType,
    CurrentState,
    Operation,
    VoltageMode,
    LimitsState,
    WirelessMode,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort', 'Unsubscribe',
    'MotionGatewayError', 'TransportError', 'ClientClosedError', 'DecodeError', 'ValidationError',
    'AuthError', 'InvalidKeyError', 'InvalidTokenError', 'SupersededError', 'RequestTimeoutError',
    'GatewayActionError',
    'derive_access_token',
    'MessageIdGenerator',
    'MotionMessage', 'make_wait_handle',
    'MotionSocket', 'MotionSocketBinding',
    'RequestCorrelator', 'RetryPolicy', 'RequestState', 'OutstandingRequest',
    'MotionEventInfo', 'MotionEventSubscriber', 'SubscriberList',
    'MotionGateway', 'validate_write_data',
    'battery_info',
    'MULTICAST_ADDRESS', 'UDP_PORT_SEND', 'UDP_PORT_RECEIVE', 'PROTOCOL_VERSION',
    'DEVICE_TYPE_GATEWAY', 'DEVICE_TYPE_BLIND', 'DEVICE_TYPE_TDBU', 'DEVICE_TYPE_DR', 'DEVICE_TYPES',
    'BlindType', 'CurrentState', 'Operation', 'VoltageMode', 'LimitsState', 'WirelessMode',
]
