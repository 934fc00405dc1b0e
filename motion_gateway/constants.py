# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

from enum import IntEnum

MULTICAST_ADDRESS = "238.0.0.18"
"""The multicast group used by gateways for requests and unsolicited broadcasts."""

UDP_PORT_SEND = 32100
"""The port number that gateways listen on for requests."""

UDP_PORT_RECEIVE = 32101
"""The port number that gateways multicast heartbeats and reports to."""

MULTICAST_TTL = 128
"""The multicast TTL used on both sockets."""

PROTOCOL_VERSION = "0.9"
"""The ProtocolVersion reported in GetDeviceListAck by known gateway firmware."""

RETRY_DELAYS = (0.4, 0.8, 1.2, 1.6)
"""Delay (in seconds) before each of the first attempts of a request is considered lost."""

FINAL_RETRY_DELAY = 2.0
"""Delay (in seconds) for attempts beyond RETRY_DELAYS, before jitter is added."""

RETRY_JITTER = 0.25
"""Maximum random jitter (in seconds) added to FINAL_RETRY_DELAY."""

MAX_RETRIES = 4
"""Number of retransmissions after the initial attempt before a request times out."""

MSG_GET_DEVICE_LIST = "GetDeviceList"
MSG_READ_DEVICE = "ReadDevice"
MSG_WRITE_DEVICE = "WriteDevice"
MSG_GET_DEVICE_LIST_ACK = "GetDeviceListAck"
MSG_READ_DEVICE_ACK = "ReadDeviceAck"
MSG_WRITE_DEVICE_ACK = "WriteDeviceAck"
MSG_HEARTBEAT = "Heartbeat"
MSG_REPORT = "Report"

REQUEST_MSG_TYPES = (MSG_GET_DEVICE_LIST, MSG_READ_DEVICE, MSG_WRITE_DEVICE)
ACK_MSG_TYPES = (MSG_GET_DEVICE_LIST_ACK, MSG_READ_DEVICE_ACK, MSG_WRITE_DEVICE_ACK)
EVENT_MSG_TYPES = (MSG_HEARTBEAT, MSG_REPORT)

PER_DEVICE_MSG_TYPES = (MSG_READ_DEVICE, MSG_WRITE_DEVICE, MSG_READ_DEVICE_ACK, MSG_WRITE_DEVICE_ACK)
"""Message types whose wait handle includes the device MAC."""

DEVICE_TYPE_GATEWAY = "02000002"
DEVICE_TYPE_BLIND = "10000000"
DEVICE_TYPE_TDBU = "10000001"
DEVICE_TYPE_DR = "10000002"

DEVICE_TYPES = {
    DEVICE_TYPE_GATEWAY: "Gateway",
    DEVICE_TYPE_BLIND: "Standard Blind",
    DEVICE_TYPE_TDBU: "Top Down Bottom Up",
    DEVICE_TYPE_DR: "Double Roller",
  }
"""Human readable names of the known deviceType codes."""

POSITION_RANGE = (0, 100)
ANGLE_RANGE = (0, 180)

POSITION_FIELDS = ("targetPosition", "targetPosition_T", "targetPosition_B")
ANGLE_FIELDS = ("targetAngle",)

class BlindType(IntEnum):
    RollerBlind = 1
    VenetianBlind = 2
    RomanBlind = 3
    HoneycombBlind = 4
    ShangriLaBlind = 5
    RollerShutter = 6
    RollerGate = 7
    Awning = 8
    TopDownBottomUp = 9
    DayNightBlind = 10
    DimmingBlind = 11
    Curtain = 12
    CurtainLeft = 13
    CurtainRight = 14
    DoubleRoller = 17
    Switch = 43

class CurrentState(IntEnum):
    Working = 1
    Pairing = 2
    Updating = 3

class Operation(IntEnum):
    CloseDown = 0
    OpenUp = 1
    Stop = 2
    StatusQuery = 5

class VoltageMode(IntEnum):
    AC = 0
    DC = 1

class LimitsState(IntEnum):
    NoLimits = 0
    TopLimitDetected = 1
    BottomLimitDetected = 2
    LimitsDetected = 3
    ThirdLimitDetected = 4

class WirelessMode(IntEnum):
    UniDirectional = 0
    BiDirectional = 1
    BiDirectionalMechanicalLimits = 2
    Other = 3
