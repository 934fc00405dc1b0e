"""Shared helpers for driving MotionGateway without real sockets."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from motion_gateway import MotionGateway, MotionSocketBinding, RetryPolicy
from motion_gateway.motion_socket import _MotionSocketProtocol

GATEWAY_IP = "192.168.1.50"
GATEWAY_MAC = "f008d1c0ffee"
BLIND_MAC_1 = "f008d1c0ffee0001"
BLIND_MAC_2 = "f008d1c0ffee0002"

FAST_RETRY = RetryPolicy(delays=(0.01, 0.01, 0.01, 0.01), final_delay=0.01, jitter=0.0, max_retries=4)

Responder = Callable[[Dict[str, Any]], Optional[List[Dict[str, Any]]]]

class FakeTransport:
    """Stands in for an asyncio datagram transport. Records sends and can answer them."""

    def __init__(self, protocol: _MotionSocketProtocol, responder: Optional[Responder]=None):
        self.protocol = protocol
        self.responder = responder
        self.sent: List[Tuple[bytes, Tuple[str, int]]] = []
        self.fail_with: Optional[BaseException] = None
        self._closing = False

    def sendto(self, data: bytes, addr: Tuple[str, int]) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((data, addr))
        if self.responder is not None:
            replies = self.responder(json.loads(data.decode('utf-8')))
            for reply in replies or []:
                asyncio.get_running_loop().call_soon(
                    self.protocol.datagram_received, json.dumps(reply).encode('utf-8'), (GATEWAY_IP, 32100))

    def is_closing(self) -> bool:
        return self._closing

    def close(self) -> None:
        if not self._closing:
            self._closing = True
            asyncio.get_running_loop().call_soon(self.protocol.connection_lost, None)

    @property
    def sent_messages(self) -> List[Dict[str, Any]]:
        return [ json.loads(data.decode('utf-8')) for data, _ in self.sent ]

    @property
    def sent_addresses(self) -> List[Tuple[str, int]]:
        return [ addr for _, addr in self.sent ]

class FakeGateway(MotionGateway):
    """A MotionGateway whose bindings are backed by FakeTransports instead of sockets."""

    responder: Optional[Responder] = None
    command_transport: FakeTransport
    broadcast_transport: FakeTransport

    async def add_socket_bindings(self) -> None:
        self.command_binding = MotionSocketBinding(None, unicast_addr=('127.0.0.1', 40000), sockname='fake command')
        self.add_socket_binding(self.command_binding)
        self.broadcast_binding = MotionSocketBinding(None, unicast_addr=('0.0.0.0', 32101), sockname='fake broadcast')
        self.add_socket_binding(self.broadcast_binding)

    async def open_socket_binding(self, socket_binding: MotionSocketBinding) -> None:
        protocol = _MotionSocketProtocol(socket_binding)
        if socket_binding is self.command_binding:
            transport = FakeTransport(protocol, lambda msg: None if self.responder is None else self.responder(msg))
            self.command_transport = transport
        else:
            transport = FakeTransport(protocol)
            self.broadcast_transport = transport
        protocol.connection_made(transport) # type: ignore[arg-type]

    def inject(self, fields: Any, addr: Tuple[str, int]=(GATEWAY_IP, 32100), broadcast: bool=False) -> None:
        """Deliver a datagram as if it had been received from the network."""
        binding = self.broadcast_binding if broadcast else self.command_binding
        assert binding is not None
        data = fields if isinstance(fields, bytes) else json.dumps(fields).encode('utf-8')
        self.datagram_received(binding, addr, data)

@asynccontextmanager
async def started_gateway(**kwargs: Any) -> AsyncIterator[FakeGateway]:
    kwargs.setdefault('retry_policy', FAST_RETRY)
    gateway = FakeGateway(**kwargs)
    async with gateway:
        yield gateway

async def wait_for_sends(transport: FakeTransport, n: int) -> None:
    for _ in range(1000):
        if len(transport.sent) >= n:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"expected {n} sends, got {len(transport.sent)}")

def device_list_ack(token: str="37412C478E0FBEAB", devices: Optional[List[Dict[str, str]]]=None) -> Dict[str, Any]:
    if devices is None:
        devices = [
            { "mac": GATEWAY_MAC, "deviceType": "02000002" },
            { "mac": BLIND_MAC_1, "deviceType": "10000000" },
            { "mac": BLIND_MAC_2, "deviceType": "10000001" },
        ]
    return {
        "msgType": "GetDeviceListAck",
        "mac": GATEWAY_MAC,
        "deviceType": "02000002",
        "ProtocolVersion": "0.9",
        "token": token,
        "data": devices,
    }

def device_status(mac: str, device_type: str="10000000", position: int=0, msg_type: str="ReadDeviceAck") -> Dict[str, Any]:
    return {
        "msgType": msg_type,
        "mac": mac,
        "deviceType": device_type,
        "data": {
            "type": 1,
            "operation": 2,
            "currentPosition": position,
            "currentAngle": 0,
            "currentState": 3,
            "voltageMode": 1,
            "batteryLevel": 1232,
            "wirelessMode": 1,
            "RSSI": -70,
        },
    }

def echo_responder(msg: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Answers every request the way a conformant gateway would."""
    if msg["msgType"] == "GetDeviceList":
        return [ device_list_ack() ]
    return [ device_status(msg["mac"], msg.get("deviceType", "10000000"), msg_type=msg["msgType"] + "Ack") ]
