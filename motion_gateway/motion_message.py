#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of a JSON message datagram used by the gateway protocol.
"""

from __future__ import annotations

import json

from .internal_types import *
from .exceptions import DecodeError
from .constants import (
    REQUEST_MSG_TYPES,
    ACK_MSG_TYPES,
    EVENT_MSG_TYPES,
    PER_DEVICE_MSG_TYPES,
    MSG_GET_DEVICE_LIST_ACK,
  )

KNOWN_INBOUND_MSG_TYPES = ACK_MSG_TYPES + EVENT_MSG_TYPES

def make_wait_handle(msg_type: str, mac: Optional[str]=None) -> str:
    """Returns the key under which a reply of type msg_type is awaited.

    Per-device replies are keyed by type and MAC, so only one read and one write
    per device can be outstanding. Everything else is keyed by type alone.
    """
    if msg_type in PER_DEVICE_MSG_TYPES:
        if mac is None:
            raise ValueError(f"A MAC is required for a {msg_type} wait handle")
        return f"{msg_type}{mac}"
    return msg_type

class MotionMessage(Mapping[str, Jsonable]):
    """Wrapper for one JSON object carried in a single UDP datagram.

    Provides a read-only dict-like interface to the fields and convenient properties
    for the ones used by this package. Instances are never modified; with_msg_id()
    returns a new message.
    """

    _fields: JsonableDict
    """The decoded JSON object"""

    _raw_data: bytes
    """The UTF-8 encoded JSON datagram contents"""

    def __init__(
            self,
            fields: Optional[Mapping[str, Jsonable]]=None,
            raw_data: Optional[bytes]=None,
          ):
        if raw_data is None:
            if fields is None:
                raise ValueError("Either fields or raw_data must be provided")
            self._fields = { k: v for k, v in fields.items() if v is not None }
            self._raw_data = json.dumps(self._fields, separators=(',', ':')).encode('utf-8')
        else:
            if fields is not None:
                raise ValueError("If raw_data is provided, fields must be None")
            self._raw_data = bytes(raw_data)
            self._fields = self._decode(self._raw_data)

    @staticmethod
    def _decode(raw_data: bytes) -> JsonableDict:
        try:
            fields = json.loads(raw_data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise DecodeError(f"Datagram is not valid UTF-8 JSON: {e}") from e
        if not isinstance(fields, dict):
            raise DecodeError(f"Datagram is not a JSON object: {fields!r}")
        return fields

    @classmethod
    def parse_inbound(cls, raw_data: bytes) -> MotionMessage:
        """Decode a datagram received from a gateway.

        Raises DecodeError if the datagram is not a JSON object, or its msgType is
        missing or is not an acknowledgement or event type, or a per-device
        acknowledgement carries no mac.
        """
        message = cls(raw_data=raw_data)
        msg_type = message.get('msgType')
        if msg_type is None:
            raise DecodeError(f"Datagram has no msgType: {message}")
        if msg_type not in KNOWN_INBOUND_MSG_TYPES:
            raise DecodeError(f"Datagram has unrecognized msgType {msg_type!r}: {message}")
        if msg_type in PER_DEVICE_MSG_TYPES and not isinstance(message.get('mac'), str):
            raise DecodeError(f"{msg_type} datagram has no device mac: {message}")
        return message

    @classmethod
    def request(
            cls,
            msg_type: str,
            mac: Optional[str]=None,
            device_type: Optional[str]=None,
            data: Optional[JsonableDict]=None,
            access_token: Optional[str]=None,
          ) -> MotionMessage:
        """Build an outbound request without a msgID."""
        if msg_type not in REQUEST_MSG_TYPES:
            raise ValueError(f"Unknown request msgType {msg_type!r}")
        return cls({
            'msgType': msg_type,
            'mac': mac,
            'deviceType': device_type,
            'data': data,
            'AccessToken': access_token,
          })

    def with_msg_id(self, msg_id: str) -> MotionMessage:
        """Returns a copy of this message with msgID set."""
        fields = dict(self._fields)
        fields['msgID'] = msg_id
        return MotionMessage(fields)

    def __getitem__(self, key: str) -> Jsonable:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __str__(self) -> str:
        return f"MotionMessage({self._fields})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def raw_data(self) -> bytes:
        """The UTF-8 encoded JSON datagram contents"""
        return self._raw_data

    @property
    def fields(self) -> JsonableDict:
        """A copy of the decoded JSON object"""
        return dict(self._fields)

    def _get_str(self, name: str) -> Optional[str]:
        value = self._fields.get(name)
        return None if value is None else str(value)

    @property
    def msg_type(self) -> Optional[str]:
        return self._get_str('msgType')

    @property
    def mac(self) -> Optional[str]:
        return self._get_str('mac')

    @property
    def device_type(self) -> Optional[str]:
        return self._get_str('deviceType')

    @property
    def msg_id(self) -> Optional[str]:
        return self._get_str('msgID')

    @property
    def token(self) -> Optional[str]:
        """The session token, carried by GetDeviceListAck (and occasionally other messages)."""
        return self._get_str('token')

    @property
    def protocol_version(self) -> Optional[str]:
        return self._get_str('ProtocolVersion')

    @property
    def action_result(self) -> Optional[str]:
        """An error description the gateway may add to an acknowledgement."""
        return self._get_str('actionResult')

    @property
    def data(self) -> Any:
        return self._fields.get('data')

    @property
    def is_ack(self) -> bool:
        return self.msg_type in ACK_MSG_TYPES

    @property
    def is_event(self) -> bool:
        return self.msg_type in EVENT_MSG_TYPES

    @property
    def wait_handle(self) -> str:
        """For an acknowledgement, the wait handle of the request it answers."""
        msg_type = self.msg_type
        assert msg_type is not None
        return make_wait_handle(msg_type, self.mac)

    @property
    def ack_wait_handle(self) -> str:
        """For a request, the wait handle under which its acknowledgement is awaited."""
        msg_type = self.msg_type
        assert msg_type is not None
        return make_wait_handle(f"{msg_type}Ack", self.mac)

    def device_list(self) -> List[JsonableDict]:
        """For a GetDeviceListAck, the list of {mac, deviceType} entries."""
        assert self.msg_type == MSG_GET_DEVICE_LIST_ACK
        data = self.data
        if not isinstance(data, list):
            return []
        return [ d for d in data if isinstance(d, dict) ]
