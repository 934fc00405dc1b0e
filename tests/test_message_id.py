from __future__ import annotations

import datetime

from motion_gateway import MessageIdGenerator
from motion_gateway.message_id import timestamp_message_id

def test_timestamp_encoding() -> None:
    t = datetime.datetime(2024, 1, 2, 3, 4, 5, 678901)
    assert timestamp_message_id(t) == 20240102030405678

def test_ids_are_17_digit_timestamps() -> None:
    t = datetime.datetime(2024, 1, 2, 3, 4, 5, 6000)
    gen = MessageIdGenerator(clock=lambda: t)
    msg_id = gen.next_id()
    assert msg_id == "20240102030405006"
    assert len(msg_id) == 17

def test_same_millisecond_increments() -> None:
    t = datetime.datetime(2024, 1, 2, 3, 4, 5, 678000)
    gen = MessageIdGenerator(clock=lambda: t)
    assert gen.next_id() == "20240102030405678"
    assert gen.next_id() == "20240102030405679"
    assert gen.next_id() == "20240102030405680"
    assert gen.last_id == 20240102030405680

def test_clock_moving_backwards_still_increases() -> None:
    times = iter([
        datetime.datetime(2024, 6, 1, 12, 0, 0),
        datetime.datetime(2024, 6, 1, 11, 59, 0),
        datetime.datetime(2024, 6, 1, 11, 59, 30),
        datetime.datetime(2024, 6, 1, 12, 0, 1),
    ])
    gen = MessageIdGenerator(clock=lambda: next(times))
    ids = [ int(gen.next_id()) for _ in range(4) ]
    assert ids == [20240601120000000, 20240601120000001, 20240601120000002, 20240601120001000]

def test_default_clock_is_strictly_increasing() -> None:
    gen = MessageIdGenerator()
    ids = [ int(gen.next_id()) for _ in range(1000) ]
    assert all(b > a for a, b in zip(ids, ids[1:]))
