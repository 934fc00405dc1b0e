from __future__ import annotations

import pytest

from motion_gateway import battery_info
from motion_gateway.util import clamp, get_local_ip_addresses

def test_battery_info_two_cell_full() -> None:
    assert battery_info(844) == (8.44, 1.0)

def test_battery_info_three_cell() -> None:
    voltage, fraction = battery_info(1232)
    assert voltage == 12.32
    assert fraction == pytest.approx(0.872727272727273)

def test_battery_info_four_cell_empty() -> None:
    assert battery_info(1400) == (14.0, 0.0)

def test_battery_info_no_battery() -> None:
    assert battery_info(0) == (0.0, 0.0)

def test_clamp() -> None:
    assert clamp(-1, 0, 1) == 0
    assert clamp(2, 0, 1) == 1
    assert clamp(0.5, 0, 1) == 0.5

def test_local_ip_addresses_exclude_loopback() -> None:
    for ip in get_local_ip_addresses(include_loopback=False):
        assert not ip.startswith('127.')
