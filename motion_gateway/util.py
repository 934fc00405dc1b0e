#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

import netifaces
import socket
from ipaddress import IPv4Address, IPv6Address

from .internal_types import *

BatteryInfo = Tuple[float, float]
"""(voltage, fraction_charged)"""

def clamp(value: float, min_value: float, max_value: float) -> float:
    return min(max(min_value, value), max_value)

def battery_info(battery_level: int) -> BatteryInfo:
    """Interpret the batteryLevel field of a device status.

    batteryLevel is the pack voltage in hundredths of a volt. The pack size (2, 3 or 4 cells)
    is inferred from the voltage, and the charge fraction is interpolated between the empty
    and full voltages of that pack.

    Returns a Tuple[voltage: float, fraction_charged: float], with fraction_charged in [0.0, 1.0].
    """
    voltage = battery_level / 100.0
    percent = 0.0

    if 0.0 < voltage <= 9.4:
        # 2 cell battery pack (8.4V)
        percent = (voltage - 6.2) / (8.4 - 6.2)
    elif 9.4 < voltage <= 13.6:
        # 3 cell battery pack (12.6V)
        percent = (voltage - 10.4) / (12.6 - 10.4)
    elif voltage > 13.6:
        # 4 cell battery pack (16.8V)
        percent = (voltage - 14.6) / (16.8 - 14.6)
    return (voltage, clamp(percent, 0.0, 1.0))

def get_local_ip_addresses_and_interfaces(
        address_family: Union[socket.AddressFamily, int]=socket.AF_INET,
        include_loopback: bool=True
    ) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the IP addresses of the local host
       in a requested address family. The result is sorted in a way that attempts to place the "preferred"
       canonical IP address first in the list, according to the following scheme:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Non-loopback addresses precede loopback addresses.
           3. IPV4 addresses that begin with 172. follow other IPV4 addresses. This is a hack to
              deprioritize local docker network addresses.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    is_ipv6 = int(address_family) == int(socket.AF_INET6)
    _, default_gateway_ifname = get_default_ip_gateway(address_family)
    netiface_family = netifaces.AF_INET6 if is_ipv6 else netifaces.AF_INET
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        if netiface_family in ifinfo:
            for addrinfo in ifinfo[netiface_family]:
              ip_str = addrinfo['addr']
              assert isinstance(ip_str, str)
              is_loopback = IPv6Address(ip_str.split('%', 1)[0]).is_loopback if is_ipv6 else IPv4Address(ip_str).is_loopback
              if is_loopback:
                  if not include_loopback:
                      continue
                  priority = 3
              elif ifname == default_gateway_ifname:
                  priority = 0
              elif not is_ipv6 and ip_str.startswith('172.'):
                  priority = 2
              else:
                  priority = 1

              result_with_priority.append((priority, ip_str, ifname))
    return [ (ip, ifname) for _, ip, ifname in sorted(result_with_priority)]

def get_local_ip_addresses(address_family: Union[socket.AddressFamily, int]=socket.AF_INET, include_loopback: bool=True) -> List[str]:
    """Returns a List[ip_address: str] for the IP addresses of the local host
       in a requested address family, in the order described by get_local_ip_addresses_and_interfaces()."""
    return [ ip for ip, _ in get_local_ip_addresses_and_interfaces(address_family, include_loopback=include_loopback)]

def get_default_ip_gateway(address_family: socket.AddressFamily | int=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IP gateway in the
       requested family, if any.
       returns (None, None) if there is no default gateway in the requested family."""
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    netiface_family = netifaces.AF_INET if int(address_family) == int(socket.AF_INET) else netifaces.AF_INET6
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netiface_family in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netiface_family][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)
