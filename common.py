import ipaddress
import re

import const


def singleton(cls):
    """Class decorator, every call returns the same instance."""
    instances = {}

    def getinstance(*args, **kwargs):
        if cls not in instances:
            instances[cls] = cls(*args, **kwargs)
        return instances[cls]

    return getinstance


def netmask_to_prefixlen(netmask):
    """'255.255.255.0' -> 24, raises ValueError for non-contiguous masks."""
    return ipaddress.IPv4Network(f"0.0.0.0/{netmask}").prefixlen


def prefixlen_to_netmask(prefixlen):
    return str(ipaddress.IPv4Network(f"0.0.0.0/{prefixlen}").netmask)


def is_mac_address(value):
    return isinstance(value, str) and re.match(const.MAC_ADDRESS_REGEX, value) is not None
