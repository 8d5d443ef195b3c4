"""Host name functions.

There is no virtual host handling yet, so every function works from the
target stored in the Context. An empty target stands for the loopback
address.
"""

from __future__ import annotations

import ipaddress
import socket
from typing import Optional, Union

from extensions import ExtensionAPI, FunctionError, FunctionErrorKind


NASL_EXTENSION_NAME = "hostname"
NASL_EXTENSION_API_VERSION = 1

DEFAULT_TARGET = "127.0.0.1"


def _parse_address(text: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def resolve_hostname(target: str) -> str:
    """Reverse-resolve an IP target; anything else is taken to be a host name already."""
    target = target or DEFAULT_TARGET
    address = _parse_address(target)
    if address is None:
        return target
    try:
        name, _, _ = socket.gethostbyaddr(str(address))
    except OSError:
        return str(address)
    return name


def nasl_register(ext: ExtensionAPI) -> None:
    from interpreter import TYPE_ARRAY, TYPE_STR, Value

    ext.metadata(name=NASL_EXTENSION_NAME, version="1.0.0")

    @ext.function("get_host_name")
    def get_host_name(register, context):
        """Host name of the current target."""
        return Value(TYPE_STR, resolve_hostname(context.target))

    @ext.function("get_host_names")
    def get_host_names(register, context):
        """All known host names of the current target."""
        return Value(TYPE_ARRAY, [Value(TYPE_STR, resolve_hostname(context.target))])

    @ext.function("get_host_ip")
    def get_host_ip(register, context):
        """IP address of the current target."""
        target = context.target or DEFAULT_TARGET
        address = _parse_address(target)
        if address is None:
            raise FunctionError(FunctionErrorKind.INVALID_VALUE, f"target '{target}' is not an IP address")
        return Value(TYPE_STR, str(address))
