# src/wg_wizard/ipam.py
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Iterator, Set, Union

from .errors import (
    AddressInUseError,
    ExhaustedError,
    InvalidAddress,
    InvalidEndpoint,
    InvalidPrefix,
    NotExcludedError,
    OutOfRangeError,
)
from .models import Endpoint

logger = logging.getLogger(__name__)

ALL_ONES = 0xFFFFFFFF

AddressLike = Union[str, int, ipaddress.IPv4Address]


# ---------- Arithmétique 32 bits ----------

def prefix_mask(prefix: int) -> int:
    """Mask with the top `prefix` bits set.

    /0 and /32 are handled explicitly, never through a 32-bit shift.
    """
    if not 0 <= prefix <= 32:
        raise InvalidPrefix(f"Prefix length must be in [0, 32], got {prefix}")
    if prefix == 0:
        return 0
    if prefix == 32:
        return ALL_ONES
    return (ALL_ONES << (32 - prefix)) & ALL_ONES


def network_address(address: int, prefix: int) -> int:
    return address & prefix_mask(prefix)


def broadcast_address(address: int, prefix: int) -> int:
    mask = prefix_mask(prefix)
    return (address & mask) | (~mask & ALL_ONES)


def parse_address(value: AddressLike) -> int:
    """Return the 32-bit integer for a dotted quad (an optional '/32' suffix is ignored)."""
    if isinstance(value, ipaddress.IPv4Address):
        return int(value)
    if isinstance(value, int):
        if not 0 <= value <= ALL_ONES:
            raise InvalidAddress(f"Address out of 32-bit range: {value}")
        return value
    text = str(value).strip().split("/")[0]
    try:
        return int(ipaddress.IPv4Address(text))
    except ipaddress.AddressValueError as exc:
        raise InvalidAddress(f"Invalid IPv4 address: {value!r}") from exc


def format_address(value: int) -> str:
    return str(ipaddress.IPv4Address(value))


# ---------- Subnet ----------

@dataclass(frozen=True)
class Subnet:
    address: int    # hôte déclaré dans le CIDR, ex 10.8.0.1 pour "10.8.0.1/24"
    prefix: int
    network: int
    broadcast: int

    @classmethod
    def parse(cls, text: str) -> "Subnet":
        """Parse 'a.b.c.d/prefix'."""
        if not isinstance(text, str) or text.count("/") != 1:
            raise InvalidAddress(f"Expected 'a.b.c.d/prefix', got {text!r}")
        host, _, prefix_text = text.strip().partition("/")
        address = parse_address(host)
        # isdigit() accepte aussi "²"
        if not (prefix_text.isascii() and prefix_text.isdecimal()):
            raise InvalidPrefix(f"Invalid prefix length: {prefix_text!r}")
        prefix = int(prefix_text)
        if prefix > 32:
            raise InvalidPrefix(f"Prefix length must be in [0, 32], got {prefix}")
        return cls(
            address=address,
            prefix=prefix,
            network=network_address(address, prefix),
            broadcast=broadcast_address(address, prefix),
        )

    def __str__(self) -> str:
        return f"{format_address(self.address)}/{self.prefix}"

    @property
    def network_cidr(self) -> str:
        return f"{format_address(self.network)}/{self.prefix}"

    @property
    def has_hosts(self) -> bool:
        return self.broadcast > self.network + 1

    @property
    def host_count(self) -> int:
        return max(self.broadcast - self.network - 1, 0)

    def contains(self, address: AddressLike) -> bool:
        """True if the address is a usable host (network and broadcast excluded)."""
        value = parse_address(address)
        return self.network < value < self.broadcast

    def hosts(self) -> Iterator[ipaddress.IPv4Address]:
        for value in range(self.network + 1, self.broadcast):
            yield ipaddress.IPv4Address(value)


# ---------- Pool d'adresses ----------

class AddressPool:
    """First-fit allocator over a subnet's usable hosts.

    The cursor only moves forward: a released address is handed out again
    only after `reset_cursor()`, so a session never reshuffles addresses.
    """

    def __init__(self, subnet: Subnet):
        self.subnet = subnet
        self._excluded: Set[int] = set()
        self._cursor = subnet.network + 1

    @property
    def excluded(self) -> Set[ipaddress.IPv4Address]:
        return {ipaddress.IPv4Address(v) for v in self._excluded}

    def is_excluded(self, address: AddressLike) -> bool:
        return parse_address(address) in self._excluded

    def exclude(self, address: AddressLike) -> ipaddress.IPv4Address:
        value = parse_address(address)
        if not self.subnet.contains(value):
            raise OutOfRangeError(
                f"{format_address(value)} is not a usable host of {self.subnet.network_cidr}"
            )
        if value in self._excluded:
            raise AddressInUseError(f"{format_address(value)} is already assigned")
        self._excluded.add(value)
        logger.debug("excluded %s", format_address(value))
        return ipaddress.IPv4Address(value)

    def release(self, address: AddressLike) -> None:
        value = parse_address(address)
        if value not in self._excluded:
            raise NotExcludedError(f"{format_address(value)} was never assigned")
        self._excluded.remove(value)
        logger.debug("released %s", format_address(value))

    def allocate(self) -> ipaddress.IPv4Address:
        cursor = self._cursor
        while cursor in self._excluded:
            cursor += 1
        if not self.subnet.network < cursor < self.subnet.broadcast:
            raise ExhaustedError(self.subnet.network_cidr)
        self._excluded.add(cursor)
        self._cursor = cursor + 1
        logger.debug("allocated %s", format_address(cursor))
        return ipaddress.IPv4Address(cursor)

    def reset_cursor(self) -> None:
        self._cursor = self.subnet.network + 1


# ---------- Endpoint ----------

def parse_endpoint(value: str) -> Endpoint:
    """Split 'host:port' at the last colon."""
    host, sep, port_text = value.strip().rpartition(":")
    if not sep or not host:
        raise InvalidEndpoint(f"Expected 'host:port', got {value!r}")
    try:
        port = int(port_text)
    except ValueError as exc:
        raise InvalidEndpoint(f"Invalid port in endpoint {value!r}") from exc
    if not 1 <= port <= 65535:
        raise InvalidEndpoint(f"Port must be in [1, 65535], got {port}")
    return Endpoint(host=host, port=port)
