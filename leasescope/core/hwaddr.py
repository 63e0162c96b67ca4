"""Hardware (MAC) address and OUI prefix values."""

from __future__ import annotations

import re
from functools import total_ordering
from typing import Any

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_COLON_OR_DASH = re.compile(r"[:\-]")
_DOTTED = re.compile(r"^([0-9a-fA-F]{4})\.([0-9a-fA-F]{4})\.([0-9a-fA-F]{4})$")

MAC_NIBBLES = 12


class InvalidHardwareAddress(ValueError):
    """Raised when a string is not a 48-bit hardware address."""


class InvalidMacPrefix(ValueError):
    """Raised when a string is not a valid hardware address prefix."""


def _is_hex(text: str) -> bool:
    return bool(text) and all(ch in _HEX_DIGITS for ch in text)


@total_ordering
class HardwareAddress:
    """A 6-byte link-layer address.

    Equality, hashing and ordering are byte-wise. ``str()`` gives the
    canonical lower-case, zero-padded, colon-separated form.
    """

    __slots__ = ("_octets",)

    def __init__(self, octets: bytes) -> None:
        if len(octets) != 6:
            raise InvalidHardwareAddress(f"expected 6 octets, got {len(octets)}")
        self._octets = bytes(octets)

    @classmethod
    def parse(cls, value: Any) -> HardwareAddress:
        """Parse ``aa:bb:cc:dd:ee:ff``, ``aa-bb-...``, ``aabb.ccdd.eeff`` or bare hex.

        Colon/dash separated octets may be a single hex digit, as some
        dhcpd versions write them (``0:1b:2:...``).
        """
        if isinstance(value, HardwareAddress):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        if not isinstance(value, str):
            raise InvalidHardwareAddress(f"cannot parse {type(value).__name__} as a MAC address")

        text = value.strip()
        if _COLON_OR_DASH.search(text):
            segments = _COLON_OR_DASH.split(text)
            if len(segments) < 6:
                raise InvalidHardwareAddress(f"mac address too short: {value!r}")
            if len(segments) > 6:
                raise InvalidHardwareAddress(f"mac address too long: {value!r}")
            for seg in segments:
                if not 1 <= len(seg) <= 2 or not _is_hex(seg):
                    raise InvalidHardwareAddress(f"bad mac address segment {seg!r} in {value!r}")
            return cls(bytes(int(seg, 16) for seg in segments))

        dotted = _DOTTED.match(text)
        if dotted:
            text = "".join(dotted.groups())
        if len(text) != MAC_NIBBLES or not _is_hex(text):
            raise InvalidHardwareAddress(f"not a mac address: {value!r}")
        return cls(bytes.fromhex(text))

    @property
    def packed(self) -> bytes:
        return self._octets

    def nibbles(self) -> tuple[int, ...]:
        """The 12 four-bit digits, most significant first."""
        out: list[int] = []
        for octet in self._octets:
            out.append(octet >> 4)
            out.append(octet & 0x0F)
        return tuple(out)

    @property
    def oui(self) -> MacPrefix:
        """The vendor-assigned upper 24 bits as a prefix."""
        return MacPrefix(self.nibbles()[:6])

    def __str__(self) -> str:
        return ":".join(f"{octet:02x}" for octet in self._octets)

    def __repr__(self) -> str:
        return f"HardwareAddress('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HardwareAddress):
            return NotImplemented
        return self._octets == other._octets

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, HardwareAddress):
            return NotImplemented
        return self._octets < other._octets

    def __hash__(self) -> int:
        return hash(self._octets)

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls.parse,
            serialization=core_schema.plain_serializer_function_ser_schema(str),
        )


class MacPrefix:
    """A hardware address prefix of 0 to 12 nibbles (``00:1b:2``, ``001B21``)."""

    __slots__ = ("_nibbles",)

    def __init__(self, nibbles: tuple[int, ...] | list[int]) -> None:
        nibbles = tuple(nibbles)
        if len(nibbles) > MAC_NIBBLES:
            raise InvalidMacPrefix("mac prefix too long")
        if any(not 0 <= n <= 0x0F for n in nibbles):
            raise InvalidMacPrefix("mac prefix nibble out of range")
        self._nibbles = nibbles

    @classmethod
    def parse(cls, value: str | MacPrefix) -> MacPrefix:
        if isinstance(value, MacPrefix):
            return value
        text = value.strip()
        nibbles: list[int] = []
        segments = _COLON_OR_DASH.split(text) if _COLON_OR_DASH.search(text) else [text]
        for i, seg in enumerate(segments):
            if len(segments) > 1 and len(seg) > 2:
                raise InvalidMacPrefix(f"mac prefix segment too long: {seg!r}")
            if not seg and len(segments) > 1 and i != len(segments) - 1:
                raise InvalidMacPrefix(f"empty mac prefix segment in {value!r}")
            for ch in seg:
                if ch not in _HEX_DIGITS:
                    raise InvalidMacPrefix(f"mac prefix contains non-hex character: {ch!r}")
                nibbles.append(int(ch, 16))
        return cls(nibbles)

    @classmethod
    def from_address(cls, address: HardwareAddress, length: int = MAC_NIBBLES) -> MacPrefix:
        return cls(address.nibbles()[:length])

    @property
    def nibbles(self) -> tuple[int, ...]:
        return self._nibbles

    def __len__(self) -> int:
        return len(self._nibbles)

    def matches(self, address: HardwareAddress) -> bool:
        return address.nibbles()[: len(self._nibbles)] == self._nibbles

    def __str__(self) -> str:
        digits = "".join(f"{n:x}" for n in self._nibbles)
        return ":".join(digits[i:i + 2] for i in range(0, len(digits), 2))

    def __repr__(self) -> str:
        return f"MacPrefix('{self}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MacPrefix):
            return NotImplemented
        return self._nibbles == other._nibbles

    def __hash__(self) -> int:
        return hash(self._nibbles)
