"""Minimal OSC 1.0 message codec for talking to the synthesis server.

Encodes int (``i``), float (``f``) and string (``s``) arguments.  Decoding
additionally understands doubles (``d``) and blobs (``b``), which appear in
server replies such as ``/status.reply``.
"""

from __future__ import annotations

import struct
from typing import Any


class OscError(ValueError):
    """Raised for malformed OSC packets or unsupported argument types."""


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _osc_string(s: str) -> bytes:
    """Encode a string as OSC string (null-terminated, 4-byte padded)."""
    b = s.encode("utf-8") + b"\x00"
    pad = (4 - len(b) % 4) % 4
    return b + b"\x00" * pad


def _osc_int(i: int) -> bytes:
    """Encode an integer as OSC int32 (big-endian)."""
    try:
        return i.to_bytes(4, "big", signed=True)
    except OverflowError:
        raise OscError(f"{i} does not fit in an OSC int32") from None


def _osc_float(f: float) -> bytes:
    """Encode a float as OSC float32 (big-endian IEEE 754)."""
    try:
        return struct.pack(">f", f)
    except OverflowError:
        raise OscError(f"{f} does not fit in an OSC float32") from None


def build_message(address: str, *args: Any) -> bytes:
    """Build one OSC message from an address pattern and arguments."""
    if not address.startswith("/"):
        raise OscError(f"OSC address must start with '/': {address!r}")
    type_tag = ","
    encoded_args = b""
    for arg in args:
        if isinstance(arg, bool):
            raise OscError("Use int 0/1 instead of bool for OSC")
        elif isinstance(arg, int):
            type_tag += "i"
            encoded_args += _osc_int(arg)
        elif isinstance(arg, float):
            type_tag += "f"
            encoded_args += _osc_float(arg)
        elif isinstance(arg, str):
            type_tag += "s"
            encoded_args += _osc_string(arg)
        else:
            raise OscError(f"Unsupported OSC arg type {type(arg)}: {arg!r}")
    return _osc_string(address) + _osc_string(type_tag) + encoded_args


def coerce_argument(token: str) -> int | float | str:
    """Interpret a command-line token as int, then float, else string."""
    for kind in (int, float):
        try:
            return kind(token)
        except ValueError:
            continue
    return token


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _read_string(data: bytes, offset: int) -> tuple[str, int]:
    end = data.find(b"\x00", offset)
    if end < 0:
        raise OscError("unterminated OSC string")
    value = data[offset:end].decode("utf-8", errors="replace")
    size = end - offset + 1
    return value, offset + size + (4 - size % 4) % 4


def _unpack(fmt: str, data: bytes, offset: int) -> tuple[Any, int]:
    size = struct.calcsize(fmt)
    if offset + size > len(data):
        raise OscError("truncated OSC argument")
    return struct.unpack_from(fmt, data, offset)[0], offset + size


def parse_message(data: bytes) -> tuple[str, list[Any]]:
    """Decode one OSC message into ``(address, args)``."""
    address, offset = _read_string(data, 0)
    if not address.startswith("/"):
        raise OscError(f"not an OSC message: {address!r}")
    if offset >= len(data):
        return address, []
    tags, offset = _read_string(data, offset)
    if not tags.startswith(","):
        raise OscError(f"bad OSC type tag string {tags!r}")

    args: list[Any] = []
    for tag in tags[1:]:
        if tag == "i":
            value, offset = _unpack(">i", data, offset)
        elif tag == "f":
            value, offset = _unpack(">f", data, offset)
        elif tag == "d":
            value, offset = _unpack(">d", data, offset)
        elif tag == "s":
            value, offset = _read_string(data, offset)
        elif tag == "b":
            length, offset = _unpack(">i", data, offset)
            value = data[offset:offset + length]
            offset += length + (4 - length % 4) % 4
        else:
            raise OscError(f"unsupported OSC type tag {tag!r}")
        args.append(value)
    return address, args
