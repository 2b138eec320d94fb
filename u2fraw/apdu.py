# Copyright (c) 2013 Yubico AB
# All rights reserved.
#
#   Redistribution and use in source and binary forms, with or
#   without modification, are permitted provided that the following
#   conditions are met:
#
#    1. Redistributions of source code must retain the above copyright
#       notice, this list of conditions and the following disclaimer.
#    2. Redistributions in binary form must reproduce the above
#       copyright notice, this list of conditions and the following
#       disclaimer in the documentation and/or other materials provided
#       with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS
# "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT
# LIMITED TO, THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS
# FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE
# COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT,
# INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING,
# BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES;
# LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
# CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT
# LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN
# ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

"""Encoding and decoding of U2F raw message frames.

Requests use the extended length APDU layout defined by the U2F Raw Message
Formats specification::

    [CLA=0x00][INS][P1][P2][Lc: 3 bytes, big endian][data]

Responses carry the response data followed by a two byte status word.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag, unique
from dataclasses import dataclass
from typing import Union
import struct

MAX_DATA_LENGTH = 0xFFFFFF

_HEADER = struct.Struct(">BBBB")


@unique
class INS(IntEnum):
    """U2F command instructions."""

    REGISTER = 0x01
    AUTHENTICATE = 0x02
    VERSION = 0x03


@unique
class SW(IntEnum):
    """APDU response status words."""

    NO_ERROR = 0x9000
    WRONG_LENGTH = 0x6700
    INVALID_DATA = 0x6984
    CONDITIONS_NOT_SATISFIED = 0x6985
    WRONG_DATA = 0x6A80
    INS_NOT_SUPPORTED = 0x6D00

    def __str__(self):
        return f"0x{self.value:04X} - {self.name}"


class P1(IntFlag):
    """Control byte flags for Register and Authenticate requests."""

    TUP_REQUIRED = 0x01
    TUP_CONSUME = 0x02
    TUP_TEST_ONLY = 0x04

    ENFORCE = TUP_REQUIRED | TUP_CONSUME
    # A "check-only" request sets all three bits, not just TUP_TEST_ONLY.
    CHECK_ONLY = TUP_REQUIRED | TUP_CONSUME | TUP_TEST_ONLY


class FramingError(ValueError):
    """Raised when a frame does not have the expected layout."""


class ApduError(Exception):
    """An Exception thrown when a response APDU doesn't have the status word
    expected by the operation.

    :param code: APDU response code.
    :param data: APDU response body.
    """

    def __init__(self, code: int, data: bytes = b"", message: str = ""):
        self.code = code
        self.data = data
        super().__init__(message or f"APDU error: 0x{code:04X}")

    def __repr__(self):
        return f"APDU error: 0x{self.code:04X} {len(self.data):d} bytes of data"


def _status(value: int) -> Union[SW, int]:
    try:
        return SW(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class Request:
    """A low-level command sent to the token.

    :ivar ins: The command instruction.
    :ivar p1: First parameter byte.
    :ivar p2: Second parameter byte.
    :ivar data: Command payload.
    """

    ins: int
    p1: int = 0
    p2: int = 0
    data: bytes = b""

    def encode(self) -> bytes:
        """Serialize the request into a command frame."""
        return encode_request(self.ins, self.p1, self.p2, self.data)

    @classmethod
    def from_bytes(cls, frame: bytes) -> Request:
        """Parse an encoded command frame.

        :param frame: A frame as produced by :func:`encode_request`.
        :return: The parsed Request.
        """
        if len(frame) < 7:
            raise FramingError(f"Request frame too short, got {len(frame)} bytes")
        cla, ins, p1, p2 = _HEADER.unpack_from(frame)
        if cla != 0:
            raise FramingError(f"Unsupported class byte: 0x{cla:02X}")
        length = int.from_bytes(frame[4:7], "big")
        data = bytes(frame[7:])
        if len(data) != length:
            raise FramingError(
                f"Request length field is {length}, payload is {len(data)} bytes"
            )
        return cls(ins, p1, p2, data)


@dataclass(frozen=True)
class Response:
    """A low-level response from the token.

    :ivar data: Response data, without the status word.
    :ivar status: The status word, as an SW member when it is a known value.
    """

    data: bytes
    status: Union[SW, int]

    @classmethod
    def from_bytes(cls, raw: bytes) -> Response:
        """Split a raw reply into response data and status word.

        :param raw: The full reply from the token.
        :return: The parsed Response.
        """
        if len(raw) < 2:
            raise FramingError(f"Response is too short, got {len(raw)} bytes")
        status = struct.unpack(">H", raw[-2:])[0]
        return cls(bytes(raw[:-2]), _status(status))


def encode_request(ins: int, p1: int = 0, p2: int = 0, data: bytes = b"") -> bytes:
    """Packs a command frame with a three byte big endian length.

    :param ins: The INS parameter of the request.
    :param p1: The P1 parameter of the request.
    :param p2: The P2 parameter of the request.
    :param data: The body of the request.
    :return: The encoded frame.
    """
    if len(data) > MAX_DATA_LENGTH:
        raise ValueError(f"Request data too long: {len(data)} bytes")
    return _HEADER.pack(0, ins, p1, p2) + len(data).to_bytes(3, "big") + bytes(data)


def decode_response(raw: bytes) -> Response:
    """Decodes a raw reply, see :meth:`Response.from_bytes`."""
    return Response.from_bytes(raw)
