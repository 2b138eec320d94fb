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

from __future__ import annotations

from .apdu import INS, SW, P1, ApduError, FramingError, Response, encode_request
from .transport import U2fTransport
from .utils import websafe_encode, websafe_decode, bytes2int, ByteBuffer
from cryptography import x509
from cryptography.hazmat.backends import default_backend
from dataclasses import dataclass
import struct
import logging

logger = logging.getLogger(__name__)

PARAM_LENGTH = 32
MAX_KEY_HANDLE_LENGTH = 256


class PresenceRequiredError(ApduError):
    """Raised by register and authenticate when the token needs a test of user
    presence. The same request should be sent again once the user has touched
    the token.
    """

    def __init__(self, data: bytes = b""):
        super().__init__(SW.CONDITIONS_NOT_SATISFIED, data, "User presence required")


class UnknownKeyHandleError(ApduError):
    """Raised by check_authenticate when the key handle was not issued by the
    token for the given application.
    """

    def __init__(self, data: bytes = b""):
        super().__init__(SW.WRONG_DATA, data, "Unknown key handle")


class UnexpectedStatusError(ApduError):
    """Raised when the token replies with a status word the operation does not
    handle.

    :param operation: Name of the operation that failed.
    """

    def __init__(self, operation: str, code: int, data: bytes = b""):
        self.operation = operation
        super().__init__(
            code, data, f"Unexpected status 0x{code:04X} during {operation}"
        )


def _check_params(challenge: bytes, application: bytes) -> None:
    if len(challenge) != PARAM_LENGTH:
        raise ValueError(f"Challenge must be exactly {PARAM_LENGTH} bytes")
    if len(application) != PARAM_LENGTH:
        raise ValueError(f"Application must be exactly {PARAM_LENGTH} bytes")


@dataclass(frozen=True)
class RegisterRequest:
    """Parameters for a U2F registration.

    :ivar challenge: SHA256 hash of the ClientData used for the request.
    :ivar application: SHA256 hash of the app ID used for the request.
    """

    challenge: bytes
    application: bytes

    def encode(self) -> bytes:
        _check_params(self.challenge, self.application)
        return self.challenge + self.application


@dataclass(frozen=True)
class AuthenticateRequest:
    """Parameters for a U2F authentication.

    :ivar challenge: SHA256 hash of the ClientData used for the request.
    :ivar application: SHA256 hash of the app ID used for the request.
    :ivar key_handle: The key handle returned by the token on registration.
    """

    challenge: bytes
    application: bytes
    key_handle: bytes

    def encode(self) -> bytes:
        _check_params(self.challenge, self.application)
        if len(self.key_handle) > MAX_KEY_HANDLE_LENGTH:
            raise ValueError(
                f"Key handle must be at most {MAX_KEY_HANDLE_LENGTH} bytes"
            )
        # The length is a single byte, so a 256 byte handle is sent as 0x00.
        return (
            self.challenge
            + self.application
            + struct.pack(">B", len(self.key_handle) & 0xFF)
            + self.key_handle
        )


@dataclass(frozen=True)
class AuthenticateResponse:
    """Response to a successful authentication.

    :ivar user_presence: User presence byte.
    :ivar counter: Signature counter.
    :ivar signature: Cryptographic signature.
    :ivar raw_response: The complete response data from the token.
    """

    user_presence: int
    counter: int
    signature: bytes
    raw_response: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> AuthenticateResponse:
        if len(data) < 6:
            raise FramingError(
                f"Authenticate response is too short, got {len(data)} bytes"
            )
        reader = ByteBuffer(data)
        return cls(
            user_presence=reader.unpack("B"),
            counter=reader.unpack(">I"),
            signature=reader.read(),
            raw_response=data,
        )

    @property
    def b64(self) -> str:
        """Websafe base64 encoded string of the raw response."""
        return websafe_encode(self.raw_response)


@dataclass(init=False)
class RegistrationData(bytes):
    """Binary response data for a U2F registration.

    The token replies to register with an opaque blob. This class is provided
    for callers who need to pick it apart, U2fToken.register returns the raw
    bytes.

    :param _: The binary contents of the response data.
    :ivar public_key: Binary representation of the credential public key.
    :ivar key_handle: Binary key handle of the credential.
    :ivar certificate: Attestation certificate of the authenticator, DER
        encoded.
    :ivar signature: Attestation signature.
    """

    public_key: bytes
    key_handle: bytes
    certificate: bytes
    signature: bytes

    def __init__(self, _):
        super().__init__()

        reader = ByteBuffer(self)
        if reader.unpack("B") != 0x05:
            raise ValueError("Reserved byte != 0x05")

        self.public_key = reader.read(65)
        self.key_handle = reader.read(reader.unpack("B"))

        cert_buf = reader.read(2)  # Tag and first length byte
        cert_len = cert_buf[1]
        if cert_len > 0x80:  # Multi-byte length
            len_bytes = reader.read(cert_len - 0x80)
            cert_buf += len_bytes
            cert_len = bytes2int(len_bytes)
        self.certificate = cert_buf + reader.read(cert_len)
        self.signature = reader.read()

    @property
    def attestation_certificate(self) -> x509.Certificate:
        """The parsed attestation certificate. It is not validated."""
        return x509.load_der_x509_certificate(self.certificate, default_backend())

    @property
    def b64(self) -> str:
        """Websafe base64 encoded string of the RegistrationData."""
        return websafe_encode(self)

    @classmethod
    def from_b64(cls, data: str) -> RegistrationData:
        """Parse a RegistrationData from a websafe base64 encoded string.

        :param data: Websafe base64 encoded string.
        :return: The decoded and parsed RegistrationData.
        """
        return cls(websafe_decode(data))


class U2fToken:
    """Implementation of the U2F raw message protocol.

    Every operation performs exactly one round trip over the transport and
    never retries. Register and authenticate raise PresenceRequiredError until
    the user has touched the token, see :func:`u2fraw.presence.call_polling`.

    :param transport: A U2fTransport connected to the token.
    """

    def __init__(self, transport: U2fTransport):
        self.transport = transport

    def send_apdu(
        self, ins: int, p1: int = 0, p2: int = 0, data: bytes = b""
    ) -> Response:
        """Packs and sends a command frame, returning the decoded response.
        The status word is not interpreted.

        :param ins: The INS parameter of the request.
        :param p1: The P1 parameter of the request.
        :param p2: The P2 parameter of the request.
        :param data: The body of the request.
        :return: The response data and status word.
        """
        response = Response.from_bytes(
            self.transport.send(encode_request(ins, p1, p2, data))
        )
        logger.debug("INS 0x%02X got status %s", ins, response.status)
        return response

    def register(self, request: RegisterRequest) -> bytes:
        """Register a new U2F credential.

        :param request: The challenge and application parameters.
        :return: The raw registration response, see RegistrationData.
        :raise: PresenceRequiredError, UnexpectedStatusError
        """
        data = request.encode()
        logger.debug("Register for application %s", request.application.hex())
        response = self.send_apdu(INS.REGISTER, P1.ENFORCE, data=data)

        if response.status == SW.NO_ERROR:
            return response.data
        if response.status == SW.CONDITIONS_NOT_SATISFIED:
            raise PresenceRequiredError(response.data)
        raise UnexpectedStatusError("registration", response.status, response.data)

    def authenticate(self, request: AuthenticateRequest) -> AuthenticateResponse:
        """Authenticate a previously registered credential.

        A token may reply to an unknown key handle with either
        CONDITIONS_NOT_SATISFIED or WRONG_DATA. The first is reported as
        PresenceRequiredError, the second as UnexpectedStatusError. Use
        check_authenticate to test a key handle.

        :param request: The challenge, application and key handle.
        :return: The authentication response from the token.
        :raise: PresenceRequiredError, UnexpectedStatusError
        """
        data = request.encode()
        logger.debug("Authenticate for application %s", request.application.hex())
        response = self.send_apdu(INS.AUTHENTICATE, P1.ENFORCE, data=data)

        if response.status == SW.NO_ERROR:
            return AuthenticateResponse.from_bytes(response.data)
        if response.status == SW.CONDITIONS_NOT_SATISFIED:
            raise PresenceRequiredError(response.data)
        raise UnexpectedStatusError("authentication", response.status, response.data)

    def check_authenticate(self, request: AuthenticateRequest) -> None:
        """Check whether a key handle is known to the token, without requiring
        user presence. Returns normally if the key handle is valid.

        :param request: The challenge, application and key handle.
        :raise: UnknownKeyHandleError, UnexpectedStatusError
        """
        data = request.encode()
        response = self.send_apdu(INS.AUTHENTICATE, P1.CHECK_ONLY, data=data)

        if response.status == SW.CONDITIONS_NOT_SATISFIED:
            return
        if response.status == SW.WRONG_DATA:
            raise UnknownKeyHandleError(response.data)
        raise UnexpectedStatusError("auth check", response.status, response.data)

    def get_version(self) -> str:
        """Get the U2F version implemented by the token.
        The only version specified is "U2F_V2".

        :return: A U2F version string.
        """
        response = self.send_apdu(INS.VERSION)
        if response.status != SW.NO_ERROR:
            raise UnexpectedStatusError(
                "version request", response.status, response.data
            )
        return response.data.decode()
