from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.concatkdf import ConcatKDFHash
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization

from u2fraw.apdu import INS, SW, P1, Request
from u2fraw.transport import U2fTransport
from u2fraw.utils import bytes2int
import datetime
import os
import struct


def _public_bytes(key):
    return key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )


def _sign(key, message):
    return key.sign(message, ec.ECDSA(hashes.SHA256()))


class SoftU2fToken(U2fTransport):
    """A U2F token living in memory, speaking the raw message protocol.

    User presence is given by calling touch(), and is consumed by the next
    successful register or authenticate. Every received frame is kept in
    frames.
    """

    _master_key = os.urandom(32)

    def __init__(self, version=b"U2F_V2"):
        self.version = version
        self.counter = 0
        self.user_present = False
        self.frames = []

        self.attestation_key = ec.generate_private_key(
            ec.SECP256R1(), default_backend()
        )
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Soft U2F Token")])
        now = datetime.datetime.now(datetime.timezone.utc)
        self.attestation_cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.attestation_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=1))
            .sign(self.attestation_key, hashes.SHA256(), default_backend())
        )

    def touch(self):
        self.user_present = True

    def _credential_key(self, key_handle, app_param):
        # Note: do not use in production, no guarantee is provided that this is
        # cryptographically safe to use.
        secret = ConcatKDFHash(
            algorithm=hashes.SHA256(),
            length=32,
            otherinfo=key_handle[:32] + app_param,
            backend=default_backend(),
        ).derive(self._master_key)
        return ec.derive_private_key(
            bytes2int(secret), ec.SECP256R1(), default_backend()
        )

    def _mac(self, nonce, app_param):
        return ConcatKDFHash(
            algorithm=hashes.SHA256(),
            length=32,
            otherinfo=b"mac" + nonce + app_param,
            backend=default_backend(),
        ).derive(self._master_key)

    def send(self, apdu):
        self.frames.append(apdu)
        req = Request.from_bytes(apdu)
        if req.ins == INS.VERSION:
            return self.version + struct.pack(">H", SW.NO_ERROR)
        if req.ins == INS.REGISTER:
            data, sw = self._register(req)
        elif req.ins == INS.AUTHENTICATE:
            data, sw = self._authenticate(req)
        else:
            data, sw = b"", SW.INS_NOT_SUPPORTED
        return data + struct.pack(">H", sw)

    def _register(self, req):
        if len(req.data) != 64:
            return b"", SW.WRONG_LENGTH
        if not self.user_present:
            return b"", SW.CONDITIONS_NOT_SATISFIED
        self.user_present = False

        client_param, app_param = req.data[:32], req.data[32:]
        nonce = os.urandom(32)
        key_handle = nonce + self._mac(nonce, app_param)
        public_key = _public_bytes(self._credential_key(key_handle, app_param))
        signature = _sign(
            self.attestation_key,
            b"\0" + app_param + client_param + key_handle + public_key,
        )
        cert = self.attestation_cert.public_bytes(serialization.Encoding.DER)
        return (
            b"\5" + public_key + bytes([len(key_handle)]) + key_handle + cert + signature,
            SW.NO_ERROR,
        )

    def _authenticate(self, req):
        client_param, app_param = req.data[:32], req.data[32:64]
        key_handle = req.data[65 : 65 + req.data[64]]
        if len(key_handle) != 64 or key_handle[32:] != self._mac(
            key_handle[:32], app_param
        ):
            return b"", SW.WRONG_DATA
        if req.p1 == P1.CHECK_ONLY:
            return b"", SW.CONDITIONS_NOT_SATISFIED
        if req.p1 != P1.ENFORCE:
            return b"", SW.INVALID_DATA
        if not self.user_present:
            return b"", SW.CONDITIONS_NOT_SATISFIED
        self.user_present = False

        self.counter += 1
        prefix = b"\1" + struct.pack(">I", self.counter)
        signature = _sign(
            self._credential_key(key_handle, app_param),
            app_param + prefix + client_param,
        )
        return prefix + signature, SW.NO_ERROR
