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

import unittest

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization

from u2fraw.apdu import SW, P1
from u2fraw.token import (
    U2fToken,
    RegisterRequest,
    AuthenticateRequest,
    RegistrationData,
    PresenceRequiredError,
    UnknownKeyHandleError,
    UnexpectedStatusError,
)
from u2fraw.presence import call_polling, PresenceTimeoutError
from u2fraw.utils import sha256

from .utils import SoftU2fToken

APP_PARAM = sha256(b"https://example.com")
OTHER_APP_PARAM = sha256(b"https://example.org")


def _verify(public_key, signature, message):
    ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), public_key).verify(
        signature, message, ec.ECDSA(hashes.SHA256())
    )


class TestSoftToken(unittest.TestCase):
    def setUp(self):
        self.device = SoftU2fToken()
        self.token = U2fToken(self.device)

    def _register(self, challenge=b"\7" * 32):
        return RegistrationData(
            call_polling(
                self.token.register,
                RegisterRequest(challenge, APP_PARAM),
                poll_delay=0,
                on_presence_required=self.device.touch,
            )
        )

    def test_version(self):
        self.assertEqual(self.token.get_version(), "U2F_V2")

    def test_register_requires_presence(self):
        with self.assertRaises(PresenceRequiredError):
            self.token.register(RegisterRequest(b"\7" * 32, APP_PARAM))

    def test_register(self):
        challenge = sha256(b'{"typ":"navigator.id.finishEnrollment"}')
        reg = self._register(challenge)

        self.assertEqual(len(self.device.frames), 2)
        self.assertEqual(self.device.frames[0], self.device.frames[1])
        self.assertEqual(len(reg.key_handle), 64)
        self.assertEqual(
            reg.certificate,
            self.device.attestation_cert.public_bytes(serialization.Encoding.DER),
        )
        self.assertEqual(reg.attestation_certificate, self.device.attestation_cert)

        _verify(
            self.device.attestation_key.public_key().public_bytes(
                serialization.Encoding.X962,
                serialization.PublicFormat.UncompressedPoint,
            ),
            reg.signature,
            b"\0" + APP_PARAM + challenge + reg.key_handle + reg.public_key,
        )

    def test_check_authenticate(self):
        reg = self._register()
        req = AuthenticateRequest(b"\0" * 32, APP_PARAM, reg.key_handle)
        self.token.check_authenticate(req)
        self.assertEqual(self.device.frames[-1][2], P1.CHECK_ONLY)

    def test_check_authenticate_unknown(self):
        reg = self._register()
        with self.assertRaises(UnknownKeyHandleError):
            self.token.check_authenticate(
                AuthenticateRequest(b"\0" * 32, OTHER_APP_PARAM, reg.key_handle)
            )
        with self.assertRaises(UnknownKeyHandleError):
            self.token.check_authenticate(
                AuthenticateRequest(b"\0" * 32, APP_PARAM, b"\1" * 64)
            )

    def test_authenticate_unknown_is_not_special_cased(self):
        with self.assertRaises(UnexpectedStatusError) as cm:
            self.token.authenticate(
                AuthenticateRequest(b"\0" * 32, APP_PARAM, b"\1" * 64)
            )
        self.assertEqual(cm.exception.code, SW.WRONG_DATA)

    def test_authenticate(self):
        reg = self._register()
        challenge = sha256(b'{"typ":"navigator.id.getAssertion"}')
        req = AuthenticateRequest(challenge, APP_PARAM, reg.key_handle)

        with self.assertRaises(PresenceRequiredError):
            self.token.authenticate(req)

        for expected in (1, 2):
            resp = call_polling(
                self.token.authenticate,
                req,
                poll_delay=0,
                on_presence_required=self.device.touch,
            )
            self.assertEqual(resp.user_presence, 1)
            self.assertEqual(resp.counter, expected)
            _verify(
                reg.public_key,
                resp.signature,
                APP_PARAM + resp.raw_response[:5] + challenge,
            )

    def test_presence_never_given(self):
        reg = self._register()
        req = AuthenticateRequest(b"\0" * 32, APP_PARAM, reg.key_handle)
        with self.assertRaises(PresenceTimeoutError):
            call_polling(self.token.authenticate, req, poll_delay=0, max_attempts=5)
        self.assertEqual(self.device.counter, 0)
