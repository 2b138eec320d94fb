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

from .utils import LOG_LEVEL_TRAFFIC

import abc
import logging

logger = logging.getLogger(__name__)


# CTAPHID command used to carry U2F raw messages.
CTAPHID_MSG = 0x03


class U2fTransport(abc.ABC):
    """
    A channel to a single U2F token. Subclasses should implement send, which
    delivers a complete command frame and returns the complete reply frame.
    """

    @abc.abstractmethod
    def send(self, apdu: bytes) -> bytes:
        """Sends a command frame to the token, and reads the response.

        Any failure to exchange the frame should be raised as an exception,
        it is passed on to the caller unmodified.

        :param apdu: The encoded command frame.
        :return: The reply frame, response data followed by the status word.
        """

    def close(self) -> None:
        """Close the transport, releasing any held resources."""

    def __enter__(self):
        return self

    def __exit__(self, typ, value, traceback):
        self.close()


class CtapHidTransport(U2fTransport):
    """U2fTransport sending frames as CTAPHID MSG commands.

    :param device: A device handle providing ``call(cmd, data)``, such as a
        CtapHidDevice. Packet fragmentation is left to the device.
    """

    def __init__(self, device):
        self.device = device

    def send(self, apdu):
        logger.log(LOG_LEVEL_TRAFFIC, "SEND: %s", apdu.hex())
        response = self.device.call(CTAPHID_MSG, apdu)
        logger.log(LOG_LEVEL_TRAFFIC, "RECV: %s", response.hex())
        return response

    def close(self):
        self.device.close()
