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

"""Waiting for the user to touch the token.

Register and authenticate fail with PresenceRequiredError until a test of
user presence has been performed. The caller is expected to re-send the same
request until it succeeds, which is what call_polling does.
"""

from __future__ import annotations

from .token import PresenceRequiredError

from threading import Event
from typing import Optional, Callable, TypeVar
import time
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLL_DELAY = 0.2


class PresenceTimeoutError(Exception):
    """Raised when call_polling gives up waiting for user presence.

    :ivar attempts: The number of attempts made.
    """

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"User presence not given after {attempts} attempt(s)")


def call_polling(
    func: Callable[..., T],
    *args,
    poll_delay: float = DEFAULT_POLL_DELAY,
    timeout: Optional[float] = None,
    max_attempts: Optional[int] = None,
    event: Optional[Event] = None,
    on_presence_required: Optional[Callable[[], None]] = None,
    **kwargs,
) -> T:
    """Calls func until it stops raising PresenceRequiredError.

    Any other exception raised by func is passed on to the caller.

    :param func: The operation to call, typically U2fToken.register or
        U2fToken.authenticate.
    :param poll_delay: Seconds to wait between attempts.
    :param timeout: (optional) Maximum number of seconds to keep trying.
    :param max_attempts: (optional) Maximum number of calls to func.
    :param event: (optional) A threading.Event which can be set to abort.
    :param on_presence_required: (optional) Called once, the first time user
        presence is required, e.g. to prompt the user.
    :return: The value returned by func.
    :raise: PresenceTimeoutError
    """
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    event = event or Event()
    deadline = None if timeout is None else time.monotonic() + timeout
    attempts = 0
    while not event.is_set():
        attempts += 1
        try:
            return func(*args, **kwargs)
        except PresenceRequiredError:
            if attempts == 1:
                logger.info("User presence required, touch the token.")
                if on_presence_required:
                    on_presence_required()
        if max_attempts is not None and attempts >= max_attempts:
            break
        delay = poll_delay
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            delay = min(delay, remaining)
        event.wait(delay)
    logger.debug("Gave up waiting for user presence after %d attempt(s)", attempts)
    raise PresenceTimeoutError(attempts)
