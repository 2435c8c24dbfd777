# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
import threading
import time
from typing import Callable

# Longest single wait before the wall clock is read again
ALARM_CHECK_INTERVAL = 1.0


class Alarm(threading.Thread):
    """Daemon thread that calls a function once, when the wall clock reaches alarm_time.

    The clock is read again at least every ALARM_CHECK_INTERVAL seconds, so a clock jump
    (e.g. after the host sleeps) delays the call by at most that long.
    """

    def __init__(self, alarm_time: float, function: Callable[[], None]) -> None:
        super().__init__(name="alarm", daemon=True)
        self.alarm_time = alarm_time
        self.function = function
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Prevent the call, unless it has already been made"""
        self._cancelled.set()

    def run(self) -> None:
        while not self._cancelled.is_set():
            remaining = self.alarm_time - time.time()
            if remaining <= 0:
                self.function()
                return
            self._cancelled.wait(min(remaining, ALARM_CHECK_INTERVAL))
