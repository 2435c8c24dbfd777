# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
import threading


class Ticker:
    """Cancellable fixed-interval tick source.

    A loop built on .wait() ends promptly once .cancel() is called, instead of finishing
    a full sleep first.
    """

    def __init__(self, interval: float) -> None:
        self.interval = interval
        self._cancelled = threading.Event()

    def wait(self) -> bool:
        """Block for one interval.

        :returns: True if the interval elapsed, False if the ticker was cancelled
        """
        return not self._cancelled.wait(self.interval)

    def cancel(self) -> None:
        self._cancelled.set()

    def reset(self) -> None:
        """Make a cancelled ticker usable again"""
        self._cancelled.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()
