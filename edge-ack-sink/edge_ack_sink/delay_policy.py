# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the policies deciding how long a received message stays
unacknowledged"""

import abc
from . import constant


class DelayPolicy(abc.ABC):
    """Maps the number of messages received so far to the minimum number of seconds a
    message must be pending before it is acknowledged.
    """

    @abc.abstractmethod
    def get_delay(self, received_count: int) -> float:
        pass

    def __call__(self, received_count: int) -> float:
        return self.get_delay(received_count)


class StepDelayPolicy(DelayPolicy):
    """Use a high delay while the received count is within a band, and a low delay otherwise.

    The band is half-open: [band_start, band_end). This simulates a slow consumer for a
    window of traffic, after which the consumer recovers.
    """

    def __init__(
        self,
        low_delay: float = constant.DEFAULT_LOW_DELAY,
        high_delay: float = constant.DEFAULT_HIGH_DELAY,
        band_start: int = constant.DEFAULT_HIGH_DELAY_BAND_START,
        band_end: int = constant.DEFAULT_HIGH_DELAY_BAND_END,
    ) -> None:
        if low_delay < 0 or high_delay < 0:
            raise ValueError("Delays cannot be negative")
        if band_end < band_start:
            raise ValueError("Band end cannot be lower than band start")
        self.low_delay = low_delay
        self.high_delay = high_delay
        self.band_start = band_start
        self.band_end = band_end

    def __repr__(self) -> str:
        return "StepDelayPolicy(low_delay={}, high_delay={}, band=[{}, {}))".format(
            self.low_delay, self.high_delay, self.band_start, self.band_end
        )

    @classmethod
    def from_config(cls, sink_config) -> "StepDelayPolicy":
        """Create a StepDelayPolicy from the delay settings of a SinkConfig"""
        return cls(
            low_delay=sink_config.low_delay,
            high_delay=sink_config.high_delay,
            band_start=sink_config.high_delay_band_start,
            band_end=sink_config.high_delay_band_end,
        )

    def get_delay(self, received_count: int) -> float:
        if self.band_start <= received_count < self.band_end:
            return self.high_delay
        return self.low_delay
