# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Edge Ack Sink

An IoT Edge module that receives messages on a module input and acknowledges each one
after a delay that depends on how many messages have been received.
"""

from .constant import VERSION
from .models import Message, Disposition
from .config import SinkConfig, EdgeConnectionConfig, ProxyOptions
from .delay_policy import DelayPolicy, StepDelayPolicy
from .pending_queue import PendingMessage, PendingQueue
from .receiver import Receiver
from .ack_scheduler import AckScheduler, SchedulerStats
from .transport import AbstractTransport, MQTTSinkTransport
from .sink_module import SinkModule
from . import exceptions

__version__ = VERSION

__all__ = [
    "Message",
    "Disposition",
    "SinkConfig",
    "EdgeConnectionConfig",
    "ProxyOptions",
    "DelayPolicy",
    "StepDelayPolicy",
    "PendingMessage",
    "PendingQueue",
    "Receiver",
    "AckScheduler",
    "SchedulerStats",
    "AbstractTransport",
    "MQTTSinkTransport",
    "SinkModule",
    "exceptions",
]
