# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the sink module, which receives messages on a module input and
acknowledges them after a delay"""

import logging
import threading
import time
from typing import Optional
from . import handle_exceptions
from .ack_scheduler import AckScheduler
from .config import EdgeConnectionConfig, SinkConfig
from .custom_typing import Clock, Environ
from .delay_policy import StepDelayPolicy
from .exceptions import SinkError
from .pending_queue import PendingQueue
from .receiver import Receiver
from .transport import AbstractTransport, MQTTSinkTransport

logger = logging.getLogger(__name__)


class SinkModule:
    """An IoT Edge module that holds every received message for a while before
    acknowledging it.

    The sink owns one pending queue, shared by the receiver (which only appends to it) and
    the ack scheduler (which only removes from it).
    """

    def __init__(
        self,
        transport: AbstractTransport,
        sink_config: Optional[SinkConfig] = None,
        clock: Clock = time.time,
    ) -> None:
        """
        :param transport: Transport delivering the module input messages
        :param sink_config: Options of the sink. Defaults are used if not provided.
        :param clock: Function returning the current time in seconds
        """
        if sink_config is None:
            sink_config = SinkConfig()
        self._transport = transport
        self._config = sink_config
        self._pending_queue = PendingQueue()
        self._receiver = Receiver(
            self._pending_queue,
            payload_preview_length=sink_config.payload_preview_length,
            clock=clock,
        )
        self._scheduler = AckScheduler(
            self._pending_queue,
            transport,
            StepDelayPolicy.from_config(sink_config),
            tick_interval=sink_config.tick_interval,
            ack_timeout=sink_config.ack_timeout,
            drain_on_shutdown=sink_config.drain_on_shutdown,
            clock=clock,
        )
        self._started = False
        self._stop_event = threading.Event()

    @classmethod
    def create_from_edge_environment(cls, environ: Optional[Environ] = None) -> "SinkModule":
        """Create a SinkModule connecting to the IoT Edge hub described by the environment.

        :raises: IoTEdgeEnvironmentError if the IoT Edge environment is not configured correctly
        :raises: ValueError if a configuration variable holds an invalid value
        """
        sink_config = SinkConfig.from_environment(environ)
        connection_config = EdgeConnectionConfig.from_edge_environment(environ)
        transport = MQTTSinkTransport(connection_config, log_trace=sink_config.log_trace)
        return cls(transport, sink_config)

    @property
    def pending_queue(self) -> PendingQueue:
        return self._pending_queue

    @property
    def receiver(self) -> Receiver:
        return self._receiver

    @property
    def scheduler(self) -> AckScheduler:
        return self._scheduler

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Register the receiver, connect the transport and start acknowledging messages.

        :raises: SinkError if the sink is already started
        :raises: TransportError if the transport fails to connect
        """
        if self._started:
            raise SinkError("Sink module is already started")
        self._transport.set_input_message_handler(self._config.input_name, self._receiver)
        self._scheduler.start()
        try:
            self._transport.connect()
        except Exception:
            self._scheduler.stop()
            raise
        self._started = True
        logger.info("Waiting for incoming messages.")

    def stop(self) -> None:
        """Stop acknowledging messages and disconnect the transport.

        Depending on configuration, pending messages are acknowledged or abandoned before
        disconnecting. Messages arriving after that are abandoned.
        """
        if not self._started:
            return
        self._scheduler.stop()
        try:
            self._transport.disconnect()
        except Exception as e:
            handle_exceptions.swallow_unraised_exception(
                e, log_msg="Error disconnecting transport during stop"
            )
        self._started = False
        self._stop_event.clear()
        stats = self._scheduler.stats
        logger.info(
            "Sink stopped. Received: {}, acknowledged: {}, discarded: {}, in flight: {}".format(
                stats.received, stats.acknowledged, stats.discarded, stats.in_flight
            )
        )

    def request_stop(self) -> None:
        """Wake up .run_until_signalled(). Safe to call from a signal handler.

        A request made before or during .start() is kept until the sink has stopped.
        """
        self._stop_event.set()

    def run_until_signalled(self) -> None:
        """Start the sink, block until .request_stop() is called, then stop it."""
        self.start()
        try:
            # Waiting in a loop keeps the main thread responsive to signals
            while not self._stop_event.wait(timeout=1):
                pass
        finally:
            self.stop()

    def __enter__(self) -> "SinkModule":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()
