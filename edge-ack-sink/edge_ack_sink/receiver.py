# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the handler that queues messages arriving on the module input"""

import logging
import time
from . import constant
from .custom_typing import Clock
from .exceptions import QueueClosedError
from .models import Disposition, Message
from .pending_queue import PendingQueue

logger = logging.getLogger(__name__)


class Receiver:
    """Receive handler registered with the transport.

    Every message is queued for a later acknowledgement. The handler never blocks on
    anything other than the pending queue lock.
    """

    def __init__(
        self,
        pending_queue: PendingQueue,
        payload_preview_length: int = constant.DEFAULT_PAYLOAD_PREVIEW_LENGTH,
        clock: Clock = time.time,
    ) -> None:
        """
        :param pending_queue: Queue that received messages are added to
        :param int payload_preview_length: Maximum number of payload bytes written to the log
        :param clock: Function returning the current time in seconds
        """
        self._pending_queue = pending_queue
        self._payload_preview_length = payload_preview_length
        self._clock = clock

    def __call__(self, message: Message) -> Disposition:
        return self.on_message_received(message)

    def on_message_received(self, message: Message) -> Disposition:
        """Queue a received message.

        :returns: Disposition.ASYNC_ACK. The terminal disposition is sent by the scheduler.
            Disposition.ABANDONED if the sink is stopping and no longer queues messages.
        """
        arrival_time = self._clock()

        # Queueing never depends on the payload being readable
        try:
            preview = self._payload_preview(message)
        except (ValueError, TypeError, LookupError) as e:
            preview = None
            logger.warning("Unable to extract payload from {!r}: {}".format(message, e))

        try:
            entry = self._pending_queue.append(message, arrival_time)
        except QueueClosedError:
            logger.info("Sink is stopping. Abandoning {!r}".format(message))
            return Disposition.ABANDONED

        if preview is not None:
            logger.info(
                "Received Message [{}] Data: [{}]".format(entry.sequence_number, preview)
            )
        else:
            logger.info("Received Message [{}]".format(entry.sequence_number))

        return Disposition.ASYNC_ACK

    def _payload_preview(self, message: Message) -> str:
        """Return at most the configured number of payload bytes as loggable text.

        :raises: ValueError if the message has no payload or an empty one
        :raises: TypeError if the payload is of an unsupported type
        :raises: LookupError if the content encoding of the message is unknown
        """
        payload = message.get_payload_bytes()
        if not payload:
            raise ValueError("Message payload is empty")
        head = payload[: self._payload_preview_length]
        text = head.decode(message.content_encoding or "utf-8", errors="replace")
        if len(payload) > len(head):
            text = "{}... ({} bytes)".format(text, len(payload))
        return text
