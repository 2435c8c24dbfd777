# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the threadsafe queue of received messages that are waiting
to be acknowledged."""

import collections
import threading
from typing import Any, Deque, List, Tuple
from .delay_policy import DelayPolicy
from .exceptions import HandleReleasedError, QueueClosedError


class PendingMessage:
    """A received message waiting for its disposition.

    The pending entry owns the message handle until it is taken with .take_handle().
    A handle can only be taken once.
    """

    __slots__ = ("_handle", "arrival_time", "sequence_number")

    def __init__(self, handle: Any, arrival_time: float, sequence_number: int) -> None:
        self._handle = handle
        self.arrival_time = arrival_time
        self.sequence_number = sequence_number

    def __repr__(self) -> str:
        return "PendingMessage(sequence_number={}, arrival_time={})".format(
            self.sequence_number, self.arrival_time
        )

    def age(self, now: float) -> float:
        return now - self.arrival_time

    def take_handle(self) -> Any:
        """Transfer ownership of the message handle to the caller.

        :raises: HandleReleasedError if the handle was already taken
        """
        handle = self._handle
        if handle is None:
            raise HandleReleasedError(
                "Handle of pending message {} was already taken".format(self.sequence_number)
            )
        self._handle = None
        return handle

    @property
    def handle_taken(self) -> bool:
        return self._handle is None


class PendingQueue:
    """FIFO of PendingMessages, along with the count of messages received since creation.

    All methods are threadsafe. Producers only append, the consumer only removes. The received
    count is updated under the same lock as the queue, so a consumer always sees a count that
    matches the queue content.

    Once closed, the queue refuses new messages until it is reopened.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Deque[PendingMessage] = collections.deque()
        self._received_count = 0
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def received_count(self) -> int:
        with self._lock:
            return self._received_count

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def append(self, handle: Any, arrival_time: float) -> PendingMessage:
        """Add a newly received message to the tail of the queue.

        :returns: The created PendingMessage. Its sequence number is the received count
            before this message.
        :raises: QueueClosedError if the queue is closed. The message is not counted.
        """
        if handle is None:
            raise ValueError("Cannot queue a message without a handle")
        with self._lock:
            if self._closed:
                raise QueueClosedError("Pending queue is closed")
            entry = PendingMessage(handle, arrival_time, self._received_count)
            self._entries.append(entry)
            self._received_count += 1
        return entry

    def take_eligible(
        self, now: float, delay_policy: DelayPolicy
    ) -> Tuple[List[PendingMessage], float]:
        """Remove and return, oldest first, every entry that has been pending for at least
        the delay the policy gives for the current received count.

        The whole scan happens under the lock, so entries appended concurrently are either
        fully considered in this pass or left for the next one.

        :returns: Tuple of (eligible entries, delay threshold used)
        """
        with self._lock:
            threshold = delay_policy(self._received_count)
            eligible: List[PendingMessage] = []
            remaining: Deque[PendingMessage] = collections.deque()
            for entry in self._entries:
                if entry.age(now) >= threshold:
                    eligible.append(entry)
                else:
                    remaining.append(entry)
            self._entries = remaining
        return eligible, threshold

    def snapshot(self) -> List[PendingMessage]:
        """Return a copy of the current entries, oldest first"""
        with self._lock:
            return list(self._entries)

    def close(self) -> List[PendingMessage]:
        """Stop accepting messages, then remove and return all entries, oldest first.

        Both happen under one lock, so every message is either returned here or refused
        by .append().
        """
        with self._lock:
            self._closed = True
            entries = list(self._entries)
            self._entries.clear()
        return entries

    def reopen(self) -> None:
        with self._lock:
            self._closed = False
