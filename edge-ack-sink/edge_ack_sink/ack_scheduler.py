# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the scheduler that acknowledges pending messages once they have
been pending for long enough"""

import concurrent.futures
import functools
import logging
import threading
import time
from typing import NamedTuple, Optional, Set
from . import constant
from . import handle_exceptions
from .custom_typing import Clock
from .delay_policy import DelayPolicy
from .exceptions import DispositionError, SinkError, TransportError
from .models import Disposition
from .pending_queue import PendingMessage, PendingQueue
from .ticker import Ticker

logger = logging.getLogger(__name__)

# Upper bound on dispositions in flight at the same time
MAX_DISPOSITION_WORKERS = 4


class SchedulerStats(NamedTuple):
    received: int
    acknowledged: int
    discarded: int
    pending: int
    in_flight: int


class AckScheduler:
    """Polls the pending queue on a fixed tick and acknowledges every message whose age has
    reached the delay threshold.

    Each message gets exactly one disposition attempt. If the transport fails to accept it,
    the message handle is released and the message is dropped from the queue.

    A disposition that outlives the ack timeout is no longer waited for. If it had not
    started yet it is cancelled and the message released. Otherwise its outcome is recorded
    whenever the transport completes it.
    """

    def __init__(
        self,
        pending_queue: PendingQueue,
        transport,
        delay_policy: DelayPolicy,
        tick_interval: float = constant.DEFAULT_TICK_INTERVAL,
        ack_timeout: float = constant.DEFAULT_ACK_TIMEOUT,
        drain_on_shutdown: bool = False,
        clock: Clock = time.time,
        ticker: Optional[Ticker] = None,
    ) -> None:
        """
        :param pending_queue: Queue of messages waiting for disposition
        :param transport: Transport used to send dispositions
        :type transport: :class:`AbstractTransport`
        :param delay_policy: Policy giving the delay threshold for the received count
        :param float tick_interval: Seconds between two scans
        :param float ack_timeout: Seconds to wait for a single disposition. Also bounds how
            long .stop() waits for late dispositions.
        :param bool drain_on_shutdown: Acknowledge pending messages on .stop() instead of
            abandoning them
        :param clock: Function returning the current time in seconds
        :param ticker: Tick source for the background loop. Defaults to a Ticker using
            tick_interval
        """
        self._pending_queue = pending_queue
        self._transport = transport
        self._delay_policy = delay_policy
        self._ack_timeout = ack_timeout
        self._drain_on_shutdown = drain_on_shutdown
        self._clock = clock
        self._ticker = ticker if ticker is not None else Ticker(tick_interval)

        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._stats_lock = threading.Lock()
        self._acknowledged = 0
        self._discarded = 0
        self._late_dispositions: Set[concurrent.futures.Future] = set()

    @property
    def running(self) -> bool:
        return self._thread is not None

    @property
    def stats(self) -> SchedulerStats:
        with self._stats_lock:
            return SchedulerStats(
                received=self._pending_queue.received_count,
                acknowledged=self._acknowledged,
                discarded=self._discarded,
                pending=len(self._pending_queue),
                in_flight=len(self._late_dispositions),
            )

    def start(self) -> None:
        """Start the background scheduling loop

        :raises: SinkError if the scheduler is already running
        """
        if self._thread is not None:
            raise SinkError("Ack scheduler is already running")
        self._pending_queue.reopen()
        self._ticker.reset()
        self._thread = threading.Thread(target=self._run, name="ack-scheduler")
        self._thread.daemon = True
        self._thread.start()
        logger.debug("Ack scheduler started")

    def stop(self) -> None:
        """Stop the background scheduling loop, close the pending queue, then drain or
        abandon every message it held.

        Once this returns, the pending queue is empty and refuses new messages until the
        scheduler is started again. Late dispositions are waited for at most the ack timeout.
        """
        if self._thread is not None:
            logger.debug("Stopping ack scheduler...")
            self._ticker.cancel()
            self._thread.join()
            self._thread = None

        remaining = self._pending_queue.close()
        if remaining:
            if self._drain_on_shutdown:
                logger.info("Draining {} pending messages".format(len(remaining)))
                now = self._clock()
                for entry in remaining:
                    self._dispose(entry, now, 0)
            else:
                logger.info("Abandoning {} pending messages".format(len(remaining)))
                for entry in remaining:
                    self._discard(entry.take_handle())

        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._wait_for_late_dispositions()
        logger.debug("Ack scheduler stopped")

    def tick(self, now: Optional[float] = None) -> int:
        """Run one scan of the pending queue.

        :param float now: Time of the scan. Defaults to the current time of the clock.
        :returns: The number of messages that were disposed during this scan
        """
        if now is None:
            now = self._clock()

        try:
            self._transport.do_work()
        except TransportError as e:
            logger.warning("Transport failed to do work: {!r}".format(e))

        eligible, threshold = self._pending_queue.take_eligible(now, self._delay_policy)
        for entry in eligible:
            self._dispose(entry, now, threshold)
        return len(eligible)

    def _run(self) -> None:
        while self._ticker.wait():
            try:
                self.tick()
            except Exception as e:
                handle_exceptions.handle_background_exception(e)

    def _dispose(self, entry: PendingMessage, now: float, threshold: float) -> None:
        """Send the ACCEPTED disposition for an entry already removed from the queue.
        If that fails, release the handle instead.
        """
        message = entry.take_handle()
        logger.info(
            "ACKing message [{}] with delay [{}] [{:.3f}]".format(
                entry.sequence_number, threshold, entry.age(now)
            )
        )
        future = self._submit_disposition(message)
        try:
            future.result(timeout=self._ack_timeout)
        except concurrent.futures.TimeoutError:
            if future.cancel():
                logger.warning(
                    "Disposition of message [{}] timed out before being sent, discarding it".format(
                        entry.sequence_number
                    )
                )
                self._discard(message)
            else:
                logger.warning(
                    "Disposition of message [{}] is taking longer than {} seconds".format(
                        entry.sequence_number, self._ack_timeout
                    )
                )
                with self._stats_lock:
                    self._late_dispositions.add(future)
                future.add_done_callback(
                    functools.partial(self._on_late_disposition_done, entry, message)
                )
        except (DispositionError, TransportError) as e:
            logger.warning(
                "Disposition of message [{}] failed, discarding it: {!r}".format(
                    entry.sequence_number, e
                )
            )
            self._discard(message)
        except Exception as e:
            handle_exceptions.handle_background_exception(e)
            self._discard(message)
        else:
            logger.debug("ACKed message [{}]. Erased pending entry.".format(entry.sequence_number))
            with self._stats_lock:
                self._acknowledged += 1

    def _submit_disposition(self, message) -> concurrent.futures.Future:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=MAX_DISPOSITION_WORKERS, thread_name_prefix="disposition"
            )
        return self._executor.submit(
            self._transport.send_message_disposition, message, Disposition.ACCEPTED
        )

    def _on_late_disposition_done(
        self, entry: PendingMessage, message, future: concurrent.futures.Future
    ) -> None:
        error = future.exception()
        if error is None:
            logger.info("Late disposition of message [{}] completed".format(entry.sequence_number))
            with self._stats_lock:
                self._late_dispositions.discard(future)
                self._acknowledged += 1
            return

        if isinstance(error, (DispositionError, TransportError)):
            logger.warning(
                "Late disposition of message [{}] failed, discarding it: {!r}".format(
                    entry.sequence_number, error
                )
            )
        else:
            handle_exceptions.handle_background_exception(error)
        with self._stats_lock:
            self._late_dispositions.discard(future)
        self._discard(message)

    def _wait_for_late_dispositions(self) -> None:
        with self._stats_lock:
            late = set(self._late_dispositions)
        if not late:
            return
        logger.info("Waiting for {} late dispositions".format(len(late)))
        _, not_done = concurrent.futures.wait(late, timeout=self._ack_timeout)
        if not_done:
            logger.warning(
                "{} dispositions still in flight after stopping the ack scheduler".format(
                    len(not_done)
                )
            )

    def _discard(self, message) -> None:
        try:
            self._transport.release_message(message)
        except Exception as e:
            handle_exceptions.swallow_unraised_exception(
                e, log_msg="Unable to release message {!r}".format(message), log_lvl="error"
            )
        with self._stats_lock:
            self._discarded += 1
