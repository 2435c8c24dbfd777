# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest
import logging
import threading
import time
from edge_ack_sink import handle_exceptions
from edge_ack_sink.ack_scheduler import AckScheduler, MAX_DISPOSITION_WORKERS
from edge_ack_sink.delay_policy import StepDelayPolicy
from edge_ack_sink.exceptions import (
    DispositionError,
    ConnectionDroppedError,
    NoConnectionError,
    QueueClosedError,
    SinkError,
)
from edge_ack_sink.models import Disposition, Message
from edge_ack_sink.pending_queue import PendingQueue
from edge_ack_sink.ticker import Ticker
from edge_ack_sink.transport import AbstractTransport

logging.basicConfig(level=logging.DEBUG)


@pytest.fixture
def transport(mocker):
    return mocker.MagicMock(spec=AbstractTransport)


@pytest.fixture
def pending_queue():
    return PendingQueue()


@pytest.fixture
def policy():
    return StepDelayPolicy(low_delay=1, high_delay=35, band_start=500, band_end=600)


@pytest.fixture
def scheduler(pending_queue, transport, policy, fake_clock):
    s = AckScheduler(pending_queue, transport, policy, ack_timeout=1, clock=fake_clock)
    yield s
    s.stop()


def receive(pending_queue, arrival_time, count=1):
    messages = [Message(b"data", mid=i) for i in range(count)]
    for m in messages:
        pending_queue.append(m, arrival_time)
    return messages


def wait_for(condition, timeout=5):
    deadline = time.time() + timeout
    while not condition() and time.time() < deadline:
        time.sleep(0.01)
    assert condition()


@pytest.mark.describe("AckScheduler - .tick()")
class TestAckSchedulerTick(object):
    @pytest.mark.it("Sends an ACCEPTED disposition for each message that is old enough")
    def test_accepts(self, scheduler, pending_queue, transport):
        messages = receive(pending_queue, 100.0, count=2)
        assert scheduler.tick(now=101.0) == 2
        assert transport.send_message_disposition.call_count == 2
        for message, call in zip(messages, transport.send_message_disposition.call_args_list):
            assert call.args == (message, Disposition.ACCEPTED)

    @pytest.mark.it("Removes acknowledged messages from the pending queue")
    def test_removes(self, scheduler, pending_queue):
        receive(pending_queue, 100.0)
        scheduler.tick(now=101.0)
        assert len(pending_queue) == 0

    @pytest.mark.it("Leaves messages that are not old enough in the pending queue")
    def test_not_old_enough(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0)
        assert scheduler.tick(now=100.9) == 0
        assert transport.send_message_disposition.call_count == 0
        assert len(pending_queue) == 1

    @pytest.mark.it("Uses the current clock time if no time is given")
    def test_uses_clock(self, scheduler, pending_queue, transport, fake_clock):
        receive(pending_queue, fake_clock.now)
        scheduler.tick()
        assert transport.send_message_disposition.call_count == 0
        fake_clock.advance(1)
        scheduler.tick()
        assert transport.send_message_disposition.call_count == 1

    @pytest.mark.it("Acknowledges each message exactly once over many ticks")
    def test_exactly_once(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0, count=3)
        for i in range(20):
            scheduler.tick(now=100.0 + i * 0.5)
        assert transport.send_message_disposition.call_count == 3

    @pytest.mark.it("Does not acknowledge a message before 35 seconds while the count is 550")
    def test_high_delay_band(self, scheduler, pending_queue, transport):
        for _ in range(549):
            pending_queue.append(Message(b"filler"), 0.0)
        pending_queue.close()
        pending_queue.reopen()
        receive(pending_queue, 100.0)
        assert pending_queue.received_count == 550

        scheduler.tick(now=101.0)
        scheduler.tick(now=134.9)
        assert transport.send_message_disposition.call_count == 0
        scheduler.tick(now=135.0)
        assert transport.send_message_disposition.call_count == 1

    @pytest.mark.it("Acknowledges a message after 1 second while the count is 10")
    def test_low_delay(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0, count=10)
        scheduler.tick(now=100.5)
        assert transport.send_message_disposition.call_count == 0
        scheduler.tick(now=101.0)
        assert transport.send_message_disposition.call_count == 10

    @pytest.mark.it("Pumps the transport on every tick")
    def test_do_work(self, scheduler, transport):
        scheduler.tick(now=1.0)
        scheduler.tick(now=2.0)
        assert transport.do_work.call_count == 2

    @pytest.mark.it("Still scans the pending queue if pumping the transport fails")
    def test_do_work_fails(self, scheduler, pending_queue, transport):
        transport.do_work.side_effect = ConnectionDroppedError()
        receive(pending_queue, 100.0)
        assert scheduler.tick(now=101.0) == 1

    @pytest.mark.it("Does not release messages that were acknowledged")
    def test_no_release_on_success(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0)
        scheduler.tick(now=101.0)
        assert transport.release_message.call_count == 0


@pytest.mark.describe("AckScheduler - Disposition failures")
class TestAckSchedulerDispositionFailure(object):
    @pytest.mark.it(
        "Releases the message and removes it from the queue if the disposition fails"
    )
    @pytest.mark.parametrize(
        "error",
        [
            pytest.param(DispositionError(), id="DispositionError"),
            pytest.param(NoConnectionError(), id="TransportError"),
        ],
    )
    def test_failure(self, mocker, scheduler, pending_queue, transport, error):
        (message,) = receive(pending_queue, 100.0)
        transport.send_message_disposition.side_effect = error
        scheduler.tick(now=101.0)
        assert transport.release_message.call_count == 1
        assert transport.release_message.call_args == mocker.call(message)
        assert len(pending_queue) == 0

    @pytest.mark.it("Does not retry a failed disposition on later ticks")
    def test_no_retry(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0)
        transport.send_message_disposition.side_effect = DispositionError()
        scheduler.tick(now=101.0)
        scheduler.tick(now=102.0)
        assert transport.send_message_disposition.call_count == 1

    @pytest.mark.it(
        "Sends the handler of background exceptions any unexpected error, then releases the message"
    )
    def test_unexpected_error(
        self, mocker, scheduler, pending_queue, transport, unexpected_exception
    ):
        spy = mocker.patch.object(handle_exceptions, "handle_background_exception")
        receive(pending_queue, 100.0)
        transport.send_message_disposition.side_effect = unexpected_exception
        scheduler.tick(now=101.0)
        assert spy.call_count == 1
        assert spy.call_args == mocker.call(unexpected_exception)
        assert transport.release_message.call_count == 1
        assert len(pending_queue) == 0

    @pytest.mark.it("Processes the remaining messages after a failed disposition")
    def test_continues(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0, count=3)
        transport.send_message_disposition.side_effect = [None, DispositionError(), None]
        scheduler.tick(now=101.0)
        assert transport.send_message_disposition.call_count == 3
        assert scheduler.stats.acknowledged == 2
        assert scheduler.stats.discarded == 1

    @pytest.mark.it("Records a slow disposition as acknowledged once the transport completes it")
    def test_slow_success(self, pending_queue, transport, policy, fake_clock):
        transport.send_message_disposition.side_effect = lambda *args: time.sleep(0.3)
        scheduler = AckScheduler(
            pending_queue, transport, policy, ack_timeout=0.05, clock=fake_clock
        )
        receive(pending_queue, 100.0)
        try:
            scheduler.tick(now=101.0)
            assert len(pending_queue) == 0
            assert scheduler.stats.in_flight == 1
            wait_for(lambda: scheduler.stats.acknowledged == 1)
        finally:
            scheduler.stop()
        assert transport.release_message.call_count == 0
        stats = scheduler.stats
        assert stats.discarded == 0
        assert stats.in_flight == 0

    @pytest.mark.it("Releases the message if a slow disposition fails after the timeout")
    def test_slow_failure(self, mocker, pending_queue, transport, policy, fake_clock):
        def fail_slowly(*args):
            time.sleep(0.3)
            raise DispositionError()

        transport.send_message_disposition.side_effect = fail_slowly
        scheduler = AckScheduler(
            pending_queue, transport, policy, ack_timeout=0.05, clock=fake_clock
        )
        (message,) = receive(pending_queue, 100.0)
        try:
            scheduler.tick(now=101.0)
            assert transport.release_message.call_count == 0
            wait_for(lambda: scheduler.stats.discarded == 1)
        finally:
            scheduler.stop()
        assert transport.release_message.call_args_list == [mocker.call(message)]
        assert scheduler.stats.acknowledged == 0

    @pytest.mark.it(
        "Cancels and releases a disposition that has not started when the timeout expires"
    )
    def test_cancel_queued(self, mocker, pending_queue, transport, policy, fake_clock):
        unblock = threading.Event()
        transport.send_message_disposition.side_effect = lambda *args: unblock.wait(5)
        scheduler = AckScheduler(
            pending_queue, transport, policy, ack_timeout=0.05, clock=fake_clock
        )
        messages = receive(pending_queue, 100.0, count=MAX_DISPOSITION_WORKERS + 1)
        try:
            scheduler.tick(now=101.0)
            assert transport.release_message.call_args_list == [mocker.call(messages[-1])]
            assert scheduler.stats.discarded == 1
            assert scheduler.stats.in_flight == MAX_DISPOSITION_WORKERS
            unblock.set()
            wait_for(lambda: scheduler.stats.acknowledged == MAX_DISPOSITION_WORKERS)
        finally:
            unblock.set()
            scheduler.stop()
        sent = [c.args[0] for c in transport.send_message_disposition.call_args_list]
        assert messages[-1] not in sent
        assert transport.release_message.call_count == 1

    @pytest.mark.it("Logs and swallows errors raised while releasing a message")
    def test_release_fails(self, scheduler, pending_queue, transport, unexpected_exception):
        receive(pending_queue, 100.0)
        transport.send_message_disposition.side_effect = DispositionError()
        transport.release_message.side_effect = unexpected_exception
        scheduler.tick(now=101.0)
        assert len(pending_queue) == 0
        assert scheduler.stats.discarded == 1


@pytest.mark.describe("AckScheduler - End to end")
class TestAckSchedulerEndToEnd(object):
    @pytest.mark.it(
        "Acknowledges 3 messages received at the same time exactly once within 1.1 seconds"
    )
    def test_three_messages(self, scheduler, pending_queue, transport):
        receive(pending_queue, 0.0, count=3)
        acked_at = {}
        for i in range(1, 12):
            now = round(i * 0.1, 1)
            before = transport.send_message_disposition.call_count
            scheduler.tick(now=now)
            if transport.send_message_disposition.call_count != before:
                acked_at[now] = transport.send_message_disposition.call_count - before
        assert acked_at == {1.0: 3}
        assert transport.send_message_disposition.call_count == 3
        assert len(pending_queue) == 0

    @pytest.mark.it("Never loses or duplicates messages received while ticks are running")
    def test_concurrent_receive(self, pending_queue, transport, fake_clock):
        policy = StepDelayPolicy(low_delay=0, high_delay=0)
        scheduler = AckScheduler(pending_queue, transport, policy, clock=fake_clock)
        stop = threading.Event()

        def tick_forever():
            while not stop.is_set():
                scheduler.tick()

        def receive_many(producer_id):
            for i in range(200):
                pending_queue.append(Message(b"x", mid=producer_id * 1000 + i), 0.0)

        ticker_thread = threading.Thread(target=tick_forever)
        ticker_thread.start()
        producers = [threading.Thread(target=receive_many, args=(p,)) for p in range(4)]
        for t in producers:
            t.start()
        for t in producers:
            t.join()
        stop.set()
        ticker_thread.join()
        scheduler.tick()
        scheduler.stop()

        acked = [c.args[0].mid for c in transport.send_message_disposition.call_args_list]
        assert len(acked) == 800
        assert len(set(acked)) == 800
        assert len(pending_queue) == 0


@pytest.mark.describe("AckScheduler - .start()")
class TestAckSchedulerStart(object):
    @pytest.mark.it("Runs ticks in a background thread until stopped")
    def test_background_ticks(self, pending_queue, transport):
        policy = StepDelayPolicy(low_delay=0, high_delay=0)
        scheduler = AckScheduler(pending_queue, transport, policy, tick_interval=0.01)
        receive(pending_queue, time.time())
        scheduler.start()
        try:
            assert scheduler.running
            deadline = time.time() + 5
            while transport.send_message_disposition.call_count == 0 and time.time() < deadline:
                time.sleep(0.01)
            assert transport.send_message_disposition.call_count == 1
        finally:
            scheduler.stop()
        assert not scheduler.running

    @pytest.mark.it("Raises SinkError if already running")
    def test_already_running(self, scheduler):
        scheduler.start()
        with pytest.raises(SinkError):
            scheduler.start()

    @pytest.mark.it("Keeps ticking after an unexpected error in a tick")
    def test_survives_errors(self, mocker, pending_queue, transport, unexpected_exception):
        spy = mocker.patch.object(handle_exceptions, "handle_background_exception")
        policy = mocker.MagicMock(side_effect=[unexpected_exception] + [0] * 1000)
        scheduler = AckScheduler(pending_queue, transport, policy, tick_interval=0.01)
        receive(pending_queue, time.time())
        scheduler.start()
        try:
            deadline = time.time() + 5
            while transport.send_message_disposition.call_count == 0 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            scheduler.stop()
        assert spy.call_count == 1
        assert transport.send_message_disposition.call_count == 1

    @pytest.mark.it("Can be started again after being stopped")
    def test_restart(self, scheduler, pending_queue):
        scheduler.start()
        scheduler.stop()
        scheduler.start()
        assert scheduler.running
        assert not pending_queue.closed


@pytest.mark.describe("AckScheduler - .stop()")
class TestAckSchedulerStop(object):
    @pytest.mark.it("Cancels the ticker and waits for the background thread to end")
    def test_cancels_ticker(self, pending_queue, transport, policy):
        ticker = Ticker(10)
        scheduler = AckScheduler(pending_queue, transport, policy, ticker=ticker)
        scheduler.start()
        start = time.time()
        scheduler.stop()
        assert time.time() - start < 5
        assert ticker.cancelled
        assert not scheduler.running

    @pytest.mark.it("Releases all pending messages by default")
    def test_abandon(self, scheduler, pending_queue, transport):
        messages = receive(pending_queue, 100.0, count=2)
        scheduler.stop()
        assert transport.send_message_disposition.call_count == 0
        assert [c.args[0] for c in transport.release_message.call_args_list] == messages
        assert len(pending_queue) == 0
        assert scheduler.stats.discarded == 2

    @pytest.mark.it("Acknowledges all pending messages if configured to drain on shutdown")
    def test_drain(self, pending_queue, transport, policy, fake_clock):
        scheduler = AckScheduler(
            pending_queue, transport, policy, drain_on_shutdown=True, clock=fake_clock
        )
        receive(pending_queue, fake_clock.now, count=2)
        scheduler.stop()
        assert transport.send_message_disposition.call_count == 2
        assert transport.release_message.call_count == 0
        assert len(pending_queue) == 0
        assert scheduler.stats.acknowledged == 2

    @pytest.mark.it("Closes the pending queue so that later messages are refused")
    def test_closes_queue(self, scheduler, pending_queue):
        scheduler.start()
        scheduler.stop()
        assert pending_queue.closed
        with pytest.raises(QueueClosedError):
            pending_queue.append(Message(b"late"), 100.0)

    @pytest.mark.it("Waits at most the ack timeout for a disposition that never completes")
    def test_hung_disposition(self, pending_queue, transport, policy, fake_clock):
        unblock = threading.Event()
        transport.send_message_disposition.side_effect = lambda *args: unblock.wait(10)
        scheduler = AckScheduler(
            pending_queue, transport, policy, ack_timeout=0.1, clock=fake_clock
        )
        receive(pending_queue, 100.0)
        try:
            scheduler.tick(now=101.0)
            start = time.time()
            scheduler.stop()
            assert time.time() - start < 2
            assert scheduler.stats.in_flight == 1
            assert transport.release_message.call_count == 0
        finally:
            unblock.set()

    @pytest.mark.it("Does nothing if there is nothing to stop")
    def test_idle(self, scheduler, transport):
        scheduler.stop()
        assert transport.release_message.call_count == 0


@pytest.mark.describe("AckScheduler - .stats")
class TestAckSchedulerStats(object):
    @pytest.mark.it("Accounts for every received message")
    def test_conservation(self, scheduler, pending_queue, transport):
        receive(pending_queue, 100.0, count=2)
        receive(pending_queue, 105.0, count=2)
        transport.send_message_disposition.side_effect = [None, DispositionError()]
        scheduler.tick(now=101.0)

        stats = scheduler.stats
        assert stats.received == 4
        assert stats.acknowledged == 1
        assert stats.discarded == 1
        assert stats.pending == 2
        assert stats.received == stats.acknowledged + stats.discarded + stats.pending
