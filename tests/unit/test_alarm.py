# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
import pytest
import logging
import time
from edge_ack_sink import alarm as alarm_module
from edge_ack_sink.alarm import Alarm

logging.basicConfig(level=logging.DEBUG)


@pytest.mark.describe("Alarm")
class TestAlarm(object):
    @pytest.fixture
    def desired_function(self, mocker):
        return mocker.MagicMock()

    @pytest.mark.it("Invokes the given function once the alarm time is reached")
    def test_fn_called(self, mocker, desired_function):
        a = Alarm(alarm_time=time.time() + 0.5, function=desired_function)
        a.start()

        assert desired_function.call_count == 0
        a.join(2)
        assert not a.is_alive()
        assert desired_function.call_count == 1
        assert desired_function.call_args == mocker.call()

    @pytest.mark.it("Does not invoke the function before the alarm time")
    def test_not_early(self, desired_function):
        a = Alarm(alarm_time=time.time() + 1, function=desired_function)
        a.start()
        time.sleep(0.5)
        assert desired_function.call_count == 0
        a.cancel()

    @pytest.mark.it("Invokes the function immediately if the given alarm time is in the past")
    def test_alarm_already_expired(self, desired_function):
        a = Alarm(alarm_time=time.time() - 1, function=desired_function)
        a.start()
        a.join(1)
        assert desired_function.call_count == 1

    @pytest.mark.it("Reads the wall clock again while waiting for a distant alarm time")
    def test_clock_jump(self, mocker, desired_function):
        mocker.patch.object(alarm_module, "ALARM_CHECK_INTERVAL", 0.05)
        now = time.time()
        mock_time = mocker.patch.object(alarm_module, "time").time
        mock_time.return_value = now
        a = Alarm(alarm_time=now + 3600, function=desired_function)
        a.start()
        time.sleep(0.1)
        assert desired_function.call_count == 0

        mock_time.return_value = now + 3600
        a.join(2)
        assert desired_function.call_count == 1

    @pytest.mark.it("Does not invoke the function if the alarm was cancelled before the alarm time")
    def test_cancel_alarm(self, desired_function):
        a = Alarm(alarm_time=time.time() + 1, function=desired_function)
        a.start()
        a.cancel()
        a.join(2)
        assert not a.is_alive()
        assert desired_function.call_count == 0

    @pytest.mark.it("Runs as a daemon thread")
    def test_daemon(self, desired_function):
        a = Alarm(alarm_time=time.time() + 1, function=desired_function)
        assert a.daemon
