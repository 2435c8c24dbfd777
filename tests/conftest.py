# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest

"""
NOTE: ALL tests that need some kind of non-specific, arbitrary exception should use one of the
following fixtures. Raising Exception or BaseException directly can hide other errors that are
caught by the same broad "except Exception" block.

These fixtures use a subclass of Exception or BaseException that is not defined anywhere else,
guaranteeing that it will be unexpected and unhandled except by broad all-encompassing handling.
Tests checking that the exception is raised will not spuriously pass due to different exceptions
being raised.
"""


@pytest.fixture
def unexpected_exception():
    class UnexpectedException(Exception):
        pass

    e = UnexpectedException()
    return e


@pytest.fixture
def unexpected_base_exception():
    class UnexpectedBaseException(BaseException):
        pass

    return UnexpectedBaseException()


class FakeClock(object):
    """Manually advanced clock"""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()
