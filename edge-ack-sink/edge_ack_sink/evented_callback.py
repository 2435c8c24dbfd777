# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
import threading
import logging

logger = logging.getLogger(__name__)


class EventedCallback(object):
    """
    A sync callback whose completion can be waited upon.

    The callback completes with an error if it is invoked with an 'error' keyword argument.
    """

    def __init__(self):
        self.completion_event = threading.Event()
        self.exception = None

    def __call__(self, error=None):
        """
        Calls the callback.
        """
        if error:
            self.exception = error
            logger.debug("Callback completed with error {!r}".format(error))
        else:
            logger.debug("Callback completed")
        self.completion_event.set()

    def wait_for_completion(self, timeout=None):
        """
        Wait for the callback to be called, and raise the error it completed with, if any.

        :raises: TimeoutError if the callback was not called within the timeout
        """
        if not self.completion_event.wait(timeout):
            raise TimeoutError("Callback was not called within {} seconds".format(timeout))
        if self.exception:
            raise self.exception
