# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
import logging

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"warning": logging.WARNING, "error": logging.ERROR}


def handle_background_exception(e):
    """Log an error raised on a thread with no caller to report it to: the ack scheduler
    loop, a late disposition, SAS token renewal or a Paho callback.

    :param Exception e: The error, with its traceback
    """
    logger.error("Unhandled error in background thread", exc_info=e)


def swallow_unraised_exception(e, log_msg=None, log_lvl="warning"):
    """Log an error that is handled by not raising it any further.

    :param Exception e: The error being swallowed
    :param str log_msg: Message logged along with the error
    :param str log_lvl: "warning" (default) or "error". Anything else logs at DEBUG.
    """
    logger.log(_LOG_LEVELS.get(log_lvl, logging.DEBUG), log_msg, exc_info=e)
