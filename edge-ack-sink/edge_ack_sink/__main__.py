# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Entry point of the sink module container"""

import logging
import os
import signal
import sys
from typing import Optional
from .custom_typing import Environ
from .exceptions import SinkError, TransportError
from .sastoken import SasTokenError
from .sink_module import SinkModule

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-5s (%(threadName)s) %(name)s: %(message)s"


def configure_logging(level_name: str = "INFO") -> None:
    """Log to stdout. Stream handlers flush after each record."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(stream=sys.stdout, level=level, format=LOG_FORMAT)


def main(environ: Optional[Environ] = None) -> int:
    """Run the sink module until SIGINT or SIGTERM is received.

    :returns: 0 after a graceful shutdown, 1 if the module could not be started
    """
    if environ is None:
        environ = os.environ
    configure_logging(environ.get("SINK_LOG_LEVEL", "INFO"))
    logger.info("Starting...")

    try:
        sink = SinkModule.create_from_edge_environment(environ)
    except (SinkError, ValueError) as e:
        logger.error("Unable to configure sink module: {}".format(e), exc_info=True)
        return 1

    def handle_signal(signum, frame):
        logger.info("Received signal {}. Shutting down...".format(signum))
        sink.request_stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        sink.run_until_signalled()
    except (SinkError, TransportError, SasTokenError) as e:
        logger.error("Unable to start sink module: {}".format(e), exc_info=True)
        return 1
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
