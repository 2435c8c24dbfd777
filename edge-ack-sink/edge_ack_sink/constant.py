# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module defines constants for use across the edge-ack-sink package
"""

VERSION = "1.0.0"
IOTHUB_IDENTIFIER = "edge-ack-sink-py"
IOTHUB_API_VERSION = "2020-09-30"

# Input channel
DEFAULT_INPUT_NAME = "input"

# Scheduler
DEFAULT_TICK_INTERVAL = 0.1
DEFAULT_ACK_TIMEOUT = 5.0

# Delay policy. The high delay applies while the received count is inside the
# half-open band [start, end)
DEFAULT_LOW_DELAY = 1.0
DEFAULT_HIGH_DELAY = 35.0
DEFAULT_HIGH_DELAY_BAND_START = 500
DEFAULT_HIGH_DELAY_BAND_END = 600

# Receiver
DEFAULT_PAYLOAD_PREVIEW_LENGTH = 64

# Connection
DEFAULT_KEEP_ALIVE = 60
DEFAULT_SASTOKEN_TTL = 3600
# Seconds before SAS token expiry at which the token is renewed
SASTOKEN_RENEWAL_MARGIN = 120
