# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Define the sink's user-facing exceptions to be shared across package"""
from .transport_exceptions import (  # noqa: F401 (Importing directly to re-export)
    TransportError,
    ConnectionFailedError,
    ConnectionDroppedError,
    NoConnectionError,
    UnauthorizedError,
    ProtocolClientError,
    ProtocolProxyError,
    TlsExchangeAuthError,
)


class SinkError(Exception):
    """Represents a failure in the sink module"""

    pass


# IoT Edge Exceptions
class IoTEdgeError(SinkError):
    """Represents a failure reported by IoT Edge (e.g. the workload API)"""

    pass


class IoTEdgeEnvironmentError(SinkError):
    """Represents a failure retrieving data from the IoT Edge environment"""

    pass


# Disposition Exceptions
class DispositionError(SinkError):
    """The transport did not accept a disposition for a message"""

    pass


class HandleReleasedError(SinkError):
    """The message handle of a pending entry has already been taken"""

    pass


class QueueClosedError(SinkError):
    """The pending queue no longer accepts messages"""

    pass
