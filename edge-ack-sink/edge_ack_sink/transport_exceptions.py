# --------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module defines errors that may be raised from a transport"""


class TransportError(Exception):
    """Base class for transport errors"""

    pass


class ConnectionFailedError(TransportError):
    """
    Connection failed to be established
    """

    pass


class ConnectionDroppedError(TransportError):
    """
    Previously established connection was dropped
    """

    pass


class NoConnectionError(TransportError):
    """
    Operation could not be performed because there is no connection
    """

    pass


class UnauthorizedError(TransportError):
    """
    Authorization was rejected
    """

    pass


class ProtocolClientError(TransportError):
    """
    Error returned from protocol client library
    """

    pass


class ProtocolProxyError(TransportError):
    """
    All proxy-related errors.
    """

    pass


class TlsExchangeAuthError(TransportError):
    """
    Error returned when transport layer exchanges
    result in a SSLCertVerification error.
    """

    pass
