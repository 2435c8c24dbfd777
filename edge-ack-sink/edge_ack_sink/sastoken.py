# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains tools for working with Shared Access Signature (SAS) Tokens"""

import time
import urllib.parse


class SasTokenError(Exception):
    """Error in SasToken"""

    pass


class RenewableSasToken(object):
    """Renewable Shared Access Signature Token used to authenticate the module connection.

    This token is 'renewable', which means that it can be updated when necessary to
    prevent expiry, by using the .refresh() method.

    Data Attributes:
    expiry_time (int): Time that token will expire (in UTC, since epoch)
    ttl (int): Time to live for the token, in seconds
    """

    _token_format = "SharedAccessSignature sr={resource}&sig={signature}&se={expiry}"

    def __init__(self, uri, signing_mechanism, ttl=3600):
        """
        :param str uri: URI of the resource to be accessed
        :param signing_mechanism: The signing mechanism to use in the SasToken
        :type signing_mechanism: Child classes of :class:`SigningMechanism`
        :param int ttl: Time to live for the token, in seconds (default 3600)

        :raises: SasTokenError if an error occurs building a SasToken
        """
        self._uri = uri
        self._signing_mechanism = signing_mechanism
        self._expiry_time = None  # Set by the .refresh() call below
        self._token = None  # Set by the .refresh() call below

        self.ttl = ttl
        self.refresh()

    def __str__(self):
        return self._token

    def refresh(self):
        """
        Refresh the SasToken lifespan, giving it a new expiry time, and generating a new token.
        """
        self._expiry_time = int(time.time() + self.ttl)
        self._token = self._build_token()

    def _build_token(self):
        """Build SasToken representation

        :returns: String representation of the token
        """
        url_encoded_uri = urllib.parse.quote(self._uri, safe="")
        message = url_encoded_uri + "\n" + str(self.expiry_time)
        try:
            signature = self._signing_mechanism.sign(message)
        except Exception as e:
            # Signing may go over the network (IoT Edge HSM), so any error is possible
            raise SasTokenError("Unable to build SasToken from given values") from e
        url_encoded_signature = urllib.parse.quote(signature, safe="")
        return self._token_format.format(
            resource=url_encoded_uri,
            signature=url_encoded_signature,
            expiry=str(self.expiry_time),
        )

    @property
    def expiry_time(self):
        """Expiry Time is READ ONLY"""
        return self._expiry_time
