# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module defines an abstract SigningMechanism, as well as the symmetric key
implementation used for local development outside of an IoT Edge runtime
"""

import abc
import base64
import binascii
import hashlib
import hmac
from typing import Union


class SigningMechanism(abc.ABC):
    @abc.abstractmethod
    def sign(self, data_str: Union[str, bytes]) -> str:
        pass


class SymmetricKeySigningMechanism(SigningMechanism):
    def __init__(self, key: Union[str, bytes]) -> None:
        """
        A mechanism that signs data using a symmetric key

        :param key: Symmetric Key (base64 encoded)
        :type key: str or bytes

        :raises: ValueError if the key is not valid base64
        """
        # Convert key to bytes
        try:
            key = key.encode("utf-8")
        except AttributeError:
            # If byte string, no need to encode
            pass

        try:
            self._signing_key = base64.b64decode(key, validate=True)
        except (binascii.Error, TypeError):
            raise ValueError("Invalid Symmetric Key")

    def sign(self, data_str: Union[str, bytes]) -> str:
        """
        Sign a data string with symmetric key and the HMAC-SHA256 algorithm.

        :param data_str: Data string to be signed
        :type data_str: str or bytes

        :returns: The signed data
        :rtype: str
        """
        try:
            data_str = data_str.encode("utf-8")
        except AttributeError:
            pass

        try:
            hmac_digest = hmac.HMAC(
                key=self._signing_key, msg=data_str, digestmod=hashlib.sha256
            ).digest()
            signed_data = base64.b64encode(hmac_digest)
        except TypeError:
            raise ValueError("Unable to sign string using the provided symmetric key")
        return signed_data.decode("utf-8")
