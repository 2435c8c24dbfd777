# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains tools for working with IoT Edge module Connection Strings"""
from typing import Dict, Optional

__all__ = ["ConnectionString"]

CS_DELIMITER = ";"
CS_VAL_SEPARATOR = "="

HOST_NAME = "HostName"
SHARED_ACCESS_KEY_NAME = "SharedAccessKeyName"
SHARED_ACCESS_KEY = "SharedAccessKey"
DEVICE_ID = "DeviceId"
MODULE_ID = "ModuleId"
GATEWAY_HOST_NAME = "GatewayHostName"

_valid_keys = [
    HOST_NAME,
    SHARED_ACCESS_KEY_NAME,
    SHARED_ACCESS_KEY,
    DEVICE_ID,
    MODULE_ID,
    GATEWAY_HOST_NAME,
]

_required_keys = [HOST_NAME, DEVICE_ID, MODULE_ID, GATEWAY_HOST_NAME, SHARED_ACCESS_KEY]


class ConnectionString:
    """Key/value mappings for the connection details of an IoT Edge module.
    Uses the same syntax as dictionary
    """

    def __init__(self, connection_string: str) -> None:
        """Initializer for ConnectionString

        :param str connection_string: String with connection details provided by IoT Edge
            (e.g. the EdgeHubConnectionString variable set by the local dev tooling)
        :raises: ValueError if provided connection_string is invalid
        :raises: TypeError if provided connection_string is not a string
        """
        self._dict = _parse_connection_string(connection_string)
        self._strrep = connection_string

    def __contains__(self, item: str) -> bool:
        return item in self._dict

    def __getitem__(self, key: str) -> str:
        return self._dict[key]

    def __repr__(self) -> str:
        return self._strrep

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Return the value for key if key is in the dictionary, else default

        :param str key: The key to retrieve a value for
        :param str default: The default value returned if a key is not found
        :returns: The value for the given key
        """
        return self._dict.get(key, default)


def _parse_connection_string(connection_string: str) -> Dict[str, str]:
    """Return a dictionary of values contained in a given connection string"""
    try:
        cs_args = connection_string.split(CS_DELIMITER)
    except (AttributeError, TypeError):
        raise TypeError("Connection String must be of type str")
    try:
        d = dict(arg.split(CS_VAL_SEPARATOR, 1) for arg in cs_args)
    except ValueError:
        # Only 1 token after the split, so no key/value pair can be formed
        raise ValueError("Invalid Connection String - Unable to parse")
    if len(cs_args) != len(d):
        # duplicate args, bad syntax, etc.
        raise ValueError("Invalid Connection String - Unable to parse")
    if not all(key in _valid_keys for key in d.keys()):
        raise ValueError("Invalid Connection String - Invalid Key")
    _validate_keys(d)
    return d


def _validate_keys(d: Dict[str, str]) -> None:
    """Raise ValueError if a key required to connect as an Edge module is missing"""
    missing = [key for key in _required_keys if not d.get(key)]
    if missing:
        raise ValueError(
            "Invalid Connection String - Missing connection details: {}".format(
                ", ".join(missing)
            )
        )
