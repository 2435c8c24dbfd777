# --------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import logging
import urllib.parse
from typing import Dict

logger = logging.getLogger(__name__)

# NOTE: Whenever using standard URL encoding via the urllib.parse.quote() API
# make sure to specify that there are NO safe values (e.g. safe=""). By default
# "/" is skipped in encoding, and that is not desirable.
#
# DO NOT use urllib.parse.unquote_plus(), as it turns '+' characters into ' ',
# which is invalid.


def _get_topic_base(device_id: str, module_id: str) -> str:
    """
    return the string that is at the beginning of all topics for this module
    """
    return "devices/{}/modules/{}".format(
        urllib.parse.quote(device_id, safe=""), urllib.parse.quote(module_id, safe="")
    )


def get_input_topic_for_subscribe(device_id: str, module_id: str) -> str:
    """
    :return: The topic for input messages. It is of the format
    "devices/<deviceId>/modules/<moduleId>/inputs/#"
    """
    return _get_topic_base(device_id, module_id) + "/inputs/#"


def is_input_topic(topic: str, device_id: str, module_id: str) -> bool:
    """
    Topics for inputs are of the following format:
    devices/<deviceId>/modules/<moduleId>/inputs/<inputName>

    :param str topic: The topic string
    """
    if not device_id or not module_id:
        return False
    return topic.startswith(_get_topic_base(device_id, module_id) + "/inputs/")


def extract_input_name_from_topic(topic: str) -> str:
    """
    Extract the input name from the topic.
    Topics for inputs are of the following format:
    devices/<deviceId>/modules/<moduleId>/inputs/<inputName>/<properties>

    :param str topic: The topic string
    :raises: ValueError if topic has incorrect format
    """
    parts = topic.split("/")
    if len(parts) > 5 and parts[4] == "inputs" and parts[5]:
        return urllib.parse.unquote(parts[5])
    else:
        raise ValueError("topic has incorrect format")


def extract_properties_from_input_topic(topic: str) -> Dict[str, str]:
    """
    Extract key=value pairs from an input message topic, returning them as a dictionary.
    If a key has no matching value, the value will be set to empty string.

    :param str topic: The topic string
    :raises: ValueError if topic has incorrect format
    :returns: dictionary mapping keys to values.
    """
    parts = topic.split("/")
    if len(parts) > 4 and parts[4] == "inputs":
        if len(parts) > 6:
            properties_string = parts[6]
        else:
            properties_string = ""
    else:
        raise ValueError("topic has incorrect format")

    return _extract_properties(properties_string)


def _extract_properties(properties_str: str) -> Dict[str, str]:
    """Return a dictionary of properties from a string in the format
    {key1}={value1}&{key2}={value2}...&{keyn}={valuen}

    If there is a just a key with no "=", the value is an empty string
    """
    d: Dict[str, str] = {}
    if len(properties_str) == 0:
        return d

    kv_pairs = properties_str.split("&")
    for entry in kv_pairs:
        pair = entry.split("=", 1)
        key = urllib.parse.unquote(pair[0])
        if len(pair) > 1:
            value = urllib.parse.unquote(pair[1])
        else:
            value = ""
        d[key] = value

    return d
