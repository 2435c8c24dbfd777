# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the data models exchanged between the transport and the sink"""
import enum
from typing import Optional, Dict, Union


class Disposition(enum.Enum):
    """Outcome reported back to the transport for a received message"""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ABANDONED = "abandoned"
    # Returned from a receive handler. The terminal disposition will be sent later.
    ASYNC_ACK = "async_ack"


class Message:
    """Represents a message received on a module input

    :ivar payload: The raw data that constitutes the payload
    :ivar input_name: Name of the input that the message was received on.
    :ivar message_id: Identifier of the message, if the sender set one
    :ivar content_encoding: Content encoding of the message data.
    :ivar content_type: Content type of the message data.
    :ivar custom_properties: Dictionary of custom message properties.
    :ivar correlation_id: Correlation identifier set by the sender
    :ivar user_id: An ID to specify the origin of messages
    :ivar expiry_time_utc: Date and time of message expiration in UTC format
    :ivar mid: Transport packet identifier used to acknowledge the message
    :ivar qos: Transport quality of service level the message was delivered with
    """

    def __init__(
        self,
        payload: Optional[Union[bytes, str]],
        input_name: Optional[str] = None,
        mid: Optional[int] = None,
        qos: int = 1,
    ) -> None:
        self.payload = payload
        self.input_name = input_name
        self.message_id: Optional[str] = None
        self.content_encoding: Optional[str] = None
        self.content_type: Optional[str] = None
        self.correlation_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.expiry_time_utc: Optional[str] = None
        self.custom_properties: Dict[str, str] = {}

        # Transport bookkeeping
        self.mid = mid
        self.qos = qos

    def __repr__(self) -> str:
        return "Message(input_name={}, message_id={}, mid={})".format(
            self.input_name, self.message_id, self.mid
        )

    def get_payload_bytes(self) -> bytes:
        """Return the payload as bytes

        :raises: ValueError if the message has no payload
        :raises: TypeError if the payload is not bytes or str
        """
        if self.payload is None:
            raise ValueError("Message has no payload")
        if isinstance(self.payload, bytes):
            return self.payload
        if isinstance(self.payload, str):
            return self.payload.encode(self.content_encoding or "utf-8")
        raise TypeError("Unsupported payload type: {}".format(type(self.payload).__name__))

    @classmethod
    def create_from_properties_dict(
        cls,
        payload: Optional[Union[bytes, str]],
        properties: Dict[str, str],
        mid: Optional[int] = None,
        qos: int = 1,
    ) -> "Message":
        message = cls(payload, mid=mid, qos=qos)

        for key in properties:
            if key == "$.mid":
                message.message_id = properties[key]
            elif key == "$.ce":
                message.content_encoding = properties[key]
            elif key == "$.ct":
                message.content_type = properties[key]
            elif key == "$.to":
                # Input name is taken from the topic, not the destination property
                continue
            elif key == "$.exp":
                message.expiry_time_utc = properties[key]
            elif key == "$.uid":
                message.user_id = properties[key]
            elif key == "$.cid":
                message.correlation_id = properties[key]
            else:
                message.custom_properties[key] = properties[key]

        return message
