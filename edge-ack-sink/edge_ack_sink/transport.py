# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains the transports used by the sink to receive and acknowledge
module input messages"""

import abc
import logging
import ssl
import threading
import time
import urllib.parse
from typing import Optional
from . import constant
from . import handle_exceptions
from . import mqtt_topic
from . import product_info
from .alarm import Alarm
from .config import EdgeConnectionConfig
from .custom_typing import MessageHandler
from .evented_callback import EventedCallback
from .exceptions import DispositionError, IoTEdgeEnvironmentError, TransportError
from .models import Disposition, Message
from .mqtt_transport import MQTTTransport
from .sastoken import RenewableSasToken, SasTokenError

logger = logging.getLogger(__name__)

# Seconds before retrying a failed credential renewal
SASTOKEN_RENEWAL_RETRY_INTERVAL = 10
# Seconds to wait for the SUBACK of the input subscription
SUBSCRIBE_TIMEOUT = 30


class AbstractTransport(abc.ABC):
    """Interface between the sink and the messaging layer that delivers module input messages"""

    @abc.abstractmethod
    def set_input_message_handler(self, input_name: str, handler: MessageHandler) -> None:
        """Register the handler called for each message received on the named input.

        The handler returns ASYNC_ACK if it sends the disposition later, ABANDONED to have the
        message released, or any other disposition to have it sent right away.
        """
        pass

    @abc.abstractmethod
    def connect(self) -> None:
        pass

    @abc.abstractmethod
    def disconnect(self) -> None:
        pass

    @abc.abstractmethod
    def send_message_disposition(self, message: Message, disposition: Disposition) -> None:
        """Report the terminal disposition of a received message.

        :raises: DispositionError if the disposition is not accepted
        :raises: TransportError if the disposition could not be sent
        """
        pass

    @abc.abstractmethod
    def release_message(self, message: Message) -> None:
        """Give up a received message without sending any disposition for it"""
        pass

    def do_work(self) -> None:
        """Pump the transport. Only needed by transports without their own network thread."""
        pass


class MQTTSinkTransport(AbstractTransport):
    """Transport receiving module input messages from the IoT Edge hub over MQTT.

    Received messages are only acknowledged (PUBACK) when an ACCEPTED disposition is sent
    for them. Released messages are never acknowledged, so the hub delivers them again.
    """

    def __init__(self, connection_config: EdgeConnectionConfig, log_trace: bool = False) -> None:
        """
        :param connection_config: Details of the connection to the IoT Edge hub
        :param bool log_trace: Enable protocol level trace logging

        :raises: IoTEdgeEnvironmentError if the server verification certificate is invalid
        """
        self._config = connection_config
        self._device_id = connection_config.device_id
        self._module_id = connection_config.module_id
        self._client_id = _format_client_id(self._device_id, self._module_id)
        self._sastoken_uri = "{hostname}/devices/{device_id}/modules/{module_id}".format(
                hostname=connection_config.hostname,
            device_id=self._device_id,
            module_id=self._module_id,
        )
        self._sastoken: Optional[RenewableSasToken] = None
        self._renewal_alarm: Optional[Alarm] = None
        self._lock = threading.Lock()

        self._input_name: Optional[str] = None
        self._input_message_handler: Optional[MessageHandler] = None

        try:
            self._mqtt_transport = MQTTTransport(
                client_id=self._client_id,
                hostname=connection_config.connect_hostname,
                username=_format_username(connection_config.hostname, self._client_id),
                server_verification_cert=connection_config.server_verification_cert,
                websockets=connection_config.websockets,
                proxy_options=connection_config.proxy_options,
                keep_alive=connection_config.keep_alive,
                log_trace=log_trace,
            )
        except ssl.SSLError as e:
            raise IoTEdgeEnvironmentError("Invalid server verification certificate") from e
        self._mqtt_transport.on_mqtt_connected_handler = self._on_mqtt_connected
        self._mqtt_transport.on_mqtt_disconnected_handler = self._on_mqtt_disconnected
        self._mqtt_transport.on_mqtt_message_received_handler = self._on_mqtt_message_received

    @property
    def connected(self) -> bool:
        return self._mqtt_transport.connected

    def set_input_message_handler(self, input_name: str, handler: MessageHandler) -> None:
        self._input_name = input_name
        self._input_message_handler = handler

    def connect(self) -> None:
        """Connect to the IoT Edge hub and subscribe to module input messages.

        :raises: TransportError if the connection could not be established
        :raises: SasTokenError if the credentials could not be created
        """
        if self._sastoken is None:
            self._sastoken = RenewableSasToken(
                self._sastoken_uri, self._config.signing_mechanism, ttl=self._config.sastoken_ttl
            )
        else:
            self._sastoken.refresh()
        logger.info("Connecting to {}".format(self._config.connect_hostname))
        self._connect_and_subscribe()
        self._schedule_sastoken_renewal()

    def disconnect(self) -> None:
        """Disconnect from the IoT Edge hub. Pending messages stay unacknowledged."""
        self._cancel_sastoken_renewal()
        logger.info("Disconnecting from {}".format(self._config.connect_hostname))
        self._mqtt_transport.disconnect()

    def send_message_disposition(self, message: Message, disposition: Disposition) -> None:
        """Acknowledge a message that was accepted by the sink.

        MQTT only allows a message to be acknowledged, so any other disposition is refused.

        :raises: DispositionError if the disposition cannot be represented, or the message
            has no packet identifier
        :raises: TransportError if the acknowledgement could not be sent
        """
        if disposition is not Disposition.ACCEPTED:
            raise DispositionError(
                "Disposition {} is not supported over MQTT".format(disposition.name)
            )
        if message.mid is None:
            raise DispositionError("{!r} has no packet identifier".format(message))
        self._mqtt_transport.ack(message.mid, message.qos)

    def release_message(self, message: Message) -> None:
        logger.info("Releasing {!r} without acknowledgement".format(message))

    def _connect_and_subscribe(self) -> None:
        self._mqtt_transport.connect(password=str(self._sastoken))
        callback = EventedCallback()
        self._mqtt_transport.subscribe(
            mqtt_topic.get_input_topic_for_subscribe(self._device_id, self._module_id),
            qos=1,
            callback=callback,
        )
        try:
            callback.wait_for_completion(timeout=SUBSCRIBE_TIMEOUT)
        except TimeoutError as e:
            raise TransportError("Subscription to module inputs was not acknowledged") from e

    # SAS token renewal #

    def _schedule_sastoken_renewal(self, alarm_time: Optional[float] = None) -> None:
        with self._lock:
            if self._renewal_alarm is not None:
                self._renewal_alarm.cancel()
            if alarm_time is None:
                alarm_time = self._sastoken.expiry_time - constant.SASTOKEN_RENEWAL_MARGIN
            logger.debug(
                "Scheduling SAS token renewal in {:.0f} seconds".format(alarm_time - time.time())
            )
            self._renewal_alarm = Alarm(alarm_time, self._renew_sastoken)
            self._renewal_alarm.start()

    def _cancel_sastoken_renewal(self) -> None:
        with self._lock:
            if self._renewal_alarm is not None:
                self._renewal_alarm.cancel()
                self._renewal_alarm = None

    def _renew_sastoken(self) -> None:
        logger.info("Renewing SAS token and reauthorizing connection")
        try:
            self._sastoken.refresh()
            self._mqtt_transport.disconnect()
            self._connect_and_subscribe()
        except (SasTokenError, TransportError) as e:
            handle_exceptions.swallow_unraised_exception(
                e, log_msg="SAS token renewal failed. Retrying.", log_lvl="error"
            )
            self._schedule_sastoken_renewal(time.time() + SASTOKEN_RENEWAL_RETRY_INTERVAL)
        except Exception as e:
            handle_exceptions.handle_background_exception(e)
            self._schedule_sastoken_renewal(time.time() + SASTOKEN_RENEWAL_RETRY_INTERVAL)
        else:
            self._schedule_sastoken_renewal()

    # MQTT event handlers #

    def _on_mqtt_connected(self) -> None:
        logger.info("Connection to {} established".format(self._config.connect_hostname))

    def _on_mqtt_disconnected(self, cause=None) -> None:
        if cause:
            logger.warning("Connection dropped ({!r}). Reconnecting...".format(cause))
        else:
            logger.info("Disconnected from {}".format(self._config.connect_hostname))

    def _on_mqtt_message_received(self, mqtt_message) -> None:
        topic = mqtt_message.topic
        if not mqtt_topic.is_input_topic(topic, self._device_id, self._module_id):
            logger.warning("Message received on unexpected topic {}. Acknowledging.".format(topic))
            self._mqtt_transport.ack(mqtt_message.mid, mqtt_message.qos)
            return

        message = _create_message_from_mqtt_message(mqtt_message)
        if message.input_name != self._input_name or self._input_message_handler is None:
            logger.warning(
                "No handler for input '{}'. Acknowledging {!r}.".format(message.input_name, message)
            )
            self.send_message_disposition(message, Disposition.ACCEPTED)
            return

        disposition = self._input_message_handler(message)
        if disposition is Disposition.ABANDONED:
            self.release_message(message)
        elif disposition is not Disposition.ASYNC_ACK:
            try:
                self.send_message_disposition(message, disposition)
            except (DispositionError, TransportError) as e:
                handle_exceptions.swallow_unraised_exception(
                    e, log_msg="Unable to send disposition for {!r}".format(message)
                )


def _create_message_from_mqtt_message(mqtt_message) -> Message:
    properties = mqtt_topic.extract_properties_from_input_topic(mqtt_message.topic)
    message = Message.create_from_properties_dict(
        payload=mqtt_message.payload,
        properties=properties,
        mid=mqtt_message.mid,
        qos=mqtt_message.qos,
    )
    message.input_name = mqtt_topic.extract_input_name_from_topic(mqtt_message.topic)
    return message


def _format_client_id(device_id: str, module_id: str) -> str:
    return "{}/{}".format(device_id, module_id)


def _format_username(hostname: str, client_id: str) -> str:
    query_param_seq = []
    query_param_seq.append(("api-version", constant.IOTHUB_API_VERSION))
    query_param_seq.append(("DeviceClientType", product_info.get_iothub_user_agent()))

    # NOTE: Neither the hostname nor the client id are url encoded as part of the username.
    # The key/value query parameters however MUST all be url encoded.
    username = "{hostname}/{client_id}/?{query_params}".format(
        hostname=hostname,
        client_id=client_id,
        query_params=urllib.parse.urlencode(query_param_seq, quote_via=urllib.parse.quote),
    )
    return username
