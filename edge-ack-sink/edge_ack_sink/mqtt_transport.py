# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion, MQTTErrorCode
import logging
import ssl
import threading
import traceback
import weakref
import socket
import socks
from . import transport_exceptions as exceptions

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 30
# paho reconnects by itself after a dropped connection, backing off between these bounds
RECONNECT_MIN_DELAY = 1
RECONNECT_MAX_DELAY = 120

# Mapping of CONNACK reason code values to Error object classes
# (MQTT 3.1.1 return codes are converted by paho into these MQTT 5 reason codes)
connack_reason_to_error = {
    132: exceptions.ProtocolClientError,  # Unsupported protocol version
    133: exceptions.ProtocolClientError,  # Client identifier not valid
    136: exceptions.ConnectionFailedError,  # Server unavailable
    134: exceptions.UnauthorizedError,  # Bad user name or password
    135: exceptions.UnauthorizedError,  # Not authorized
}

# Mapping of Paho rc codes to Error object classes
# Used for responses to Paho APIs and non-connection callbacks
paho_rc_to_error = {
    MQTTErrorCode.MQTT_ERR_NOMEM: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_PROTOCOL: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_INVAL: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_NO_CONN: exceptions.NoConnectionError,
    MQTTErrorCode.MQTT_ERR_CONN_REFUSED: exceptions.ConnectionFailedError,
    MQTTErrorCode.MQTT_ERR_NOT_FOUND: exceptions.ConnectionFailedError,
    MQTTErrorCode.MQTT_ERR_CONN_LOST: exceptions.ConnectionDroppedError,
    MQTTErrorCode.MQTT_ERR_TLS: exceptions.UnauthorizedError,
    MQTTErrorCode.MQTT_ERR_PAYLOAD_SIZE: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_NOT_SUPPORTED: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_AUTH: exceptions.UnauthorizedError,
    MQTTErrorCode.MQTT_ERR_ACL_DENIED: exceptions.UnauthorizedError,
    MQTTErrorCode.MQTT_ERR_UNKNOWN: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_ERRNO: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_QUEUE_SIZE: exceptions.ProtocolClientError,
    MQTTErrorCode.MQTT_ERR_KEEPALIVE: exceptions.ConnectionDroppedError,
}


def _create_error_from_connack_reason(reason_code):
    """
    Given a paho CONNACK reason code, return an Exception that can be raised
    """
    message = str(reason_code)
    if reason_code.value in connack_reason_to_error:
        return connack_reason_to_error[reason_code.value](message)
    else:
        return exceptions.ProtocolClientError("Unknown CONNACK reason code: {}".format(message))


def _create_error_from_rc_code(rc):
    """
    Given a paho rc code, return an Exception that can be raised
    """
    if rc == 1:
        # Paho returns rc=1 to mean "something went wrong.  stop".
        return exceptions.ConnectionDroppedError("Paho returned rc==1")
    elif rc in paho_rc_to_error:
        message = mqtt.error_string(rc)
        return paho_rc_to_error[rc](message)
    else:
        return exceptions.ProtocolClientError("Unknown rc=={}".format(rc))


class MQTTTransport(object):
    """
    A wrapper class around the Paho client, with manual acknowledgement of received QoS 1
    messages: a PUBACK is only sent once .ack() is called for the message.

    :ivar on_mqtt_connected_handler: Event handler callback, called upon establishing a connection.
    :type on_mqtt_connected_handler: Function
    :ivar on_mqtt_disconnected_handler: Event handler callback, called upon a disconnection.
    :type on_mqtt_disconnected_handler: Function
    :ivar on_mqtt_message_received_handler: Event handler callback, called upon receiving a message.
    :type on_mqtt_message_received_handler: Function
    """

    def __init__(
        self,
        client_id,
        hostname,
        username,
        server_verification_cert=None,
        websockets=False,
        proxy_options=None,
        keep_alive=60,
        log_trace=False,
    ):
        """
        Constructor to instantiate an MQTT protocol wrapper.
        :param str client_id: The id of the client connecting to the broker.
        :param str hostname: Hostname or IP address of the remote broker.
        :param str username: Username for login to the remote broker.
        :param str server_verification_cert: Certificate which can be used to validate a server-side TLS connection (optional).
        :param bool websockets: Indicates whether or not to enable a websockets connection in the Transport.
        :param proxy_options: Options for sending traffic through proxy servers.
        :param int keep_alive: Maximum period in seconds between communications with the broker.
        :param bool log_trace: Route Paho's internal logging to the "paho" logger.
        """
        self._client_id = client_id
        self._hostname = hostname
        self._username = username
        self._server_verification_cert = server_verification_cert
        self._websockets = websockets
        self._proxy_options = proxy_options
        self._keep_alive = keep_alive
        self._log_trace = log_trace

        self.on_mqtt_connected_handler = None
        self.on_mqtt_disconnected_handler = None
        self.on_mqtt_message_received_handler = None

        self._connected = False
        self._connack_event = threading.Event()
        self._connect_error = None

        self._op_manager = OperationManager()

        self._mqtt_client = self._create_mqtt_client()

    @property
    def connected(self):
        return self._connected

    def _create_mqtt_client(self):
        """
        Create the MQTT client object and assign all necessary event handler callbacks.
        """
        logger.debug("creating mqtt client")

        # Instantiate the client
        if self._websockets:
            logger.info("Creating client for connecting using MQTT over websockets")
            mqtt_client = mqtt.Client(
                callback_api_version=CallbackAPIVersion.VERSION2,
                client_id=self._client_id,
                clean_session=False,
                protocol=mqtt.MQTTv311,
                transport="websockets",
                manual_ack=True,
            )
            mqtt_client.ws_set_options(path="/$iothub/websocket")
        else:
            logger.info("Creating client for connecting using MQTT over TCP")
            mqtt_client = mqtt.Client(
                callback_api_version=CallbackAPIVersion.VERSION2,
                client_id=self._client_id,
                clean_session=False,
                protocol=mqtt.MQTTv311,
                manual_ack=True,
            )

        if self._proxy_options:
            logger.info("Setting custom proxy options on mqtt client")
            mqtt_client.proxy_set(
                proxy_type=self._proxy_options.proxy_type_socks,
                proxy_addr=self._proxy_options.proxy_address,
                proxy_port=self._proxy_options.proxy_port,
                proxy_username=self._proxy_options.proxy_username,
                proxy_password=self._proxy_options.proxy_password,
            )

        if self._log_trace:
            mqtt_client.enable_logger(logging.getLogger("paho"))

        # Configure TLS/SSL
        ssl_context = self._create_ssl_context()
        mqtt_client.tls_set_context(context=ssl_context)

        # Set event handlers.  Use weak references back into this object to prevent leaks
        self_weakref = weakref.ref(self)

        def on_connect(client, userdata, flags, reason_code, properties):
            this = self_weakref()
            if this is None:
                return
            logger.info("connected with result code: {}".format(reason_code))

            if reason_code.is_failure:
                this._connect_error = _create_error_from_connack_reason(reason_code)
                this._connected = False
            else:
                this._connect_error = None
                this._connected = True
            this._connack_event.set()

            if this._connected and this.on_mqtt_connected_handler:
                try:
                    this.on_mqtt_connected_handler()
                except Exception:
                    logger.warning("Unexpected error calling on_mqtt_connected_handler")
                    logger.warning(traceback.format_exc())

        def on_disconnect(client, userdata, flags, reason_code, properties):
            this = self_weakref()
            logger.info("disconnected with result code: {}".format(reason_code))

            if this is None:
                # Paho will sometimes call this after we've been garbage collected. If so, we
                # have to stop the loop to make sure the Paho thread shuts down.
                logger.info(
                    "on_disconnect called with transport==None. Transport must have been garbage collected. stopping loop"
                )
                client.loop_stop()
                return

            this._connected = False
            cause = None
            if reason_code.is_failure:
                cause = exceptions.ConnectionDroppedError(str(reason_code))

            if this.on_mqtt_disconnected_handler:
                try:
                    this.on_mqtt_disconnected_handler(cause)
                except Exception:
                    logger.warning("Unexpected error calling on_mqtt_disconnected_handler")
                    logger.warning(traceback.format_exc())
            else:
                logger.debug("No event handler callback set for on_mqtt_disconnected_handler")

        def on_subscribe(client, userdata, mid, reason_code_list, properties):
            this = self_weakref()
            logger.info("suback received for {}".format(mid))
            error = None
            for reason_code in reason_code_list:
                if reason_code.is_failure:
                    error = exceptions.ProtocolClientError(
                        "Subscription refused: {}".format(reason_code)
                    )
            this._op_manager.complete_operation(mid, error=error)

        def on_message(client, userdata, mqtt_message):
            this = self_weakref()
            logger.info(
                "message received on {} (mid={}, qos={})".format(
                    mqtt_message.topic, mqtt_message.mid, mqtt_message.qos
                )
            )

            if this.on_mqtt_message_received_handler:
                try:
                    this.on_mqtt_message_received_handler(mqtt_message)
                except Exception:
                    logger.warning("Unexpected error calling on_mqtt_message_received_handler")
                    logger.warning(traceback.format_exc())
            else:
                logger.debug(
                    "No event handler callback set for on_mqtt_message_received_handler - DROPPING MESSAGE"
                )

        mqtt_client.on_connect = on_connect
        mqtt_client.on_disconnect = on_disconnect
        mqtt_client.on_subscribe = on_subscribe
        mqtt_client.on_message = on_message

        # Dropped connections are re-established by the Paho loop thread
        mqtt_client.reconnect_delay_set(min_delay=RECONNECT_MIN_DELAY, max_delay=RECONNECT_MAX_DELAY)

        logger.debug("Created MQTT protocol client, assigned callbacks")
        return mqtt_client

    def _create_ssl_context(self):
        """
        This method creates the SSLContext object used by Paho to authenticate the connection.
        """
        logger.debug("creating a SSL context")
        ssl_context = ssl.SSLContext(protocol=ssl.PROTOCOL_TLS_CLIENT)
        ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2

        if self._server_verification_cert:
            logger.debug("configuring SSL context with custom server verification cert")
            ssl_context.load_verify_locations(cadata=self._server_verification_cert)
        else:
            logger.debug("configuring SSL context with default certs")
            ssl_context.load_default_certs()

        ssl_context.verify_mode = ssl.CERT_REQUIRED
        ssl_context.check_hostname = True

        return ssl_context

    def set_password(self, password):
        """
        Set the password used the next time a connection is established.

        :param str password: The password for connecting with the MQTT broker.
        """
        self._mqtt_client.username_pw_set(username=self._username, password=password)

    def connect(self, password=None, timeout=DEFAULT_CONNECT_TIMEOUT):
        """
        Connect to the MQTT broker, using hostname and username set at instantiation, and
        wait for the broker to accept the connection.

        :param str password: The password for connecting with the MQTT broker (Optional).
        :param float timeout: Seconds to wait for the CONNACK.

        :raises: ConnectionFailedError if connection could not be established.
        :raises: UnauthorizedError if there is an error authenticating.
        :raises: ProtocolClientError if there is some other client error.
        :raises: TlsExchangeAuthError if there a failure with TLS certificate exchange
        :raises: ProtocolProxyError if there is a proxy-specific error
        """
        logger.debug("connecting to mqtt broker")

        self.set_password(password)
        self._connack_event.clear()
        self._connect_error = None

        port = 443 if self._websockets else 8883
        try:
            logger.info("Connect using port {}".format(port))
            rc = self._mqtt_client.connect(
                host=self._hostname, port=port, keepalive=self._keep_alive
            )
        except socket.error as e:
            # Only this type will raise a special error
            if (
                isinstance(e, ssl.SSLError)
                and e.strerror is not None
                and "CERTIFICATE_VERIFY_FAILED" in e.strerror
            ):
                raise exceptions.TlsExchangeAuthError() from e
            elif isinstance(e, socks.ProxyError):
                if isinstance(e, socks.SOCKS5AuthError):
                    raise exceptions.UnauthorizedError() from e
                else:
                    raise exceptions.ProtocolProxyError() from e
            else:
                # If the socket can't open (e.g. using iptables REJECT), we get a
                # socket.error.  Convert this into ConnectionFailedError
                raise exceptions.ConnectionFailedError() from e
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during connect") from e

        logger.debug("_mqtt_client.connect returned rc={}".format(rc))
        if rc:
            raise _create_error_from_rc_code(rc)
        self._mqtt_client.loop_start()

        if not self._connack_event.wait(timeout):
            self._stop_loop()
            raise exceptions.ConnectionFailedError(
                "No CONNACK received within {} seconds".format(timeout)
            )
        if self._connect_error:
            self._stop_loop()
            raise self._connect_error

    def disconnect(self):
        """
        Disconnect from the MQTT broker and stop the Paho loop thread.

        :raises: ProtocolClientError if there is some client error.
        :raises: NoConnectionError if the client isn't actually connected.
        """
        logger.info("disconnecting MQTT client")
        try:
            rc = self._mqtt_client.disconnect()
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during disconnect") from e
        finally:
            self._stop_loop()
            self._connected = False
            self._op_manager.cancel_all_operations()

        logger.debug("_mqtt_client.disconnect returned rc={}".format(rc))
        if rc:
            raise _create_error_from_rc_code(rc)

    def _stop_loop(self):
        self._mqtt_client.loop_stop()

    def subscribe(self, topic, qos=1, callback=None):
        """
        This method subscribes the client to one topic from the MQTT broker.

        :param str topic: a single string specifying the subscription topic to subscribe to
        :param int qos: the desired quality of service level for the subscription. Defaults to 1.
        :param callback: A callback to be triggered upon completion (Optional).

        :raises: ValueError if qos is not 0, 1 or 2.
        :raises: ValueError if topic is None or has zero string length.
        :raises: ProtocolClientError if there is some other client error.
        :raises: NoConnectionError if the client isn't actually connected.
        """
        logger.info("subscribing to {} with qos {}".format(topic, qos))
        try:
            (rc, mid) = self._mqtt_client.subscribe(topic, qos=qos)
        except ValueError:
            raise
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during subscribe") from e
        logger.debug("_mqtt_client.subscribe returned rc={}".format(rc))
        if rc:
            raise _create_error_from_rc_code(rc)
        self._op_manager.establish_operation(mid, callback)

    def ack(self, mid, qos=1):
        """
        Acknowledge a received message (send the PUBACK for a QoS 1 message).

        :param int mid: Packet identifier of the received message.
        :param int qos: Quality of service the message was received with.

        :raises: NoConnectionError if the client isn't actually connected.
        :raises: ProtocolClientError if there is some other client error.
        """
        logger.debug("sending ack for mid {} (qos {})".format(mid, qos))
        try:
            rc = self._mqtt_client.ack(mid, qos)
        except Exception as e:
            raise exceptions.ProtocolClientError("Unexpected Paho failure during ack") from e
        if rc:
            raise _create_error_from_rc_code(rc)


class OperationManager(object):
    """Tracks pending operations and their associated callbacks until completion."""

    def __init__(self):
        # Maps mid->callback for operations where a request has been sent
        # but the response has not yet been received
        self._pending_operation_callbacks = {}

        # Maps mid->error for responses received that are NOT established in the
        # _pending_operation_callbacks dict. Necessary because sometimes an operation will
        # complete with a response before the Paho call returns.
        self._unknown_operation_completions = {}

        self._lock = threading.Lock()

    def establish_operation(self, mid, callback=None):
        """Establish a pending operation identified by MID, and store its completion callback.

        If the operation has already been completed, the callback will be triggered.
        """
        trigger_callback = False
        error = None

        with self._lock:
            if mid in self._unknown_operation_completions:
                error = self._unknown_operation_completions.pop(mid)
                trigger_callback = True
            else:
                self._pending_operation_callbacks[mid] = callback
                logger.debug("Waiting for response on MID: {}".format(mid))

        # Trigger outside of the lock
        if trigger_callback:
            logger.debug(
                "Response for MID: {} was received early - triggering callback".format(mid)
            )
            _trigger(mid, callback, error)

    def complete_operation(self, mid, error=None):
        """Complete an operation identified by MID and trigger the associated completion callback.

        If the operation MID is unknown, the completion status will be stored until
        the operation is established.
        """
        callback = None
        trigger_callback = False

        with self._lock:
            if mid in self._pending_operation_callbacks:
                callback = self._pending_operation_callbacks.pop(mid)
                trigger_callback = True
            else:
                logger.debug("Response received for unknown MID: {}".format(mid))
                self._unknown_operation_completions[mid] = error

        if trigger_callback:
            logger.debug(
                "Response received for recognized MID: {} - triggering callback".format(mid)
            )
            _trigger(mid, callback, error)

    def cancel_all_operations(self):
        """Complete all pending operations with cancellation, removing MID tracking"""
        logger.debug("Cancelling all pending operations")
        with self._lock:
            pending_ops = list(self._pending_operation_callbacks.items())
            self._pending_operation_callbacks.clear()
            self._unknown_operation_completions.clear()

        for mid, callback in pending_ops:
            logger.debug("Cancelling {}".format(mid))
            _trigger(mid, callback, exceptions.NoConnectionError("Operation cancelled"))


def _trigger(mid, callback, error):
    if callback:
        try:
            callback(error=error)
        except Exception:
            logger.debug("Unexpected error calling callback for MID: {}".format(mid))
            logger.debug(traceback.format_exc())
    else:
        logger.debug("No callback set for MID: {}".format(mid))
