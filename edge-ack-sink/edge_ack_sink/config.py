# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import io
import logging
import os
from typing import Optional, Any
import socks
from . import constant
from . import connection_string as cs
from . import edge_hsm
from .custom_typing import Environ
from .exceptions import IoTEdgeError, IoTEdgeEnvironmentError
from .signing_mechanism import SigningMechanism, SymmetricKeySigningMechanism

logger = logging.getLogger(__name__)

# The max keep alive is determined by the load balancer currently.
MAX_KEEP_ALIVE_SECS = 1740


string_to_socks_constant_map = {"HTTP": socks.HTTP, "SOCKS4": socks.SOCKS4, "SOCKS5": socks.SOCKS5}
socks_constant_to_string_map = {socks.HTTP: "HTTP", socks.SOCKS4: "SOCKS4", socks.SOCKS5: "SOCKS5"}

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off", "")


class ProxyOptions:
    """
    A class containing various options to send traffic through proxy servers by enabling
    proxying of MQTT connection.
    """

    def __init__(
        self,
        proxy_type: str,
        proxy_address: str,
        proxy_port: Optional[int] = None,
        proxy_username: Optional[str] = None,
        proxy_password: Optional[str] = None,
    ):
        """
        Initializer for proxy options.
        :param str proxy_type: The type of the proxy server. This can be one of three possible choices: "HTTP", "SOCKS4", or "SOCKS5"
        :param str proxy_address: IP address or DNS name of proxy server
        :param int proxy_port: The port of the proxy server. Defaults to 1080 for socks and 8080 for http.
        :param str proxy_username: (optional) username for SOCKS5 proxy, or userid for SOCKS4 proxy.
        :param str proxy_password: (optional) password for the SOCKS5 username provided.
        """
        (self.proxy_type, self.proxy_type_socks) = _format_proxy_type(proxy_type)
        self.proxy_address = proxy_address
        if proxy_port is None:
            self.proxy_port = _derive_default_proxy_port(self.proxy_type)
        else:
            self.proxy_port = int(proxy_port)
        self.proxy_username = proxy_username
        self.proxy_password = proxy_password


class SinkConfig:
    """
    Options controlling how the sink receives and acknowledges messages.
    """

    def __init__(
        self,
        *,
        input_name: str = constant.DEFAULT_INPUT_NAME,
        tick_interval: float = constant.DEFAULT_TICK_INTERVAL,
        low_delay: float = constant.DEFAULT_LOW_DELAY,
        high_delay: float = constant.DEFAULT_HIGH_DELAY,
        high_delay_band_start: int = constant.DEFAULT_HIGH_DELAY_BAND_START,
        high_delay_band_end: int = constant.DEFAULT_HIGH_DELAY_BAND_END,
        payload_preview_length: int = constant.DEFAULT_PAYLOAD_PREVIEW_LENGTH,
        ack_timeout: float = constant.DEFAULT_ACK_TIMEOUT,
        drain_on_shutdown: bool = False,
        log_trace: bool = False,
    ) -> None:
        """Initializer for SinkConfig

        :param str input_name: Name of the module input to receive messages on
        :param float tick_interval: Seconds between two scans of the pending messages
        :param float low_delay: Seconds a message stays pending outside the high delay band
        :param float high_delay: Seconds a message stays pending inside the high delay band
        :param int high_delay_band_start: First received count (inclusive) of the high delay band
        :param int high_delay_band_end: Last received count (exclusive) of the high delay band
        :param int payload_preview_length: Maximum number of payload bytes written to the log
        :param float ack_timeout: Seconds to wait for a single disposition before giving up on it
        :param bool drain_on_shutdown: Acknowledge all pending messages when stopping, instead
            of abandoning them
        :param bool log_trace: Enable protocol level trace logging

        :raises: ValueError if a parameter value is out of range
        :raises: TypeError if a parameter value is not of a valid type
        """
        if not input_name:
            raise ValueError("'input_name' cannot be empty")
        self.input_name = input_name
        self.tick_interval = _sanitize_positive_number(tick_interval, "tick_interval")
        self.low_delay = _sanitize_non_negative_number(low_delay, "low_delay")
        self.high_delay = _sanitize_non_negative_number(high_delay, "high_delay")
        self.high_delay_band_start = _sanitize_count(high_delay_band_start, "high_delay_band_start")
        self.high_delay_band_end = _sanitize_count(high_delay_band_end, "high_delay_band_end")
        if self.high_delay_band_end < self.high_delay_band_start:
            raise ValueError("'high_delay_band_end' cannot be lower than 'high_delay_band_start'")
        self.payload_preview_length = _sanitize_count(
            payload_preview_length, "payload_preview_length"
        )
        self.ack_timeout = _sanitize_positive_number(ack_timeout, "ack_timeout")
        self.drain_on_shutdown = bool(drain_on_shutdown)
        self.log_trace = bool(log_trace)

    @classmethod
    def from_environment(cls, environ: Optional[Environ] = None) -> "SinkConfig":
        """Create a SinkConfig from SINK_* environment variables.
        Variables that are not set keep their default values.

        :raises: ValueError if a variable holds an invalid value
        """
        if environ is None:
            environ = os.environ
        kwargs: dict = {}
        if "SINK_INPUT_NAME" in environ:
            kwargs["input_name"] = environ["SINK_INPUT_NAME"]
        for var, kwarg in [
            ("SINK_TICK_INTERVAL", "tick_interval"),
            ("SINK_LOW_DELAY", "low_delay"),
            ("SINK_HIGH_DELAY", "high_delay"),
            ("SINK_ACK_TIMEOUT", "ack_timeout"),
        ]:
            if var in environ:
                kwargs[kwarg] = _parse_number(environ[var], var)
        for var, kwarg in [
            ("SINK_HIGH_DELAY_BAND_START", "high_delay_band_start"),
            ("SINK_HIGH_DELAY_BAND_END", "high_delay_band_end"),
            ("SINK_PAYLOAD_PREVIEW_LENGTH", "payload_preview_length"),
        ]:
            if var in environ:
                kwargs[kwarg] = _parse_int(environ[var], var)
        for var, kwarg in [
            ("SINK_DRAIN_ON_SHUTDOWN", "drain_on_shutdown"),
            ("SINK_LOG_TRACE", "log_trace"),
        ]:
            if var in environ:
                kwargs[kwarg] = _parse_bool(environ[var], var)
        return cls(**kwargs)


class EdgeConnectionConfig:
    """
    Details required to connect to the local IoT Edge hub as a module.
    """

    def __init__(
        self,
        *,
        hostname: str,
        device_id: str,
        module_id: str,
        signing_mechanism: SigningMechanism,
        gateway_hostname: Optional[str] = None,
        server_verification_cert: Optional[str] = None,
        keep_alive: int = constant.DEFAULT_KEEP_ALIVE,
        websockets: bool = False,
        proxy_options: Optional[ProxyOptions] = None,
        sastoken_ttl: int = constant.DEFAULT_SASTOKEN_TTL,
    ) -> None:
        """Initializer for EdgeConnectionConfig

        :param str hostname: Hostname of the IoT Hub the Edge device belongs to
        :param str device_id: The device identity of the IoT Edge device
        :param str module_id: The module identity of this module
        :param signing_mechanism: Object used to sign SAS tokens
        :type signing_mechanism: :class:`SigningMechanism`
        :param str gateway_hostname: Hostname of the local IoT Edge hub to connect to
        :param str server_verification_cert: PEM certificate used to validate the gateway
        :param int keep_alive: Maximum period in seconds between communications with the
            broker.
        :param bool websockets: Use MQTT over websockets (port 443) instead of TCP (port 8883)
        :param proxy_options: Details of proxy configuration
        :type proxy_options: :class:`ProxyOptions`
        :param int sastoken_ttl: Time-to-live (in seconds) of generated SAS tokens
        """
        self.hostname = hostname
        self.gateway_hostname = gateway_hostname
        self.device_id = device_id
        self.module_id = module_id
        self.signing_mechanism = signing_mechanism
        self.server_verification_cert = server_verification_cert
        self.keep_alive = _sanitize_keep_alive(keep_alive)
        self.websockets = websockets
        self.proxy_options = proxy_options
        self.sastoken_ttl = _sanitize_sastoken_ttl(sastoken_ttl)

    @property
    def connect_hostname(self) -> str:
        """The hostname the MQTT connection is opened to"""
        return self.gateway_hostname or self.hostname

    @classmethod
    def from_edge_environment(
        cls, environ: Optional[Environ] = None, **kwargs: Any
    ) -> "EdgeConnectionConfig":
        """Create an EdgeConnectionConfig from the variables IoT Edge sets in the module
        container. If they are absent, the local development variables
        (EdgeHubConnectionString, EdgeModuleCACertificateFile) are used instead.

        :raises: IoTEdgeEnvironmentError if the IoT Edge environment is not configured correctly
        :raises: IoTEdgeEnvironmentError if the HSM cannot provide the trust bundle
        :raises: ValueError if the local development variables are invalid
        """
        if environ is None:
            environ = os.environ

        # First try the regular Edge container variables
        try:
            hostname = environ["IOTEDGE_IOTHUBHOSTNAME"]
            device_id = environ["IOTEDGE_DEVICEID"]
            module_id = environ["IOTEDGE_MODULEID"]
            gateway_hostname = environ["IOTEDGE_GATEWAYHOSTNAME"]
            module_generation_id = environ["IOTEDGE_MODULEGENERATIONID"]
            workload_uri = environ["IOTEDGE_WORKLOADURI"]
            api_version = environ["IOTEDGE_APIVERSION"]
        except KeyError:
            logger.debug("IoT Edge container variables not found, trying local dev variables")
            return cls._from_edge_dev_environment(environ, **kwargs)

        # Use an HSM for authentication in the general case
        hsm = edge_hsm.IoTEdgeHsm(
            module_id=module_id,
            generation_id=module_generation_id,
            workload_uri=workload_uri,
            api_version=api_version,
        )
        try:
            server_verification_cert = hsm.get_certificate()
        except IoTEdgeError as e:
            raise IoTEdgeEnvironmentError("Unexpected failure in IoT Edge") from e

        logger.info(
            "Using IoT Edge environment for module {}/{} via {}".format(
                device_id, module_id, gateway_hostname
            )
        )
        return cls(
            hostname=hostname,
            device_id=device_id,
            module_id=module_id,
            gateway_hostname=gateway_hostname,
            signing_mechanism=hsm,
            server_verification_cert=server_verification_cert,
            **kwargs,
        )

    @classmethod
    def _from_edge_dev_environment(cls, environ: Environ, **kwargs: Any) -> "EdgeConnectionConfig":
        # These variables are set by the IoT Edge dev tooling in order to allow debugging
        # of module code outside of an Edge runtime
        try:
            connection_string = environ["EdgeHubConnectionString"]
            ca_cert_filepath = environ["EdgeModuleCACertificateFile"]
        except KeyError as e:
            raise IoTEdgeEnvironmentError("IoT Edge environment not configured correctly") from e

        try:
            with io.open(ca_cert_filepath, mode="r") as ca_cert_file:
                server_verification_cert = ca_cert_file.read()
        except FileNotFoundError as e:
            raise IoTEdgeEnvironmentError(
                "CA certificate file not found: {}".format(ca_cert_filepath)
            ) from e
        except OSError as e:
            raise ValueError("Invalid CA certificate file") from e

        cs_obj = cs.ConnectionString(connection_string)
        logger.info(
            "Using local dev environment for module {}/{} via {}".format(
                cs_obj[cs.DEVICE_ID], cs_obj[cs.MODULE_ID], cs_obj[cs.GATEWAY_HOST_NAME]
            )
        )
        return cls(
            hostname=cs_obj[cs.HOST_NAME],
            device_id=cs_obj[cs.DEVICE_ID],
            module_id=cs_obj[cs.MODULE_ID],
            gateway_hostname=cs_obj[cs.GATEWAY_HOST_NAME],
            signing_mechanism=SymmetricKeySigningMechanism(cs_obj[cs.SHARED_ACCESS_KEY]),
            server_verification_cert=server_verification_cert,
            **kwargs,
        )


# Sanitization #


def _format_proxy_type(proxy_type):
    """Returns a tuple of formats for proxy type (string, socks library constant)"""
    try:
        return (proxy_type, string_to_socks_constant_map[proxy_type])
    except KeyError:
        # Also accept the socks library constants directly
        try:
            return (socks_constant_to_string_map[proxy_type], proxy_type)
        except KeyError:
            raise ValueError("Invalid Proxy Type")


def _derive_default_proxy_port(proxy_type):
    if proxy_type == "HTTP":
        return 8080
    else:
        return 1080


def _sanitize_keep_alive(keep_alive):
    try:
        keep_alive = int(keep_alive)
    except (ValueError, TypeError):
        raise TypeError("Invalid type for 'keep alive'. Must be a numeric value.")

    if keep_alive <= 0:
        # Not allowing a keep alive of 0 as this would mean frequent ping exchanges.
        raise ValueError("'keep alive' must be greater than 0")

    if keep_alive > MAX_KEEP_ALIVE_SECS:
        raise ValueError("'keep_alive' cannot exceed 1740 seconds (29 minutes)")

    return keep_alive


def _sanitize_sastoken_ttl(ttl):
    try:
        ttl = int(ttl)
    except (ValueError, TypeError):
        raise TypeError("Invalid type for 'sastoken_ttl'. Must be a numeric value.")
    if ttl <= constant.SASTOKEN_RENEWAL_MARGIN:
        raise ValueError(
            "'sastoken_ttl' must be greater than {} seconds".format(
                constant.SASTOKEN_RENEWAL_MARGIN
            )
        )
    return ttl


def _sanitize_number(value, name):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError("Invalid type for '{}'. Must be a numeric value.".format(name))
    return value


def _sanitize_positive_number(value, name):
    value = _sanitize_number(value, name)
    if value <= 0:
        raise ValueError("'{}' must be greater than 0".format(name))
    return value


def _sanitize_non_negative_number(value, name):
    value = _sanitize_number(value, name)
    if value < 0:
        raise ValueError("'{}' cannot be negative".format(name))
    return value


def _sanitize_count(value, name):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError("Invalid type for '{}'. Must be an integer.".format(name))
    if value < 0:
        raise ValueError("'{}' cannot be negative".format(name))
    return value


def _parse_number(value, var):
    try:
        return float(value)
    except ValueError:
        raise ValueError("Invalid value for {}: '{}'".format(var, value))


def _parse_int(value, var):
    try:
        return int(value)
    except ValueError:
        raise ValueError("Invalid value for {}: '{}'".format(var, value))


def _parse_bool(value, var):
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValueError("Invalid value for {}: '{}'".format(var, value))
