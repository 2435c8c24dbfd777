# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------

import pytest
import logging
from edge_ack_sink import mqtt_topic

logging.basicConfig(level=logging.DEBUG)

fake_device_id = "fake_device"
fake_module_id = "fake_module"


@pytest.mark.describe(".get_input_topic_for_subscribe()")
class TestGetInputTopicForSubscribe(object):
    @pytest.mark.it("Returns the topic for receiving input messages from the IoTHub")
    def test_returns_topic(self):
        topic = mqtt_topic.get_input_topic_for_subscribe(fake_device_id, fake_module_id)
        assert topic == "devices/fake_device/modules/fake_module/inputs/#"

    @pytest.mark.it("URL encodes the device id and module id")
    def test_url_encoding(self):
        topic = mqtt_topic.get_input_topic_for_subscribe("my device", "my$module")
        assert topic == "devices/my%20device/modules/my%24module/inputs/#"


@pytest.mark.describe(".is_input_topic()")
class TestIsInputTopic(object):
    @pytest.mark.it("Returns True if the topic is an input topic for the module")
    def test_is_input_topic(self):
        topic = "devices/fake_device/modules/fake_module/inputs/input/%24.mid=1"
        assert mqtt_topic.is_input_topic(topic, fake_device_id, fake_module_id)

    @pytest.mark.it("Returns False if the topic is not an input topic for the module")
    @pytest.mark.parametrize(
        "topic",
        [
            pytest.param(
                "devices/other_device/modules/fake_module/inputs/input/", id="Other device"
            ),
            pytest.param(
                "devices/fake_device/modules/other_module/inputs/input/", id="Other module"
            ),
            pytest.param("devices/fake_device/messages/devicebound/", id="C2D topic"),
            pytest.param("$iothub/twin/res/200/?$rid=1", id="Twin topic"),
        ],
    )
    def test_not_input_topic(self, topic):
        assert not mqtt_topic.is_input_topic(topic, fake_device_id, fake_module_id)

    @pytest.mark.it("Returns False if the device id or module id is missing")
    def test_missing_ids(self):
        topic = "devices/fake_device/modules/fake_module/inputs/input/"
        assert not mqtt_topic.is_input_topic(topic, fake_device_id, None)
        assert not mqtt_topic.is_input_topic(topic, None, fake_module_id)


@pytest.mark.describe(".extract_input_name_from_topic()")
class TestExtractInputNameFromTopic(object):
    @pytest.mark.it("Returns the URL decoded input name from the topic")
    @pytest.mark.parametrize(
        "topic, expected",
        [
            pytest.param(
                "devices/fake_device/modules/fake_module/inputs/input/%24.mid=1",
                "input",
                id="With properties",
            ),
            pytest.param(
                "devices/fake_device/modules/fake_module/inputs/my%20input", "my input", id="No properties"
            ),
        ],
    )
    def test_input_name(self, topic, expected):
        assert mqtt_topic.extract_input_name_from_topic(topic) == expected

    @pytest.mark.it("Raises ValueError if the topic is not an input topic")
    @pytest.mark.parametrize(
        "topic",
        [
            pytest.param("devices/fake_device/messages/devicebound/", id="C2D topic"),
            pytest.param("devices/fake_device/modules/fake_module/inputs/", id="No input name"),
        ],
    )
    def test_bad_topic(self, topic):
        with pytest.raises(ValueError):
            mqtt_topic.extract_input_name_from_topic(topic)


@pytest.mark.describe(".extract_properties_from_input_topic()")
class TestExtractPropertiesFromInputTopic(object):
    @pytest.mark.it("Returns the URL decoded properties of the topic as a dictionary")
    def test_properties(self):
        topic = "devices/fake_device/modules/fake_module/inputs/input/%24.mid=msg%201&color=red&flag"
        assert mqtt_topic.extract_properties_from_input_topic(topic) == {
            "$.mid": "msg 1",
            "color": "red",
            "flag": "",
        }

    @pytest.mark.it("Keeps '=' characters that are part of a value")
    def test_equals_in_value(self):
        topic = "devices/fake_device/modules/fake_module/inputs/input/key=a=b"
        assert mqtt_topic.extract_properties_from_input_topic(topic) == {"key": "a=b"}

    @pytest.mark.it("Returns an empty dictionary if the topic has no properties")
    def test_no_properties(self):
        topic = "devices/fake_device/modules/fake_module/inputs/input"
        assert mqtt_topic.extract_properties_from_input_topic(topic) == {}

    @pytest.mark.it("Raises ValueError if the topic is not an input topic")
    def test_bad_topic(self):
        with pytest.raises(ValueError):
            mqtt_topic.extract_properties_from_input_topic("devices/fake_device/messages/events/")
