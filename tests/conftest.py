"""
Pytest configuration and shared fixtures
"""
import os
import sys
import time
import pytest
from unittest.mock import MagicMock

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from subco_agent.core.snapshots import DeviceIdentity
from subco_agent.core.state import VersionState
from subco_agent.mqtt_topics import TopicSchema


class RecordingTransport:
    """Stands in for BrokerSession: records publishes, connected flag is settable."""

    def __init__(self, connected=True, broker_url="mqtt://test.mqtt.local:1883"):
        self.connected = connected
        self.broker_url = broker_url
        self.published = []
        self.fail_publish = False

    def is_connected(self):
        return self.connected

    def publish(self, topic, payload):
        if self.fail_publish:
            raise RuntimeError("broker went away")
        self.published.append((topic, payload))
        return True

    def on(self, topic):
        return [p for t, p in self.published if t == topic]


@pytest.fixture
def mock_env(monkeypatch):
    """Set up mock environment variables"""
    env_vars = {
        'MQTT_BROKER_URL': 'mqtt://test.mqtt.local:1883',
        'PORT': '3000',
        'DEVICE_IP': '10.0.0.42',
        'DEVICE_MAC': 'aa:bb:cc:dd:ee:ff',
        'IMAGE_FAMILY': 'subco',
        'HEARTBEAT_S': '30',
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    return env_vars


@pytest.fixture
def topics():
    return TopicSchema("/")


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def state():
    return VersionState(current="1.0.0", current_image_version="fleet-subco:v1")


@pytest.fixture
def identity():
    return DeviceIdentity(ip="10.0.0.42", mac="aa:bb:cc:dd:ee:ff")


@pytest.fixture
def started():
    return time.monotonic()


@pytest.fixture
def mock_mqtt_client():
    """Create a mock paho client"""
    client = MagicMock()
    client.is_connected.return_value = True
    info = MagicMock()
    info.rc = 0
    info.is_published.return_value = True
    client.publish.return_value = info
    return client
