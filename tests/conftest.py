import json
import os
import sys
import pytest
from unittest.mock import MagicMock

# Add the project root to the path for proper imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from utils.logger import setup_logger
from utils.config import ClientConfig
from core.client import KonduktoClient
from core.transport import RawResponse, Transport

# Setup test logger
@pytest.fixture
def logger():
    return setup_logger("DEBUG")

# Client config fixture
@pytest.fixture
def client_config():
    return ClientConfig(host="https://kondukto.example.com", token="test_token")

def _make_response(status_code=200, payload=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    if text is None:
        text = "" if payload is None else json.dumps(payload)
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response

# Factory for requests.Response stand-ins
@pytest.fixture
def make_response():
    return _make_response

# Mock HTTP session
@pytest.fixture
def mock_session():
    session = MagicMock()
    session.headers = {}
    return session

@pytest.fixture
def transport(client_config, mock_session):
    return Transport(client_config, session=mock_session)

# Mock transport returning canned RawResponses
@pytest.fixture
def mock_transport():
    mock = MagicMock(spec=Transport)
    mock.get.return_value = RawResponse(200, {})
    mock.post.return_value = RawResponse(200, {})
    return mock

@pytest.fixture
def client(mock_transport):
    return KonduktoClient(mock_transport)

# Mock client for the lifecycle and release layers
@pytest.fixture
def mock_client():
    return MagicMock(spec=KonduktoClient)

# Clock and sleep doubles for polling loops
@pytest.fixture
def fake_clock():
    class FakeClock:
        def __init__(self):
            self.now = 0.0
            self.sleeps = []

        def __call__(self):
            return self.now

        def sleep(self, seconds):
            self.sleeps.append(seconds)
            self.now += seconds

    return FakeClock()
