"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from brokerlink.settings import BrokerCredentials
from tests.helpers import FakeWebSocket, create_async_response


@pytest.fixture
def api_key():
    """Test API key."""
    return "test_api_key_123456"


@pytest.fixture
def api_secret():
    """Test API secret."""
    return "test_api_secret_789012"


@pytest.fixture
def passphrase():
    """Test passphrase."""
    return "test_passphrase_345678"


@pytest.fixture
def credentials(api_key, api_secret):
    return BrokerCredentials(api_key=api_key, api_secret=api_secret)


@pytest.fixture
def okx_credentials(api_key, api_secret, passphrase):
    return BrokerCredentials(api_key=api_key, api_secret=api_secret, passphrase=passphrase)


@pytest.fixture
def fake_ws():
    return FakeWebSocket()


@pytest.fixture
def mock_http(fake_ws):
    """Attach a mock session to a connector.

    REST calls answer with ``payloads`` in order; each payload is either
    response JSON (status 200) or a prepared ``create_async_response``.
    ``ws_connect`` hands out the ``fake_ws`` fixture.
    """

    def _attach(connector, *payloads):
        responses = [
            p if isinstance(p, AsyncMock) else create_async_response(200, p) for p in payloads
        ]
        session = MagicMock()
        session.request = MagicMock(side_effect=responses)
        session.ws_connect = AsyncMock(return_value=fake_ws)
        session.close = AsyncMock()
        connector._ensure_session = AsyncMock(return_value=session)
        return session

    return _attach
