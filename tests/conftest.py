"""Pytest fixtures for OAuth1 client tests."""

import os
import tempfile

import pytest

from oauth1_mcp.config import Settings
from oauth1_mcp.driver import OAuth1Driver
from oauth1_mcp.token_store import CredentialStore
from oauth1_mcp.transport import HttpTransport

API_BASE_URL = "https://api.example.com"


@pytest.fixture
def temp_storage_path():
    """Create a temporary credential file path for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "credentials.json")


@pytest.fixture
def settings(temp_storage_path) -> Settings:
    """Return a Settings object with test credentials.

    The callback server and browser launch are off so tests stay offline.

    Returns:
        Settings object configured with test OAuth1 credentials.
    """
    return Settings(
        consumer_key="test_consumer_key",
        consumer_secret="test_consumer_secret",
        api_base_url=API_BASE_URL,
        credentials_path=temp_storage_path,
        callback_server_enabled=False,
        launch_browser=False,
    )


@pytest.fixture
def credential_store(temp_storage_path) -> CredentialStore:
    """Create a CredentialStore with temporary storage."""
    return CredentialStore(temp_storage_path)


@pytest.fixture
def transport():
    """Create an HttpTransport and close it afterwards."""
    transport = HttpTransport(timeout=5.0)
    yield transport
    transport.close()


@pytest.fixture
def opened_urls() -> list[str]:
    """Collects URLs the driver tries to open in a browser."""
    return []


@pytest.fixture
def driver(settings, transport, credential_store, opened_urls):
    """Create an OAuth1Driver with offline collaborators."""
    driver = OAuth1Driver(
        settings,
        transport=transport,
        credential_store=credential_store,
        browser_opener=opened_urls.append,
    )
    yield driver
    driver.close()
