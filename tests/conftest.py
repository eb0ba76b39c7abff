"""Pytest fixtures and configuration for the test suite."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest
from pydantic import HttpUrl

from tasksync.api.client import TaskStoreClient
from tasksync.api.models import UserIdentity
from tasksync.config import ClientConfig
from tasksync.realtime import LocalChangeFeed
from tasksync.view_model import TaskViewModel
from tests.fakes import FakeTaskStore, RecordingNotifier
from tests.test_api_client_common import ALICE_ID, BOB_ID, DEFAULT_BACKEND_URL, TEST_ANON_KEY


@pytest.fixture
def config() -> ClientConfig:
    """Provide a ClientConfig instance for testing.

    Retries are kept but backoff is zero so retry tests do not sleep.

    Returns:
        ClientConfig: A ClientConfig instance with test values.
    """
    return ClientConfig(
        backend_url=HttpUrl(DEFAULT_BACKEND_URL),
        anon_key=TEST_ANON_KEY,
        http_backoff_start_seconds=0.0,
        http_user_agent="tasksync/test",
    )


@pytest.fixture
def client(config: ClientConfig) -> TaskStoreClient:
    """Provide a TaskStoreClient instance for testing."""
    return TaskStoreClient(config)


@pytest.fixture
def alice() -> UserIdentity:
    return UserIdentity(id=ALICE_ID, email="alice@example.com", full_name="Alice")


@pytest.fixture
def bob() -> UserIdentity:
    return UserIdentity(id=BOB_ID, email="bob@example.com", full_name="Bob")


@pytest.fixture
def store() -> FakeTaskStore:
    """Provide an in-memory task store that publishes changes to ``feed``."""
    return FakeTaskStore()


@pytest.fixture
def feed(store: FakeTaskStore) -> LocalChangeFeed:
    return store.feed


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def view_model(
    store: FakeTaskStore, feed: LocalChangeFeed, notifier: RecordingNotifier
) -> TaskViewModel:
    """Provide a TaskViewModel wired to the fake store and local feed."""
    return TaskViewModel(store, feed, notifier)


@pytest.fixture
def temp_config_file() -> Generator[str, None, None]:
    """Create a temporary TOML config file.

    Yields:
        str: Path to a temporary TOML config file.
    """
    config_content = f"""
backend_url = "{DEFAULT_BACKEND_URL}"
anon_key = "file_anon_key"
account_email = "alice@example.com"
account_password = "file_password"
log_level = "WARNING"
"""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(config_content)
        temp_path = f.name

    try:
        yield temp_path
    finally:
        Path(temp_path).unlink(missing_ok=True)
