"""Shared pytest fixtures for all tests."""

import pytest

from content_store.data_store import DataStore
from drive.opener import open_drive
from drive.options import OpenDriveOptions


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    """In-memory content store shared by every drive opened in one test."""
    return DataStore()


@pytest.fixture
def drive_dir(tmp_path):
    return str(tmp_path / "drive")


@pytest.fixture
def options(drive_dir):
    return OpenDriveOptions(create=True, directory=drive_dir, identity="alice")


@pytest.fixture
async def drive(store, options):
    """
    A drive named "test" opened with create.

    Yields:
        The open drive; it is closed after the test
    """
    d = await open_drive(store, "test", options)
    yield d
    await d.close()
