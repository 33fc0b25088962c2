# Tests/conftest.py
#
# Shared fixtures: a controllable clock and a file-backed offline store.
#
# Imports
from datetime import datetime, timedelta, timezone
from pathlib import Path
#
# Third-Party Imports
import pytest
#
# Local Imports
from studyvault.DB.Offline_Storage_DB import OfflineStorageDB
#
#######################################################################################################################
#
# Functions:

class FakeClock:
    """Callable clock for the store; time only moves when a test advances it."""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def client_id():
    return "test_client_001"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "offline_store.sqlite"


@pytest.fixture
def store(db_path, client_id, clock):
    """An initialized store on a temporary file, closed after the test."""
    db = OfflineStorageDB(Path(db_path), client_id, clock=clock)
    assert db.initialize()
    yield db
    db.close_connection()


@pytest.fixture
def uninitialized_store(db_path, client_id, clock):
    return OfflineStorageDB(Path(db_path), client_id, clock=clock)
