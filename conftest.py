import os
import tempfile
import pytest

# Set before the config module is imported: the mode flag is read once
_db_fd, _db_path = tempfile.mkstemp(prefix="resource_gc_test_", suffix=".db")
os.close(_db_fd)

os.environ["APP_MODE"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_db_path}"
os.environ["LOG_TO_FILE"] = "false"
os.environ.pop("TEST_RESOURCE_ID_FIELDS", None)

@pytest.fixture(autouse=True, scope="session")
def test_env_isolation():
    yield

    try:
        if os.path.exists(_db_path):
            os.remove(_db_path)
    except OSError:
        pass
