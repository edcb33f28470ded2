import os, sys, tempfile
import pytest

# Ensure the package is importable from a source checkout
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Configure before the app module is imported; settings are read at import time
SECRET = "s3cret"
os.environ["API_SECRET"] = SECRET
os.environ["EBK_DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="ebk-test-"), "ebk.db")
os.environ.setdefault("LOG_JSON", "0")
os.environ["AUDIT_BACKEND"] = "sqlite"

from ebk.main import app, _startup
from ebk.db import init_db, reset_db

init_db()
_startup()

# Reset database before each test for isolation
@pytest.fixture(autouse=True)
def _reset_db():
    reset_db()
    yield

@pytest.fixture
def secret():
    return SECRET
