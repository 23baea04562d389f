# backend/tests/conftest.py
import os
import tempfile

# Must be set before db/app are imported by any test module
_db_dir = tempfile.mkdtemp(prefix="contracts-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ.setdefault("DEFAULT_CURRENCY", "USD")
