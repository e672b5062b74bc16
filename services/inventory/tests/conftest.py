# DATABASE_URL must be set before importing ``repo`` (the engine is created at import time)
import os
import tempfile
from pathlib import Path

import pytest

_DB_DIR = Path(tempfile.mkdtemp(prefix="ledger-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'ledger.db'}"

import repo  # noqa: E402


@pytest.fixture(autouse=True)
def ledger_db():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    yield
    repo.Base.metadata.drop_all(repo.engine)


@pytest.fixture
def inventory():
    return repo.InventoryRepo()
