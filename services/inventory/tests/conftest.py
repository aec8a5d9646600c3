# The service runs as flat modules (``main``, ``repo``); point it at a throwaway SQLite file.
import os
import sys
import tempfile
from pathlib import Path

import pytest

SERVICE_DIR = Path(__file__).resolve().parent.parent
if str(SERVICE_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICE_DIR))

_db_file = Path(tempfile.mkdtemp()) / "inventory-test.db"
os.environ["DATABASE_URL"] = f"sqlite:///{_db_file}"


@pytest.fixture()
def inventory_client():
    from fastapi.testclient import TestClient

    import repo
    from main import app

    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    with TestClient(app) as c:
        yield c
