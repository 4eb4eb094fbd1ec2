# backend/tests/conftest.py
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# db.py reads DATABASE_URL at import time, and test modules import backend.app
# during collection, so the env has to be in place before any of them load.
_tmpdir = tempfile.mkdtemp(prefix="solardd-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["DOCUMENTS_DIR"] = os.path.join(_tmpdir, "documents")
os.environ["SOLARDD_START_WORKER"] = "0"


@pytest.fixture(scope="session", autouse=True)
def _schema():
    import backend.app.db as db

    db.init_db()
    yield


@pytest.fixture(scope="session")
def client():
    import backend.app.main as main

    with TestClient(main.app) as c:
        yield c


@pytest.fixture()
def db():
    from backend.app.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def project(db):
    from backend.app import models

    p = models.Project(name="Test Solar Farm", latitude=35.9, longitude=14.4)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p
