from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from synchub.core.config import settings
from synchub.db.session import get_db
from synchub.main import app
from synchub.services import factory


def make_token(sub: str = "ops@shop", minutes: int = 30) -> str:
    claims = {"sub": sub, "exp": datetime.now(timezone.utc) + timedelta(minutes=minutes)}
    return jwt.encode(claims, settings.SECRET_KEY.get_secret_value(), algorithm=settings.JWT_ALGORITHM)


@pytest.fixture()
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture()
def client(session_factory, job_queue, coordinator, discovery):
    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[factory.get_job_queue] = lambda: job_queue
    app.dependency_overrides[factory.get_batch_coordinator] = lambda: coordinator
    app.dependency_overrides[factory.get_discovery] = lambda: discovery
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
