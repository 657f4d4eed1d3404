import pytest
from fastapi.testclient import TestClient

from langlog_server.api_service.api_v1.deps import get_db, get_job_publisher
from langlog_server.api_service.main import app


@pytest.fixture
def client(db, job_queue):
    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_publisher] = lambda: job_queue
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(user):
    return {"X-User-Id": str(user.id)}
