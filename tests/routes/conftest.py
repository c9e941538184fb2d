import pytest
from fastapi.testclient import TestClient

from therapy_booking.api.dependencies.database import get_db
from therapy_booking.api.dependencies.services import get_cache_service_dep
from therapy_booking.main import create_app


@pytest.fixture
def client(db, cache_service):
    app = create_app()

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cache_service_dep] = lambda: cache_service
    return TestClient(app)


@pytest.fixture
def patient_headers(patient):
    return {"X-User-Id": patient.id}


@pytest.fixture
def therapist_headers(therapist):
    return {"X-User-Id": therapist.id, "X-User-Type": "therapist"}
