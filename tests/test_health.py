from fastapi.testclient import TestClient

from events_pipeline.core.config import Settings
from events_pipeline.main import app, create_app


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_app_without_telemetry() -> None:
    settings = Settings(app_name="events-test", otel_enabled=False)
    application = create_app(settings)

    assert application.title == "events-test"
    assert application.state.telemetry.enabled is False
    with TestClient(application) as client:
        assert client.get("/healthz").json() == {"status": "ok"}
    assert application.state.telemetry is None
