import time

import pytest
from fastapi.testclient import TestClient

from dind_backend.api.lifespan.manager import stop_accepting_requests
from dind_backend.api.main import create_app
from dind_backend.core.config import Settings
from dind_backend.core.exceptions import ConfigurationError, MandatoryDependencyError

from .conftest import FakeAdapter


def wait_for_state(client, expected, attempts=50):
    response = client.get("/health/ready")
    for _ in range(attempts):
        if response.json()["overall_state"] == expected:
            break
        time.sleep(0.02)
        response = client.get("/health/ready")
    return response


def test_health_check(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["overall_state"] == "ready"
        assert data["phase"] == "running"
        assert data["summary"]["connected"] == 1
        assert "rss_bytes" in data["memory_usage"]


def test_root(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "service" in data
        assert data["dependencies"] == ["database"]


def test_ready_when_all_mandatory_connected(make_app):
    app = make_app([(FakeAdapter("database"), True), (FakeAdapter("cache"), False)])
    with TestClient(app) as client:
        response = wait_for_state(client, "ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"


def test_mandatory_database_down_is_not_ready(make_app):
    app = make_app([
        (FakeAdapter("database", always_fail=True), True),
        (FakeAdapter("cache"), False),
    ])
    with TestClient(app) as client:
        response = client.get("/health/ready")
        assert response.status_code == 503
        data = response.json()
        assert data["overall_state"] == "unhealthy"
        assert data["dependencies"][0]["name"] == "database"
        assert data["dependencies"][0]["state"] == "error"
        assert data["dependencies"][0]["last_error"]

        health = client.get("/health")
        assert health.status_code == 503
        assert health.json()["status"] == "unhealthy"

        assert client.get("/health/live").status_code == 200


def test_optional_cache_down_is_degraded_but_alive(make_app):
    app = make_app([
        (FakeAdapter("database"), True),
        (FakeAdapter("cache", always_fail=True), False),
    ])
    with TestClient(app) as client:
        response = wait_for_state(client, "degraded")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

        live = client.get("/health/live")
        assert live.status_code == 200
        assert live.json()["status"] == "alive"


def test_liveness_fails_on_internal_fault(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        app.state.coordinator.record_fault("worker crashed")
        response = client.get("/health/live")
        assert response.status_code == 500
        assert response.json()["fault"] == "worker crashed"


def test_startup_probe(make_app):
    app = make_app([(FakeAdapter("database"), True)])

    # lifespan not run yet
    client = TestClient(app)
    assert client.get("/health/startup").status_code == 503

    with TestClient(app) as client:
        response = client.get("/health/startup")
        assert response.status_code == 200
        assert response.json()["phase"] == "running"


def test_dependency_details(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        response = client.get("/health/dependencies/database")
        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "connected"
        assert data["probe"] == "connected"
        assert data["mandatory"] is True

        missing = client.get("/health/dependencies/queue")
        assert missing.status_code == 404
        assert missing.json()["dependency"] == "queue"


def test_metrics_endpoint(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "backend_dependency_state" in response.text
        assert "backend_lifecycle_phase" in response.text


def test_draining_refuses_non_health_requests(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        stop_accepting_requests(app)

        assert client.get("/").status_code == 503
        assert client.get("/health/live").status_code == 200
        assert client.get("/metrics").status_code == 200


def test_request_id_header(make_app):
    app = make_app([(FakeAdapter("database"), True)])
    with TestClient(app) as client:
        response = client.get("/", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


def test_shutdown_stops_coordinator(make_app):
    database = FakeAdapter("database")
    app = make_app([(database, True)])
    with TestClient(app):
        pass

    assert app.state.coordinator.phase.value == "stopped"
    assert app.state.accepting_requests is False
    assert database.disconnect_calls == 1


def test_fail_fast_aborts_startup(make_app):
    app = make_app(
        [(FakeAdapter("database", always_fail=True), True)],
        EXIT_ON_MANDATORY_FAILURE=True,
    )
    with pytest.raises(MandatoryDependencyError):
        with TestClient(app):
            pass


def test_missing_database_url_is_configuration_error():
    settings = Settings(_env_file=None, ENVIRONMENT="development", DATABASE_URL="")
    with pytest.raises(ConfigurationError):
        create_app(settings)
