"""
Tests for the /metrics and /healthz endpoints.
"""
from fastapi.testclient import TestClient

from deployment_tracker.monitoring import metrics
from deployment_tracker.monitoring.server import create_app


def test_metrics_endpoint_exposes_controller_metrics():
    metrics.POST_RECORD_OK.inc()
    client = TestClient(create_app())

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert "deptracker_post_record_ok_total" in response.text
    assert "deptracker_events_processed_timer" in response.text


def test_healthz_before_and_after_sync():
    state = {"synced": False}
    client = TestClient(create_app(is_ready=lambda: state["synced"]))

    assert client.get("/healthz").status_code == 503

    state["synced"] = True
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_healthz_without_readiness_check():
    assert TestClient(create_app()).get("/healthz").status_code == 200
