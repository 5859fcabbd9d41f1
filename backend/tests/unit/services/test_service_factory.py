from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from bridge_shared.services.service_factory import ServiceInfo, create_fastapi_service


def _app(check_result: bool) -> FastAPI:
    async def check(app: FastAPI) -> bool:
        return check_result

    async def broken(app: FastAPI) -> bool:
        raise RuntimeError("unreachable")

    info = ServiceInfo(name="test-service", title="Test", description="t", port=0)
    checks = {"dependency": check}
    if not check_result:
        checks["broken"] = broken
    return create_fastapi_service(info, health_checks=checks)


def test_health_reports_check_results() -> None:
    client = TestClient(_app(True))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["checks"] == {"dependency": True}
    assert client.get("/").json()["service"] == "test-service"


def test_degraded_dependency_returns_503() -> None:
    response = TestClient(_app(False)).get("/health")

    assert response.status_code == 503
    assert response.json()["status"] == "degraded"
    assert response.json()["checks"] == {"dependency": False, "broken": False}


def test_metrics_endpoint_exposes_prometheus_text() -> None:
    client = TestClient(_app(True))
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "vendor_bridge_http_requests_total" in response.text
