from fastapi import FastAPI
from fastapi.testclient import TestClient

from filer.infra.observability.metrics import metrics_app
from filer.infra.observability.middleware import MetricsMiddleware


def build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(MetricsMiddleware)

    @app.get("/api/v1/filer/{backend}/{path:path}")
    def get_object(backend: str, path: str):
        return {"backend": backend, "path": path}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.mount("/metrics", metrics_app)
    return app


def test_metrics_route_template_label():
    app = build_app()
    client = TestClient(app)
    # trigger a request on a templated route
    resp = client.get("/api/v1/filer/media/photos/cat.jpg")
    assert resp.status_code == 200

    # fetch metrics and assert low-cardinality route label is used
    m = client.get("/metrics")
    assert m.status_code == 200
    metrics_text = m.text
    assert "http_requests_total" in metrics_text
    assert 'route="/api/v1/filer/{backend}/{path:path}"' in metrics_text
    assert "photos/cat.jpg" not in metrics_text


def test_latency_metric_present():
    app = build_app()
    client = TestClient(app)
    client.get("/api/v1/filer/media/a.txt")
    m = client.get("/metrics")
    assert m.status_code == 200
    assert "http_request_duration_seconds" in m.text


def test_request_id_propagation():
    app = build_app()
    client = TestClient(app)

    # auto-generate when missing
    r1 = client.get("/health")
    rid1 = r1.headers.get("X-Request-Id")
    assert rid1 is not None and len(rid1) > 0

    # echo when provided
    rid = "req-abc-123"
    r2 = client.get("/health", headers={"X-Request-Id": rid})
    assert r2.headers.get("X-Request-Id") == rid


def test_storage_counters_exported(client):
    client.put("/api/v1/filer/media/counted.bin", content=b"12345")
    client.delete("/api/v1/filer/media/counted.bin")
    metrics_text = client.get("/metrics").text
    assert 'filer_bytes_uploaded_total{backend="media"}' in metrics_text
    assert 'filer_objects_deleted_total{backend="media"}' in metrics_text
