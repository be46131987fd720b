BASE = "/api/v1/filer"


def test_http_exception_problem_json(client):
    # missing object -> 404 with RFC7807 body
    r = client.get(f"{BASE}/media/does/not/exist", headers={"X-Request-Id": "rid-1"})
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    for key in ("type", "title", "status", "detail", "instance", "error_code"):
        assert key in body
    assert body["status"] == 404
    assert body["error_code"] == "not_found"
    assert body["request_id"] == "rid-1"


def test_unknown_backend_problem_json(client):
    r = client.get(f"{BASE}/unknown/a.txt")
    assert r.status_code == 404
    assert r.json()["error_code"] == "not_handled"


def test_validation_error_problem_json(client):
    # non-integer limit should trigger 422 Validation Error
    r = client.get(f"{BASE}/media", params={"limit": "many"})
    assert r.status_code == 422
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body.get("status") == 422
    assert body.get("error_code") == "validation_error"
    assert isinstance(body.get("detail"), list)


def test_precondition_failed_has_no_problem_body(client):
    client.put(f"{BASE}/media/a.txt", content=b"x")
    r = client.get(f"{BASE}/media/a.txt", headers={"If-Match": '"nope"'})
    assert r.status_code == 412
    assert r.content == b""
