def test_health_endpoint(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_liveness_endpoint(client):
    response = client.get("/api/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_readiness_reports_database_section(client):
    response = client.get("/api/health/ready")
    assert response.status_code in {200, 503}
    payload = response.json()
    assert "database" in payload
    assert set(payload["database"]) >= {"ok", "schema_ok", "missing_tables", "missing_columns"}


def test_responses_carry_request_id_and_security_headers(client):
    response = client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
