def test_health_endpoints(client):
    basic = client.get("/api/health")
    assert basic.status_code == 200
    assert basic.json() == {"status": "ok"}

    live = client.get("/api/health/live")
    assert live.status_code == 200
    assert live.json()["status"] == "ok"

    ready = client.get("/api/health/ready")
    assert ready.status_code in {200, 503}
    payload = ready.json()
    assert "database" in payload
    assert payload["generation"]["max_backtracks_per_batch"] >= 0
