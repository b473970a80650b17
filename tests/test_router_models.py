"""
Route tests for registered model endpoints.
"""

import httpx
import pytest


class TestModelEndpoints:
    """Test registering and editing model endpoints."""

    @pytest.fixture
    def llama(self, client):
        response = client.post(
            "/api/gateway/models/endpoints",
            json={"name": "llama-2-7b", "version": "v1.2", "endpoint": "http://llama-service:8080", "instances": 2},
        )
        assert response.status_code == 201
        return response.json()

    def test_register(self, llama):
        """New endpoints start inactive with a timestamp."""
        assert llama["status"] == "inactive"
        assert llama["instances"] == 2
        assert llama["endpoint"].startswith("http://llama-service:8080")
        assert llama["last_updated"].endswith("+00:00")

    def test_duplicate_name(self, client, llama):
        """Names are unique."""
        response = client.post(
            "/api/gateway/models/endpoints", json={"name": "llama-2-7b", "endpoint": "http://other:8080"},
        )
        assert response.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"name": "bad", "endpoint": "ftp://llama:21"},
        {"name": "bad", "endpoint": "http://llama:8080", "instances": -1},
        {"name": "bad", "endpoint": "http://llama:8080", "status": "paused"},
        {"name": "", "endpoint": "http://llama:8080"},
    ])
    def test_invalid_payload(self, client, payload):
        assert client.post("/api/gateway/models/endpoints", json=payload).status_code == 422

    def test_list_sorted(self, client, llama):
        client.post("/api/gateway/models/endpoints", json={"name": "bert-base", "endpoint": "http://bert:8080"})
        names = [record["name"] for record in client.get("/api/gateway/models/endpoints").json()]
        assert names == ["bert-base", "llama-2-7b"]

    def test_update(self, client, llama):
        """PATCH changes fields and bumps last_updated."""
        response = client.patch(
            f"/api/gateway/models/endpoints/{llama['id']}", json={"status": "active", "instances": 4},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["instances"] == 4
        assert data["last_updated"] >= llama["last_updated"]

    def test_rename_conflict(self, client, llama):
        other = client.post(
            "/api/gateway/models/endpoints", json={"name": "bert-base", "endpoint": "http://bert:8080"},
        ).json()
        response = client.patch(f"/api/gateway/models/endpoints/{other['id']}", json={"name": "llama-2-7b"})
        assert response.status_code == 409

    def test_get_and_delete(self, client, llama):
        assert client.get(f"/api/gateway/models/endpoints/{llama['id']}").json()["name"] == "llama-2-7b"
        assert client.delete(f"/api/gateway/models/endpoints/{llama['id']}").status_code == 204
        assert client.get(f"/api/gateway/models/endpoints/{llama['id']}").status_code == 404


class TestProbes:
    """Test on-demand health probes."""

    def test_probe_one(self, client, probe_responses):
        """Probing stores the result even for inactive endpoints."""
        record = client.post(
            "/api/gateway/models/endpoints", json={"name": "bert-base", "endpoint": "http://bert:8080"},
        ).json()
        probe_responses["http://bert:8080/health"] = 200

        data = client.post(f"/api/gateway/models/endpoints/{record['id']}/probe").json()

        assert data["status"] == "active"
        assert data["last_probe"]["code"] == 200

    def test_probe_all_skips_inactive(self, client, probe_responses):
        """Probe All refreshes every endpoint that is not inactive."""
        client.post(
            "/api/gateway/models/endpoints",
            json={"name": "llama", "endpoint": "http://llama:8080", "status": "active"},
        )
        client.post("/api/gateway/models/endpoints", json={"name": "gpt", "endpoint": "http://gpt:8080"})
        probe_responses["http://llama:8080/health"] = httpx.ConnectError("connection refused")

        data = client.post("/api/gateway/models/endpoints/probe").json()

        assert [(record["name"], record["status"]) for record in data] == [("llama", "error")]
        assert data[0]["last_probe"]["error"] == "connection refused"

    def test_probe_missing(self, client):
        assert client.post("/api/gateway/models/endpoints/nope/probe").status_code == 404
