"""
Pytest configuration for gateway console tests
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from gateway_console import main
from gateway_console.config import settings
from gateway_console.endpoint_monitor import EndpointProber


async def _no_sleep(seconds):
    return None


@pytest.fixture
def app_settings(tmp_path, monkeypatch):
    """Point the console at a temp store with Kubernetes and the watcher off."""
    monkeypatch.setattr(settings, "settings_store_path", str(tmp_path / "settings.json"))
    monkeypatch.setattr(settings, "defaults_path", "")
    monkeypatch.setattr(settings, "kube_enabled", False)
    monkeypatch.setattr(settings, "cleanup_on_startup", False)
    monkeypatch.setattr(settings, "watch_resources", False)
    return settings


@pytest.fixture
def probe_responses():
    """Map of probed URL -> status code or exception; unknown URLs return 200."""
    return {}


@pytest.fixture
def probe_transport(probe_responses):
    def handler(request: httpx.Request) -> httpx.Response:
        outcome = probe_responses.get(str(request.url), 200)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"status": "ok"})

    return httpx.MockTransport(handler)


@pytest.fixture
def client(app_settings, probe_transport, monkeypatch):
    """Test client with the app lifespan running."""
    monkeypatch.setattr(main, "EndpointProber", lambda: EndpointProber(transport=probe_transport, sleep=_no_sleep))
    with TestClient(main.app) as test_client:
        yield test_client
