"""
Route tests for the scaling status.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes import client as k8s
from kubernetes.client.rest import ApiException

from gateway_console import main
from gateway_console.kube import KubeContext


@pytest.fixture
def apps_api(client, monkeypatch):
    api = MagicMock()
    ctx = KubeContext(
        config=k8s.Configuration(),
        current_context="opendatahub/api:6443/admin",
        namespace="opendatahub",
        apps_v1_api=api,
    )
    monkeypatch.setattr(main, "_kube", ctx)
    return api


class TestScalingStatus:
    """Test reading the gateway deployment."""

    def test_kube_unavailable(self, client):
        assert client.get("/api/gateway/scaling/status").status_code == 503

    def test_status(self, client, apps_api):
        apps_api.read_namespaced_deployment.return_value = k8s.V1Deployment(
            spec=k8s.V1DeploymentSpec(
                replicas=3,
                selector=k8s.V1LabelSelector(match_labels={"app": "api-gateway"}),
                template=k8s.V1PodTemplateSpec(),
            ),
            status=k8s.V1DeploymentStatus(ready_replicas=2, available_replicas=2),
        )
        client.put("/api/gateway/settings/scaling", json={"max_replicas": 10})

        response = client.get("/api/gateway/scaling/status")

        assert response.status_code == 200
        assert response.json() == {
            "deployment": "api-gateway",
            "namespace": "opendatahub",
            "replicas": 3,
            "ready_replicas": 2,
            "available_replicas": 2,
            "min_replicas": 2,
            "max_replicas": 10,
            "auto_scaling_enabled": True,
        }
        apps_api.read_namespaced_deployment.assert_called_once_with("api-gateway", "opendatahub")

    def test_missing_deployment(self, client, apps_api):
        apps_api.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")
        assert client.get("/api/gateway/scaling/status").status_code == 404

    def test_api_error(self, client, apps_api):
        apps_api.read_namespaced_deployment.side_effect = ApiException(status=403, reason="Forbidden")
        response = client.get("/api/gateway/scaling/status")
        assert response.status_code == 502
        assert response.json()["detail"] == "Forbidden"
