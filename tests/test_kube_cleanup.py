"""
Unit tests for the startup cleanup routines.
"""

import asyncio
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from gateway_console.kube import KubeContext
from gateway_console.kube_cleanup import (
    GPU_FAILURE_MESSAGE,
    cleanup_gpu,
    cleanup_kserve_role_bindings,
    run_cleanups,
)


@pytest.fixture
def ctx():
    return KubeContext(
        config=client.Configuration(),
        current_context="opendatahub/api:6443/admin",
        namespace="opendatahub",
        core_v1_api=MagicMock(),
        custom_objects_api=MagicMock(),
        rbac_api=MagicMock(),
    )


def _binding(name: str, role_kind: str = "ClusterRole", role_name: str = "view") -> client.V1RoleBinding:
    return client.V1RoleBinding(
        metadata=client.V1ObjectMeta(name=name, namespace="project-a", labels={"opendatahub.io/dashboard": "true"}),
        role_ref=client.V1RoleRef(api_group="rbac.authorization.k8s.io", kind=role_kind, name=role_name),
        subjects=[client.RbacV1Subject(kind="ServiceAccount", name="default", namespace="project-a")],
    )


class TestCleanupGpu:
    """Test the accelerator profile migration."""

    def test_already_migrated(self, ctx):
        """A completed status ConfigMap skips the migration."""
        ctx.core_v1_api.read_namespaced_config_map.return_value = client.V1ConfigMap(
            data={"migratedCompleted": "true"},
        )

        assert cleanup_gpu(ctx) is False
        ctx.custom_objects_api.list_namespaced_custom_object.assert_not_called()

    def test_creates_profile_and_status(self, ctx):
        """No status and no profiles creates both."""
        ctx.core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")
        ctx.custom_objects_api.list_namespaced_custom_object.return_value = {"items": []}

        assert cleanup_gpu(ctx) is True

        body = ctx.custom_objects_api.create_namespaced_custom_object.call_args.kwargs["body"]
        assert body["kind"] == "AcceleratorProfile"
        assert body["metadata"]["name"] == "migrated-gpu"
        assert body["spec"]["identifier"] == "nvidia.com/gpu"
        namespace, status = ctx.core_v1_api.create_namespaced_config_map.call_args.args
        assert namespace == "opendatahub"
        assert status.data == {"migratedCompleted": "true"}

    def test_existing_profiles_update_status(self, ctx):
        """Existing profiles are left alone and the status is replaced."""
        ctx.core_v1_api.read_namespaced_config_map.return_value = client.V1ConfigMap(data={})
        ctx.custom_objects_api.list_namespaced_custom_object.return_value = {"items": [{"metadata": {}}]}

        assert cleanup_gpu(ctx) is True

        ctx.custom_objects_api.create_namespaced_custom_object.assert_not_called()
        ctx.core_v1_api.replace_namespaced_config_map.assert_called_once()

    def test_status_read_error_propagates(self, ctx):
        """Errors other than 404 abort the migration."""
        ctx.core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ApiException):
            cleanup_gpu(ctx)

    def test_requires_namespace(self, ctx):
        """The migration needs the dashboard namespace."""
        ctx.namespace = None
        with pytest.raises(RuntimeError):
            cleanup_gpu(ctx)


class TestCleanupKserveRoleBindings:
    """Test converting KServe view bindings."""

    def test_converts_view_bindings(self, ctx):
        """Only '-view' bindings to ClusterRole view are converted."""
        ctx.rbac_api.list_role_binding_for_all_namespaces.return_value = client.V1RoleBindingList(items=[
            _binding("model-a-view"),
            _binding("model-b-view", role_kind="Role", role_name="model-b-view-role"),
            _binding("edit-binding"),
        ])

        assert cleanup_kserve_role_bindings(ctx) == 1

        ctx.rbac_api.list_role_binding_for_all_namespaces.assert_called_once_with(
            label_selector="opendatahub.io/dashboard=true",
        )
        namespace, role = ctx.rbac_api.create_namespaced_role.call_args.args
        assert namespace == "project-a"
        assert role.metadata.name == "model-a-view-role"
        assert role.rules[0].verbs == ["get"]
        ctx.rbac_api.delete_namespaced_role_binding.assert_called_once_with("model-a-view", "project-a")
        _, new_binding = ctx.rbac_api.create_namespaced_role_binding.call_args.args
        assert new_binding.role_ref.kind == "Role"
        assert new_binding.role_ref.name == "model-a-view-role"

    def test_existing_role_is_reused(self, ctx):
        """A role that already exists does not stop the conversion."""
        ctx.rbac_api.list_role_binding_for_all_namespaces.return_value = client.V1RoleBindingList(
            items=[_binding("model-a-view")],
        )
        ctx.rbac_api.create_namespaced_role.side_effect = ApiException(status=409, reason="Conflict")

        assert cleanup_kserve_role_bindings(ctx) == 1
        ctx.rbac_api.create_namespaced_role_binding.assert_called_once()


class TestRunCleanups:
    """Test scheduling the cleanups."""

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, ctx, caplog):
        """Cleanup failures never raise out of the background tasks."""
        ctx.core_v1_api.read_namespaced_config_map.side_effect = ApiException(status=403, reason="Forbidden")
        ctx.rbac_api.list_role_binding_for_all_namespaces.return_value = client.V1RoleBindingList(items=[])

        tasks = run_cleanups(ctx)
        await asyncio.gather(*tasks)

        assert len(tasks) == 2
        assert f"{GPU_FAILURE_MESSAGE} Forbidden" in caplog.text
