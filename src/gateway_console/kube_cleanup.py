"""Best-effort cluster cleanups triggered once at startup."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from kubernetes import client
from kubernetes.client.rest import ApiException

from .kube import KubeContext, describe_kube_error

logger = logging.getLogger(__name__)

DASHBOARD_LABEL = "opendatahub.io/dashboard"

GPU_MIGRATION_CONFIG_MAP = "migration-gpu-status"
ACCELERATOR_GROUP = "dashboard.opendatahub.io"
ACCELERATOR_VERSION = "v1"
ACCELERATOR_PLURAL = "acceleratorprofiles"
GPU_IDENTIFIER = "nvidia.com/gpu"

KSERVE_VIEW_SUFFIX = "-view"

GPU_FAILURE_MESSAGE = "Unable to fully convert GPU to use accelerator profiles."
KSERVE_FAILURE_MESSAGE = "Unable to fully convert kserve rolebindings to use secure role."


def _migrated_gpu_profile(namespace: str) -> dict:
    return {
        "apiVersion": f"{ACCELERATOR_GROUP}/{ACCELERATOR_VERSION}",
        "kind": "AcceleratorProfile",
        "metadata": {"name": "migrated-gpu", "namespace": namespace},
        "spec": {
            "displayName": "NVIDIA GPU",
            "identifier": GPU_IDENTIFIER,
            "enabled": True,
            "tolerations": [
                {"effect": "NoSchedule", "key": GPU_IDENTIFIER, "operator": "Exists"},
            ],
        },
    }


def cleanup_gpu(ctx: KubeContext) -> bool:
    """Create a default accelerator profile once. Returns True when the migration ran."""
    namespace = ctx.namespace
    if not namespace:
        raise RuntimeError("Dashboard namespace is unknown")

    try:
        status = ctx.core_v1_api.read_namespaced_config_map(GPU_MIGRATION_CONFIG_MAP, namespace)
    except ApiException as e:
        if e.status != 404:
            raise
        status = None
    if status is not None and (status.data or {}).get("migratedCompleted") == "true":
        return False

    profiles = ctx.custom_objects_api.list_namespaced_custom_object(
        group=ACCELERATOR_GROUP,
        version=ACCELERATOR_VERSION,
        namespace=namespace,
        plural=ACCELERATOR_PLURAL,
    )
    if not profiles.get("items"):
        ctx.custom_objects_api.create_namespaced_custom_object(
            group=ACCELERATOR_GROUP,
            version=ACCELERATOR_VERSION,
            namespace=namespace,
            plural=ACCELERATOR_PLURAL,
            body=_migrated_gpu_profile(namespace),
        )
        logger.info("Created accelerator profile 'migrated-gpu' in %s", namespace)

    body = client.V1ConfigMap(
        metadata=client.V1ObjectMeta(name=GPU_MIGRATION_CONFIG_MAP, namespace=namespace),
        data={"migratedCompleted": "true"},
    )
    if status is None:
        ctx.core_v1_api.create_namespaced_config_map(namespace, body)
    else:
        ctx.core_v1_api.replace_namespaced_config_map(GPU_MIGRATION_CONFIG_MAP, namespace, body)
    return True


def _needs_conversion(binding) -> bool:
    role_ref = binding.role_ref
    return (
        binding.metadata.name.endswith(KSERVE_VIEW_SUFFIX)
        and role_ref.kind == "ClusterRole"
        and role_ref.name == "view"
    )


def cleanup_kserve_role_bindings(ctx: KubeContext) -> int:
    """Move dashboard KServe view bindings from ClusterRole 'view' to a get-only Role."""
    bindings = ctx.rbac_api.list_role_binding_for_all_namespaces(label_selector=f"{DASHBOARD_LABEL}=true")
    converted = 0
    for binding in bindings.items:
        if not _needs_conversion(binding):
            continue
        name = binding.metadata.name
        namespace = binding.metadata.namespace
        role_name = f"{name}-role"

        role = client.V1Role(
            metadata=client.V1ObjectMeta(name=role_name, namespace=namespace, labels={DASHBOARD_LABEL: "true"}),
            rules=[
                client.V1PolicyRule(api_groups=["serving.kserve.io"], resources=["inferenceservices"], verbs=["get"]),
            ],
        )
        try:
            ctx.rbac_api.create_namespaced_role(namespace, role)
        except ApiException as e:
            if e.status != 409:
                raise

        ctx.rbac_api.delete_namespaced_role_binding(name, namespace)
        ctx.rbac_api.create_namespaced_role_binding(
            namespace,
            client.V1RoleBinding(
                metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=binding.metadata.labels),
                role_ref=client.V1RoleRef(api_group="rbac.authorization.k8s.io", kind="Role", name=role_name),
                subjects=binding.subjects,
            ),
        )
        converted += 1
        logger.info("Converted rolebinding %s/%s to role %s", namespace, name, role_name)
    return converted


async def _run_best_effort(func: Callable[[KubeContext], object], ctx: KubeContext, failure_message: str) -> None:
    try:
        await asyncio.to_thread(func, ctx)
    except Exception as e:
        logger.error("%s %s", failure_message, describe_kube_error(e))


def run_cleanups(ctx: KubeContext) -> list[asyncio.Task]:
    """Schedule both cleanups in the background; failures are logged only."""
    return [
        asyncio.create_task(_run_best_effort(cleanup_gpu, ctx, GPU_FAILURE_MESSAGE)),
        asyncio.create_task(_run_best_effort(cleanup_kserve_role_bindings, ctx, KSERVE_FAILURE_MESSAGE)),
    ]
