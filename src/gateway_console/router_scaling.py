import asyncio
import logging

from fastapi import APIRouter, HTTPException
from kubernetes.client.rest import ApiException

from .config import settings
from .kube import describe_kube_error
from .models import ScalingStatus

router = APIRouter(prefix="/api/gateway/scaling", tags=["scaling"])
logger = logging.getLogger(__name__)


def _main():
    from . import main
    return main


@router.get("/status", response_model=ScalingStatus)
async def get_scaling_status():
    """Current gateway replicas alongside the configured scaling bounds."""
    ctx = _main().get_kube_context()
    if ctx.apps_v1_api is None or not ctx.namespace:
        raise HTTPException(status_code=503, detail="Kubernetes context is unavailable")

    name = settings.gateway_deployment_name
    try:
        deployment = await asyncio.to_thread(ctx.apps_v1_api.read_namespaced_deployment, name, ctx.namespace)
    except ApiException as e:
        if e.status == 404:
            raise HTTPException(status_code=404, detail=f"Deployment '{name}' not found in {ctx.namespace}") from e
        logger.error("Failed to read deployment %s/%s: %s", ctx.namespace, name, describe_kube_error(e))
        raise HTTPException(status_code=502, detail=describe_kube_error(e)) from e

    scaling = _main().get_effective_settings("scaling")
    status = deployment.status
    return ScalingStatus(
        deployment=name,
        namespace=ctx.namespace,
        replicas=(deployment.spec.replicas if deployment.spec and deployment.spec.replicas is not None else 0),
        ready_replicas=(status.ready_replicas or 0) if status else 0,
        available_replicas=(status.available_replicas or 0) if status else 0,
        min_replicas=scaling["min_replicas"],
        max_replicas=scaling["max_replicas"],
        auto_scaling_enabled=scaling["auto_scaling_enabled"],
    )
