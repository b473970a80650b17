"""Registered model endpoints for the Model Management tab."""

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Response

from .endpoint_monitor import MODEL_ENDPOINTS
from .models import ModelEndpointCreate, ModelEndpointInfo, ModelEndpointUpdate

router = APIRouter(prefix="/api/gateway/models", tags=["models"])


def _main():
    from . import main
    return main


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_endpoint(endpoint_id: str) -> dict:
    record = _main().get_settings_store().get_record(MODEL_ENDPOINTS, endpoint_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Model endpoint '{endpoint_id}' not found")
    return record


def _ensure_unique_name(name: str, *, exclude_id: str | None = None) -> None:
    for record in _main().get_settings_store().list_records(MODEL_ENDPOINTS):
        if record["name"] == name and record["id"] != exclude_id:
            raise HTTPException(status_code=409, detail=f"Model '{name}' is already registered")


@router.get("/endpoints", response_model=list[ModelEndpointInfo])
async def list_model_endpoints():
    """Models currently accessible through the API Gateway."""
    records = _main().get_settings_store().list_records(MODEL_ENDPOINTS)
    records.sort(key=lambda record: record["name"])
    return records


@router.post("/endpoints", response_model=ModelEndpointInfo, status_code=201)
async def register_model_endpoint(payload: ModelEndpointCreate):
    name = payload.name.strip()
    _ensure_unique_name(name)
    endpoint_id = uuid.uuid4().hex[:12]
    record = _main().get_settings_store().put_record(
        MODEL_ENDPOINTS,
        endpoint_id,
        {
            "name": name,
            "version": payload.version.strip(),
            "endpoint": str(payload.endpoint),
            "status": payload.status,
            "instances": payload.instances,
            "last_updated": _now(),
        },
    )
    _main().audit_event("model", "Model %s %s registered at %s", name, record["version"], record["endpoint"])
    return record


@router.post("/endpoints/probe", response_model=list[ModelEndpointInfo])
async def probe_all_model_endpoints():
    """Refresh the status of every endpoint not marked inactive."""
    return await _main().get_endpoint_monitor().refresh_once()


@router.get("/endpoints/{endpoint_id}", response_model=ModelEndpointInfo)
async def get_model_endpoint(endpoint_id: str):
    return _require_endpoint(endpoint_id)


@router.patch("/endpoints/{endpoint_id}", response_model=ModelEndpointInfo)
async def update_model_endpoint(endpoint_id: str, payload: ModelEndpointUpdate):
    current = _require_endpoint(endpoint_id)
    updates = payload.model_dump(exclude_none=True)
    if "name" in updates:
        updates["name"] = updates["name"].strip()
        _ensure_unique_name(updates["name"], exclude_id=endpoint_id)
    if "version" in updates:
        updates["version"] = updates["version"].strip()
    if "endpoint" in updates:
        updates["endpoint"] = str(updates["endpoint"])
        if updates["endpoint"] != current["endpoint"]:
            _main().get_prober().forget(current["endpoint"])
    updates["last_updated"] = _now()
    record = _main().get_settings_store().update_record(MODEL_ENDPOINTS, endpoint_id, updates)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Model endpoint '{endpoint_id}' not found")
    return record


@router.delete("/endpoints/{endpoint_id}", status_code=204)
async def deregister_model_endpoint(endpoint_id: str):
    record = _require_endpoint(endpoint_id)
    _main().get_settings_store().delete_record(MODEL_ENDPOINTS, endpoint_id)
    _main().get_prober().forget(record["endpoint"])
    _main().audit_event("model", "Model %s deregistered", record["name"])
    return Response(status_code=204)


@router.post("/endpoints/{endpoint_id}/probe", response_model=ModelEndpointInfo)
async def probe_model_endpoint(endpoint_id: str):
    """Probe one endpoint now, regardless of its current status."""
    record = _require_endpoint(endpoint_id)
    routing = _main().get_effective_settings("routing")
    updated = await _main().get_endpoint_monitor().probe_record(record, routing)
    if updated is None:
        raise HTTPException(status_code=404, detail=f"Model endpoint '{endpoint_id}' not found")
    return updated
