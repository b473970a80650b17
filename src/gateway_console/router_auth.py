"""API key management for the Authentication & Authorization tab."""

import secrets
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Response

from .models import ApiKeyCreate, ApiKeyInfo, ApiKeyUpdate

router = APIRouter(prefix="/api/gateway/auth", tags=["authentication"])

API_KEYS = "api_keys"
API_KEY_PREFIX = "ak_"
MASKED_KEY_LENGTH = 15


def _main():
    from . import main
    return main


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


def mask_api_key(key: str) -> str:
    return f"{API_KEY_PREFIX}{'*' * MASKED_KEY_LENGTH}" if key.startswith(API_KEY_PREFIX) else "*" * MASKED_KEY_LENGTH


def _public(record: dict) -> dict:
    return dict(record, key=mask_api_key(record["key"]))


def _require_key(key_id: str) -> dict:
    record = _main().get_settings_store().get_record(API_KEYS, key_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")
    return record


@router.get("/api-keys", response_model=list[ApiKeyInfo])
async def list_api_keys():
    """List API keys with the key material masked."""
    records = _main().get_settings_store().list_records(API_KEYS)
    records.sort(key=lambda record: record.get("created_at", ""))
    return [_public(record) for record in records]


@router.post("/api-keys", response_model=ApiKeyInfo, status_code=201)
async def create_api_key(payload: ApiKeyCreate):
    """Generate a key. The full key is only returned here."""
    if not _main().get_effective_settings("authentication")["api_keys_enabled"]:
        raise HTTPException(status_code=409, detail="API key authentication is disabled")
    key_id = uuid.uuid4().hex[:12]
    record = _main().get_settings_store().put_record(
        API_KEYS,
        key_id,
        {
            "name": payload.name.strip(),
            "key": generate_api_key(),
            "permissions": payload.permissions,
            "created_at": datetime.now(timezone.utc).isoformat(),
        },
    )
    _main().audit_event("auth", "API key %s created with %s permissions", key_id, payload.permissions)
    return record


@router.patch("/api-keys/{key_id}", response_model=ApiKeyInfo)
async def update_api_key(key_id: str, payload: ApiKeyUpdate):
    _require_key(key_id)
    updates = payload.model_dump(exclude_none=True)
    if "name" in updates:
        updates["name"] = updates["name"].strip()
    record = _main().get_settings_store().update_record(API_KEYS, key_id, updates)
    if record is None:
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")
    if "permissions" in updates:
        _main().audit_event("auth", "API key %s permissions set to %s", key_id, updates["permissions"])
    return _public(record)


@router.delete("/api-keys/{key_id}", status_code=204)
async def delete_api_key(key_id: str):
    if not _main().get_settings_store().delete_record(API_KEYS, key_id):
        raise HTTPException(status_code=404, detail=f"API key '{key_id}' not found")
    _main().audit_event("auth", "API key %s revoked", key_id)
    return Response(status_code=204)
