"""HTTP helpers for console route handlers."""

import json
from typing import Any

from fastapi import HTTPException


def parse_json_object(body: bytes, *, required: bool = True) -> dict[str, Any]:
    """Parse a request body that must be a JSON object."""
    if not body:
        if required:
            raise HTTPException(status_code=400, detail="Request body is required")
        return {}
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON body: {e.msg}") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


def split_values_payload(payload: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Accept either {"values": {...}, "replace": bool} or a flat object of fields."""
    replace = bool(payload.get("replace", False))
    if "values" in payload:
        values = payload.get("values")
        if not isinstance(values, dict):
            raise HTTPException(status_code=400, detail="'values' must be an object")
        return values, replace
    return {k: v for k, v in payload.items() if k != "replace"}, replace
