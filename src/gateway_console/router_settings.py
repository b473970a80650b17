"""Settings routes: read, save, reset and test each API Gateway settings tab."""

import threading
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from .http_utils import parse_json_object, split_values_payload
from .settings_schema import (
    SECRET_MASK,
    SettingsValidationError,
    check_constraints,
    effective_values,
    fields_for_tab,
    mask_values,
    normalize_updates,
    schema_payload,
    tab_names,
    validation_report,
)

router = APIRouter(prefix="/api/gateway", tags=["settings"])

SETTINGS_WRITE_LOCK = threading.Lock()


def _main():
    from . import main
    return main


def _require_tab(tab: str) -> None:
    if tab not in tab_names():
        raise HTTPException(status_code=404, detail=f"Unknown settings tab '{tab}'")


def _tab_payload(tab: str) -> dict[str, Any]:
    store = _main().get_settings_store()
    overrides = store.get_section(tab)
    return {
        "tab": tab,
        "values": mask_values(tab, _main().get_effective_settings(tab)),
        "overrides": mask_values(tab, overrides),
        "updated_at": store.section_updated_at(tab),
    }


def _kept_secrets(tab: str, raw_values: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    """Stored secrets the client echoed back as the mask placeholder."""
    return {
        field["name"]: current[field["name"]]
        for field in fields_for_tab(tab)
        if field.get("secret") and raw_values.get(field["name"]) == SECRET_MASK and field["name"] in current
    }


def save_tab_values(tab: str, raw_values: dict[str, Any], *, replace: bool) -> list[str]:
    """Validate and persist values for a tab. Returns the names of the changed fields."""
    normalized = normalize_updates(tab, raw_values)
    main = _main()
    store = main.get_settings_store()
    with SETTINGS_WRITE_LOCK:
        current = store.get_section(tab)
        if replace:
            candidate = {key: value for key, value in normalized.items() if value is not None}
            candidate.update(_kept_secrets(tab, raw_values, current))
        else:
            candidate = dict(current)
            for key, value in normalized.items():
                if value is None:
                    candidate.pop(key, None)
                else:
                    candidate[key] = value
        check_constraints(tab, effective_values(tab, candidate, main.get_tab_defaults(tab)))
        store.set_section(tab, candidate)
    return sorted(key for key in set(candidate) | set(current) if candidate.get(key) != current.get(key))


@router.get("/settings")
async def get_all_settings():
    """Return effective values for every tab."""
    store = _main().get_settings_store()
    return {
        tab: {
            "values": mask_values(tab, _main().get_effective_settings(tab)),
            "updated_at": store.section_updated_at(tab),
        }
        for tab in tab_names()
    }


@router.get("/schema")
async def get_all_schemas():
    """Return the field catalogue for every tab, in display order."""
    return {"tabs": [schema_payload(tab) for tab in tab_names()]}


@router.get("/settings/{tab}")
async def get_tab_settings(tab: str):
    _require_tab(tab)
    return _tab_payload(tab)


@router.get("/settings/{tab}/schema")
async def get_tab_schema(tab: str):
    """Return editable fields and help text for a tab."""
    _require_tab(tab)
    schema = schema_payload(tab)
    defaults = _main().get_tab_defaults(tab)
    for field in schema["fields"]:
        field["default"] = defaults.get(field["name"], field["default"])
    return schema


@router.put("/settings/{tab}")
async def put_tab_settings(tab: str, request: Request):
    """Save values for a tab. With "replace": true, omitted fields revert to defaults."""
    _require_tab(tab)
    payload = parse_json_object(await request.body(), required=True)
    values, replace = split_values_payload(payload)
    changed = save_tab_values(tab, values, replace=replace)
    _main().audit_event("config", "settings.%s updated: %s", tab, ", ".join(changed) or "no changes")
    return _tab_payload(tab)


@router.patch("/settings/{tab}")
async def patch_tab_settings(tab: str, request: Request):
    """Merge values into a tab; null reverts a field to its default."""
    _require_tab(tab)
    payload = parse_json_object(await request.body(), required=True)
    values, _ = split_values_payload(payload)
    changed = save_tab_values(tab, values, replace=False)
    _main().audit_event("config", "settings.%s updated: %s", tab, ", ".join(changed) or "no changes")
    return _tab_payload(tab)


@router.post("/settings/{tab}/reset")
async def reset_tab_settings(tab: str):
    """Drop all overrides for a tab."""
    _require_tab(tab)
    with SETTINGS_WRITE_LOCK:
        _main().get_settings_store().reset_section(tab)
    _main().audit_event("config", "settings.%s reset to defaults", tab)
    return _tab_payload(tab)


@router.post("/settings/{tab}/validate")
async def validate_tab_settings(tab: str, request: Request):
    """Check saved values, or unsaved values from the body, without persisting."""
    _require_tab(tab)
    payload = parse_json_object(await request.body(), required=False)
    values, _ = split_values_payload(payload)
    main = _main()
    try:
        normalized = normalize_updates(tab, values)
    except SettingsValidationError as e:
        return {"valid": False, "errors": e.issues, "warnings": []}

    candidate = main.get_settings_store().get_section(tab)
    for key, value in normalized.items():
        if value is None:
            candidate.pop(key, None)
        else:
            candidate[key] = value
    return validation_report(tab, effective_values(tab, candidate, main.get_tab_defaults(tab)))
