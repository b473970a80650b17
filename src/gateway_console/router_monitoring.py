"""Monitoring & Logging actions: notification channels, alert test and dashboard export."""

import json
import logging

import yaml
from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from .models import AlertRuleSummary, AlertTestResult
from .router_settings import save_tab_values
from .settings_schema import DOCUMENT_CHECKS, NOTIFICATION_CHANNELS, field_map, parse_document

router = APIRouter(prefix="/api/gateway/monitoring", tags=["monitoring"])
logger = logging.getLogger(__name__)

DASHBOARD_EXPORT_FILENAME = "api-gateway-dashboard.json"


def _main():
    from . import main
    return main


@router.post("/notification-channels/{channel}/toggle")
async def toggle_notification_channel(channel: str):
    """Add the channel when it is off, remove it when it is on."""
    if channel not in NOTIFICATION_CHANNELS:
        raise HTTPException(status_code=404, detail=f"Unknown notification channel '{channel}'")
    selected = list(_main().get_effective_settings("monitoring")["notification_channels"])
    if channel in selected:
        selected.remove(channel)
    else:
        selected.append(channel)
    save_tab_values("monitoring", {"notification_channels": selected}, replace=False)
    enabled = channel in selected
    _main().audit_event("config", "settings.monitoring notification channel %s %s", channel,
                        "enabled" if enabled else "disabled")
    return {"channel": channel, "enabled": enabled, "notification_channels": selected}


def _alert_rules(doc) -> list[AlertRuleSummary]:
    rules = []
    groups = doc.get("groups")
    if not isinstance(groups, list):
        return rules
    for group in groups:
        if not isinstance(group, dict) or not group.get("name") or not isinstance(group.get("rules"), list):
            continue
        for rule in group["rules"]:
            if not isinstance(rule, dict) or not rule.get("alert"):
                continue
            labels = rule.get("labels") if isinstance(rule.get("labels"), dict) else {}
            severity = labels.get("severity")
            duration = rule.get("for")
            rules.append(AlertRuleSummary(
                group=str(group["name"]),
                alert=str(rule["alert"]),
                severity=str(severity) if severity is not None else None,
                duration=str(duration) if duration is not None else None,
            ))
    return rules


@router.post("/alerts/test", response_model=AlertTestResult, response_model_by_alias=True)
async def test_alerts():
    """Dry-run the saved alert rules and report which channels would be notified."""
    values = _main().get_effective_settings("monitoring")
    if not values["alerting_enabled"]:
        raise HTTPException(status_code=409, detail="Alerting is disabled")

    warnings: list[dict[str, str]] = []
    try:
        doc = parse_document(field_map("monitoring")["alert_rules"], values["alert_rules"])
    except yaml.YAMLError as e:
        raise HTTPException(status_code=400, detail=f"Alert rules could not be parsed: {e}") from e

    rules: list[AlertRuleSummary] = []
    if doc is None:
        warnings.append({"field": "alert_rules", "message": "No alert rules configured"})
    else:
        warnings.extend(
            {"field": "alert_rules", "message": message} for message in DOCUMENT_CHECKS["alert_rules"](doc)
        )
        if isinstance(doc, dict):
            rules = _alert_rules(doc)

    channels = list(values["notification_channels"])
    if not channels:
        warnings.append({"field": "notification_channels", "message": "No notification channels selected"})
    logger.info("Alert test: %d rules, %d channels", len(rules), len(channels))
    return AlertTestResult(rules=rules, channels=channels, warnings=warnings)


@router.get("/dashboard/export")
async def export_dashboard():
    """Download the saved Grafana dashboard JSON."""
    text = _main().get_effective_settings("monitoring")["dashboard_config"]
    try:
        doc = parse_document(field_map("monitoring")["dashboard_config"], text)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Dashboard JSON could not be parsed: {e.msg}") from e
    if doc is None:
        raise HTTPException(status_code=404, detail="No dashboard configuration saved")
    return JSONResponse(
        content=doc,
        headers={"Content-Disposition": f'attachment; filename="{DASHBOARD_EXPORT_FILENAME}"'},
    )
