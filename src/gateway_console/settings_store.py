"""Persistent gateway settings and record storage."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SettingsStore:
    """Thread-safe JSON-backed store for per-tab overrides and record collections."""

    def __init__(self, path: str):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._loaded = False
        self._data: dict[str, Any] = {"version": 1, "sections": {}, "records": {}}

    @property
    def path(self) -> Path:
        return self._path

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.exists():
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
            except (json.JSONDecodeError, OSError):
                raw = {}
            if not isinstance(raw, dict):
                raw = {}
            sections = raw.get("sections")
            records = raw.get("records")
            self._data = {
                "version": 1,
                "sections": sections if isinstance(sections, dict) else {},
                "records": records if isinstance(records, dict) else {},
            }
        self._loaded = True

    def _persist(self) -> None:
        temp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        payload = json.dumps(self._data, ensure_ascii=True, indent=2, sort_keys=True)
        temp_path.write_text(payload, encoding="utf-8")
        temp_path.replace(self._path)

    def _write_section(self, tab: str, values: dict[str, Any]) -> None:
        if values:
            self._data["sections"][tab] = {"updated_at": _now(), "values": values}
        else:
            self._data["sections"].pop(tab, None)

    # --- Sections ---

    def get_section(self, tab: str) -> dict[str, Any]:
        with self._lock:
            self._ensure_loaded()
            record = self._data["sections"].get(tab, {})
            values = record.get("values", {})
            if isinstance(values, dict):
                return dict(values)
            return {}

    def section_updated_at(self, tab: str) -> str | None:
        with self._lock:
            self._ensure_loaded()
            return self._data["sections"].get(tab, {}).get("updated_at")

    def set_section(self, tab: str, values: dict[str, Any]) -> dict[str, Any]:
        clean_values = {k: v for k, v in values.items() if v is not None}
        with self._lock:
            self._ensure_loaded()
            self._write_section(tab, clean_values)
            self._persist()
            return dict(clean_values)

    def patch_section(self, tab: str, updates: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._ensure_loaded()
            current_values = self._data["sections"].get(tab, {}).get("values", {})
            if not isinstance(current_values, dict):
                current_values = {}
            merged = dict(current_values)
            for key, value in updates.items():
                if value is None:
                    merged.pop(key, None)
                else:
                    merged[key] = value
            self._write_section(tab, merged)
            self._persist()
            return dict(merged)

    def reset_section(self, tab: str) -> None:
        with self._lock:
            self._ensure_loaded()
            self._data["sections"].pop(tab, None)
            self._persist()

    # --- Records ---

    def list_records(self, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            self._ensure_loaded()
            records = self._data["records"].get(collection, {})
            return [dict(record) for record in records.values()]

    def get_record(self, collection: str, record_id: str) -> dict[str, Any] | None:
        with self._lock:
            self._ensure_loaded()
            record = self._data["records"].get(collection, {}).get(record_id)
            return dict(record) if record is not None else None

    def put_record(self, collection: str, record_id: str, record: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._ensure_loaded()
            stored = dict(record, id=record_id)
            self._data["records"].setdefault(collection, {})[record_id] = stored
            self._persist()
            return dict(stored)

    def update_record(self, collection: str, record_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        """Merge updates into an existing record. Returns None when the record is gone."""
        with self._lock:
            self._ensure_loaded()
            records = self._data["records"].get(collection, {})
            if record_id not in records:
                return None
            records[record_id] = dict(records[record_id], **updates)
            self._persist()
            return dict(records[record_id])

    def delete_record(self, collection: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_loaded()
            records = self._data["records"].get(collection, {})
            if record_id not in records:
                return False
            del records[record_id]
            if not records:
                self._data["records"].pop(collection, None)
            self._persist()
            return True
