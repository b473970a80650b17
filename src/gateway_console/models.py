from typing import Literal

from pydantic import BaseModel, Field, HttpUrl

# --- Authentication ---

Permission = Literal["admin", "user", "readonly"]


class ApiKeyCreate(BaseModel):
    name: str = Field(default="", max_length=200)
    permissions: Permission = "user"


class ApiKeyUpdate(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    permissions: Permission | None = None


class ApiKeyInfo(BaseModel):
    id: str
    name: str
    key: str
    permissions: Permission
    created_at: str


# --- Model Management ---

EndpointStatus = Literal["active", "inactive", "error"]


class ModelEndpointCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=253)
    version: str = Field(default="latest", min_length=1, max_length=100)
    endpoint: HttpUrl
    status: EndpointStatus = "inactive"
    instances: int = Field(default=0, ge=0)


class ModelEndpointUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=253)
    version: str | None = Field(default=None, min_length=1, max_length=100)
    endpoint: HttpUrl | None = None
    status: EndpointStatus | None = None
    instances: int | None = Field(default=None, ge=0)


class ModelEndpointInfo(BaseModel):
    id: str
    name: str
    version: str
    endpoint: str
    status: EndpointStatus
    instances: int
    last_updated: str
    last_probe: dict | None = None


# --- Monitoring ---


class AlertRuleSummary(BaseModel):
    group: str
    alert: str
    severity: str | None = None
    duration: str | None = Field(default=None, alias="for")

    model_config = {"populate_by_name": True}


class AlertTestResult(BaseModel):
    rules: list[AlertRuleSummary]
    channels: list[str]
    warnings: list[dict[str, str]]


# --- Scaling ---


class ScalingStatus(BaseModel):
    deployment: str
    namespace: str
    replicas: int
    ready_replicas: int
    available_replicas: int
    min_replicas: int
    max_replicas: int
    auto_scaling_enabled: bool
