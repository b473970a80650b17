"""Field catalogue, normalization and validation for the API Gateway settings tabs."""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import urlparse

import yaml

SECRET_MASK = "********"

DURATION_RE = re.compile(r"^\d+[smhd]$")
QUANTITY_RE = re.compile(r"^(?P<number>\d+(?:\.\d+)?|\.\d+)(?P<suffix>m|k|M|G|T|P|E|Ki|Mi|Gi|Ti|Pi|Ei)?$")
QUANTITY_MULTIPLIERS: dict[str, float] = {
    "": 1.0,
    "m": 1e-3,
    "k": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
    "Ki": 2.0**10,
    "Mi": 2.0**20,
    "Gi": 2.0**30,
    "Ti": 2.0**40,
    "Pi": 2.0**50,
    "Ei": 2.0**60,
}

LOAD_BALANCE_METHODS = ["round-robin", "weighted", "least-connections", "ip-hash", "random"]
NOTIFICATION_CHANNELS = ["slack-alerts", "email-ops-team", "pagerduty", "webhook-monitoring", "teams-devops"]


class SettingsValidationError(Exception):
    """Raised when one or more settings values are rejected."""

    def __init__(self, issues: list[dict[str, str]]):
        self.issues = issues
        summary = "; ".join(f"{issue['field']}: {issue['message']}" for issue in issues)
        super().__init__(summary or "Invalid settings")


def _field(name: str, label: str, kind: str, default: Any, section: str, description: str, **extra: Any) -> dict[str, Any]:
    spec = {
        "name": name,
        "label": label,
        "type": kind,
        "default": default,
        "section": section,
        "description": description,
    }
    spec.update(extra)
    return spec


AUTHENTICATION_FIELDS: list[dict[str, Any]] = [
    _field("auth_enabled", "Enable Authentication", "boolean", True, "Global Authentication Settings",
           "Require authentication for all API endpoints."),
    _field("auth_method", "Authentication Method", "enum", None, "Global Authentication Settings",
           "How clients authenticate against model endpoints.",
           choices=["jwt", "oauth", "apikey", "mutual-tls"],
           required_when={"auth_enabled": True}),
    _field("token_expiry", "Token Expiry", "duration", "24h", "Global Authentication Settings",
           "Lifetime of issued tokens, e.g. 30m, 24h, 7d."),
    _field("jwt_secret", "JWT Secret", "string", "", "Global Authentication Settings",
           "Signing secret for JWT tokens.",
           secret=True, required_when={"auth_enabled": True, "auth_method": "jwt"}),
    _field("rbac_enabled", "Enable RBAC", "boolean", True, "Role-Based Access Control (RBAC)",
           "Enable role-based access control."),
    _field("rbac_rules", "RBAC Rules Configuration", "yaml", "", "Role-Based Access Control (RBAC)",
           "Roles, permissions and subject bindings in YAML format."),
    _field("api_keys_enabled", "Enable API Keys", "boolean", True, "API Key Management",
           "Allow API key authentication."),
    _field("oauth_enabled", "Enable OAuth", "boolean", False, "OAuth 2.0 / OpenID Connect",
           "Enable OAuth 2.0 / OpenID Connect."),
    _field("oauth_provider", "OAuth Provider", "string", "", "OAuth 2.0 / OpenID Connect",
           "Issuer URL or provider name.", required_when={"oauth_enabled": True}),
    _field("oauth_client_id", "Client ID", "string", "", "OAuth 2.0 / OpenID Connect",
           "OAuth client identifier.", required_when={"oauth_enabled": True}),
    _field("oauth_client_secret", "Client Secret", "string", "", "OAuth 2.0 / OpenID Connect",
           "OAuth client secret.", secret=True, required_when={"oauth_enabled": True}),
]

ROUTING_FIELDS: list[dict[str, Any]] = [
    _field("load_balancing_enabled", "Enable Load Balancing", "boolean", True, "Load Balancing",
           "Distribute requests across multiple model endpoints."),
    _field("load_balance_method", "Load Balancing Method", "enum", "round-robin", "Load Balancing",
           "Algorithm used to pick an endpoint.", choices=LOAD_BALANCE_METHODS),
    _field("health_check_enabled", "Enable Health Checks", "boolean", True, "Load Balancing",
           "Monitor endpoint health for routing decisions."),
    _field("health_check_interval", "Health Check Interval (seconds)", "integer", 30, "Load Balancing",
           "Seconds between endpoint health checks.", min=1, max=300, step=1),
    _field("health_check_timeout", "Health Check Timeout (seconds)", "integer", 5, "Load Balancing",
           "Seconds before a health check is considered failed.", min=1, max=60, step=1),
    _field("health_check_path", "Health Check Path", "path", "/health", "Load Balancing",
           "Path probed on each model endpoint."),
    _field("retry_enabled", "Enable Request Retries", "boolean", True, "Retry Policies",
           "Automatically retry failed requests."),
    _field("max_retries", "Maximum Retries", "integer", 3, "Retry Policies",
           "Retries after the first failed attempt.", min=0, max=10, step=1),
    _field("retry_delay_ms", "Initial Retry Delay (ms)", "integer", 1000, "Retry Policies",
           "Delay before the first retry.", min=100, step=100),
    _field("retry_backoff", "Backoff Strategy", "enum", "exponential", "Retry Policies",
           "How the delay grows between retries.", choices=["exponential", "linear", "fixed"]),
    _field("rate_limiting_enabled", "Enable Rate Limiting", "boolean", True, "Rate Limiting",
           "Limit request rates to protect model endpoints."),
    _field("global_rate_limit", "Global Rate Limit (requests/window)", "integer", 1000, "Rate Limiting",
           "Requests allowed per window across all clients.", min=1, step=100),
    _field("per_user_rate_limit", "Per-User Rate Limit (requests/window)", "integer", 100, "Rate Limiting",
           "Requests allowed per window for a single client.", min=1, step=10),
    _field("rate_limit_window", "Rate Limit Window (seconds)", "integer", 60, "Rate Limiting",
           "Length of the rate limiting window.", min=1, step=10),
    _field("connection_timeout", "Connection Timeout (seconds)", "integer", 30, "Timeout Settings",
           "Time allowed to open a backend connection.", min=1, max=120, step=1),
    _field("request_timeout", "Request Timeout (seconds)", "integer", 300, "Timeout Settings",
           "Time allowed for a complete backend response.", min=1, max=600, step=5),
    _field("idle_timeout", "Idle Timeout (seconds)", "integer", 60, "Timeout Settings",
           "Idle time before a pooled connection is closed.", min=1, max=300, step=1),
    _field("circuit_breaker_enabled", "Enable Circuit Breaker", "boolean", True, "Circuit Breaker",
           "Automatically stop routing to failing endpoints."),
    _field("failure_threshold", "Failure Threshold", "integer", 5, "Circuit Breaker",
           "Consecutive failures before the circuit opens.", min=1, max=20, step=1),
    _field("recovery_timeout", "Recovery Timeout (seconds)", "integer", 30, "Circuit Breaker",
           "Seconds before an open circuit allows a probe.", min=5, step=5),
    _field("custom_routes", "Advanced Routing Configuration", "yaml", "", "Custom Routing Rules",
           "Path-based and header-based routing rules and middleware in YAML format."),
]

MODELS_FIELDS: list[dict[str, Any]] = [
    _field("auto_discovery_enabled", "Enable Auto-Discovery", "boolean", True, "Model Registry Integration",
           "Automatically discover and register new model deployments."),
    _field("model_registry", "Model Registry", "enum", "default-registry", "Model Registry Integration",
           "Registry used to resolve model versions.",
           choices=["default-registry", "hugging-face", "mlflow", "custom-registry"]),
    _field("default_model_version", "Default Model Version", "string", "latest", "Model Registry Integration",
           "Version served when a request does not pin one, e.g. latest, stable, v1.0.0."),
    _field("health_check_interval", "Health Check Interval (seconds)", "integer", 60, "Model Registry Integration",
           "Seconds between registered endpoint health checks.", min=10, max=3600, step=10),
    _field("versioning_enabled", "Enable Model Versioning", "boolean", True, "Model Versioning & Deployment",
           "Support multiple versions of the same model."),
    _field("deployment_strategy", "Deployment Strategy", "enum", "rolling", "Model Versioning & Deployment",
           "How new model versions replace old ones.",
           choices=["rolling", "blue-green", "canary", "recreate"]),
    _field("canary_deployment_enabled", "Enable Canary Deployments", "boolean", False, "Model Versioning & Deployment",
           "Enable gradual rollout of new model versions."),
    _field("auto_scaling_enabled", "Enable Auto-Scaling", "boolean", True, "Model Versioning & Deployment",
           "Automatically scale model instances based on demand."),
    _field("min_instances", "Minimum Instances", "integer", 1, "Model Versioning & Deployment",
           "Lower bound on model instances.", min=0, max=100, step=1),
    _field("max_instances", "Maximum Instances", "integer", 10, "Model Versioning & Deployment",
           "Upper bound on model instances.", min=0, max=100, step=1),
    _field("model_metadata", "Global Model Configuration", "yaml", "", "Model Metadata & Configuration",
           "Global model settings, resource requirements and deployment configuration in YAML format."),
]

MONITORING_FIELDS: list[dict[str, Any]] = [
    _field("metrics_enabled", "Enable Metrics Collection", "boolean", True, "Metrics Collection",
           "Collect and export API Gateway metrics."),
    _field("metrics_endpoint", "Metrics Endpoint", "url", "http://prometheus:9090", "Metrics Collection",
           "Metrics backend URL.", required_when={"metrics_enabled": True}),
    _field("metrics_retention", "Metrics Retention (days)", "integer", 30, "Metrics Collection",
           "How long to retain metrics data.", min=1, max=365, step=1),
    _field("collected_metrics", "Collected Metrics", "multi",
           ["requests", "latency", "errors", "model_performance", "authentication", "rate_limiting", "resources"],
           "Metrics Collection", "Metric families exported by the gateway.",
           choices=["requests", "latency", "errors", "model_performance", "authentication", "rate_limiting", "resources"]),
    _field("logging_enabled", "Enable Logging", "boolean", True, "Logging Configuration",
           "Enable structured logging for all API requests."),
    _field("log_level", "Log Level", "enum", "INFO", "Logging Configuration",
           "Minimum level written to the logs backend.", choices=["DEBUG", "INFO", "WARN", "ERROR", "FATAL"]),
    _field("log_format", "Log Format", "enum", "json", "Logging Configuration",
           "JSON (structured) or plain text.", choices=["json", "text"]),
    _field("logs_endpoint", "Logs Endpoint", "url", "http://elasticsearch:9200", "Logging Configuration",
           "Logs backend URL.", required_when={"logging_enabled": True}),
    _field("logs_retention", "Logs Retention (days)", "integer", 7, "Logging Configuration",
           "How long to retain log data.", min=1, max=365, step=1),
    _field("security_logging_enabled", "Security Logging", "boolean", True, "Logging Configuration",
           "Log authentication attempts and authorization failures."),
    _field("performance_logging_enabled", "Performance Logging", "boolean", True, "Logging Configuration",
           "Log response times and resource usage."),
    _field("tracing_enabled", "Enable Distributed Tracing", "boolean", False, "Distributed Tracing",
           "Enable OpenTelemetry-based distributed tracing."),
    _field("tracing_endpoint", "Tracing Endpoint", "url", "http://jaeger:14268", "Distributed Tracing",
           "Trace collector URL.", required_when={"tracing_enabled": True}),
    _field("sampling_rate", "Sampling Rate (%)", "integer", 10, "Distributed Tracing",
           "Percentage of requests traced.", min=1, max=100, step=1),
    _field("audit_enabled", "Enable Audit Logging", "boolean", True, "Audit Logging",
           "Log all administrative actions and configuration changes."),
    _field("audit_events", "Audit Events", "multi", ["config", "auth", "model", "access", "admin"], "Audit Logging",
           "Event categories written to the audit log.",
           choices=["config", "auth", "model", "access", "admin"]),
    _field("alerting_enabled", "Enable Alerting", "boolean", True, "Alerting Rules",
           "Enable automated alerting based on metrics and events."),
    _field("notification_channels", "Notification Channels", "multi", ["slack-alerts", "email-ops-team"],
           "Alerting Rules", "Channels notified when an alert fires.", choices=NOTIFICATION_CHANNELS),
    _field("alert_rules", "Alert Rules Configuration", "yaml", "", "Alerting Rules",
           "Prometheus-style alerting rules in YAML format."),
    _field("dashboard_config", "Grafana Dashboard JSON", "json", "", "Dashboard Configuration",
           "Grafana dashboard for API Gateway monitoring."),
]

SCALING_FIELDS: list[dict[str, Any]] = [
    _field("auto_scaling_enabled", "Enable Auto-Scaling", "boolean", True, "Auto-Scaling Configuration",
           "Automatically scale API Gateway instances based on demand."),
    _field("horizontal_scaling_enabled", "Enable Horizontal Scaling", "boolean", True, "Auto-Scaling Configuration",
           "Scale by adding or removing instances."),
    _field("vertical_scaling_enabled", "Enable Vertical Scaling", "boolean", False, "Auto-Scaling Configuration",
           "Scale by adjusting instance resources."),
    _field("min_replicas", "Minimum Replicas", "integer", 2, "Auto-Scaling Configuration",
           "Lower bound on gateway replicas.", min=1, max=100, step=1),
    _field("max_replicas", "Maximum Replicas", "integer", 20, "Auto-Scaling Configuration",
           "Upper bound on gateway replicas.", min=1, max=100, step=1),
    _field("target_cpu_utilization", "Target CPU Utilization (%)", "integer", 70, "Auto-Scaling Configuration",
           "Average CPU utilization the autoscaler aims for.", min=10, max=100, step=5),
    _field("target_memory_utilization", "Target Memory Utilization (%)", "integer", 80, "Auto-Scaling Configuration",
           "Average memory utilization the autoscaler aims for.", min=10, max=100, step=5),
    _field("scale_up_cooldown", "Scale-up Cooldown (seconds)", "integer", 300, "Auto-Scaling Configuration",
           "Minimum time between scale-up events.", min=60, step=30),
    _field("scale_down_cooldown", "Scale-down Cooldown (seconds)", "integer", 600, "Auto-Scaling Configuration",
           "Minimum time between scale-down events.", min=60, step=30),
    _field("preemptive_scaling", "Enable Preemptive Scaling", "boolean", False, "Auto-Scaling Configuration",
           "Scale proactively based on predicted load patterns."),
    _field("cpu_request", "CPU Request", "quantity", "500m", "Resource Limits & Allocation",
           "CPU requested per replica."),
    _field("cpu_limit", "CPU Limit", "quantity", "2", "Resource Limits & Allocation",
           "CPU limit per replica."),
    _field("memory_request", "Memory Request", "quantity", "1Gi", "Resource Limits & Allocation",
           "Memory requested per replica."),
    _field("memory_limit", "Memory Limit", "quantity", "4Gi", "Resource Limits & Allocation",
           "Memory limit per replica."),
    _field("gpu_limit", "GPU Limit", "quantity", "0", "Resource Limits & Allocation",
           "GPUs per replica."),
    _field("caching_enabled", "Enable Response Caching", "boolean", True, "Caching Configuration",
           "Cache API responses to improve performance."),
    _field("cache_type", "Cache Type", "enum", "redis", "Caching Configuration",
           "Cache backend.", choices=["redis", "memcached", "hazelcast", "local"]),
    _field("cache_eviction_policy", "Cache Eviction Policy", "enum", "lru", "Caching Configuration",
           "Which entries are evicted when the cache is full.", choices=["lru", "lfu", "fifo", "random"]),
    _field("cache_ttl", "Cache TTL (seconds)", "integer", 3600, "Caching Configuration",
           "Lifetime of a cached response.", min=60, step=300),
    _field("cache_size_mb", "Cache Size (MB)", "integer", 1024, "Caching Configuration",
           "Memory reserved for cached responses.", min=128, step=128),
    _field("cache_strategies", "Cache Strategies", "multi", ["get", "model_responses", "metadata"],
           "Caching Configuration", "Which responses are cached.",
           choices=["get", "post", "model_responses", "metadata"]),
    _field("connection_pooling_enabled", "Enable Connection Pooling", "boolean", True,
           "Connection & Performance Optimization", "Use connection pools for backend model services."),
    _field("max_connections", "Maximum Connections", "integer", 1000, "Connection & Performance Optimization",
           "Pool size across backend model services.", min=10, step=50),
    _field("connection_timeout", "Connection Timeout (seconds)", "integer", 30, "Connection & Performance Optimization",
           "Time allowed to obtain a pooled connection.", min=5, step=5),
    _field("compression_enabled", "Enable Compression", "boolean", True, "Connection & Performance Optimization",
           "Compress API responses to reduce bandwidth."),
    _field("compression_level", "Compression Level", "integer", 6, "Connection & Performance Optimization",
           "1 is fastest, 9 is smallest.", min=1, max=9, step=1),
    _field("bursting_enabled", "Enable Request Bursting", "boolean", True, "Load Management",
           "Allow temporary bursts above normal rate limits."),
    _field("load_shedding_enabled", "Enable Load Shedding", "boolean", True, "Load Management",
           "Drop requests when the system is overloaded."),
    _field("load_shedding_threshold", "Load Shedding Threshold (%)", "integer", 95, "Load Management",
           "Utilization at which requests start being dropped.", min=50, max=100, step=5),
    _field("performance_tuning", "Custom Performance Configuration", "yaml", "", "Advanced Performance Tuning",
           "Advanced performance tuning parameters in YAML format."),
]

TABS: dict[str, dict[str, Any]] = {
    "authentication": {
        "title": "Authentication & Authorization",
        "description": "Authentication methods, RBAC rules, API keys and OAuth integration.",
        "fields": AUTHENTICATION_FIELDS,
    },
    "routing": {
        "title": "Request Routing",
        "description": "Load balancing, retry policies, rate limiting, timeouts and failover.",
        "fields": ROUTING_FIELDS,
    },
    "models": {
        "title": "Model Management",
        "description": "How AI models are registered, versioned and deployed through the gateway.",
        "fields": MODELS_FIELDS,
    },
    "monitoring": {
        "title": "Monitoring & Logging",
        "description": "Request metrics, logging, tracing, audit events and alerting.",
        "fields": MONITORING_FIELDS,
    },
    "scaling": {
        "title": "Scaling & Performance",
        "description": "Auto-scaling policies, resource limits, caching and load management.",
        "fields": SCALING_FIELDS,
    },
}

ORDERED_PAIRS: dict[str, list[tuple[str, str]]] = {
    "models": [("min_instances", "max_instances")],
    "scaling": [("min_replicas", "max_replicas")],
}

QUANTITY_PAIRS: dict[str, list[tuple[str, str]]] = {
    "scaling": [("cpu_request", "cpu_limit"), ("memory_request", "memory_limit")],
}


def tab_names() -> list[str]:
    return list(TABS)


def fields_for_tab(tab: str) -> list[dict[str, Any]]:
    if tab not in TABS:
        raise KeyError(f"Unknown settings tab: {tab}")
    return [dict(field) for field in TABS[tab]["fields"]]


def field_map(tab: str) -> dict[str, dict[str, Any]]:
    return {field["name"]: field for field in fields_for_tab(tab)}


def schema_payload(tab: str) -> dict[str, Any]:
    return {
        "tab": tab,
        "title": TABS[tab]["title"],
        "description": TABS[tab]["description"],
        "fields": fields_for_tab(tab),
    }


def tab_defaults(tab: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
    defaults = {field["name"]: field["default"] for field in fields_for_tab(tab)}
    if overrides:
        defaults.update(overrides)
    return defaults


def effective_values(tab: str, overrides: dict[str, Any], defaults: dict[str, Any] | None = None) -> dict[str, Any]:
    values = tab_defaults(tab, defaults)
    values.update(overrides)
    return values


def parse_quantity(text: str) -> float:
    """Parse a Kubernetes resource quantity such as 500m, 2 or 4Gi."""
    match = QUANTITY_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid quantity: {text!r}")
    return float(match.group("number")) * QUANTITY_MULTIPLIERS[match.group("suffix") or ""]


def parse_document(spec: dict[str, Any], text: str) -> Any:
    """Parse a yaml/json text field. Empty text parses to None."""
    if not text.strip():
        return None
    if spec["type"] == "json":
        return json.loads(text)
    return yaml.safe_load(text)


def _match_choice(value: str, choices: list[str]) -> str | None:
    lowered = value.strip().lower()
    for choice in choices:
        if choice.lower() == lowered:
            return choice
    return None


def _normalize_value(key: str, spec: dict[str, Any], value: Any) -> Any:
    """Return the normalized value or raise ValueError with a user-facing message."""
    kind = spec["type"]

    if kind == "boolean":
        if not isinstance(value, bool):
            raise ValueError("must be a boolean")
        return value

    if kind == "integer":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be an integer")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError("must be an integer")
        parsed = int(value)
        min_value = spec.get("min")
        max_value = spec.get("max")
        if isinstance(min_value, int) and parsed < min_value:
            raise ValueError(f"must be >= {min_value}")
        if isinstance(max_value, int) and parsed > max_value:
            raise ValueError(f"must be <= {max_value}")
        return parsed

    if kind == "enum":
        if not isinstance(value, str):
            raise ValueError("must be a string")
        choices = spec.get("choices", [])
        matched = _match_choice(value, choices)
        if matched is None:
            raise ValueError(f"must be one of: {', '.join(choices)}")
        return matched

    if kind == "multi":
        if not isinstance(value, list):
            raise ValueError("must be a list")
        choices = spec.get("choices", [])
        selected: list[str] = []
        for item in value:
            matched = _match_choice(item, choices) if isinstance(item, str) else None
            if matched is None:
                raise ValueError(f"entries must be one of: {', '.join(choices)}")
            if matched not in selected:
                selected.append(matched)
        return selected

    if not isinstance(value, str):
        raise ValueError("must be a string")

    if kind == "string":
        return value.strip()

    if kind == "url":
        parsed_url = value.strip()
        if parsed_url:
            parts = urlparse(parsed_url)
            if parts.scheme not in {"http", "https"} or not parts.netloc:
                raise ValueError("must be an http(s) URL")
        return parsed_url

    if kind == "path":
        parsed_path = value.strip()
        if not parsed_path.startswith("/"):
            raise ValueError("must start with '/'")
        return parsed_path

    if kind == "duration":
        parsed_duration = value.strip()
        if not DURATION_RE.match(parsed_duration):
            raise ValueError("must be a duration such as 30m, 24h or 7d")
        return parsed_duration

    if kind == "quantity":
        parsed_quantity = value.strip()
        try:
            parse_quantity(parsed_quantity)
        except ValueError as e:
            raise ValueError("must be a resource quantity such as 500m, 2 or 4Gi") from e
        return parsed_quantity

    if kind == "yaml":
        try:
            parse_document(spec, value)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            where = f" (line {mark.line + 1}, column {mark.column + 1})" if mark is not None else ""
            raise ValueError(f"is not valid YAML{where}") from e
        return value

    if kind == "json":
        try:
            parse_document(spec, value)
        except json.JSONDecodeError as e:
            raise ValueError(f"is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})") from e
        return value

    raise ValueError(f"has unsupported field type '{kind}'")


def normalize_updates(tab: str, raw_updates: dict[str, Any]) -> dict[str, Any]:
    """Validate raw updates for a tab.

    ``None`` values are kept and mean "revert to default". Masked secrets are
    dropped so a round-tripped form does not overwrite the stored secret.
    """
    specs = field_map(tab)
    normalized: dict[str, Any] = {}
    issues: list[dict[str, str]] = []

    for key, value in raw_updates.items():
        spec = specs.get(key)
        if spec is None:
            issues.append({"field": key, "message": "unknown field"})
            continue
        if value is None:
            normalized[key] = None
            continue
        if spec.get("secret") and value == SECRET_MASK:
            continue
        try:
            normalized[key] = _normalize_value(key, spec, value)
        except ValueError as e:
            issues.append({"field": key, "message": str(e)})

    if issues:
        raise SettingsValidationError(issues)
    return normalized


def _constraint_issues(tab: str, values: dict[str, Any]) -> list[dict[str, str]]:
    issues: list[dict[str, str]] = []
    for low, high in ORDERED_PAIRS.get(tab, []):
        if isinstance(values.get(low), int) and isinstance(values.get(high), int) and values[low] > values[high]:
            issues.append({"field": low, "message": f"must be <= {high} ({values[high]})"})
    for request, limit in QUANTITY_PAIRS.get(tab, []):
        try:
            too_big = parse_quantity(values[request]) > parse_quantity(values[limit])
        except (KeyError, TypeError, ValueError, AttributeError):
            continue
        if too_big:
            issues.append({"field": request, "message": f"must not exceed {limit} ({values[limit]})"})
    return issues


def check_constraints(tab: str, values: dict[str, Any]) -> None:
    """Raise SettingsValidationError when cross-field rules are violated."""
    issues = _constraint_issues(tab, values)
    if issues:
        raise SettingsValidationError(issues)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, (str, list)) and not value)


def _required_issues(tab: str, values: dict[str, Any]) -> list[dict[str, str]]:
    issues = []
    for spec in fields_for_tab(tab):
        conditions = spec.get("required_when")
        if not conditions:
            continue
        if all(values.get(name) == expected for name, expected in conditions.items()) and _is_blank(values.get(spec["name"])):
            issues.append({"field": spec["name"], "message": f"{spec['label']} is required"})
    return issues


# --- Document structure checks (warnings) ---


def _list_entries(doc: dict, key: str, warnings: list[str], where: str = "") -> list:
    """Return ``doc[key]`` when it is a list; warn and return [] otherwise."""
    value = doc.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        warnings.append(f"{where}'{key}' must be a list")
        return []
    return value


def _check_rbac_rules(doc: Any) -> list[str]:
    if not isinstance(doc, dict):
        return ["RBAC rules must be a mapping with 'roles' and 'bindings'"]
    warnings: list[str] = []
    role_names = set()
    for index, role in enumerate(_list_entries(doc, "roles", warnings)):
        if not isinstance(role, dict) or not role.get("name"):
            warnings.append(f"roles[{index}] is missing 'name'")
            continue
        role_names.add(str(role["name"]))
        if not isinstance(role.get("permissions"), list):
            warnings.append(f"role '{role['name']}' must list 'permissions'")
    for index, binding in enumerate(_list_entries(doc, "bindings", warnings)):
        if not isinstance(binding, dict) or not binding.get("role"):
            warnings.append(f"bindings[{index}] is missing 'role'")
        elif str(binding["role"]) not in role_names:
            warnings.append(f"bindings[{index}] references undefined role '{binding['role']}'")
    return warnings


def _check_custom_routes(doc: Any) -> list[str]:
    if not isinstance(doc, dict):
        return ["Custom routes must be a mapping with a 'routes' list"]
    warnings: list[str] = []
    defined_middleware = {
        str(entry.get("name")) for entry in _list_entries(doc, "middleware", warnings) if isinstance(entry, dict)
    }
    for index, route in enumerate(_list_entries(doc, "routes", warnings)):
        if not isinstance(route, dict):
            warnings.append(f"routes[{index}] must be a mapping")
            continue
        for key in ("path", "destination"):
            if not route.get(key):
                warnings.append(f"routes[{index}] is missing '{key}'")
        method = route.get("load_balance")
        if method is not None and str(method) not in LOAD_BALANCE_METHODS:
            warnings.append(f"routes[{index}] uses unknown load_balance '{method}'")
        for name in _list_entries(route, "middleware", warnings, f"routes[{index}] "):
            if isinstance(name, str) and name not in defined_middleware:
                warnings.append(f"routes[{index}] references undefined middleware '{name}'")
    return warnings


def _check_mapping(label: str):
    def check(doc: Any) -> list[str]:
        if not isinstance(doc, dict):
            return [f"{label} must be a YAML mapping"]
        return []
    return check


def _check_alert_rules(doc: Any) -> list[str]:
    if not isinstance(doc, dict) or not isinstance(doc.get("groups"), list):
        return ["Alert rules must contain a 'groups' list"]
    warnings = []
    for g_index, group in enumerate(doc["groups"]):
        if not isinstance(group, dict) or not group.get("name"):
            warnings.append(f"groups[{g_index}] is missing 'name'")
            continue
        rules = group.get("rules")
        if not isinstance(rules, list) or not rules:
            warnings.append(f"group '{group['name']}' has no rules")
            continue
        for r_index, rule in enumerate(rules):
            if not isinstance(rule, dict):
                warnings.append(f"group '{group['name']}' rules[{r_index}] must be a mapping")
                continue
            for key in ("alert", "expr"):
                if not rule.get(key):
                    warnings.append(f"group '{group['name']}' rules[{r_index}] is missing '{key}'")
    return warnings


def _check_dashboard(doc: Any) -> list[str]:
    dashboard = doc.get("dashboard") if isinstance(doc, dict) else None
    if not isinstance(dashboard, dict) or not isinstance(dashboard.get("panels"), list):
        return ["Dashboard JSON should contain 'dashboard.panels'"]
    return []


DOCUMENT_CHECKS = {
    "rbac_rules": _check_rbac_rules,
    "custom_routes": _check_custom_routes,
    "model_metadata": _check_mapping("Model metadata"),
    "alert_rules": _check_alert_rules,
    "dashboard_config": _check_dashboard,
    "performance_tuning": _check_mapping("Performance configuration"),
}


def _document_warnings(tab: str, values: dict[str, Any]) -> list[dict[str, str]]:
    warnings = []
    for spec in fields_for_tab(tab):
        check = DOCUMENT_CHECKS.get(spec["name"])
        text = values.get(spec["name"])
        if check is None or not isinstance(text, str):
            continue
        try:
            doc = parse_document(spec, text)
        except (yaml.YAMLError, json.JSONDecodeError):
            warnings.append({"field": spec["name"], "message": "could not be parsed"})
            continue
        if doc is None:
            continue
        warnings.extend({"field": spec["name"], "message": message} for message in check(doc))
    return warnings


def _semantic_warnings(tab: str, values: dict[str, Any]) -> list[dict[str, str]]:
    warnings = []
    if tab == "authentication" and values.get("auth_enabled"):
        if values.get("auth_method") == "oauth" and not values.get("oauth_enabled"):
            warnings.append({"field": "auth_method", "message": "OAuth method selected but OAuth is disabled"})
        if values.get("auth_method") == "apikey" and not values.get("api_keys_enabled"):
            warnings.append({"field": "auth_method", "message": "API key method selected but API keys are disabled"})
    if tab == "models" and values.get("canary_deployment_enabled") and not values.get("versioning_enabled"):
        warnings.append({"field": "canary_deployment_enabled", "message": "Canary deployments need model versioning"})
    if tab == "scaling" and values.get("auto_scaling_enabled"):
        if not values.get("horizontal_scaling_enabled") and not values.get("vertical_scaling_enabled"):
            warnings.append({"field": "auto_scaling_enabled", "message": "Auto-scaling is on but no scaling mode is enabled"})
    return warnings


def validation_report(tab: str, values: dict[str, Any]) -> dict[str, Any]:
    errors = _constraint_issues(tab, values) + _required_issues(tab, values)
    warnings = _document_warnings(tab, values) + _semantic_warnings(tab, values)
    return {"valid": not errors, "errors": errors, "warnings": warnings}


def mask_values(tab: str, values: dict[str, Any]) -> dict[str, Any]:
    secret_names = {field["name"] for field in fields_for_tab(tab) if field.get("secret")}
    return {
        key: (SECRET_MASK if key in secret_names and value else value)
        for key, value in values.items()
    }


def normalize_defaults_overrides(raw: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Validate a tab -> {field: value} defaults document loaded from YAML."""
    normalized: dict[str, dict[str, Any]] = {}
    issues: list[dict[str, str]] = []
    for tab, values in raw.items():
        if tab not in TABS:
            issues.append({"field": str(tab), "message": "unknown settings tab"})
            continue
        if not isinstance(values, dict):
            issues.append({"field": tab, "message": "must be a mapping of field -> value"})
            continue
        try:
            normalized[tab] = {
                key: value for key, value in normalize_updates(tab, values).items() if value is not None
            }
        except SettingsValidationError as e:
            issues.extend({"field": f"{tab}.{issue['field']}", "message": issue["message"]} for issue in e.issues)
    if issues:
        raise SettingsValidationError(issues)
    return normalized
