"""Kubernetes bootstrap: API clients plus namespace, token, cluster ID and branding."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .config import Settings

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
SERVICE_ACCOUNT_TOKEN_PATH = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")

IN_CLUSTER_CONTEXT = "inClusterContext"
IN_CLUSTER_USER = "inClusterUser"
FALLBACK_CONTEXT = "loaded-context"
FALLBACK_SERVER = "http://localhost:8080"

KWOK_CLUSTER = "kwok-cluster"
KWOK_USER = "kwok-user"
KWOK_CONTEXT = "kwok-context"
KWOK_NAMESPACE = "opendatahub"
KWOK_DEV_TOKEN = "kwok-dev-token"
KWOK_DEV_CLUSTER_ID = "kwok-dev-cluster"

CONSOLE_CONFIG_MAP = "console-config"
CONSOLE_CONFIG_NAMESPACE = "openshift-console"
CONSOLE_CONFIG_YAML_FIELD = "console-config.yaml"
DEFAULT_BRANDING = "okd"


@dataclass
class KubeContext:
    """Cluster context shared with request handlers."""

    config: client.Configuration | None
    current_context: str
    current_user: dict[str, Any] = field(default_factory=dict)
    namespace: str | None = None
    current_token: str = ""
    cluster_id: str | None = None
    cluster_branding: str = DEFAULT_BRANDING
    core_v1_api: client.CoreV1Api | None = None
    custom_objects_api: client.CustomObjectsApi | None = None
    batch_v1_api: client.BatchV1Api | None = None
    apps_v1_api: client.AppsV1Api | None = None
    rbac_api: client.RbacAuthorizationV1Api | None = None

    @property
    def is_available(self) -> bool:
        return self.core_v1_api is not None and self.custom_objects_api is not None

    @property
    def is_in_cluster(self) -> bool:
        return self.current_context == IN_CLUSTER_CONTEXT

    @property
    def server_url(self) -> str | None:
        return self.config.host if self.config is not None else None

    @classmethod
    def unavailable(cls) -> "KubeContext":
        return cls(config=None, current_context="")

    def status_payload(self) -> dict[str, Any]:
        return {
            "currentContext": self.current_context,
            "namespace": self.namespace,
            "userName": self.current_user.get("name"),
            "clusterID": self.cluster_id,
            "clusterBranding": self.cluster_branding,
            "serverURL": self.server_url,
            "isInCluster": self.is_in_cluster,
        }


def describe_kube_error(exc: BaseException) -> str:
    """Best human-readable message for a Kubernetes client failure."""
    if isinstance(exc, ApiException):
        if exc.body:
            try:
                payload = json.loads(exc.body)
            except (TypeError, ValueError):
                payload = None
            if isinstance(payload, dict) and payload.get("message"):
                return str(payload["message"])
        if exc.reason:
            return str(exc.reason)
    return str(exc) or exc.__class__.__name__


def _kwok_kubeconfig(server: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {"name": KWOK_CLUSTER, "cluster": {"server": server, "insecure-skip-tls-verify": True}},
        ],
        # KWOK does not require authentication in development mode
        "users": [{"name": KWOK_USER, "user": {}}],
        "contexts": [
            {
                "name": KWOK_CONTEXT,
                "context": {"cluster": KWOK_CLUSTER, "user": KWOK_USER, "namespace": KWOK_NAMESPACE},
            },
        ],
        "current-context": KWOK_CONTEXT,
    }


def _bearer_token(configuration: client.Configuration) -> str:
    value = (configuration.api_key or {}).get("authorization", "")
    if value.lower().startswith("bearer "):
        return value[len("bearer "):]
    return value


def load_kube_config(settings: Settings) -> tuple[client.Configuration, str, dict[str, Any]]:
    """Load client configuration the way the console locates its cluster.

    Returns the configuration, the current context name and the current user.
    """
    configuration = client.Configuration()

    if settings.local_dev_cluster and settings.kwok_api_server:
        logger.info("Configuring for local KWOK cluster at: %s", settings.kwok_api_server)
        config.load_kube_config_from_dict(
            _kwok_kubeconfig(settings.kwok_api_server),
            context=KWOK_CONTEXT,
            client_configuration=configuration,
        )
        return configuration, KWOK_CONTEXT, {"name": KWOK_USER}

    try:
        config.load_kube_config(client_configuration=configuration)
        _, active_context = config.list_kube_config_contexts()
        user_name = active_context.get("context", {}).get("user")
        user: dict[str, Any] = {"name": user_name}
        token = _bearer_token(configuration)
        if token:
            user["token"] = token
        return configuration, active_context["name"], user
    except config.ConfigException as kubeconfig_error:
        logger.debug("No usable kubeconfig (%s); trying in-cluster config", kubeconfig_error)

    try:
        config.load_incluster_config(client_configuration=configuration)
        return configuration, IN_CLUSTER_CONTEXT, {
            "name": IN_CLUSTER_USER,
            "token_file": str(SERVICE_ACCOUNT_TOKEN_PATH),
        }
    except config.ConfigException as e:
        logger.error("Failed to load Kubernetes configuration, using %s: %s", FALLBACK_SERVER, e)

    configuration.host = FALLBACK_SERVER
    return configuration, FALLBACK_CONTEXT, {}


def get_current_namespace(ctx: KubeContext, settings: Settings) -> str | None:
    if ctx.is_in_cluster:
        return SERVICE_ACCOUNT_NAMESPACE_PATH.read_text(encoding="utf-8").strip()
    if settings.dev_mode:
        if settings.local_k8s:
            return settings.oc_project or KWOK_NAMESPACE
        return settings.oc_project or None
    return ctx.current_context.split("/")[0]


def get_current_token(ctx: KubeContext, settings: Settings) -> str:
    if ctx.is_in_cluster:
        location = ctx.current_user.get("token_file") or str(SERVICE_ACCOUNT_TOKEN_PATH)
        return Path(location).read_text(encoding="utf-8").strip()
    if settings.local_dev_cluster:
        return KWOK_DEV_TOKEN
    return ctx.current_user.get("token") or ""


def get_cluster_id(ctx: KubeContext, settings: Settings) -> str:
    if settings.disable_cluster_version_check:
        logger.info("Cluster version check disabled, using default cluster ID")
        return KWOK_DEV_CLUSTER_ID
    cluster_version = ctx.custom_objects_api.get_cluster_custom_object(
        group="config.openshift.io",
        version="v1",
        plural="clusterversions",
        name="version",
    )
    return cluster_version["spec"]["clusterID"]


def get_cluster_branding(ctx: KubeContext, settings: Settings) -> str:
    if settings.disable_console_config_check:
        logger.info("Console config check disabled, using default branding")
        return DEFAULT_BRANDING
    console_config = ctx.core_v1_api.read_namespaced_config_map(CONSOLE_CONFIG_MAP, CONSOLE_CONFIG_NAMESPACE)
    raw = (console_config.data or {}).get(CONSOLE_CONFIG_YAML_FIELD)
    if not raw:
        return DEFAULT_BRANDING
    console_config_data = yaml.safe_load(raw) or {}
    branding = (console_config_data.get("customization") or {}).get("branding") or DEFAULT_BRANDING
    logger.info("Cluster Branding: %s", branding)
    return branding


def bootstrap_kube(settings: Settings) -> KubeContext:
    """Build API clients and resolve cluster context. Resolution failures are logged, never raised."""
    configuration, current_context, current_user = load_kube_config(settings)
    api_client = client.ApiClient(configuration=configuration)
    ctx = KubeContext(
        config=configuration,
        current_context=current_context,
        current_user=current_user,
        core_v1_api=client.CoreV1Api(api_client),
        custom_objects_api=client.CustomObjectsApi(api_client),
        batch_v1_api=client.BatchV1Api(api_client),
        apps_v1_api=client.AppsV1Api(api_client),
        rbac_api=client.RbacAuthorizationV1Api(api_client),
    )

    try:
        ctx.namespace = get_current_namespace(ctx, settings)
    except Exception as e:
        logger.error("Failed to retrieve current namespace: %s", describe_kube_error(e))

    try:
        ctx.current_token = get_current_token(ctx, settings)
    except Exception as e:
        ctx.current_token = ""
        logger.error("Failed to retrieve current token: %s", describe_kube_error(e))
        if settings.local_dev_cluster:
            ctx.current_token = KWOK_DEV_TOKEN
            logger.info("Using development token for KWOK cluster")

    try:
        ctx.cluster_id = get_cluster_id(ctx, settings)
    except Exception as e:
        logger.error("Failed to retrieve cluster id: %s.", describe_kube_error(e))
        if settings.local_dev_cluster:
            ctx.cluster_id = KWOK_DEV_CLUSTER_ID
            logger.info("Using fallback cluster ID for local development")

    try:
        ctx.cluster_branding = get_cluster_branding(ctx, settings)
    except Exception as e:
        logger.error("Failed to retrieve console cluster info: %s", describe_kube_error(e))
        if settings.local_dev_cluster:
            logger.info("Using fallback branding for local development")

    logger.info(
        "Kubernetes context: context=%s namespace=%s cluster=%s",
        ctx.current_context, ctx.namespace, ctx.cluster_id,
    )
    return ctx
