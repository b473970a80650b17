import os
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    settings_store_path: str = "/data/gateway-console/settings.json"
    defaults_path: str = ""
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080

    kube_enabled: bool = True
    dev_mode: bool = False
    local_k8s: bool = False
    kwok_api_server: str = ""
    oc_project: str = ""
    disable_cluster_version_check: bool = False
    disable_console_config_check: bool = False
    cleanup_on_startup: bool = True
    watch_resources: bool = True
    gateway_deployment_name: str = "api-gateway"

    instance_id: str = os.getenv("HOSTNAME", "gateway-console")

    model_config = {"env_prefix": "CONSOLE_"}

    @property
    def local_dev_cluster(self) -> bool:
        """True when running against a local KWOK cluster in dev mode."""
        return self.dev_mode and self.local_k8s


settings = Settings()


def load_defaults_overrides(path: str) -> dict:
    """Load per-tab default overrides from YAML config."""
    if not path:
        return {}
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Defaults config not found: {config_path}")
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Defaults config must be a mapping of tab -> fields: {config_path}")
    return data
