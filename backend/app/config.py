from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field


def _core_root() -> Path:
    # config.py -> app -> backend -> <core_root>
    return Path(__file__).resolve().parents[2]


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


class Settings(BaseModel):
    """
    Process-wide configuration, resolved once at startup.

    - addons_enabled: global feature flag. When false every addon route answers 503.
    - addons_dir: local directory scanned for installable addons (one folder per addon,
      each holding a Dockerfile and optionally a manifest.json).
    - data_dir: where the addon record store lives.
    - network: docker network for addon containers. "bridge" publishes the addon port
      on 127.0.0.1; any other network is addressed by container name.
    - docker_host: engine URL, e.g. "unix:///var/run/docker.sock".
    - engine_timeout: seconds per engine API call (create, stop, remove, inspect, logs).
    - health_timeout: seconds to wait for a new container to answer GET /health.
      0 disables the readiness wait.
    - call_timeout: seconds per proxied addon call.
    """

    addons_enabled: bool = True
    addons_dir: Path = Field(default_factory=lambda: _core_root() / "addons")
    data_dir: Path = Field(default_factory=lambda: _core_root() / "data" / "addons")
    log_dir: Path = Path("logs")

    network: str = "bridge"
    docker_host: str = "unix:///var/run/docker.sock"

    engine_timeout: float = 60.0
    stop_grace_seconds: int = 10
    health_timeout: float = 30.0
    health_interval: float = 1.0
    call_timeout: float = 30.0

    default_port: int = 8080
    image_prefix: str = "addonhost-addon-"
    container_prefix: str = "addonhost-addon-"
    memory_limit: int = 512 * 1024 * 1024  # 512MB
    cpu_quota: int = 50000  # 50% of one CPU

    identity_header: str = "X-User-Id"

    @property
    def records_path(self) -> Path:
        return self.data_dir / "installed_addons.json"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        values: dict = {
            "addons_enabled": _env_bool(env.get("ADDONS_ENABLED"), True),
        }

        mapping = {
            "ADDONS_DIR": "addons_dir",
            "ADDON_DATA_DIR": "data_dir",
            "LOG_DIR": "log_dir",
            "ADDON_NETWORK": "network",
            "DOCKER_HOST": "docker_host",
            "ADDON_ENGINE_TIMEOUT": "engine_timeout",
            "ADDON_HEALTH_TIMEOUT": "health_timeout",
            "ADDON_CALL_TIMEOUT": "call_timeout",
            "ADDON_DEFAULT_PORT": "default_port",
            "ADDON_IMAGE_PREFIX": "image_prefix",
            "ADDON_MEMORY_LIMIT": "memory_limit",
            "ADDON_CPU_QUOTA": "cpu_quota",
            "ADDON_IDENTITY_HEADER": "identity_header",
        }
        for env_key, field in mapping.items():
            raw = env.get(env_key)
            if raw is not None and raw.strip() != "":
                values[field] = raw.strip()

        return cls.model_validate(values)
