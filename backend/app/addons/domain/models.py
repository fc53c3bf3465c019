#backend/app/addons/domain/models.py
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# -----------------------------
# Enums
# -----------------------------

class AddonStatus(str, Enum):
    """
    Lifecycle status of an installed addon.

    installing -> running -> stopping -> stopped
    failed is reachable from installing or stopping. stopped and failed are terminal.
    """

    INSTALLING = "installing"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class ContainerState(str, Enum):
    """Container state as observed from the engine."""

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    EXITED = "exited"
    DEAD = "dead"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


PROXY_METHODS = ("GET", "POST", "PUT", "DELETE", "PATCH")


# -----------------------------
# Installed addon record
# -----------------------------

class AddonRecord(BaseModel):
    """
    One record per installed addon. Persisted by the registry.

    Invariants:
    - owner_id never changes after creation.
    - internal_endpoint is set iff status == running.
    - container_ref is cleared only once the container has been removed.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str
    owner_id: str
    display_name: str
    source_image: str

    status: AddonStatus = AddonStatus.INSTALLING
    container_ref: Optional[str] = None
    internal_endpoint: Optional[str] = None
    internal_port: int = 8080

    # injected into the container env and sent on every proxied call
    auth_token: Optional[str] = Field(default=None, exclude=True)

    last_error: Optional[str] = None

    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: str = Field(default_factory=utcnow_iso)

    def stored(self) -> Dict[str, Any]:
        """Full dump for the record store (includes the auth token)."""
        data = self.model_dump(mode="json")
        data["auth_token"] = self.auth_token
        return data


# -----------------------------
# Catalog
# -----------------------------

class AvailableAddonDescriptor(BaseModel):
    """
    An installable addon found in the local addons directory.
    Immutable; not persisted.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    image: str
    description: Optional[str] = None
    version: Optional[str] = None
    port: int = 8080
    config_schema: Optional[Dict[str, Any]] = None


class CatalogManifest(BaseModel):
    """
    Optional addons/<name>/manifest.json. Unknown keys are allowed so that
    manifests written for newer versions still load.
    """

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    image: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    config_schema: Optional[Dict[str, Any]] = None


class CatalogLoadError(BaseModel):
    addon_path: str
    error: str


# -----------------------------
# Container runtime DTOs
# -----------------------------

class ContainerSpec(BaseModel):
    """Everything the runtime adapter needs to start one addon container."""

    addon_id: str
    owner_id: str
    image: str
    port: int = 8080
    environment: Dict[str, str] = Field(default_factory=dict)


class ContainerHandle(BaseModel):
    container_ref: str
    internal_endpoint: str
    container_name: Optional[str] = None


# -----------------------------
# Proxy
# -----------------------------

class ProxyResponse(BaseModel):
    """An addon's HTTP response, passed through unchanged."""

    status_code: int
    content_type: Optional[str] = None
    content: bytes = b""

    def json_or_text(self) -> Any:
        if not self.content:
            return None
        text = self.content.decode("utf-8", errors="replace")
        if self.content_type and "json" in self.content_type.lower():
            try:
                return json.loads(text)
            except ValueError:
                return text
        return text


# -----------------------------
# Boundary DTOs
# -----------------------------

class InstallRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    docker_image: Any = Field(default=None, alias="dockerImage")


class CallRequest(BaseModel):
    endpoint: Any = None
    method: Any = "POST"
    data: Any = None


class AddonDetail(BaseModel):
    addon: AddonRecord
    container_state: ContainerState = ContainerState.UNKNOWN


class LogsResponse(BaseModel):
    logs: List[str] = Field(default_factory=list)
    tail: int
    addon_name: str
    status: AddonStatus
