# backend/app/addons/lifecycle.py
from __future__ import annotations

import logging
import re
import secrets
import threading
import uuid
from typing import Any, Dict, Optional

from ..logging_config import addon_log
from .domain.models import AddonRecord, AddonStatus, ContainerSpec, utcnow_iso
from .errors import ErrorCode, Result, not_found
from .runtime.adapter import ContainerNotFound, ContainerRuntimeAdapter, RuntimeAdapterError, RuntimeTimeout
from .services.catalog import AddonCatalog
from .services.registry import AddonRegistry, RecordNotFound

logger = logging.getLogger("addonhost.addons.lifecycle")


class LockTable:
    """
    One lock per addon id, created on first use and kept for the life of the
    process. Holding an id's lock means owning its lifecycle transition.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, addon_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(addon_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[addon_id] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def display_name_for(image: str) -> str:
    """
    "ghcr.io/acme/pdf-tools:1.2" -> "pdf-tools". Digests and tags are dropped.
    """
    name = image.split("@", 1)[0]
    name = name.rsplit("/", 1)[-1]
    name = re.sub(r":[^:/]*$", "", name)
    return name or image


class LifecycleController:
    """
    Drives the addon state machine:

        installing -> running -> stopping -> stopped
        installing | stopping -> failed

    Every transition for one addon id happens under that id's lock, so at most
    one lifecycle operation is in flight per addon. Different ids never
    contend. Status only ever changes here.
    """

    def __init__(
        self,
        registry: AddonRegistry,
        runtime: ContainerRuntimeAdapter,
        catalog: Optional[AddonCatalog] = None,
        *,
        default_port: int = 8080,
        locks: Optional[LockTable] = None,
    ):
        self.registry = registry
        self.runtime = runtime
        self.catalog = catalog
        self.default_port = default_port
        self.locks = locks or LockTable()

    # ----------------------------
    # install
    # ----------------------------

    def install(self, owner_id: str, image: Any) -> Result[AddonRecord]:
        if not isinstance(image, str) or not image.strip():
            return Result.failure(
                ErrorCode.VALIDATION_ERROR, "dockerImage is required", operation="install"
            )
        image = image.strip()

        descriptor = self.catalog.find_by_image(image) if self.catalog is not None else None
        addon_id = uuid.uuid4().hex
        record = AddonRecord(
            id=addon_id,
            owner_id=owner_id,
            display_name=descriptor.name if descriptor else display_name_for(image),
            source_image=image,
            status=AddonStatus.INSTALLING,
            internal_port=descriptor.port if descriptor else self.default_port,
            auth_token=secrets.token_hex(32),
        )

        with self.locks.lock_for(addon_id), addon_log(addon_id) as alog:
            self.registry.create(record)
            alog.info("Installing addon %s from image %s for owner %s", addon_id, image, owner_id)

            spec = ContainerSpec(
                addon_id=addon_id,
                owner_id=owner_id,
                image=image,
                port=record.internal_port,
                environment={
                    "ADDON_AUTH_TOKEN": record.auth_token or "",
                    "ADDON_ID": addon_id,
                },
            )

            try:
                handle = self.runtime.create_and_start(spec)
            except RuntimeAdapterError as e:
                alog.error("Install failed for addon %s (%s): %s", addon_id, e.operation, e)
                failed = self._transition(
                    addon_id,
                    AddonStatus.FAILED,
                    last_error=str(e),
                    container_ref=e.container_ref,
                    internal_endpoint=None,
                )
                return Result.failure(
                    ErrorCode.TIMEOUT if isinstance(e, RuntimeTimeout) else ErrorCode.RUNTIME_ERROR,
                    f"Addon installation failed: {e}",
                    addon_id=addon_id,
                    operation="install",
                    value=failed,
                )

            running = self._transition(
                addon_id,
                AddonStatus.RUNNING,
                container_ref=handle.container_ref,
                internal_endpoint=handle.internal_endpoint,
                last_error=None,
            )
            alog.info("Addon %s running at %s", addon_id, handle.internal_endpoint)
            return Result.success(running)

    # ----------------------------
    # stop
    # ----------------------------

    def stop(self, owner_id: str, addon_id: str) -> Result[AddonRecord]:
        try:
            self.registry.get_owned(owner_id, addon_id)
        except RecordNotFound:
            return not_found(addon_id, "stop")

        with self.locks.lock_for(addon_id), addon_log(addon_id) as alog:
            # re-read under the lock; a concurrent stop may have finished meanwhile
            record = self.registry.get(addon_id)
            if record.status != AddonStatus.RUNNING:
                alog.info("Refusing to stop addon %s in status %s", addon_id, record.status.value)
                return Result.failure(
                    ErrorCode.NOT_IN_STOPPABLE_STATE,
                    f"Addon cannot be stopped while {record.status.value}",
                    addon_id=addon_id,
                    operation="stop",
                    value=record,
                )

            ref = record.container_ref
            self._transition(addon_id, AddonStatus.STOPPING, internal_endpoint=None)
            alog.info("Stopping addon %s (container %s)", addon_id, (ref or "")[:12])

            if ref:
                try:
                    self._release(ref)
                except RuntimeAdapterError as e:
                    alog.error("Stop failed for addon %s (%s): %s", addon_id, e.operation, e)
                    failed = self._transition(
                        addon_id,
                        AddonStatus.FAILED,
                        last_error=str(e),
                        internal_endpoint=None,
                        container_ref=ref,
                    )
                    return Result.failure(
                        ErrorCode.TIMEOUT if isinstance(e, RuntimeTimeout) else ErrorCode.RUNTIME_ERROR,
                        f"Addon stop failed: {e}",
                        addon_id=addon_id,
                        operation="stop",
                        value=failed,
                    )

            stopped = self._transition(
                addon_id,
                AddonStatus.STOPPED,
                container_ref=None,
                internal_endpoint=None,
                last_error=None,
            )
            alog.info("Addon %s stopped", addon_id)
            return Result.success(stopped)

    def _release(self, container_ref: str) -> None:
        """stop then remove; a container the engine no longer knows counts as released."""
        try:
            self.runtime.stop(container_ref)
        except ContainerNotFound:
            logger.info("Container %s already gone at stop", container_ref[:12])
            return
        try:
            self.runtime.remove(container_ref)
        except ContainerNotFound:
            logger.info("Container %s already gone at remove", container_ref[:12])

    def _transition(self, addon_id: str, status: AddonStatus, **fields: Any) -> AddonRecord:
        patch = dict(fields)
        patch["status"] = status
        patch["updated_at"] = utcnow_iso()
        return self.registry.update(addon_id, patch)
