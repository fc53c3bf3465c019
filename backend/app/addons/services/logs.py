from __future__ import annotations

import logging
from typing import Any, List

from ..domain.models import AddonDetail, ContainerState
from ..errors import ErrorCode, Result, not_found
from ..runtime.adapter import ContainerNotFound, ContainerRuntimeAdapter, RuntimeAdapterError, RuntimeTimeout
from .registry import AddonRegistry, RecordNotFound

logger = logging.getLogger("addonhost.addons.logs")

DEFAULT_TAIL = 100
MAX_TAIL = 1000


def parse_tail(value: Any) -> int:
    """
    Normalize a requested tail: missing or non-numeric -> 100, then clamp to [1, 1000].
    """
    if value is None or isinstance(value, bool):
        return DEFAULT_TAIL
    try:
        tail = int(str(value).strip())
    except ValueError:
        return DEFAULT_TAIL
    return max(1, min(MAX_TAIL, tail))


class LogReader:
    """Tail logs of an addon's container, whatever its lifecycle status."""

    def __init__(self, registry: AddonRegistry, runtime: ContainerRuntimeAdapter):
        self.registry = registry
        self.runtime = runtime

    def get_logs(self, owner_id: str, addon_id: str, tail: Any = None) -> Result[List[str]]:
        try:
            record = self.registry.get_owned(owner_id, addon_id)
        except RecordNotFound:
            return not_found(addon_id, "logs")

        if not record.container_ref:
            return Result.failure(
                ErrorCode.GONE, "Addon container has been removed", addon_id=addon_id, operation="logs"
            )

        lines = parse_tail(tail)
        try:
            return Result.success(self.runtime.fetch_logs(record.container_ref, lines))
        except ContainerNotFound:
            return Result.failure(
                ErrorCode.GONE, "Addon container has been removed", addon_id=addon_id, operation="logs"
            )
        except RuntimeTimeout as e:
            logger.warning("Log fetch timed out for addon %s: %s", addon_id, e)
            return Result.failure(ErrorCode.TIMEOUT, str(e), addon_id=addon_id, operation="logs")
        except RuntimeAdapterError as e:
            logger.error("Log fetch failed for addon %s: %s", addon_id, e)
            return Result.failure(ErrorCode.RUNTIME_ERROR, str(e), addon_id=addon_id, operation="logs")


class AddonInspector:
    """
    Read-only detail view: the owned record plus what the engine currently
    reports for its container. The record itself is never changed here.
    """

    def __init__(self, registry: AddonRegistry, runtime: ContainerRuntimeAdapter):
        self.registry = registry
        self.runtime = runtime

    def describe(self, owner_id: str, addon_id: str) -> Result[AddonDetail]:
        try:
            record = self.registry.get_owned(owner_id, addon_id)
        except RecordNotFound:
            return not_found(addon_id, "describe")

        state = ContainerState.UNKNOWN
        if not record.container_ref:
            state = ContainerState.NOT_FOUND
        else:
            try:
                state = self.runtime.inspect_status(record.container_ref)
            except RuntimeAdapterError as e:
                logger.warning("Could not inspect container for addon %s: %s", addon_id, e)

        return Result.success(AddonDetail(addon=record, container_state=state))
