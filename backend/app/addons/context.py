from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import Settings
from .lifecycle import LifecycleController
from .runtime.adapter import ContainerRuntimeAdapter
from .runtime.docker_runtime import DockerRuntimeAdapter
from .services.catalog import AddonCatalog
from .services.logs import AddonInspector, LogReader
from .services.proxy import ProxyGateway
from .services.registry import AddonRegistry

logger = logging.getLogger("addonhost.addons.context")


@dataclass
class AddonContext:
    """
    Everything the addon routes need, constructed once per process and handed
    to the handlers through app.state. There are no module-level managers.
    """

    settings: Settings
    catalog: AddonCatalog
    registry: AddonRegistry
    runtime: ContainerRuntimeAdapter
    lifecycle: LifecycleController
    gateway: ProxyGateway
    logs: LogReader
    inspector: AddonInspector

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        runtime: Optional[ContainerRuntimeAdapter] = None,
        registry: Optional[AddonRegistry] = None,
        gateway: Optional[ProxyGateway] = None,
    ) -> "AddonContext":
        catalog = AddonCatalog(
            settings.addons_dir,
            image_prefix=settings.image_prefix,
            default_port=settings.default_port,
        )
        registry = registry or AddonRegistry(settings.records_path)
        runtime = runtime or DockerRuntimeAdapter(settings)
        gateway = gateway or ProxyGateway(registry, timeout=settings.call_timeout)

        logger.info(
            "Addon context built (enabled=%s addons_dir=%s network=%s)",
            settings.addons_enabled,
            settings.addons_dir,
            settings.network,
        )
        return cls(
            settings=settings,
            catalog=catalog,
            registry=registry,
            runtime=runtime,
            lifecycle=LifecycleController(registry, runtime, catalog, default_port=settings.default_port),
            gateway=gateway,
            logs=LogReader(registry, runtime),
            inspector=AddonInspector(registry, runtime),
        )

    def close(self) -> None:
        logger.info("Closing addon context")
        self.gateway.close()
        self.runtime.close()
