from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..domain.models import AvailableAddonDescriptor, CatalogLoadError, CatalogManifest

logger = logging.getLogger("addonhost.addons.catalog")


class AddonCatalog:
    """
    Installable addons declared in the local addons directory.

    Every sub-directory holding a Dockerfile is one addon. An optional
    manifest.json next to it supplies the name, description, port and image.

    - Invalid manifests are logged and added to .errors, but never fail the listing.
    - The scan result is cached until reload().
    """

    def __init__(self, addons_dir: Path, *, image_prefix: str = "addonhost-addon-", default_port: int = 8080):
        self.addons_dir = addons_dir
        self.image_prefix = image_prefix
        self.default_port = default_port
        self._lock = threading.Lock()
        self._addons: Optional[List[AvailableAddonDescriptor]] = None
        self.errors: List[CatalogLoadError] = []

    def list_available(self) -> List[AvailableAddonDescriptor]:
        with self._lock:
            if self._addons is None:
                self._addons, self.errors = self._scan()
            return list(self._addons)

    def reload(self) -> List[AvailableAddonDescriptor]:
        """Force a re-scan of the addons directory."""
        with self._lock:
            self._addons, self.errors = self._scan()
            return list(self._addons)

    def find_by_image(self, image: str) -> Optional[AvailableAddonDescriptor]:
        for addon in self.list_available():
            if addon.image == image:
                return addon
        return None

    def _scan(self) -> tuple[List[AvailableAddonDescriptor], List[CatalogLoadError]]:
        addons: list[AvailableAddonDescriptor] = []
        errors: list[CatalogLoadError] = []

        logger.info("Scanning addons directory %s", self.addons_dir)

        if not self.addons_dir.is_dir():
            logger.warning("Addons directory does not exist: %s", self.addons_dir)
            return addons, errors

        for addon_dir in sorted(p for p in self.addons_dir.iterdir() if p.is_dir()):
            if not (addon_dir / "Dockerfile").is_file():
                continue

            try:
                manifest = self._read_manifest(addon_dir)
                descriptor = AvailableAddonDescriptor(
                    id=addon_dir.name,
                    name=manifest.name or addon_dir.name,
                    image=manifest.image or f"{self.image_prefix}{addon_dir.name}",
                    description=manifest.description,
                    version=manifest.version,
                    port=manifest.port or self.default_port,
                    config_schema=manifest.config_schema,
                )
            except (OSError, ValueError) as e:
                # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
                msg = f"Skipping addon in {addon_dir}: {e}"
                logger.warning(msg)
                errors.append(CatalogLoadError(addon_path=str(addon_dir), error=str(e)))
                continue

            addons.append(descriptor)
            logger.info("Found addon '%s' (image=%s)", descriptor.id, descriptor.image)

        return addons, errors

    def _read_manifest(self, addon_dir: Path) -> CatalogManifest:
        manifest_path = addon_dir / "manifest.json"
        if not manifest_path.exists():
            return CatalogManifest()

        data = json.loads(manifest_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"manifest.json must be a JSON object, got {type(data).__name__}")
        try:
            return CatalogManifest.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Invalid manifest in {manifest_path}: {e}") from e
