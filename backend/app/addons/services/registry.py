from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from ..domain.models import AddonRecord

logger = logging.getLogger("addonhost.addons.registry")


class RecordNotFound(KeyError):
    """No addon record with this id (or not visible to the caller)."""


class RegistryFile(BaseModel):
    version: int = 1
    addons: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class AddonRegistry:
    """
    Durable store of AddonRecords, keyed by addon id.

    Handles reading/writing `<data_dir>/installed_addons.json` atomically.
    With path=None records live in memory only.

    No ownership filtering happens in get(); use get_owned() when acting for a
    caller. Records handed out are copies, so callers never mutate stored state.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = threading.Lock()
        self._records: Dict[str, AddonRecord] = {}
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._records = self._load(self.path)
        logger.info("AddonRegistry initialized, path=%s records=%d", self.path, len(self._records))

    # ----------------------------
    # Persistence
    # ----------------------------

    def _load(self, path: Path) -> Dict[str, AddonRecord]:
        if not path.exists():
            return {}

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            doc = RegistryFile.model_validate(raw)
        except (OSError, ValueError) as e:
            logger.error("Failed to load addon records from %s: %s", path, e)
            raise RuntimeError(f"Failed to load addon records: {e}") from e

        records: Dict[str, AddonRecord] = {}
        for addon_id, data in doc.addons.items():
            try:
                records[addon_id] = AddonRecord.model_validate(data)
            except ValidationError as e:
                # keep the rest of the store usable
                logger.error("Skipping invalid addon record %s: %s", addon_id, e)
        return records

    def _save(self) -> None:
        if self.path is None:
            return
        doc = RegistryFile(addons={addon_id: r.stored() for addon_id, r in self._records.items()})
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(doc.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(self.path)

    # ----------------------------
    # Queries
    # ----------------------------

    def get(self, addon_id: str) -> AddonRecord:
        with self._lock:
            record = self._records.get(addon_id)
            if record is None:
                raise RecordNotFound(addon_id)
            return record.model_copy(deep=True)

    def get_owned(self, owner_id: str, addon_id: str) -> AddonRecord:
        """
        Like get(), but a record owned by someone else is reported exactly like
        a missing one so that callers cannot probe for other users' addons.
        """
        record = self.get(addon_id)
        if record.owner_id != owner_id:
            raise RecordNotFound(addon_id)
        return record

    def list_for_user(self, owner_id: str) -> List[AddonRecord]:
        with self._lock:
            owned = [r.model_copy(deep=True) for r in self._records.values() if r.owner_id == owner_id]
        owned.sort(key=lambda r: r.created_at, reverse=True)
        return owned

    # ----------------------------
    # Mutations
    # ----------------------------

    def create(self, record: AddonRecord) -> AddonRecord:
        with self._lock:
            if record.id in self._records:
                raise ValueError(f"Addon record already exists: {record.id}")
            self._records[record.id] = record.model_copy(deep=True)
            self._save()
            logger.info("Created addon record %s (owner=%s image=%s)", record.id, record.owner_id, record.source_image)
            return record.model_copy(deep=True)

    def update(self, addon_id: str, patch: Mapping[str, Any]) -> AddonRecord:
        """
        Apply a partial update to one record. Unknown keys and owner/id changes
        are rejected.
        """
        forbidden = {"id", "owner_id"} & set(patch)
        if forbidden:
            raise ValueError(f"Immutable fields cannot be updated: {sorted(forbidden)}")

        with self._lock:
            current = self._records.get(addon_id)
            if current is None:
                raise RecordNotFound(addon_id)

            data = current.stored()
            data.update(patch)
            updated = AddonRecord.model_validate(data)

            self._records[addon_id] = updated
            self._save()
            logger.debug("Updated addon record %s: %s", addon_id, sorted(patch))
            return updated.model_copy(deep=True)
