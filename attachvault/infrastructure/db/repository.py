"""
Model Repository — persistence of attachment owners.

Handles:
  - Creating / reading / deleting model records
  - Applying attachment mutations with an optimistic hash check
  - Notifying delete listeners (cascade cleanup of binaries)
"""

import asyncio
import logging
from typing import Iterable, Optional

from attachvault.core.entities.attachment import AttachmentMutation, Cardinality, apply_mutation
from attachvault.core.entities.file_descriptor import OwnerRef
from attachvault.core.errors import BinaryNotFoundError
from attachvault.core.interfaces.model_store import IModelStore
from attachvault.infrastructure.db.database import get_db
from attachvault.infrastructure.db.models import ModelRecord

logger = logging.getLogger(__name__)


class SqlModelStore(IModelStore):
    """IModelStore on SQLAlchemy; blocking sessions run in a worker thread."""

    def __init__(self, single_attributes: Iterable[str] = ()):
        super().__init__()
        self._single = {entry.lower() for entry in single_attributes}

    def cardinality(self, model_type: str, attribute: str) -> Cardinality:
        model_type = model_type.lower()
        if f"{model_type}.{attribute}".lower() in self._single or f"*.{attribute}".lower() in self._single:
            return Cardinality.SINGLE
        return Cardinality.MANY

    async def get(self, owner: OwnerRef) -> Optional[dict]:
        return await asyncio.to_thread(self._get, owner)

    async def exists(self, owner: OwnerRef) -> bool:
        return await self.get(owner) is not None

    async def save(self, model_type: str, data: dict) -> dict:
        return await asyncio.to_thread(self._save, model_type, data)

    async def apply(self, owner: OwnerRef, mutation: AttachmentMutation) -> dict:
        return await asyncio.to_thread(self._apply, owner, mutation)

    async def _delete(self, owner: OwnerRef) -> Optional[dict]:
        return await asyncio.to_thread(self._remove, owner)

    # ── Sync helpers ──

    def _get(self, owner: OwnerRef) -> Optional[dict]:
        with get_db() as db:
            record = self._find(db, owner)
            return record.to_dict() if record else None

    def _save(self, model_type: str, data: dict) -> dict:
        with get_db() as db:
            payload = {k: v for k, v in data.items() if k != "uuid"}
            record = ModelRecord(model_type=model_type.lower(), data=payload)
            if data.get("uuid"):
                record.id = str(data["uuid"])
            db.add(record)
            db.flush()
            logger.info(f"Saved {record.model_type} record {record.id}")
            return record.to_dict()

    def _apply(self, owner: OwnerRef, mutation: AttachmentMutation) -> dict:
        with get_db() as db:
            record = self._find(db, owner, for_update=True)
            if record is None:
                raise BinaryNotFoundError(f"No {owner.model_type} record {owner.uid}")
            # Reassign so the JSON column is flagged dirty
            record.data = apply_mutation(record.data or {}, mutation)
            db.flush()
            logger.debug(f"Applied {type(mutation).__name__} on {owner.marker}.{mutation.attribute}")
            return record.to_dict()

    def _remove(self, owner: OwnerRef) -> Optional[dict]:
        with get_db() as db:
            record = self._find(db, owner)
            if record is None:
                return None
            snapshot = record.to_dict()
            db.delete(record)
            logger.info(f"Deleted {owner.marker}")
            return snapshot

    @staticmethod
    def _find(db, owner: OwnerRef, for_update: bool = False) -> Optional[ModelRecord]:
        query = db.query(ModelRecord).filter_by(id=owner.uid, model_type=owner.model_type.lower())
        if for_update:
            query = query.with_for_update()
        return query.first()
