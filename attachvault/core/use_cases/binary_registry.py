"""
Use Case: Binary Registry

Chooses the binary service responsible for a (model, attribute) pair and
releases attachments when an owner is deleted.
"""

import logging

from attachvault.core.entities.attachment import attachment_view
from attachvault.core.entities.file_descriptor import OwnerRef
from attachvault.core.errors import BinaryError, UnmanagedMappingError
from attachvault.core.interfaces.binary_service import BinaryMapping, IBinaryService
from attachvault.core.interfaces.model_store import IModelStore

logger = logging.getLogger(__name__)


class BinaryRegistry:
    """
    Use Case: resolve backends by mapping score.

    An explicit mapping wins immediately; otherwise the highest wildcard
    score wins, first registered on ties.
    """

    def __init__(self, model_store: IModelStore, services: list[IBinaryService] | None = None):
        self._store = model_store
        self._services: list[IBinaryService] = []
        for service in services or []:
            self.register(service)
        model_store.on_delete(self._on_owner_deleted)

    @property
    def services(self) -> list[IBinaryService]:
        return list(self._services)

    def register(self, service: IBinaryService) -> None:
        self._services.append(service)
        logger.info(f"Registered binary service {service.name}")

    def resolve(self, model_type: str, attribute: str) -> IBinaryService:
        """
        Raises:
            UnmanagedMappingError: no service handles the pair.
        """
        best, best_score = None, BinaryMapping.UNMANAGED
        for service in self._services:
            score = service.handle_binary(model_type, attribute)
            if score == BinaryMapping.EXPLICIT:
                return service
            if score > best_score:
                best, best_score = service, score
        if best is None:
            raise UnmanagedMappingError(model_type, attribute)
        return best

    def get(self, name: str) -> IBinaryService:
        for service in self._services:
            if service.name == name:
                return service
        raise KeyError(name)

    async def _on_owner_deleted(self, owner: OwnerRef, record: dict) -> None:
        """Release every attachment of a deleted owner; failures never propagate."""
        for attribute in record:
            try:
                service = self.resolve(owner.model_type, attribute)
            except UnmanagedMappingError:
                continue
            try:
                view = attachment_view(record, attribute, self._store.cardinality(owner.model_type, attribute))
            except BinaryError:
                # Mapped name but the value is no attachment
                continue
            for descriptor in view.items():
                await service.cascade_delete(descriptor, owner)
