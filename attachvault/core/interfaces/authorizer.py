"""
Contract: Authorizer

Decides whether the caller may perform a binary action on an owner.
"""

from abc import ABC, abstractmethod
from enum import Enum

from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import OwnerRef


class BinaryAction(str, Enum):
    GET = "get_binary"
    ATTACH = "attach_binary"
    DETACH = "detach_binary"
    UPDATE_METADATA = "update_binary_metadata"


class IAuthorizer(ABC):
    """Port: Authorizer"""

    @abstractmethod
    async def can_act(self, context: RequestContext, owner: OwnerRef, record: dict, action: BinaryAction) -> bool:
        """
        Check an action against the owner record.

        Args:
            context: Caller identity.
            owner: Target model instance.
            record: Its current record.
            action: One of BinaryAction.

        Returns:
            True if allowed.
        """
        ...
