"""
Adapter: Owner Policy.

A caller may act on a record it owns (record["owner"]) or on its own
record (the user record itself). Anonymous callers may do nothing.
"""

import logging

from attachvault.core.entities.context import RequestContext
from attachvault.core.entities.file_descriptor import OwnerRef
from attachvault.core.interfaces.authorizer import BinaryAction, IAuthorizer

logger = logging.getLogger(__name__)


class OwnerPolicy(IAuthorizer):

    def __init__(self, public_read: bool = False):
        self.public_read = public_read

    async def can_act(self, context: RequestContext, owner: OwnerRef, record: dict, action: BinaryAction) -> bool:
        if action == BinaryAction.GET and self.public_read:
            return True
        if context.is_anonymous:
            return False
        allowed = context.user_id in (record.get("owner"), record.get("uuid"))
        if not allowed:
            logger.info(f"Denied {action.value} on {owner.marker} for user {context.user_id}")
        return allowed
