from __future__ import annotations

import asyncio
import logging

from subgate.services.realtime.registry import ConnectionRegistry


logger = logging.getLogger(__name__)

FORCE_LOGOUT_EVENT = "force-logout"
REASON_SUSPENDED = "Account suspended"
REASON_DELETED = "Account deleted"


def force_logout_message(reason: str) -> dict[str, object]:
    return {"type": FORCE_LOGOUT_EVENT, "data": {"reason": reason}}


class RevocationBroadcaster:
    """Push a force-logout event to every live connection of one identity.

    Delivery is best-effort: success means "attempted". Handles are removed by
    their own disconnect path, never here.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def revoke(self, identity_id: str, reason: str) -> int:
        connections = await self._registry.connections_for(identity_id)
        if not connections:
            logger.info("revocation_noop user_id=%s reason=%s", identity_id, reason)
            return 0
        message = force_logout_message(reason)
        results = await asyncio.gather(
            *(connection.send_json(message) for connection in connections),
            return_exceptions=True,
        )
        failures = 0
        for result in results:
            if isinstance(result, BaseException):
                failures += 1
                logger.warning(
                    "revocation_send_failed user_id=%s error=%s",
                    identity_id,
                    type(result).__name__,
                )
        logger.info(
            "revocation_sent user_id=%s reason=%s attempted=%s failed=%s",
            identity_id,
            reason,
            len(connections),
            failures,
        )
        return len(connections)
