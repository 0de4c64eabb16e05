"""De-authorization of the classroom grant."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Revoker(Protocol):
    """Drops a user's grant remotely."""

    async def revoke(self, user_id: str) -> None: ...


class RevocationClient:
    """Performs de-authorization through the backing server.

    The backing server holds the provider tokens, so it is the party that
    revokes them with the identity provider. Errors propagate to the caller;
    the session decides what they mean for local state.
    """

    def __init__(self, revoker: Revoker):
        self.revoker = revoker

    async def revoke(self, user_id: str) -> None:
        """Revoke the user's grant.

        Raises:
            NetworkError: On transport failures
            ProviderError: If the server refuses or errors
            MalformedResponseError: If the server answer is unreadable
        """
        logger.debug(f"Requesting revocation for {user_id}")
        await self.revoker.revoke(user_id)
        logger.info(f"Classroom authorization revoked for {user_id}")
