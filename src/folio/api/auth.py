"""Acting-user dependency for API endpoints.

Identity is established upstream; the gateway forwards the authenticated user's
id in the ``X-User-ID`` header.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from folio.api.errors import UnauthorizedError

user_id_header = APIKeyHeader(name="X-User-ID", auto_error=False)


class Actor:
    """The user a request acts on behalf of."""

    def __init__(self, user_id: UUID):
        self.user_id = user_id

    def __repr__(self) -> str:
        return f"Actor({self.user_id})"


async def get_actor(
    request: Request,
    user_id: str | None = Security(user_id_header),
) -> Actor:
    """Get the acting user from the request.

    Raises:
        UnauthorizedError: If the header is missing or is not a UUID
    """
    if not user_id:
        raise UnauthorizedError("Missing X-User-ID header")
    try:
        actor = Actor(UUID(user_id.strip()))
    except ValueError:
        raise UnauthorizedError("X-User-ID must be a UUID") from None
    request.state.actor = actor
    return actor


# Type alias for dependency injection
CurrentActor = Annotated[Actor, Depends(get_actor)]
