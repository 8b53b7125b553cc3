"""
Identity Resolution

The ledger works with canonical user UUIDs. Callers arrive with an opaque
identifier (phone number, external account id, ...) that an identity
collaborator resolves first.
"""

from abc import ABC, abstractmethod
from typing import Mapping, Optional
from uuid import UUID

from pocketledger.ledger.errors import UserNotFoundError


class IdentityResolver(ABC):
    """Resolves an opaque user reference to the canonical user key."""

    @abstractmethod
    async def resolve(self, user_ref: str) -> UUID:
        """
        Raises:
            UserNotFoundError: If nobody matches the reference
        """
        pass


class MappingIdentityResolver(IdentityResolver):
    """
    Resolver backed by a plain mapping.

    A reference that already is a known canonical UUID resolves to itself.
    """

    def __init__(self, users: Optional[Mapping[str, UUID]] = None):
        self._users = dict(users or {})
        self._known = set(self._users.values())

    def register(self, user_ref: str, user_id: UUID) -> None:
        self._users[user_ref] = user_id
        self._known.add(user_id)

    async def resolve(self, user_ref: str) -> UUID:
        user_ref = user_ref.strip()
        if user_ref in self._users:
            return self._users[user_ref]
        try:
            candidate = UUID(user_ref)
        except ValueError:
            raise UserNotFoundError(user_ref)
        if candidate in self._known:
            return candidate
        raise UserNotFoundError(user_ref)
