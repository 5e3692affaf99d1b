"""
Caller identity: resolve a caller id to a known user and its roles.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Protocol

ADMIN_ROLE = "Admin"
USER_ROLE = "User"


@dataclass(frozen=True)
class Caller:
    user_id: str
    roles: frozenset[str] = field(default_factory=lambda: frozenset({USER_ROLE}))

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


class IdentityProvider(Protocol):
    async def resolve(self, caller_id: str) -> Caller | None:
        """Return the caller if known, else None."""
        ...


class InMemoryIdentityProvider:
    def __init__(self) -> None:
        self._users: dict[str, Caller] = {}

    def add_user(self, user_id: str, roles: Iterable[str] = (USER_ROLE,)) -> Caller:
        caller = Caller(user_id=user_id, roles=frozenset(roles))
        self._users[user_id] = caller
        return caller

    async def resolve(self, caller_id: str) -> Caller | None:
        await asyncio.sleep(0)
        return self._users.get(caller_id)
