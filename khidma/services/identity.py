"""Resolve an authenticated user id to the profiles it may act as."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from khidma.domain.enums import UserRole
from khidma.domain.errors import AuthorizationError, ProfileRequired
from khidma.infrastructure.repositories import UserRepository


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: UserRole
    shipper_id: Optional[int] = None
    carrier_id: Optional[int] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def require_shipper(self) -> int:
        if self.shipper_id is None:
            raise ProfileRequired("shipper")
        return self.shipper_id

    def require_carrier(self) -> int:
        if self.carrier_id is None:
            raise ProfileRequired("carrier")
        return self.carrier_id

    def require_admin(self) -> None:
        if not self.is_admin:
            raise AuthorizationError("Administrator role required", {"role": "ADMIN"})


class IdentityResolver:
    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def resolve(self, user_id: int) -> Actor:
        user = await self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise AuthorizationError("Unknown or inactive user", {"user_id": user_id})
        shipper = await self.users.get_shipper_by_user(user.id)
        carrier = await self.users.get_carrier_by_user(user.id)
        return Actor(
            user_id=user.id,
            role=user.role,
            shipper_id=shipper.id if shipper else None,
            carrier_id=carrier.id if carrier else None,
        )
