"""Capability checks guarding every mutating route.

A route is configured with either `CreationMode` (the resource does not exist
yet, so only authentication is checked) or `OwnershipMode` (authentication,
then ownership of the target). Both carry their checks as plain fields.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Protocol

from domain.errors import AuthenticationRequired, OwnershipMismatch
from domain.models import Access


type UnauthorizedCheck = Callable[[Access], bool]
type ForbiddenCheck = Callable[[Access], Awaitable[bool]]


class Verdict(Enum):
    allow = 200
    unauthenticated = 401
    forbidden = 403

    def enforce(self) -> None:
        match self:
            case Verdict.unauthenticated:
                raise AuthenticationRequired()
            case Verdict.forbidden:
                raise OwnershipMismatch()
            case _:
                return


class AuthConfig(Protocol):
    async def evaluate(self, access: Access) -> Verdict: ...


def not_signed_in(access: Access) -> bool:
    return not access.session.is_auth or access.session.username is None


async def never_forbidden(access: Access) -> bool:
    return False


@dataclass(frozen=True)
class CreationMode:
    # Nothing to own yet, so evaluate never consults forbidden_check.
    forbidden_check: ForbiddenCheck = never_forbidden
    unauthorized_check: UnauthorizedCheck = not_signed_in

    async def evaluate(self, access: Access) -> Verdict:
        if self.unauthorized_check(access):
            return Verdict.unauthenticated
        return Verdict.allow


@dataclass(frozen=True)
class OwnershipMode:
    forbidden_check: ForbiddenCheck
    unauthorized_check: UnauthorizedCheck = not_signed_in

    async def evaluate(self, access: Access) -> Verdict:
        if self.unauthorized_check(access):
            return Verdict.unauthenticated
        # May raise NotFound, which is not a 403.
        if await self.forbidden_check(access):
            return Verdict.forbidden
        return Verdict.allow


def owned_by_session(get_owner: Callable[[str], Awaitable[str]]) -> ForbiddenCheck:
    """Forbidden check comparing the session's username with the target's owner."""

    async def check(access: Access) -> bool:
        if access.entity_id is None:
            return True
        owner = await get_owner(access.entity_id)
        return owner != access.session.username

    return check
