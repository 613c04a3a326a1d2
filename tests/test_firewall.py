import pytest

from domain.errors import AuthenticationRequired, NotFound, OwnershipMismatch
from domain.firewall import CreationMode, OwnershipMode, Verdict, owned_by_session
from domain.models import Access, Session


ANON = Session()
ALICE = Session(is_auth=True, username="alice")
BOB = Session(is_auth=True, username="bob")
E1 = "e" * 32


class Owners:
    def __init__(self, owners: dict[str, str]) -> None:
        self.owners = owners
        self.calls = 0

    async def get_owner(self, id: str) -> str:
        self.calls += 1
        if id not in self.owners:
            raise NotFound()
        return self.owners[id]


@pytest.fixture
def owners() -> Owners:
    return Owners({E1: "alice"})


@pytest.mark.asyncio
@pytest.mark.parametrize("session", (ANON, Session(is_auth=True), Session(username="alice")))
async def test_unauthenticated_denied_in_every_mode(owners: Owners, session: Session) -> None:
    access = Access(session=session, entity_id=E1)
    assert await CreationMode().evaluate(access) is Verdict.unauthenticated
    assert (
        await OwnershipMode(owned_by_session(owners.get_owner)).evaluate(access)
        is Verdict.unauthenticated
    )
    assert owners.calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("session", (ALICE, BOB))
async def test_creation_mode_ignores_ownership(session: Session) -> None:
    access = Access(session=session, entity_id=None)
    assert await CreationMode().evaluate(access) is Verdict.allow


@pytest.mark.asyncio
@pytest.mark.parametrize("session,verdict", ((ALICE, Verdict.allow), (BOB, Verdict.forbidden)))
async def test_ownership_mode(owners: Owners, session: Session, verdict: Verdict) -> None:
    auth = OwnershipMode(owned_by_session(owners.get_owner))
    assert await auth.evaluate(Access(session=session, entity_id=E1)) is verdict


@pytest.mark.asyncio
async def test_ownership_of_missing_entity_is_not_found(owners: Owners) -> None:
    auth = OwnershipMode(owned_by_session(owners.get_owner))
    with pytest.raises(NotFound):
        await auth.evaluate(Access(session=ALICE, entity_id="0" * 32))


@pytest.mark.asyncio
async def test_ownership_without_target_is_forbidden(owners: Owners) -> None:
    auth = OwnershipMode(owned_by_session(owners.get_owner))
    assert await auth.evaluate(Access(session=ALICE)) is Verdict.forbidden


@pytest.mark.asyncio
async def test_custom_checks() -> None:
    async def never_forbidden(access: Access) -> bool:
        return False

    auth = OwnershipMode(
        forbidden_check=never_forbidden,
        unauthorized_check=lambda access: access.session.username != "root",
    )
    assert await auth.evaluate(Access(session=ALICE)) is Verdict.unauthenticated
    assert await auth.evaluate(Access(session=Session(username="root"))) is Verdict.allow


@pytest.mark.parametrize(
    "verdict,error",
    ((Verdict.unauthenticated, AuthenticationRequired), (Verdict.forbidden, OwnershipMismatch)),
)
def test_enforce(verdict: Verdict, error: type[Exception]) -> None:
    with pytest.raises(error):
        verdict.enforce()


def test_enforce_allow() -> None:
    Verdict.allow.enforce()


@pytest.mark.asyncio
async def test_creation_mode_never_consults_forbidden_check() -> None:
    async def always_forbidden(access: Access) -> bool:
        raise AssertionError("creation mode has nothing to own")

    auth = CreationMode(forbidden_check=always_forbidden)
    assert await auth.evaluate(Access(session=ALICE)) is Verdict.allow
    assert await auth.evaluate(Access(session=ANON)) is Verdict.unauthenticated
