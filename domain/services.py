import hashlib
import hmac
import logging
import secrets
from typing import Any

from ajolt import off_thread
from domain.errors import AuthenticationRequired, InvalidCredentials
from domain.media import MediaService
from domain.models import Recipe, Session, User
from domain.repository import RecipesRepository, UsersRepository
from domain.schemas import Credentials, RecipeChange, RecipeIn, UserChange, UserIn, parse


logger = logging.getLogger(__name__)


SCRYPT_N = 2**14


def _scrypt(password: str, salt: bytes) -> bytes:
    return hashlib.scrypt(password.encode("utf-8"), salt=salt, n=SCRYPT_N, r=8, p=1)


async def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = await off_thread(_scrypt, password, salt)
    return f"{salt.hex()}${digest.hex()}"


async def verify_password(password: str, hashed: str) -> bool:
    salt, _, digest = hashed.partition("$")
    try:
        expected = bytes.fromhex(digest)
        got = await off_thread(_scrypt, password, bytes.fromhex(salt))
    except ValueError:
        return False
    return hmac.compare_digest(got, expected)


async def create_recipe(
    data: Any,
    *,
    session: Session,
    repository: RecipesRepository,
) -> Recipe:
    fields = parse(RecipeIn, data).model_dump(by_alias=True, mode="json")
    if session.username is None:
        raise AuthenticationRequired()
    recipe = await repository.create(uploader=session.username, fields=fields)
    logger.info("Created %r", recipe)
    return recipe


async def change_recipe(
    id: str,
    data: Any,
    *,
    repository: RecipesRepository,
) -> Recipe:
    fields = parse(RecipeChange, data).model_dump(by_alias=True, mode="json", exclude_none=True)
    return await repository.change(id, fields)


async def discard_recipe(
    id: str,
    *,
    repository: RecipesRepository,
    media: MediaService,
) -> None:
    await media.discard(id, repository.delete)
    logger.info("Deleted recipe %s", id)


async def create_user(data: Any, *, repository: UsersRepository) -> User:
    user_in = parse(UserIn, data)
    user = await repository.create(
        name=user_in.name,
        username=user_in.username,
        email=user_in.email,
        password=await hash_password(user_in.password),
    )
    logger.info("Created %r", user)
    return user


async def change_user(id: str, data: Any, *, repository: UsersRepository) -> User:
    change = parse(UserChange, data)
    password = None if change.password is None else await hash_password(change.password)
    return await repository.change(
        id,
        name=change.name,
        username=change.username,
        email=change.email,
        password=password,
    )


async def discard_user(
    id: str,
    *,
    repository: UsersRepository,
    media: MediaService,
) -> None:
    await media.discard(id, repository.delete)
    logger.info("Deleted user %s", id)


async def sign_in(data: Any, *, repository: UsersRepository) -> Session:
    credentials = parse(Credentials, data)
    user = await repository.find(credentials.username.lower())
    if user is None or not await verify_password(credentials.password, user.password):
        raise InvalidCredentials()
    logger.info("Signed in %s", user.username)
    return Session(is_auth=True, username=user.username)
