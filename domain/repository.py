from datetime import datetime, timezone
import json
from typing import Any
from uuid import uuid4

import aiosqlite
from databases import Database
from databases.interfaces import Record

from domain.errors import Duplicate, NotFound
from domain.models import Recipe, User


CREATE_RECIPES_TABLE = """
CREATE TABLE IF NOT EXISTS Recipes (
    id VARCHAR(32) PRIMARY KEY,
    title VARCHAR(128) UNIQUE NOT NULL,
    uploader VARCHAR(64) NOT NULL,
    about TEXT NOT NULL,
    category VARCHAR(16) NOT NULL,
    body TEXT NOT NULL,
    media TEXT NOT NULL,
    created_on VARCHAR(32) NOT NULL,
    modified_on VARCHAR(32) NOT NULL
)
"""


CREATE_USERS_TABLE = """
CREATE TABLE IF NOT EXISTS Users (
    id VARCHAR(32) PRIMARY KEY,
    username VARCHAR(64) UNIQUE NOT NULL,
    name VARCHAR(128) NOT NULL,
    email VARCHAR(256) NOT NULL,
    password VARCHAR(256) NOT NULL,
    media TEXT NOT NULL
)
"""


CREATE_RECIPE = """
INSERT INTO Recipes(id, title, uploader, about, category, body, media, created_on, modified_on)
VALUES (:id, :title, :uploader, :about, :category, :body, :media, :created_on, :modified_on)
"""


UPDATE_RECIPE = """
UPDATE Recipes
SET title = :title, about = :about, category = :category,
    body = :body, modified_on = :modified_on
WHERE id = :id
"""


GET_RECIPE = "SELECT * FROM Recipes WHERE id = :id"


FIND_RECIPE_TITLE = "SELECT id FROM Recipes WHERE title = :title"


LIST_RECIPES = "SELECT * FROM Recipes"


SET_RECIPE_MEDIA = "UPDATE Recipes SET media = :media, modified_on = :modified_on WHERE id = :id"


DELETE_RECIPE = "DELETE FROM Recipes WHERE id = :id"


CREATE_USER = """
INSERT INTO Users(id, username, name, email, password, media)
VALUES (:id, :username, :name, :email, :password, :media)
"""


UPDATE_USER = """
UPDATE Users SET username = :username, name = :name, email = :email, password = :password
WHERE id = :id
"""


GET_USER = "SELECT * FROM Users WHERE id = :id"


FIND_USER = "SELECT * FROM Users WHERE username = :username"


LIST_USERS = "SELECT * FROM Users"


SET_USER_MEDIA = "UPDATE Users SET media = :media WHERE id = :id"


DELETE_USER = "DELETE FROM Users WHERE id = :id"


CREATE_RETIRED_TABLE = """
CREATE TABLE IF NOT EXISTS RetiredUsernames (username VARCHAR(64) PRIMARY KEY)
"""


RETIRE_USERNAME = "INSERT OR IGNORE INTO RetiredUsernames(username) VALUES (:username)"


FIND_RETIRED = "SELECT username FROM RetiredUsernames WHERE username = :username"


TRANSFER_RECIPES = "UPDATE Recipes SET uploader = :new WHERE uploader = :old"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def create_tables(db: Database) -> None:
    await db.execute(query=CREATE_RECIPES_TABLE)  # pyright: ignore[reportUnknownMemberType]
    await db.execute(query=CREATE_USERS_TABLE)  # pyright: ignore[reportUnknownMemberType]
    await db.execute(query=CREATE_RETIRED_TABLE)  # pyright: ignore[reportUnknownMemberType]


def _recipe(r: Record) -> Recipe:
    body = json.loads(r["body"])
    return Recipe(
        id=r["id"],
        title=r["title"],
        uploader=r["uploader"],
        about=r["about"],
        category=r["category"],
        prep_time=body["prepTime"],
        ingredients=body["ingredients"],
        instructions=body["instructions"],
        media=json.loads(r["media"]),
        created_on=datetime.fromisoformat(r["created_on"]),
        modified_on=datetime.fromisoformat(r["modified_on"]),
    )


def _user(r: Record) -> User:
    return User(
        id=r["id"],
        name=r["name"],
        username=r["username"],
        email=r["email"],
        password=r["password"],
        media=json.loads(r["media"]),
    )


class RecipesRepository:
    """Recipes repository."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _check_title(self, title: str, id: str | None = None) -> None:
        found = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            FIND_RECIPE_TITLE, values={"title": title}
        )
        if found is not None and found["id"] != id:
            raise Duplicate(f"A recipe called {title!r} already exists.")

    async def create(self, *, uploader: str, fields: dict[str, Any]) -> Recipe:
        await self._check_title(fields["title"])
        id = uuid4().hex
        now = _now()
        about = fields.get("about") or f"A recipe created by {uploader}."
        try:
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_RECIPE,
                values={
                    "id": id,
                    "title": fields["title"],
                    "uploader": uploader,
                    "about": about,
                    "category": fields["category"],
                    "body": json.dumps(
                        {
                            "prepTime": fields["prepTime"],
                            "ingredients": fields["ingredients"],
                            "instructions": fields["instructions"],
                        }
                    ),
                    "media": "[]",
                    "created_on": now,
                    "modified_on": now,
                },
            )
        except aiosqlite.IntegrityError as e:
            raise Duplicate(f"A recipe called {fields['title']!r} already exists.") from e
        return await self.get(id)

    async def get(self, id: str) -> Recipe:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_RECIPE, values={"id": id}
        )
        if result is None:
            raise NotFound(f"No recipe {id!r}.")
        return _recipe(result)

    async def change(self, id: str, fields: dict[str, Any]) -> Recipe:
        recipe = await self.get(id)
        merged = {**recipe.to_dict(), **{k: v for k, v in fields.items() if v is not None}}
        if merged["title"] != recipe.title:
            await self._check_title(merged["title"], id)
        try:
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                UPDATE_RECIPE,
                values={
                    "id": id,
                    "title": merged["title"],
                    "about": merged["about"],
                    "category": merged["category"],
                    "body": json.dumps(
                        {
                            "prepTime": merged["prepTime"],
                            "ingredients": merged["ingredients"],
                            "instructions": merged["instructions"],
                        }
                    ),
                    "modified_on": _now(),
                },
            )
        except aiosqlite.IntegrityError as e:
            raise Duplicate(f"A recipe called {merged['title']!r} already exists.") from e
        return await self.get(id)

    async def delete(self, id: str) -> None:
        await self.get(id)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            DELETE_RECIPE, values={"id": id}
        )

    async def set_media(self, id: str, filenames: list[str]) -> None:
        await self.get(id)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SET_RECIPE_MEDIA,
            values={"id": id, "media": json.dumps(filenames), "modified_on": _now()},
        )

    async def get_owner(self, id: str) -> str:
        return (await self.get(id)).uploader

    # Defined last so `list` in the annotations above is still the builtin.
    async def list(self) -> tuple[Recipe, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_RECIPES
        )
        return tuple(_recipe(r) for r in result)


class UsersRepository:
    """Users repository.

    Usernames are never handed out twice: renaming or deleting a user retires
    the old name, since sessions and recipe ownership refer to users by name.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _check_username(self, username: str) -> None:
        retired = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            FIND_RETIRED, values={"username": username}
        )
        if retired is not None or await self.find(username) is not None:
            raise Duplicate(f"Username {username!r} is taken.")

    async def create(self, *, name: str, username: str, email: str, password: str) -> User:
        await self._check_username(username)
        id = uuid4().hex
        try:
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                CREATE_USER,
                values={
                    "id": id,
                    "username": username,
                    "name": name,
                    "email": email,
                    "password": password,
                    "media": "[]",
                },
            )
        except aiosqlite.IntegrityError as e:
            raise Duplicate(f"Username {username!r} is taken.") from e
        return await self.get(id)

    async def get(self, id: str) -> User:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_USER, values={"id": id}
        )
        if result is None:
            raise NotFound(f"No user {id!r}.")
        return _user(result)

    async def find(self, username: str) -> User | None:
        result = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            FIND_USER, values={"username": username}
        )
        return None if result is None else _user(result)

    async def change(
        self,
        id: str,
        *,
        name: str | None = None,
        username: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> User:
        user = await self.get(id)
        renamed = username is not None and username != user.username
        if renamed:
            await self._check_username(username)
        try:
            async with self.db.transaction():
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    UPDATE_USER,
                    values={
                        "id": id,
                        "username": username or user.username,
                        "name": name or user.name,
                        "email": email or user.email,
                        "password": password or user.password,
                    },
                )
                if renamed:
                    await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                        TRANSFER_RECIPES, values={"old": user.username, "new": username}
                    )
                    await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                        RETIRE_USERNAME, values={"username": user.username}
                    )
        except aiosqlite.IntegrityError as e:
            raise Duplicate(f"Username {username!r} is taken.") from e
        return await self.get(id)

    async def delete(self, id: str) -> None:
        user = await self.get(id)
        async with self.db.transaction():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                DELETE_USER, values={"id": id}
            )
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                RETIRE_USERNAME, values={"username": user.username}
            )

    async def set_media(self, id: str, filenames: list[str]) -> None:
        await self.get(id)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SET_USER_MEDIA, values={"id": id, "media": json.dumps(filenames)}
        )

    async def get_owner(self, id: str) -> str:
        return (await self.get(id)).username

    # Defined last so `list` in the annotations above is still the builtin.
    async def list(self) -> tuple[User, ...]:
        result = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_USERS
        )
        return tuple(_user(r) for r in result)
