from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


class Recipe:
    def __init__(
        self,
        *,
        id: str,
        title: str,
        uploader: str,
        about: str,
        category: str,
        prep_time: dict[str, Any],
        ingredients: list[dict[str, Any]],
        instructions: list[str],
        media: list[str] | None = None,
        created_on: datetime | None = None,
        modified_on: datetime | None = None,
    ) -> None:
        self.id = id
        self.title = title
        self.uploader = uploader
        self.about = about
        self.category = category
        self.prep_time = prep_time
        self.ingredients = ingredients
        self.instructions = instructions
        self.media = [] if media is None else list(media)
        self.created_on = created_on
        self.modified_on = modified_on

    def __repr__(self) -> str:
        return f"<Recipe(id={self.id}, title={self.title})>"

    @property
    def owner(self) -> str:
        return self.uploader

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "uploader": self.uploader,
            "about": self.about,
            "category": self.category,
            "prepTime": self.prep_time,
            "ingredients": self.ingredients,
            "instructions": self.instructions,
            "media": self.media,
            "createdOn": self.created_on.isoformat() if self.created_on else None,
            "modifiedOn": self.modified_on.isoformat() if self.modified_on else None,
        }


class User:
    def __init__(
        self,
        *,
        id: str,
        name: str,
        username: str,
        email: str,
        password: str,
        media: list[str] | None = None,
    ) -> None:
        self.id = id
        self.name = name
        self.username = username
        self.email = email
        self.password = password
        self.media = [] if media is None else list(media)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"

    @property
    def owner(self) -> str:
        return self.username

    def to_dict(self) -> dict[str, Any]:
        # The password hash never leaves the process.
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "media": self.media,
        }


@dataclass(frozen=True)
class Session:
    is_auth: bool = False
    username: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Session":
        return cls(
            is_auth=bool(data.get("isAuth", False)),
            username=data.get("username"),
        )


@dataclass(frozen=True)
class Access:
    """What the firewall knows about a request: target entity and session."""

    session: Session
    entity_id: str | None = None


@dataclass(frozen=True)
class MediaType:
    mime: str
    extension: str


@dataclass(frozen=True)
class RawFile:
    """An uploaded file as received, before anything touches the disk."""

    filename: str | None
    content_type: str
    data: bytes


@dataclass(frozen=True)
class StagedFile:
    claimed_name: str | None
    unique_name: str
    size: int


@dataclass(frozen=True)
class StagingFault:
    claimed_name: str | None
    reason: str


@dataclass
class StagingReport:
    staged: list[StagedFile] = field(default_factory=list)
    faults: list[StagingFault] = field(default_factory=list)

    @property
    def names(self) -> list[str]:
        return [s.unique_name for s in self.staged]
