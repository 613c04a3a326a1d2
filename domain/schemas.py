"""Validation of the plain fields of recipes and users.

The content of a recipe is opaque here; it only has to have the right shape.
"""

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from domain.errors import InvalidPayload


TITLE_PATTERN = r"^[\w'/#! ]{4,}$"


Title = Annotated[str, Field(min_length=4, max_length=128, pattern=TITLE_PATTERN)]
Name = Annotated[str, Field(min_length=1, max_length=128)]
Username = Annotated[str, Field(min_length=3, max_length=64, pattern=r"^[\w.-]+$")]
Email = Annotated[str, Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")]
Password = Annotated[str, Field(min_length=8)]
Instructions = Annotated[list[str], Field(min_length=1)]


class Category(Enum):
    breakfast = "breakfast"
    lunch = "lunch"
    dinner = "dinner"
    appetizer = "appetizer"
    dessert = "dessert"


class Quantity(BaseModel):
    readable: str
    numeric: float | None = None
    unit: str


class Ingredient(BaseModel):
    name: str
    amount: Quantity


class RecipeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Title
    about: str | None = None
    category: Category
    prep_time: Quantity = Field(alias="prepTime")
    ingredients: Annotated[list[Ingredient], Field(min_length=1)]
    instructions: Instructions


class RecipeChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Title | None = None
    about: str | None = None
    category: Category | None = None
    prep_time: Quantity | None = Field(default=None, alias="prepTime")
    ingredients: Annotated[list[Ingredient], Field(min_length=1)] | None = None
    instructions: Instructions | None = None


class UserIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Name
    username: Username
    email: Email
    password: Password

    @field_validator("username")
    @classmethod
    def lowercase(cls, v: str) -> str:
        return v.lower()


class UserChange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Name | None = None
    username: Username | None = None
    email: Email | None = None
    password: Password | None = None

    @field_validator("username")
    @classmethod
    def lowercase(cls, v: str | None) -> str | None:
        return None if v is None else v.lower()


class Credentials(BaseModel):
    username: str
    password: str


def parse[M: BaseModel](model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(
            "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
        ) from e
