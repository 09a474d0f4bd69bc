from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field, field_validator


def _check_not_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


Email = Annotated[EmailStr, Field(max_length=255)]
UserName = Annotated[str, Field(max_length=150), AfterValidator(_check_not_blank)]
Title = Annotated[str, Field(max_length=300), AfterValidator(_check_not_blank)]


# --- User ---

class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: UserName
    email: Email


class UserUpdate(BaseModel):
    """Partial update: only the fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    name: UserName | None = None
    email: Email | None = None

    @field_validator("name", "email")
    @classmethod
    def _not_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} may not be null")
        return value


# --- Post ---

class PostCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Title
    content: str | None = None
    published: bool = False
    owner_id: int


class PostUpdate(BaseModel):
    """Partial update; ``content`` may be cleared with an explicit null."""

    model_config = ConfigDict(extra="forbid")

    title: Title | None = None
    content: str | None = None
    published: bool | None = None
    owner_id: int | None = None

    @field_validator("title", "published", "owner_id")
    @classmethod
    def _not_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} may not be null")
        return value


# --- Pagination ---

class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    pages: int
