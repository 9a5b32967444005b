"""
Database Schemas for the Movie System

Each stored Pydantic model maps to a MongoDB collection named by the
lowercase of the class name:
- Manager -> "manager"
- Movie -> "movie"

Public representations (ManagerPublic, MovieOut) serialize with camelCase
keys and never carry the password hash.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel

import config

# Hong Kong film classification
RATINGS: Dict[str, str] = {
    "I": "Suitable for all ages",
    "IIA": "Not suitable for children",
    "IIB": "Not suitable for young persons and children",
    "III": "Persons aged 18 and above only",
}

Rating = Literal["I", "IIA", "IIB", "III"]
Role = Literal["admin", "superadmin"]
ROLE_RANK: Dict[str, int] = {"admin": 1, "superadmin": 2}

STATUS_SHOWING = "showing"
STATUS_COMING_SOON = "coming-soon"
STATUS_FULL = "full"

STATUS_TEXT: Dict[str, str] = {
    STATUS_SHOWING: "Now showing",
    STATUS_COMING_SOON: "Coming soon",
    STATUS_FULL: "Fully booked",
}


def schema_errors(exc: SchemaError) -> Dict[str, str]:
    """Flatten pydantic errors into a {field: message} mapping."""
    errors: Dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "_root"
        errors.setdefault(field, err["msg"])
    return errors


def rating_description(rating: Optional[str]) -> str:
    return RATINGS.get(rating or "", "Unknown classification")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Manager(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    display_name: Optional[str] = Field(None, max_length=50)
    password_hash: str = Field(..., description="BCrypt hash of password")
    role: Role = Field("admin")
    is_active: bool = Field(True)
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("username", "email", mode="before")
    @classmethod
    def _fold(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("role", mode="before")
    @classmethod
    def _fold_role(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class ManagerPublic(CamelModel):
    id: str
    username: str
    email: str
    display_name: Optional[str] = None
    role: str
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Principal(CamelModel):
    """The authenticated manager bound to a session."""

    id: str
    username: str
    display_name: str
    email: str
    role: Role
    last_login: Optional[datetime] = None


class Movie(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    director: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    poster_url: str = Field(..., pattern=r"^https?://")
    rating: Rating
    release_date: datetime
    duration: int = Field(..., ge=1, le=500, description="Minutes")
    cast: List[str] = Field(default_factory=list)
    genres: List[str] = Field(..., min_length=1)
    show_times: List[str] = Field(default_factory=list)
    language: str = Field(config.DEFAULT_LANGUAGE)
    theater_location: str = Field(config.DEFAULT_THEATER_LOCATION)
    is_full: bool = Field(False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MovieOut(CamelModel):
    id: str
    title: str
    director: str
    description: str
    poster_url: str
    rating: str
    rating_text: str
    release_date: datetime
    duration: int
    cast: List[str] = []
    genres: List[str] = []
    show_times: List[str] = []
    language: str
    theater_location: str
    is_full: bool
    status: str
    status_text: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class StatusCounts(CamelModel):
    showing: int
    coming_soon: int
    full: int


class RatingCount(BaseModel):
    rating: Optional[str]
    count: int


class CatalogStats(CamelModel):
    total: int
    by_rating: List[RatingCount]
    by_status: StatusCounts
