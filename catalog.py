"""
Catalog query engine.

Turns listing parameters (rating, genre, director, isFull, comingSoon, page,
limit, sort) into a store filter, sort and page window, and derives each
movie's presentation status from its stored release date and `is_full` flag.
Status is computed on every read and never persisted.
"""

import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from database import Store, sanitize
from schemas import (
    STATUS_COMING_SOON,
    STATUS_FULL,
    STATUS_SHOWING,
    STATUS_TEXT,
    CatalogStats,
    MovieOut,
    Pagination,
    RatingCount,
    StatusCounts,
    rating_description,
)

COLLECTION = "movie"

DEFAULT_SORT = "-releaseDate"
MAX_LIMIT = 100
# skip must fit a signed 64-bit integer
MAX_PAGE = (2**63 - 1) // MAX_LIMIT

# Public sort keys -> stored field names
SORT_FIELDS = {
    "releaseDate": "release_date",
    "title": "title",
    "director": "director",
    "rating": "rating",
    "duration": "duration",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def derive_status(movie: Dict[str, Any], now: Optional[datetime] = None) -> str:
    if movie.get("is_full"):
        return STATUS_FULL
    now = now or now_utc()
    if _as_utc(movie["release_date"]) > now:
        return STATUS_COMING_SOON
    return STATUS_SHOWING


def present(doc: Dict[str, Any], now: Optional[datetime] = None) -> MovieOut:
    d = sanitize(doc)
    status = derive_status(d, now)
    return MovieOut(
        **d,
        status=status,
        status_text=STATUS_TEXT[status],
        rating_text=rating_description(d.get("rating")),
    )


def _tri_state(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text == "true":
        return True
    if text == "false":
        return False
    return None


class CatalogQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rating: Optional[str] = None
    genre: Optional[str] = None
    director: Optional[str] = None
    is_full: Optional[bool] = Field(None, alias="isFull")
    coming_soon: Optional[bool] = Field(None, alias="comingSoon")
    page: int = 1
    limit: int = 10
    sort: str = DEFAULT_SORT

    @field_validator("is_full", "coming_soon", mode="before")
    @classmethod
    def _parse_tri_state(cls, value):
        return _tri_state(value)

    @field_validator("page", "limit", mode="before")
    @classmethod
    def _parse_int(cls, value):
        try:
            return int(value)
        except (TypeError, ValueError, OverflowError):
            return 1

    @field_validator("page")
    @classmethod
    def _clamp_page(cls, value):
        return min(max(value, 1), MAX_PAGE)

    @field_validator("limit")
    @classmethod
    def _clamp_limit(cls, value):
        return min(max(value, 1), MAX_LIMIT)

    @field_validator("rating", "genre", "director", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    def build_filter(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if self.rating:
            query["rating"] = self.rating
        if self.genre:
            query["genres"] = {"$in": [self.genre]}
        if self.director:
            query["director"] = {"$regex": re.escape(self.director), "$options": "i"}
        if self.is_full is not None:
            query["is_full"] = self.is_full
        if self.coming_soon is not None:
            now = now or now_utc()
            query["release_date"] = {"$gt": now} if self.coming_soon else {"$lte": now}
        return query

    def build_sort(self) -> List[Tuple[str, int]]:
        return parse_sort(self.sort)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def parse_sort(sort: Optional[str]) -> List[Tuple[str, int]]:
    """`-field` sorts descending, `field` ascending; unknown fields use the default."""
    sort = (sort or "").strip()
    direction = -1 if sort.startswith("-") else 1
    field = SORT_FIELDS.get(sort.lstrip("-+"))
    if field is None:
        return parse_sort(DEFAULT_SORT)
    return [(field, direction), ("_id", direction)]


class CatalogPage(BaseModel):
    items: List[MovieOut]
    pagination: Pagination


async def find_many(store: Store, query: CatalogQuery, now: Optional[datetime] = None) -> CatalogPage:
    now = now or now_utc()
    filter = query.build_filter(now)
    docs = await store.find(COLLECTION, filter, sort=query.build_sort(), skip=query.skip, limit=query.limit)
    total = await store.count(COLLECTION, filter)
    return CatalogPage(
        items=[present(d, now) for d in docs],
        pagination=Pagination(
            page=query.page,
            limit=query.limit,
            total=total,
            pages=math.ceil(total / query.limit),
        ),
    )


async def catalog_stats(store: Store, now: Optional[datetime] = None) -> CatalogStats:
    now = now or now_utc()
    groups = await store.aggregate_group_by(COLLECTION, "rating")
    return CatalogStats(
        total=await store.count(COLLECTION, {}),
        by_rating=[RatingCount(rating=g["_id"], count=g["count"]) for g in groups],
        by_status=StatusCounts(
            showing=await store.count(COLLECTION, {"is_full": False, "release_date": {"$lte": now}}),
            coming_soon=await store.count(COLLECTION, {"is_full": False, "release_date": {"$gt": now}}),
            full=await store.count(COLLECTION, {"is_full": True}),
        ),
    )
