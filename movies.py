"""
Movie record store.

Writes go through `validate_movie` before they reach the backing store.
`update` is last-write-wins: there is no version token, so two concurrent
updates of the same record keep whichever lands second. `toggle_full` flips
the flag with a single atomic store call and is safe under concurrency.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from catalog import COLLECTION, CatalogPage, CatalogQuery, find_many, present
from database import Store, to_obj_id
from errors import NotFoundError
from logs import get_logger
from schemas import MovieOut
from validation import validate_movie

logger = get_logger(__name__)

NOT_FOUND = "Movie not found"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _later(previous: Optional[datetime], now: datetime) -> datetime:
    if previous is None:
        return now
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    return max(previous, now)


class MovieRepository:
    def __init__(self, store: Store):
        self.store = store

    async def _load(self, movie_id: str) -> Dict[str, Any]:
        oid = to_obj_id(movie_id)
        doc = await self.store.find_one(COLLECTION, {"_id": oid}) if oid else None
        if not doc:
            raise NotFoundError(NOT_FOUND)
        return doc

    async def find_by_id(self, movie_id: str) -> MovieOut:
        return present(await self._load(movie_id))

    async def find_many(self, query: CatalogQuery) -> CatalogPage:
        return await find_many(self.store, query)

    async def create(self, data: Mapping[str, Any]) -> MovieOut:
        movie = validate_movie(data)
        now = now_utc()
        movie["created_at"] = now
        movie["updated_at"] = now
        doc = await self.store.insert(COLLECTION, movie)
        logger.info("movie created", id=str(doc["_id"]), title=doc["title"])
        return present(doc)

    async def update(self, movie_id: str, patch: Mapping[str, Any]) -> MovieOut:
        current = await self._load(movie_id)
        merged = {k: v for k, v in current.items() if k != "_id"}
        merged.update(patch)
        movie = validate_movie(merged)
        movie["created_at"] = current.get("created_at")
        movie["updated_at"] = _later(current.get("updated_at"), now_utc())
        doc = await self.store.update_by_id(COLLECTION, current["_id"], movie)
        if doc is None:
            # deleted between load and write
            raise NotFoundError(NOT_FOUND)
        logger.info("movie updated", id=movie_id, title=doc["title"])
        return present(doc)

    async def toggle_full(self, movie_id: str) -> MovieOut:
        current = await self._load(movie_id)
        doc = await self.store.toggle_by_id(
            COLLECTION,
            current["_id"],
            "is_full",
            extra={"updated_at": _later(current.get("updated_at"), now_utc())},
        )
        if doc is None:
            raise NotFoundError(NOT_FOUND)
        logger.info("movie full flag toggled", id=movie_id, is_full=doc["is_full"])
        return present(doc)

    async def delete(self, movie_id: str) -> None:
        if not await self.store.delete_by_id(COLLECTION, movie_id):
            raise NotFoundError(NOT_FOUND)
        logger.info("movie deleted", id=movie_id)
