"""
Manager accounts: credential storage and the login flow.

Lookups fold the username to lowercase. Login failures for an unknown user and
for a wrong password raise the same `AuthenticationError` message so the
response never reveals which one happened.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import ValidationError as SchemaError

import config
from database import Store, sanitize, to_obj_id
from errors import AuthenticationError, NotFoundError, ValidationError
from logs import get_logger
from schemas import Manager as ManagerSchema, ManagerPublic, Principal, schema_errors
from security import hash_password, verify_password

logger = get_logger(__name__)

COLLECTION = "manager"

MISSING_CREDENTIALS = "Please enter username and password"
INVALID_CREDENTIALS = "Invalid username or password"


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_public(doc: Dict) -> ManagerPublic:
    d = sanitize(doc)
    d.pop("password_hash", None)
    return ManagerPublic(**d)


def to_principal(doc: Dict) -> Principal:
    return Principal(
        id=str(doc["_id"]),
        username=doc["username"],
        display_name=doc.get("display_name") or doc["username"],
        email=doc["email"],
        role=doc["role"],
        last_login=doc.get("last_login"),
    )


class ManagerRepository:
    """Credential store over the `manager` collection."""

    def __init__(self, store: Store):
        self.store = store

    async def ensure_indexes(self) -> None:
        await self.store.ensure_unique(COLLECTION, ["username", "email"])

    async def find_active_by_username(self, username: str) -> Optional[Dict]:
        return await self.store.find_one(
            COLLECTION, {"username": username.strip().lower(), "is_active": True}
        )

    async def get(self, manager_id: str) -> Dict:
        doc = await self.store.find_one(COLLECTION, {"_id": to_obj_id(manager_id)})
        if not doc:
            raise NotFoundError("Manager not found")
        return doc

    async def create(
        self,
        username: str,
        email: str,
        password: str,
        role: str = "admin",
        display_name: Optional[str] = None,
        is_active: bool = True,
    ) -> Dict:
        try:
            manager = ManagerSchema(
                username=username,
                email=email,
                display_name=display_name or None,
                password_hash=hash_password(password),
                role=role,
                is_active=is_active,
                created_at=now_utc(),
            )
        except SchemaError as e:
            raise ValidationError("Invalid manager account", schema_errors(e)) from e

        if await self.store.find_one(COLLECTION, {"username": manager.username}):
            raise ValidationError("Username already exists", {"username": "Username already exists"})
        if await self.store.find_one(COLLECTION, {"email": manager.email}):
            raise ValidationError("Email already exists", {"email": "Email already exists"})

        doc = await self.store.insert(COLLECTION, manager.model_dump())
        logger.info("manager created", username=manager.username, role=manager.role)
        return doc

    async def set_password(self, manager_id: str, password: str) -> None:
        new_hash = hash_password(password)
        doc = await self.store.update_by_id(COLLECTION, manager_id, {"password_hash": new_hash})
        if doc is None:
            raise NotFoundError("Manager not found")

    async def record_login(self, manager_id, when: datetime) -> Dict:
        doc = await self.store.update_by_id(COLLECTION, manager_id, {"last_login": when})
        if doc is None:
            raise NotFoundError("Manager not found")
        return doc


async def authenticate(accounts: ManagerRepository, username: str, password: str) -> Principal:
    if not username or not password:
        raise AuthenticationError(MISSING_CREDENTIALS)

    manager = await accounts.find_active_by_username(username)
    if not manager:
        logger.info("login failed", username=username, reason="unknown or inactive user")
        raise AuthenticationError(INVALID_CREDENTIALS)

    if not verify_password(password, manager.get("password_hash", "")):
        logger.info("login failed", username=username, reason="invalid password")
        raise AuthenticationError(INVALID_CREDENTIALS)

    manager = await accounts.record_login(manager["_id"], now_utc())
    logger.info("login success", username=manager["username"], role=manager["role"])
    return to_principal(manager)


async def change_password(
    accounts: ManagerRepository, manager_id: str, new_password: str, old_password: Optional[str] = None
) -> None:
    manager = await accounts.get(manager_id)
    if old_password and not verify_password(old_password, manager.get("password_hash", "")):
        raise ValidationError("Old password incorrect", {"old_password": "Old password incorrect"})
    await accounts.set_password(manager_id, new_password)
    logger.info("password changed", username=manager["username"])


async def ensure_default_manager(accounts: ManagerRepository) -> Optional[Dict]:
    """Seed one account when the manager collection is empty."""
    if await accounts.store.count(COLLECTION, {}) > 0:
        return None
    try:
        doc = await accounts.create(
            username=config.DEFAULT_MANAGER_USERNAME,
            email=config.DEFAULT_MANAGER_EMAIL,
            password=config.DEFAULT_MANAGER_PASSWORD,
            role=config.DEFAULT_MANAGER_ROLE,
            display_name="System Administrator",
        )
    except ValidationError as e:
        # another worker seeded it first
        logger.warning("default manager not created", reason=e.message, errors=e.errors)
        return None
    logger.warning("default manager account created", username=doc["username"], role=doc["role"])
    return doc
