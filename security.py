"""Password hashing and verification."""

from passlib.context import CryptContext

from errors import ValidationError
from logs import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password_policy(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            "Password too short",
            {"password": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"},
        )


def hash_password(password: str) -> str:
    verify_password_policy(password)
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Constant-time compare of `password` against a stored hash.

    A missing candidate or hash never matches, and a malformed hash counts as a
    mismatch rather than an error.
    """
    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        logger.warning("unrecognized password hash")
        return False
