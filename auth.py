"""
auth.py
Authentication utilities (bcrypt hashing, verify, login, change password, user management).
"""

from __future__ import annotations

import logging

import bcrypt

import db
from errors import ValidationError
from models import ROLES, User

logger = logging.getLogger(__name__)


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str) -> str:
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(secret, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))


def _to_user(row) -> User:
    return User(id=row["id"], username=row["username"], role=row["role"], full_name=row["full_name"])


def get_user_by_username(username: str):
    return db.fetch_one("SELECT * FROM users WHERE username = ?", (username,))


def login(username: str, password: str) -> User | None:
    row = get_user_by_username(username)
    if not row or not verify_password(password, row["password_hash"]):
        logger.warning("Failed login for %r", username)
        return None
    return _to_user(row)


def change_password(username: str, new_password: str) -> None:
    db.execute(
        "UPDATE users SET password_hash = ? WHERE username = ?",
        (hash_password(new_password), username),
    )
    db.clear_force_password_change()


def validate_new_password(new1: str, new2: str) -> list[str]:
    errors = []
    if len(new1) < 6:
        errors.append("Password must be at least 6 characters.")
    if new1 != new2:
        errors.append("Passwords do not match.")
    return errors


def create_user(username: str, password: str, full_name: str = "", role: str = "trainer") -> User:
    username = username.strip()
    if not username:
        raise ValidationError("Username is required.")
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters.")
    if get_user_by_username(username):
        raise ValidationError(f"Username {username} is already taken.")

    row = db.insert(
        "users",
        {
            "username": username,
            "password_hash": hash_password(password),
            "full_name": full_name.strip() or None,
            "role": role,
            "created_at": db.now_iso(),
        },
    )
    logger.info("Created %s user %s", role, username)
    return _to_user(row)


def list_users() -> list[User]:
    return [_to_user(r) for r in db.query("users", ordering=[("username", "asc")])]
