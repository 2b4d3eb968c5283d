"""Identity resolution for solved-problems.

Maps an inbound credential to a Principal:
    - session token -> user principal (stand-in for the external auth provider)
    - "Authorization: Bearer <key>" -> API-key principal scoped to the key's grants

Absent or bad credentials resolve to None; nothing here raises for them.
"""

import hashlib
import logging
import secrets
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from db.client import transaction
from solved_problems.errors import CONFLICT, FORBIDDEN, error_result

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _uuid() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Principal:
    """The caller every access check and draft operation is evaluated for.

    api_key_id is set only for principals resolved from an API key; those
    see the key's explicit grants, never the owning user's full access.
    """

    user_id: str
    role: str = ROLE_USER
    api_key_id: str | None = None
    two_factor_enabled: bool = False

    @property
    def is_api_key(self) -> bool:
        return self.api_key_id is not None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def hash_secret(secret: str) -> str:
    """One-way hash used for API keys and session tokens."""
    return hashlib.sha256(secret.encode()).hexdigest()


# ── API keys ──────────────────────────────────────────────


def authenticate_api_key(
    conn: sqlite3.Connection, authorization: str | None
) -> Principal | None:
    """Resolve an Authorization header to an API-key principal.

    Returns None when the header lacks the Bearer prefix, the key is
    unknown, or the key has been revoked.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None

    plain_key = authorization[len(BEARER_PREFIX):]
    row = conn.execute(
        """SELECT k.id, k.user_id, k.revoked_at, u.role, u.two_factor_enabled
           FROM api_keys k
           JOIN users u ON u.id = k.user_id
           WHERE k.hashed_key = ?""",
        (hash_secret(plain_key),),
    ).fetchone()
    if row is None:
        logger.warning("Rejected unknown API key")
        return None
    if row["revoked_at"] is not None:
        logger.warning("Rejected revoked API key %s", row["id"])
        return None

    return Principal(
        user_id=row["user_id"],
        role=row["role"],
        api_key_id=row["id"],
        two_factor_enabled=bool(row["two_factor_enabled"]),
    )


# ── Sessions ──────────────────────────────────────────────


def create_session(conn: sqlite3.Connection, user_id: str) -> str:
    """Issue a session token for a user. The plaintext is returned once."""
    token = secrets.token_urlsafe(32)
    conn.execute(
        "INSERT INTO sessions (id, token_hash, user_id, created_at) VALUES (?, ?, ?, ?)",
        (_uuid(), hash_secret(token), user_id, _now()),
    )
    conn.commit()
    return token


def get_current_session(
    conn: sqlite3.Connection, token: str | None
) -> Principal | None:
    """Resolve a session token to a user principal, or None."""
    if not token:
        return None

    row = conn.execute(
        """SELECT u.id, u.role, u.two_factor_enabled
           FROM sessions s
           JOIN users u ON u.id = s.user_id
           WHERE s.token_hash = ?""",
        (hash_secret(token),),
    ).fetchone()
    if row is None:
        return None

    return Principal(
        user_id=row["id"],
        role=row["role"],
        two_factor_enabled=bool(row["two_factor_enabled"]),
    )


# ── Users ─────────────────────────────────────────────────


def create_user(conn: sqlite3.Connection, email: str, name: str) -> dict[str, Any]:
    """Create a user account.

    The first user ever created becomes ADMIN. Later sign-ups are USER and
    are refused while site settings have sign-up disabled.
    """
    with transaction(conn):
        user_count = conn.execute("SELECT COUNT(*) AS cnt FROM users").fetchone()["cnt"]
        if user_count == 0:
            role = ROLE_ADMIN
        else:
            settings = conn.execute(
                "SELECT signup_enabled FROM site_settings WHERE id = 'default'"
            ).fetchone()
            if settings is not None and not settings["signup_enabled"]:
                return error_result(FORBIDDEN, "Sign-up is currently disabled")
            role = ROLE_USER

        existing = conn.execute(
            "SELECT id FROM users WHERE email = ?", (email,)
        ).fetchone()
        if existing is not None:
            return error_result(CONFLICT, f"A user with email '{email}' already exists")

        user_id = _uuid()
        now = _now()
        conn.execute(
            """INSERT INTO users (id, email, name, role, two_factor_enabled, created_at)
               VALUES (?, ?, ?, ?, 0, ?)""",
            (user_id, email, name, role, now),
        )

    logger.info("Created user %s with role %s", user_id, role)
    return {
        "id": user_id,
        "email": email,
        "name": name,
        "role": role,
        "two_factor_enabled": False,
        "created_at": now,
    }
