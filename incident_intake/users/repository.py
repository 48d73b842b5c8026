from __future__ import annotations

from typing import Any

import asyncpg

from .models import Role, UserProfile


class UserRepository:
    """Data access layer for user profiles."""

    _CREATE_USERS_SQL = """
    CREATE TABLE IF NOT EXISTS user_profiles (
        uid TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'user',
        created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """

    _SELECT_USER_SQL = """
    SELECT uid, email, name, role
    FROM user_profiles
    WHERE uid = $1
    """

    _LIST_USERS_SQL = """
    SELECT uid, email, name, role
    FROM user_profiles
    ORDER BY name ASC
    """

    _UPSERT_USER_SQL = """
    INSERT INTO user_profiles (uid, email, name, role)
    VALUES ($1, $2, $3, $4)
    ON CONFLICT (uid) DO UPDATE
    SET email = EXCLUDED.email,
        name = EXCLUDED.name,
        role = EXCLUDED.role
    RETURNING uid, email, name, role
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_USERS_SQL)

    async def get_user(self, uid: str) -> UserProfile | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_USER_SQL, uid)
            if row is None:
                return None
            return self._row_to_user(row)

    async def list_users(self) -> list[UserProfile]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._LIST_USERS_SQL)
            return [self._row_to_user(row) for row in rows]

    async def upsert_user(self, *, uid: str, email: str, name: str, role: Role = Role.USER) -> UserProfile:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._UPSERT_USER_SQL, uid, email, name, role.value)
            return self._row_to_user(row)

    @staticmethod
    def _row_to_user(row: Any) -> UserProfile:
        try:
            role = Role(str(row["role"]))
        except ValueError:
            role = Role.USER
        return UserProfile(uid=str(row["uid"]), email=str(row["email"]), name=str(row["name"]), role=role)
