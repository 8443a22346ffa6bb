from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json

from ..models.fields import FieldKey

"""Profile persistence: duplicate lookup and creation.

Duplicate detection uses one match key per profile: the SIRET when present,
otherwise the company name normalized (lowercased, whitespace collapsed).

PostgresProfileStore works on a caller-owned cursor; the caller decides the
transaction boundary (commit/rollback). Each insert runs inside its own
SAVEPOINT so that one failed row does not abort the surrounding transaction.
"""

__all__ = [
    "MatchKey",
    "match_key_for",
    "normalize_company_name",
    "ProfileStore",
    "PersistenceError",
    "InMemoryProfileStore",
    "PostgresProfileStore",
    "PROFILE_TABLE",
    "PROFILE_COLUMNS",
]

logger = logging.getLogger(__name__)

PROFILE_TABLE = "business_profiles"
# 取込対象列 (FieldKey + 派生列)。それ以外のキーは extra_data(jsonb) へ
PROFILE_COLUMNS: tuple[str, ...] = tuple(f.value for f in FieldKey) + ("department", "is_association")


class PersistenceError(Exception):
    """Raised when the store fails to check or create a profile."""


@dataclass(frozen=True)
class MatchKey:
    kind: str  # "siret" | "name"
    value: str


def normalize_company_name(name: str) -> str:
    return " ".join(name.lower().split())


def match_key_for(profile: Mapping[str, Any]) -> MatchKey | None:
    siret = profile.get(FieldKey.SIRET.value)
    if siret:
        return MatchKey("siret", str(siret))
    name = profile.get(FieldKey.COMPANY_NAME.value)
    if name and str(name).strip():
        return MatchKey("name", normalize_company_name(str(name)))
    return None


def _matches(profile: Mapping[str, Any], match_key: MatchKey) -> bool:
    """Compare the stored value of the key's own kind (same rule as the SQL lookup)."""
    if match_key.kind == "siret":
        return str(profile.get(FieldKey.SIRET.value) or "") == match_key.value
    name = profile.get(FieldKey.COMPANY_NAME.value)
    return bool(name) and normalize_company_name(str(name)) == match_key.value


class ProfileStore(Protocol):
    def exists(self, user_id: str, match_key: MatchKey) -> bool: ...

    def create(self, user_id: str, profile_data: Mapping[str, Any]) -> str: ...


class InMemoryProfileStore:
    """Dict-backed store for mock mode and tests."""

    def __init__(self) -> None:
        self.profiles: dict[str, tuple[str, dict[str, Any]]] = {}

    def exists(self, user_id: str, match_key: MatchKey) -> bool:
        return any(
            owner == user_id and _matches(profile, match_key)
            for owner, profile in self.profiles.values()
        )

    def create(self, user_id: str, profile_data: Mapping[str, Any]) -> str:
        profile_id = str(uuid.uuid4())
        self.profiles[profile_id] = (user_id, dict(profile_data))
        return profile_id

    def __len__(self) -> int:
        return len(self.profiles)


def _split_profile(profile_data: Mapping[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    columns = {k: v for k, v in profile_data.items() if k in PROFILE_COLUMNS}
    extra = {k: v for k, v in profile_data.items() if k not in PROFILE_COLUMNS}
    return columns, extra


class PostgresProfileStore:
    """psycopg2-backed store for the ``business_profiles`` table.

    Parameters
    ----------
    cursor: psycopg2 cursor (transaction owned by the caller)
    table: 対象テーブル名
    """

    def __init__(self, cursor: Any, table: str = PROFILE_TABLE) -> None:
        self.cursor = cursor
        self.table = table

    def exists(self, user_id: str, match_key: MatchKey) -> bool:
        if match_key.kind == "siret":
            condition = sql.SQL("siret = %s")
        else:
            condition = sql.SQL("lower(regexp_replace(trim(company_name), '\\s+', ' ', 'g')) = %s")
        query = sql.SQL("SELECT 1 FROM {} WHERE user_id = %s AND {} LIMIT 1").format(
            sql.Identifier(self.table), condition
        )
        try:
            self.cursor.execute(query, (user_id, match_key.value))
            return self.cursor.fetchone() is not None
        except psycopg2.Error as e:
            raise PersistenceError(f"duplicate lookup failed: {e}") from e

    def create(self, user_id: str, profile_data: Mapping[str, Any]) -> str:
        columns, extra = _split_profile(profile_data)
        names = ["user_id", *columns.keys()]
        values: list[Any] = [user_id, *columns.values()]
        if extra:
            names.append("extra_data")
            values.append(Json(extra))
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING id").format(
            sql.Identifier(self.table),
            sql.SQL(",").join(sql.Identifier(n) for n in names),
            sql.SQL(",").join(sql.Placeholder() * len(names)),
        )
        self.cursor.execute("SAVEPOINT import_row")
        try:
            self.cursor.execute(query, values)
            row = self.cursor.fetchone()
        except psycopg2.Error as e:
            self.cursor.execute("ROLLBACK TO SAVEPOINT import_row")
            raise PersistenceError(str(e)) from e
        self.cursor.execute("RELEASE SAVEPOINT import_row")
        if row is None:
            raise PersistenceError("INSERT returned no id")
        logger.debug("created profile %s for user %s", row[0], user_id)
        return str(row[0])
