"""
Category status store with an append-only transition log.

SQLite-backed async storage (aiosqlite). The engine owns a category's
status, last_evaluated_at and last_transition_at when auto_activate is on;
everything else is written by the admin surface through save_category().

Writes are idempotent: apply_transition() only touches status and appends
a TransitionRecord when the desired status differs from the persisted one.
Each category row carries a version counter; a status change is a
compare-and-swap on that counter, so two writers racing on the same
category (scheduled tick vs. forced re-evaluation, possibly in different
processes) record exactly one transition. The loser re-reads, sees the
status already applied and no-ops.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite

from smartcat.core.exceptions import (
    CategoryNotFoundError,
    StoreConflictError,
    StoreError,
    ValidationError,
)
from smartcat.rules.models import (
    Category,
    CategoryStatus,
    CategoryType,
    SeasonalRule,
    TransitionRecord,
)
from smartcat.rules.parser import parse_rule

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "smartcat.db"

# Attempts before a lost compare-and-swap is reported as a conflict
MAX_CAS_ATTEMPTS = 2

SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    name_ar TEXT NOT NULL,
    name_en TEXT,
    type TEXT NOT NULL DEFAULT 'seasonal',
    status TEXT NOT NULL DEFAULT 'inactive',
    auto_activate BOOLEAN NOT NULL DEFAULT FALSE,
    rule_json TEXT,
    display_order INTEGER NOT NULL DEFAULT 0,
    last_evaluated_at DATETIME,
    last_transition_at DATETIME,
    version INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_categories_managed ON categories(type, auto_activate);
CREATE INDEX IF NOT EXISTS idx_categories_status ON categories(status);

CREATE TABLE IF NOT EXISTS category_transitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id TEXT NOT NULL REFERENCES categories(id),
    from_status TEXT NOT NULL,
    to_status TEXT NOT NULL,
    evaluated_at DATETIME NOT NULL,
    rule_snapshot TEXT,
    recorded_at DATETIME NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transitions_category
    ON category_transitions(category_id, id DESC);

CREATE TRIGGER IF NOT EXISTS category_transitions_no_update
BEFORE UPDATE ON category_transitions
BEGIN
    SELECT RAISE(ABORT, 'category_transitions is append-only');
END;

CREATE TRIGGER IF NOT EXISTS category_transitions_no_delete
BEFORE DELETE ON category_transitions
BEGIN
    SELECT RAISE(ABORT, 'category_transitions is append-only');
END;
"""

T = TypeVar("T")


def _driver_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Surface sqlite failures as StoreError."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except aiosqlite.Error as e:
            raise StoreError(f"{func.__name__} failed: {e}") from e

    return wrapper


def _decode_rule(rule_json: str | None) -> dict[str, Any] | None:
    """Persisted rule text -> payload; ValidationError when it is not a JSON object."""
    if not rule_json:
        return None
    try:
        payload = json.loads(rule_json)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Stored rule is not valid JSON: {e}", field="rule") from e
    if payload is not None and not isinstance(payload, dict):
        raise ValidationError("Stored rule must be a JSON object", field="rule")
    return payload


def _row_to_category(row: aiosqlite.Row, decode_rule: bool = True) -> Category:
    return Category(
        id=row["id"],
        slug=row["slug"],
        name_ar=row["name_ar"],
        name_en=row["name_en"] or "",
        type=row["type"],
        status=row["status"],
        auto_activate=bool(row["auto_activate"]),
        rule_payload=_decode_rule(row["rule_json"]) if decode_rule else None,
        display_order=row["display_order"],
        last_evaluated_at=row["last_evaluated_at"],
        last_transition_at=row["last_transition_at"],
        version=row["version"],
    )


def _row_to_transition(row: aiosqlite.Row) -> TransitionRecord:
    snapshot = row["rule_snapshot"]
    return TransitionRecord(
        id=row["id"],
        category_id=row["category_id"],
        from_status=CategoryStatus(row["from_status"]),
        to_status=CategoryStatus(row["to_status"]),
        evaluated_at=datetime.fromisoformat(row["evaluated_at"]),
        rule_snapshot=json.loads(snapshot) if snapshot else {},
        recorded_at=datetime.fromisoformat(row["recorded_at"]),
    )


@dataclass
class ManagedCategory:
    """
    An auto-managed seasonal category as seen by the scheduler.

    The rule is kept as stored text and decoded on access, so one corrupt
    row fails only its own category.
    """
    category: Category
    rule_json: str | None
    current_status: CategoryStatus

    @property
    def rule(self) -> SeasonalRule:
        """Typed rule; raises ValidationError for a malformed persisted rule."""
        return parse_rule(_decode_rule(self.rule_json))


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of apply_transition."""
    category_id: str
    changed: bool
    from_status: CategoryStatus
    to_status: CategoryStatus

    def to_dict(self) -> dict:
        return {
            "category_id": self.category_id,
            "changed": self.changed,
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
        }


class TransitionStore:
    """
    Persisted category status and transition audit log.

    Example:
        async with TransitionStore(Path("data/smartcat.db")) as store:
            for managed in await store.list_managed():
                ...
            result = await store.apply_transition("ramadan", True, now, rule.to_dict())
    """

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._connection: aiosqlite.Connection | None = None
        # One connection holds one transaction; keep a status update and
        # its audit row in the same commit
        self._write_lock = asyncio.Lock()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @_driver_errors
    async def connect(self) -> None:
        """Open the database and create the schema."""
        if self._connection:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(str(self.db_path))
        self._connection.row_factory = aiosqlite.Row
        await self._connection.executescript(SCHEMA)
        await self._connection.commit()
        logger.debug("Store connected: %s", self.db_path)

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._connection:
            raise StoreError("Store not connected. Use 'async with' or call connect() first.")
        return self._connection

    # ------------------------------------------------------------------
    # Admin-side writes
    # ------------------------------------------------------------------

    @_driver_errors
    async def save_category(self, category: Category) -> Category:
        """
        Create or update a category's identity and rule configuration.

        The rule payload is validated here, at write time. For auto-managed
        seasonal categories status is only taken from `category` on insert;
        afterwards it belongs to the engine. Other categories take the given
        status on every save.

        Raises:
            ValidationError: rule payload is malformed
        """
        parse_rule(category.rule_payload)
        conn = self._conn()

        async with self._write_lock:
            await conn.execute(
                """
                INSERT INTO categories (
                    id, slug, name_ar, name_en, type, status, auto_activate,
                    rule_json, display_order
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    slug = excluded.slug,
                    name_ar = excluded.name_ar,
                    name_en = excluded.name_en,
                    type = excluded.type,
                    status = CASE
                        WHEN excluded.type = 'seasonal' AND excluded.auto_activate
                        THEN categories.status
                        ELSE excluded.status
                    END,
                    auto_activate = excluded.auto_activate,
                    rule_json = excluded.rule_json,
                    display_order = excluded.display_order
                """,
                (
                    category.id,
                    category.slug,
                    category.name_ar,
                    category.name_en,
                    category.type.value,
                    category.status.value,
                    category.auto_activate,
                    json.dumps(category.rule_payload, ensure_ascii=False)
                    if category.rule_payload
                    else None,
                    category.display_order,
                ),
            )
            await conn.commit()

        saved = await self.get_category(category.id)
        if saved is None:
            raise StoreError(f"Category {category.id} missing right after save")
        return saved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_driver_errors
    async def get_category(self, category_id: str) -> Category | None:
        async with self._conn().execute(
            "SELECT * FROM categories WHERE id = ?", (category_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_category(row) if row else None

    @_driver_errors
    async def list_categories(
        self,
        type: CategoryType | str | None = None,
        status: CategoryStatus | str | None = None,
    ) -> list[Category]:
        """Categories filtered by type and/or status, in display order."""
        query = "SELECT * FROM categories WHERE 1=1"
        params: list[Any] = []

        if type:
            query += " AND type = ?"
            params.append(CategoryType(type).value)
        if status:
            query += " AND status = ?"
            params.append(CategoryStatus(status).value)

        query += " ORDER BY display_order, slug"

        async with self._conn().execute(query, params) as cursor:
            return [_row_to_category(row) for row in await cursor.fetchall()]

    @_driver_errors
    async def list_managed(self) -> list[ManagedCategory]:
        """Seasonal categories with auto_activate on."""
        async with self._conn().execute(
            """
            SELECT * FROM categories
            WHERE type = ? AND auto_activate = 1
            ORDER BY display_order, slug
            """,
            (CategoryType.SEASONAL.value,),
        ) as cursor:
            rows = await cursor.fetchall()

        managed = []
        for row in rows:
            category = _row_to_category(row, decode_rule=False)
            managed.append(ManagedCategory(category, row["rule_json"], category.status))
        return managed

    async def get_active_categories(
        self, type: CategoryType | str | None = None
    ) -> list[Category]:
        return await self.list_categories(type=type, status=CategoryStatus.ACTIVE)

    async def get_categories_for_ui(self) -> dict[str, list[Category]]:
        """Active categories grouped by type for listing consumers."""
        active = await self.get_active_categories()
        grouped: dict[str, list[Category]] = {t.value: [] for t in CategoryType}
        for category in active:
            grouped[category.type.value].append(category)
        grouped["all"] = active
        return grouped

    @_driver_errors
    async def get_transitions(
        self, category_id: str | None = None, limit: int = 100
    ) -> list[TransitionRecord]:
        """Audit history, newest first."""
        query = "SELECT * FROM category_transitions"
        params: list[Any] = []
        if category_id:
            query += " WHERE category_id = ?"
            params.append(category_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        async with self._conn().execute(query, params) as cursor:
            return [_row_to_transition(row) for row in await cursor.fetchall()]

    @_driver_errors
    async def get_stats(self) -> dict[str, Any]:
        conn = self._conn()

        async with conn.execute(
            "SELECT type, status, COUNT(*) AS count FROM categories GROUP BY type, status"
        ) as cursor:
            rows = await cursor.fetchall()

        by_type: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for row in rows:
            by_type[row["type"]] = by_type.get(row["type"], 0) + row["count"]
            by_status[row["status"]] = by_status.get(row["status"], 0) + row["count"]

        async with conn.execute(
            "SELECT COUNT(*) AS managed FROM categories WHERE type = ? AND auto_activate = 1",
            (CategoryType.SEASONAL.value,),
        ) as cursor:
            managed = (await cursor.fetchone())["managed"]

        async with conn.execute("SELECT COUNT(*) AS total FROM category_transitions") as cursor:
            transitions = (await cursor.fetchone())["total"]

        return {
            "total_categories": sum(by_type.values()),
            "by_type": by_type,
            "by_status": by_status,
            "managed": managed,
            "transitions": transitions,
        }

    # ------------------------------------------------------------------
    # Engine writes
    # ------------------------------------------------------------------

    async def _fetch_state(self, category_id: str) -> tuple[CategoryStatus, int] | None:
        async with self._conn().execute(
            "SELECT status, version FROM categories WHERE id = ?", (category_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return CategoryStatus(row["status"]), row["version"]

    async def _swap_status(
        self,
        category_id: str,
        current: CategoryStatus,
        desired: CategoryStatus,
        version: int,
        stamp: str,
        rule_snapshot: dict[str, Any],
    ) -> bool:
        """Compare-and-swap the status and append the audit row in one commit."""
        conn = self._conn()
        cursor = await conn.execute(
            """
            UPDATE categories
            SET status = ?, last_evaluated_at = ?, last_transition_at = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            (desired.value, stamp, stamp, category_id, version),
        )
        if cursor.rowcount != 1:
            await conn.rollback()
            return False

        await conn.execute(
            """
            INSERT INTO category_transitions (
                category_id, from_status, to_status, evaluated_at,
                rule_snapshot, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                category_id,
                current.value,
                desired.value,
                stamp,
                json.dumps(rule_snapshot, ensure_ascii=False),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        await conn.commit()
        return True

    @_driver_errors
    async def apply_transition(
        self,
        category_id: str,
        desired_active: bool,
        evaluated_at: datetime,
        rule_snapshot: dict[str, Any],
    ) -> TransitionResult:
        """
        Persist an evaluation result.

        Same status: only last_evaluated_at moves, no record is written.
        Different status: status, last_transition_at and version change and
        exactly one TransitionRecord is appended, in one commit.

        Args:
            category_id: Category to update
            desired_active: Evaluator's decision
            evaluated_at: Evaluation timestamp
            rule_snapshot: Rule as evaluated (rule.to_dict())

        Returns:
            TransitionResult

        Raises:
            CategoryNotFoundError: unknown category id
            StoreConflictError: lost the version check MAX_CAS_ATTEMPTS times
        """
        conn = self._conn()
        desired = CategoryStatus.from_active(desired_active)
        stamp = evaluated_at.isoformat()

        async with self._write_lock:
            for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
                state = await self._fetch_state(category_id)
                if state is None:
                    raise CategoryNotFoundError(category_id)
                current, version = state

                if current is desired:
                    await conn.execute(
                        "UPDATE categories SET last_evaluated_at = ? WHERE id = ?",
                        (stamp, category_id),
                    )
                    await conn.commit()
                    return TransitionResult(category_id, False, current, desired)

                try:
                    swapped = await self._swap_status(
                        category_id, current, desired, version, stamp, rule_snapshot
                    )
                except aiosqlite.Error:
                    await conn.rollback()
                    raise

                if swapped:
                    logger.info(
                        "Category %s: %s -> %s", category_id, current.value, desired.value
                    )
                    return TransitionResult(category_id, True, current, desired)

                logger.info(
                    "Version conflict on %s (attempt %d/%d)",
                    category_id,
                    attempt,
                    MAX_CAS_ATTEMPTS,
                )

        raise StoreConflictError("Concurrent writers kept winning", category_id=category_id)
