"""SQLite-backed storage for users, quotas, categories, tasks, bids, contracts and reviews."""

from __future__ import annotations

import contextlib
import sqlite3
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class DuplicateReviewError(Exception):
    """Raised when a reviewer rates the same target twice for one task."""


class DuplicateCategoryError(Exception):
    """Raised when a category name is already taken."""


_USER_COLUMNS: tuple[str, ...] = (
    "user_id",
    "email",
    "display_name",
    "role",
    "helper_rating",
    "helper_rating_count",
    "requester_rating",
    "requester_rating_count",
    "created_at",
    "updated_at",
)

_CATEGORY_COLUMNS: tuple[str, ...] = (
    "category_id",
    "name",
    "icon",
    "color",
    "created_at",
    "updated_at",
)

_TASK_COLUMNS: tuple[str, ...] = (
    "task_id",
    "requester_id",
    "title",
    "description",
    "category",
    "budget_min",
    "budget_max",
    "latitude",
    "longitude",
    "address",
    "country",
    "zip_code",
    "status",
    "completed_at",
    "created_at",
    "updated_at",
)

_BID_COLUMNS: tuple[str, ...] = (
    "bid_id",
    "task_id",
    "helper_id",
    "amount",
    "message",
    "status",
    "created_at",
    "updated_at",
)

_CONTRACT_COLUMNS: tuple[str, ...] = (
    "contract_id",
    "task_id",
    "helper_id",
    "agreed_amount",
    "status",
    "created_at",
    "updated_at",
)

_REVIEW_COLUMNS: tuple[str, ...] = (
    "review_id",
    "task_id",
    "reviewer_id",
    "target_user_id",
    "target_role",
    "rating",
    "comment",
    "created_at",
)


def _select_sql(table: str, columns: tuple[str, ...]) -> str:
    return f"SELECT {', '.join(columns)} FROM {table}"  # nosec B608


def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"  # nosec B608


class MarketplaceStore:
    """
    SQLite-backed storage with one connection guarded by an RLock.

    Multi-row writes go through ``transaction()``, which issues
    ``BEGIN IMMEDIATE`` and commits or rolls back as one unit. Single
    writes open their own transaction, or join the enclosing one.
    """

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        self._depth = 0
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(db_path, check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    email TEXT,
                    display_name TEXT,
                    role TEXT NOT NULL DEFAULT 'user',
                    helper_rating REAL NOT NULL DEFAULT 0,
                    helper_rating_count INTEGER NOT NULL DEFAULT 0,
                    requester_rating REAL NOT NULL DEFAULT 0,
                    requester_rating_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS quotas (
                    user_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    count INTEGER NOT NULL DEFAULT 0,
                    window_start TEXT,
                    PRIMARY KEY (user_id, kind)
                );

                CREATE TABLE IF NOT EXISTS categories (
                    category_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    icon TEXT,
                    color TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS tasks (
                    task_id TEXT PRIMARY KEY,
                    requester_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT,
                    category TEXT REFERENCES categories (category_id) ON DELETE SET NULL,
                    budget_min REAL,
                    budget_max REAL,
                    latitude REAL,
                    longitude REAL,
                    address TEXT,
                    country TEXT,
                    zip_code TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    completed_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks (task_id) ON DELETE CASCADE,
                    helper_id TEXT NOT NULL,
                    amount REAL NOT NULL,
                    message TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_bids_task ON bids (task_id);

                CREATE TABLE IF NOT EXISTS contracts (
                    contract_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    helper_id TEXT NOT NULL,
                    agreed_amount REAL NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS ix_contracts_task ON contracts (task_id);
                CREATE INDEX IF NOT EXISTS ix_contracts_helper ON contracts (helper_id);

                CREATE TABLE IF NOT EXISTS reviews (
                    review_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL,
                    reviewer_id TEXT NOT NULL,
                    target_user_id TEXT NOT NULL,
                    target_role TEXT NOT NULL,
                    rating INTEGER NOT NULL,
                    comment TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (task_id, reviewer_id, target_user_id)
                );
                """
            )
            self._db.commit()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed writes as one atomic unit.

        Nested calls join the outermost transaction. Any exception rolls
        back every write made since the outermost ``BEGIN IMMEDIATE``.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            self._db.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            else:
                self._db.commit()
            finally:
                self._depth = 0

    def _fetch_one(
        self,
        query: str,
        params: tuple[object, ...],
        columns: tuple[str, ...],
    ) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(query, params).fetchone()
        if row is None:
            return None
        return {column: row[column] for column in columns}

    def _fetch_all(
        self,
        query: str,
        params: tuple[object, ...] | list[object],
        columns: tuple[str, ...],
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [{column: row[column] for column in columns} for row in rows]

    def _update(
        self,
        table: str,
        key_column: str,
        key: str,
        columns: tuple[str, ...],
        updates: dict[str, Any],
        expected_status: str | None,
    ) -> int:
        if len(updates) == 0:
            return 0

        if any(column not in columns or column == key_column for column in updates):
            msg = f"Attempted to update unknown {table} column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = f"UPDATE {table} SET {set_clause} WHERE {key_column} = ?"  # nosec B608
        params.append(key)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self.transaction():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def upsert_user(
        self,
        user_id: str,
        email: str | None,
        display_name: str | None,
        role: str,
        now: str,
    ) -> None:
        """Insert a user profile, or refresh the contact fields of an existing one."""
        with self.transaction():
            self._db.execute(
                """
                INSERT INTO users (user_id, email, display_name, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (user_id) DO UPDATE SET
                    email = COALESCE(excluded.email, users.email),
                    display_name = COALESCE(excluded.display_name, users.display_name),
                    role = excluded.role,
                    updated_at = excluded.updated_at
                """,
                (user_id, email, display_name, role, now, now),
            )

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Fetch a user profile by ID."""
        return self._fetch_one(
            _select_sql("users", _USER_COLUMNS) + " WHERE user_id = ?",
            (user_id,),
            _USER_COLUMNS,
        )

    def apply_rating(self, user_id: str, target_role: str, rating: int, now: str) -> None:
        """Fold one rating into the running average for the given role."""
        if target_role == "helper":
            average_column, count_column = "helper_rating", "helper_rating_count"
        elif target_role == "requester":
            average_column, count_column = "requester_rating", "requester_rating_count"
        else:
            msg = f"Unknown rating role: {target_role}"
            raise ValueError(msg)

        with self.transaction():
            self._db.execute(
                "INSERT OR IGNORE INTO users (user_id, role, created_at, updated_at) "
                "VALUES (?, 'user', ?, ?)",
                (user_id, now, now),
            )
            self._db.execute(
                f"UPDATE users SET "  # nosec B608
                f"{average_column} = ({average_column} * {count_column} + ?) "
                f"/ ({count_column} + 1), "
                f"{count_column} = {count_column} + 1, updated_at = ? WHERE user_id = ?",
                (rating, now, user_id),
            )

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    def get_quota(self, user_id: str, kind: str) -> dict[str, Any] | None:
        """Fetch the stored counter for one actor and quota kind."""
        return self._fetch_one(
            "SELECT user_id, kind, count, window_start FROM quotas WHERE user_id = ? AND kind = ?",
            (user_id, kind),
            ("user_id", "kind", "count", "window_start"),
        )

    def save_quota(self, user_id: str, kind: str, count: int, window_start: str | None) -> None:
        """Persist the counter for one actor and quota kind."""
        with self.transaction():
            self._db.execute(
                """
                INSERT INTO quotas (user_id, kind, count, window_start) VALUES (?, ?, ?, ?)
                ON CONFLICT (user_id, kind) DO UPDATE SET
                    count = excluded.count,
                    window_start = excluded.window_start
                """,
                (user_id, kind, count, window_start),
            )

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _raise_if_duplicate_name(self, exc: sqlite3.IntegrityError, name: object) -> None:
        if "unique" in str(exc).lower():
            raise DuplicateCategoryError(f"Category name already taken: {name}") from exc

    def insert_category(self, category_data: dict[str, Any]) -> None:
        """
        Insert a category row.

        Raises:
            DuplicateCategoryError: If the name is already taken.
        """
        values = tuple(category_data[column] for column in _CATEGORY_COLUMNS)
        try:
            with self.transaction():
                self._db.execute(_insert_sql("categories", _CATEGORY_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            self._raise_if_duplicate_name(exc, category_data["name"])
            raise

    def get_category(self, category_id: str) -> dict[str, Any] | None:
        """Fetch a category by ID."""
        return self._fetch_one(
            _select_sql("categories", _CATEGORY_COLUMNS) + " WHERE category_id = ?",
            (category_id,),
            _CATEGORY_COLUMNS,
        )

    def get_category_by_name(self, name: str) -> dict[str, Any] | None:
        """Fetch a category by its exact name."""
        return self._fetch_one(
            _select_sql("categories", _CATEGORY_COLUMNS) + " WHERE name = ?",
            (name,),
            _CATEGORY_COLUMNS,
        )

    def list_categories(self) -> list[dict[str, Any]]:
        """List every category ordered by name."""
        return self._fetch_all(
            _select_sql("categories", _CATEGORY_COLUMNS) + " ORDER BY name ASC",
            (),
            _CATEGORY_COLUMNS,
        )

    def update_category(self, category_id: str, updates: dict[str, Any]) -> int:
        """
        Update category columns and return the number of affected rows.

        Raises:
            DuplicateCategoryError: If the new name is already taken.
        """
        try:
            return self._update(
                "categories", "category_id", category_id, _CATEGORY_COLUMNS, updates, None
            )
        except sqlite3.IntegrityError as exc:
            self._raise_if_duplicate_name(exc, updates.get("name"))
            raise

    def delete_category(self, category_id: str) -> int:
        """Delete a category; tasks filed under it keep no category."""
        with self.transaction():
            cursor = self._db.execute(
                "DELETE FROM categories WHERE category_id = ?", (category_id,)
            )
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(task_data[column] for column in _TASK_COLUMNS)
        with self.transaction():
            self._db.execute(_insert_sql("tasks", _TASK_COLUMNS), values)

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        return self._fetch_one(
            _select_sql("tasks", _TASK_COLUMNS) + " WHERE task_id = ?",
            (task_id,),
            _TASK_COLUMNS,
        )

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update task columns and return the number of affected rows."""
        return self._update("tasks", "task_id", task_id, _TASK_COLUMNS, updates, expected_status)

    def delete_task(self, task_id: str) -> int:
        """Delete a task; its bids go with it through the foreign key cascade."""
        with self.transaction():
            cursor = self._db.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
        return int(cursor.rowcount)

    def list_tasks(
        self,
        status: str | None,
        category: str | None,
        requester_id: str | None,
        limit: int | None,
        offset: int | None,
    ) -> list[dict[str, Any]]:
        """List tasks newest first with optional filters."""
        query = _select_sql("tasks", _TASK_COLUMNS)
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if requester_id is not None:
            clauses.append("requester_id = ?")
            params.append(requester_id)

        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
            if offset is not None:
                query += " OFFSET ?"
                params.append(offset)

        return self._fetch_all(query, params, _TASK_COLUMNS)

    def count_tasks(self) -> int:
        """Count total tasks."""
        with self._lock:
            row = self._db.execute("SELECT COUNT(*) FROM tasks").fetchone()
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        with self._lock:
            rows = self._db.execute("SELECT status, COUNT(*) FROM tasks GROUP BY status").fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    def insert_bid(self, bid_data: dict[str, Any]) -> None:
        """Insert a new bid row."""
        values = tuple(bid_data[column] for column in _BID_COLUMNS)
        with self.transaction():
            self._db.execute(_insert_sql("bids", _BID_COLUMNS), values)

    def get_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch a bid by ID."""
        return self._fetch_one(
            _select_sql("bids", _BID_COLUMNS) + " WHERE bid_id = ?",
            (bid_id,),
            _BID_COLUMNS,
        )

    def update_bid(
        self,
        bid_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update bid columns and return the number of affected rows."""
        return self._update("bids", "bid_id", bid_id, _BID_COLUMNS, updates, expected_status)

    def delete_bid(self, bid_id: str) -> int:
        """Hard-delete a bid row."""
        with self.transaction():
            cursor = self._db.execute("DELETE FROM bids WHERE bid_id = ?", (bid_id,))
        return int(cursor.rowcount)

    def get_bids_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch all bids for a task, lowest amount first."""
        return self._fetch_all(
            _select_sql("bids", _BID_COLUMNS)
            + " WHERE task_id = ? ORDER BY amount ASC, created_at ASC, rowid ASC",
            (task_id,),
            _BID_COLUMNS,
        )

    def get_accepted_bids(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch bids in status accepted for a task (at most one when consistent)."""
        return self._fetch_all(
            _select_sql("bids", _BID_COLUMNS) + " WHERE task_id = ? AND status = 'accepted'",
            (task_id,),
            _BID_COLUMNS,
        )

    def count_open_bids(self, task_id: str) -> int:
        """Count bids on a task whose status is not rejected."""
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM bids WHERE task_id = ? AND status != 'rejected'",
                (task_id,),
            ).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def insert_contract(self, contract_data: dict[str, Any]) -> None:
        """Insert a new contract row."""
        values = tuple(contract_data[column] for column in _CONTRACT_COLUMNS)
        with self.transaction():
            self._db.execute(_insert_sql("contracts", _CONTRACT_COLUMNS), values)

    def get_contract(self, contract_id: str) -> dict[str, Any] | None:
        """Fetch a contract by ID."""
        return self._fetch_one(
            _select_sql("contracts", _CONTRACT_COLUMNS) + " WHERE contract_id = ?",
            (contract_id,),
            _CONTRACT_COLUMNS,
        )

    def update_contract(
        self,
        contract_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update contract columns and return the number of affected rows."""
        return self._update(
            "contracts",
            "contract_id",
            contract_id,
            _CONTRACT_COLUMNS,
            updates,
            expected_status,
        )

    def get_live_contracts(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch non-cancelled contracts for a task, newest first."""
        return self._fetch_all(
            _select_sql("contracts", _CONTRACT_COLUMNS)
            + " WHERE task_id = ? AND status != 'cancelled' ORDER BY created_at DESC, rowid DESC",
            (task_id,),
            _CONTRACT_COLUMNS,
        )

    def get_contracts_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch every contract ever created for a task, oldest first."""
        return self._fetch_all(
            _select_sql("contracts", _CONTRACT_COLUMNS)
            + " WHERE task_id = ? ORDER BY created_at ASC, rowid ASC",
            (task_id,),
            _CONTRACT_COLUMNS,
        )

    def get_contracts_for_helper(self, helper_id: str) -> list[dict[str, Any]]:
        """Fetch contracts held by a helper, newest first."""
        return self._fetch_all(
            _select_sql("contracts", _CONTRACT_COLUMNS)
            + " WHERE helper_id = ? ORDER BY created_at DESC, rowid DESC",
            (helper_id,),
            _CONTRACT_COLUMNS,
        )

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def insert_review(self, review_data: dict[str, Any]) -> None:
        """
        Insert a review row.

        Raises:
            DuplicateReviewError: If (task_id, reviewer_id, target_user_id) exists.
        """
        values = tuple(review_data[column] for column in _REVIEW_COLUMNS)
        try:
            with self.transaction():
                self._db.execute(_insert_sql("reviews", _REVIEW_COLUMNS), values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateReviewError(
                    f"Review already exists for ({review_data['task_id']}, "
                    f"{review_data['reviewer_id']}, {review_data['target_user_id']})"
                ) from exc
            raise

    def get_reviews_for_user(self, user_id: str, target_role: str | None) -> list[dict[str, Any]]:
        """Fetch reviews about a user, newest first."""
        query = _select_sql("reviews", _REVIEW_COLUMNS) + " WHERE target_user_id = ?"
        params: list[object] = [user_id]
        if target_role is not None:
            query += " AND target_role = ?"
            params.append(target_role)
        query += " ORDER BY created_at DESC, rowid DESC"
        return self._fetch_all(query, params, _REVIEW_COLUMNS)

    def get_reviews_for_task(self, task_id: str) -> list[dict[str, Any]]:
        """Fetch reviews left on a task, oldest first."""
        return self._fetch_all(
            _select_sql("reviews", _REVIEW_COLUMNS)
            + " WHERE task_id = ? ORDER BY created_at ASC, rowid ASC",
            (task_id,),
            _REVIEW_COLUMNS,
        )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
