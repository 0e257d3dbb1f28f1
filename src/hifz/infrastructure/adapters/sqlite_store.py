"""
SQLite stores: infrastructure adapters for the on-device database.

The schema keeps the content tables of the text (`quran_words`,
`quran_suras`) and the user tables (`user_progress`, `user_learnings`).
Timestamps are stored as ISO-8601 UTC strings, which sort chronologically.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from hifz.domain.exceptions import StoreError
from hifz.domain.mastery import bucket_tiers
from hifz.domain.models import (
    Direction,
    DueReviewEntry,
    Item,
    ItemWithProgress,
    Learning,
    ProgressRecord,
    TierCounts,
    utcnow,
)
from hifz.domain.ports import ItemStore, LearningStore, ProgressStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS quran_suras (
    id INTEGER PRIMARY KEY,
    name TEXT
);

CREATE TABLE IF NOT EXISTS quran_words (
    id INTEGER PRIMARY KEY,
    sura_id INTEGER NOT NULL DEFAULT 0,
    aya_number INTEGER NOT NULL,
    page_id INTEGER,
    text TEXT NOT NULL,
    is_end_of_aya INTEGER NOT NULL DEFAULT 0,
    can_stop INTEGER
);

CREATE TABLE IF NOT EXISTS user_progress (
    word_id INTEGER PRIMARY KEY,
    current_interval REAL NOT NULL DEFAULT 0,
    review_count INTEGER NOT NULL DEFAULT 0,
    lapses INTEGER NOT NULL DEFAULT 0,
    ease_factor REAL NOT NULL DEFAULT 2.5,
    next_review_date TEXT NOT NULL,
    last_review_date TEXT NOT NULL,
    last_successful_date TEXT,
    created_at TEXT NOT NULL,
    memory_tier INTEGER NOT NULL DEFAULT 0,
    notes TEXT
);

CREATE INDEX IF NOT EXISTS idx_user_progress_next_review
    ON user_progress (next_review_date);

CREATE TABLE IF NOT EXISTS user_learnings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    first_word_id INTEGER NOT NULL,
    last_word_id INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
"""

WORD_COLUMNS = (
    "w.id, w.sura_id, w.aya_number, w.page_id, w.text, w.is_end_of_aya, "
    "w.can_stop, s.name AS sura_name"
)
PROGRESS_COLUMNS = (
    "p.word_id, p.current_interval, p.review_count, p.lapses, p.ease_factor, "
    "p.next_review_date, p.last_review_date, p.last_successful_date, "
    "p.created_at, p.memory_tier, p.notes"
)
WORDS_FROM = "FROM quran_words w LEFT JOIN quran_suras s ON s.id = w.sura_id"


def to_db_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        group_id=row["aya_number"],
        text=row["text"],
        is_end_of_group=bool(row["is_end_of_aya"]),
        is_boundary=bool(row["can_stop"]),
        section_id=row["sura_id"],
        section_name=row["sura_name"],
        page_id=row["page_id"],
    )


def _row_to_progress(row: sqlite3.Row) -> ProgressRecord | None:
    if row["word_id"] is None:
        return None
    return ProgressRecord(
        item_id=row["word_id"],
        interval=float(row["current_interval"]),
        review_count=row["review_count"],
        lapses=row["lapses"],
        ease_factor=float(row["ease_factor"]),
        next_review_at=from_db_time(row["next_review_date"]),
        last_reviewed_at=from_db_time(row["last_review_date"]),
        last_success_at=from_db_time(row["last_successful_date"]),
        mastery_tier=row["memory_tier"],
        note=row["notes"],
        created_at=from_db_time(row["created_at"]),
    )


def _row_to_learning(row: sqlite3.Row) -> Learning:
    return Learning(
        id=row["id"],
        title=row["title"],
        first_item_id=row["first_word_id"],
        last_item_id=row["last_word_id"],
        created_at=from_db_time(row["created_at"]),
    )


class SqliteDatabase:
    """
    Owns the SQLite connection shared by the store adapters.

    Driver errors surface as StoreError.
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            except sqlite3.Error as e:
                raise StoreError(f"Could not open database {self.db_path}: {e}") from e
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self) -> None:
        with self.transaction() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Initialized schema in {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn as conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e

    def import_items(self, items: list[Item]) -> int:
        """Insert or replace content rows (and their section names)."""
        sections = {
            item.section_id: item.section_name
            for item in items
            if item.section_id is not None and item.section_name is not None
        }
        with self.transaction() as conn:
            conn.executemany(
                "INSERT INTO quran_suras (id, name) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name",
                list(sections.items()),
            )
            conn.executemany(
                "INSERT OR REPLACE INTO quran_words "
                "(id, sura_id, aya_number, page_id, text, is_end_of_aya, can_stop) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        item.id,
                        item.section_id or 0,
                        item.group_id,
                        item.page_id,
                        item.text,
                        int(item.is_end_of_group),
                        int(item.is_boundary),
                    )
                    for item in items
                ],
            )
        return len(items)

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SqliteDatabase":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SqliteItemStore(ItemStore):
    def __init__(self, db: SqliteDatabase):
        self.db = db

    async def fetch_range(self, start_id: int, end_id: int) -> list[Item]:
        rows = self.db.query(
            f"SELECT {WORD_COLUMNS} {WORDS_FROM} "
            "WHERE w.id BETWEEN ? AND ? ORDER BY w.id ASC",
            (start_id, end_id),
        )
        return [_row_to_item(row) for row in rows]

    async def fetch_by_id(self, item_id: int) -> Item | None:
        row = self.db.query_one(f"SELECT {WORD_COLUMNS} {WORDS_FROM} WHERE w.id = ?", (item_id,))
        return _row_to_item(row) if row else None

    async def find_nearest_boundary(
        self,
        position: int,
        direction: Direction = Direction.BEFORE,
        range_start: int | None = None,
        range_end: int | None = None,
    ) -> int | None:
        conditions = ["can_stop = 1"]
        params: list[int] = []
        if direction == Direction.BEFORE:
            conditions.append("id <= ?")
            params.append(position)
            if range_start is not None:
                conditions.append("id >= ?")
                params.append(range_start)
            order = "DESC"
        else:
            conditions.append("id >= ?")
            params.append(position)
            if range_end is not None:
                conditions.append("id <= ?")
                params.append(range_end)
            order = "ASC"

        row = self.db.query_one(
            f"SELECT id FROM quran_words WHERE {' AND '.join(conditions)} "
            f"ORDER BY id {order} LIMIT 1",
            tuple(params),
        )
        return row["id"] if row else None

    async def fetch_page(
        self, start_id: int, end_id: int, limit: int, offset: int
    ) -> list[Item]:
        rows = self.db.query(
            f"SELECT {WORD_COLUMNS} {WORDS_FROM} "
            "WHERE w.id BETWEEN ? AND ? ORDER BY w.id ASC LIMIT ? OFFSET ?",
            (start_id, end_id, limit, offset),
        )
        return [_row_to_item(row) for row in rows]

    async def fetch_with_progress(self, item_id: int) -> ItemWithProgress | None:
        row = self.db.query_one(
            f"SELECT {WORD_COLUMNS}, {PROGRESS_COLUMNS} {WORDS_FROM} "
            "LEFT JOIN user_progress p ON p.word_id = w.id WHERE w.id = ?",
            (item_id,),
        )
        if row is None:
            return None
        return ItemWithProgress(item=_row_to_item(row), progress=_row_to_progress(row))

    async def find_first_unlearned(
        self, start_id: int, end_id: int
    ) -> ItemWithProgress | None:
        row = self.db.query_one(
            f"SELECT {WORD_COLUMNS} {WORDS_FROM} "
            "LEFT JOIN user_progress p ON p.word_id = w.id "
            "WHERE w.id BETWEEN ? AND ? AND p.word_id IS NULL "
            "ORDER BY w.id ASC LIMIT 1",
            (start_id, end_id),
        )
        return ItemWithProgress(item=_row_to_item(row)) if row else None

    async def count_in_range(self, start_id: int, end_id: int) -> int:
        row = self.db.query_one(
            "SELECT COUNT(*) AS total FROM quran_words WHERE id BETWEEN ? AND ?",
            (start_id, end_id),
        )
        return row["total"] if row else 0


class SqliteProgressStore(ProgressStore):
    def __init__(self, db: SqliteDatabase):
        self.db = db

    async def fetch_by_id(self, item_id: int) -> ProgressRecord | None:
        row = self.db.query_one(
            f"SELECT {PROGRESS_COLUMNS} FROM user_progress p WHERE p.word_id = ?",
            (item_id,),
        )
        return _row_to_progress(row) if row else None

    async def fetch_range(self, start_id: int, end_id: int) -> list[ProgressRecord]:
        rows = self.db.query(
            f"SELECT {PROGRESS_COLUMNS} FROM user_progress p "
            "WHERE p.word_id BETWEEN ? AND ? ORDER BY p.word_id ASC",
            (start_id, end_id),
        )
        return [_row_to_progress(row) for row in rows]

    async def upsert(self, record: ProgressRecord) -> None:
        now = utcnow()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO user_progress
                    (word_id, current_interval, review_count, lapses, ease_factor,
                     next_review_date, last_review_date, last_successful_date,
                     created_at, memory_tier, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(word_id) DO UPDATE SET
                    current_interval = excluded.current_interval,
                    review_count = excluded.review_count,
                    lapses = excluded.lapses,
                    ease_factor = excluded.ease_factor,
                    next_review_date = excluded.next_review_date,
                    last_review_date = excluded.last_review_date,
                    last_successful_date = excluded.last_successful_date,
                    memory_tier = excluded.memory_tier,
                    notes = excluded.notes
                """,
                (
                    record.item_id,
                    record.interval,
                    record.review_count,
                    record.lapses,
                    record.ease_factor,
                    to_db_time(record.next_review_at or now),
                    to_db_time(record.last_reviewed_at or now),
                    to_db_time(record.last_success_at),
                    to_db_time(now),
                    record.mastery_tier,
                    record.note,
                ),
            )

    async def fetch_due_in_range(
        self, start_id: int, end_id: int, now: datetime, limit: int
    ) -> list[DueReviewEntry]:
        rows = self.db.query(
            "SELECT w.id, w.text, w.aya_number, s.name AS sura_name, p.next_review_date "
            "FROM quran_words w "
            "JOIN user_progress p ON p.word_id = w.id "
            "LEFT JOIN quran_suras s ON s.id = w.sura_id "
            "WHERE w.id BETWEEN ? AND ? AND p.next_review_date <= ? "
            "ORDER BY p.next_review_date ASC LIMIT ?",
            (start_id, end_id, to_db_time(now), limit),
        )
        return [
            DueReviewEntry(
                item_id=row["id"],
                text=row["text"],
                group_id=row["aya_number"],
                section_name=row["sura_name"],
                next_review_at=from_db_time(row["next_review_date"]),
            )
            for row in rows
        ]

    async def count_due_after(self, position: int, end_id: int, now: datetime) -> int:
        row = self.db.query_one(
            "SELECT COUNT(*) AS due FROM quran_words w "
            "JOIN user_progress p ON p.word_id = w.id "
            "WHERE w.id > ? AND w.id <= ? AND p.next_review_date <= ?",
            (position, end_id, to_db_time(now)),
        )
        return row["due"] if row else 0

    async def aggregate_tier_counts(self, start_id: int, end_id: int) -> TierCounts:
        total_row = self.db.query_one(
            "SELECT COUNT(*) AS total FROM quran_words WHERE id BETWEEN ? AND ?",
            (start_id, end_id),
        )
        total = total_row["total"] if total_row else 0
        if total == 0:
            return TierCounts(total=0)

        rows = self.db.query(
            "SELECT p.memory_tier, COUNT(*) AS cnt FROM user_progress p "
            "JOIN quran_words w ON w.id = p.word_id "
            "WHERE p.word_id BETWEEN ? AND ? GROUP BY p.memory_tier",
            (start_id, end_id),
        )
        recorded = [row["memory_tier"] for row in rows for _ in range(row["cnt"])]
        return bucket_tiers(total, recorded)


class SqliteLearningStore(LearningStore):
    def __init__(self, db: SqliteDatabase):
        self.db = db

    async def list_learnings(self) -> list[Learning]:
        rows = self.db.query(
            "SELECT id, title, first_word_id, last_word_id, created_at "
            "FROM user_learnings ORDER BY created_at DESC, id DESC"
        )
        return [_row_to_learning(row) for row in rows]

    async def get_learning(self, learning_id: int) -> Learning | None:
        row = self.db.query_one(
            "SELECT id, title, first_word_id, last_word_id, created_at "
            "FROM user_learnings WHERE id = ?",
            (learning_id,),
        )
        return _row_to_learning(row) if row else None

    async def add_learning(
        self, title: str, first_item_id: int, last_item_id: int
    ) -> Learning:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO user_learnings (title, first_word_id, last_word_id, created_at) "
                "VALUES (?, ?, ?, ?)",
                (title, first_item_id, last_item_id, to_db_time(utcnow())),
            )
            learning_id = cursor.lastrowid

        learning = await self.get_learning(learning_id)
        if learning is None:
            raise StoreError("Could not fetch inserted learning")
        return learning

    async def delete_learning(self, learning_id: int) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM user_learnings WHERE id = ?", (learning_id,))
            return cursor.rowcount > 0
