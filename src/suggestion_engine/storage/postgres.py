"""PostgreSQL-backed storage with automatic table migration."""

from __future__ import annotations

import json
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from suggestion_engine.storage.entities import (
    Board,
    Column,
    PopulatedBoard,
    Subtask,
    Task,
    populate_board,
)
from suggestion_engine.storage.models import Suggestion, SuggestionContent


class _PostgresBase:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("SUGGESTION_ENGINE_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Json
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Json

    @staticmethod
    def _parse_json(raw: Any) -> Any:
        if isinstance(raw, str):
            return json.loads(raw)
        return raw

    @classmethod
    def _parse_json_object(cls, raw: Any) -> dict[str, Any]:
        parsed = cls._parse_json(raw)
        if isinstance(parsed, dict):
            return parsed
        return {}

    @classmethod
    def _parse_id_list(cls, raw: Any) -> list[str]:
        parsed = cls._parse_json(raw)
        if not isinstance(parsed, list):
            return []
        return [str(item) for item in parsed]

    @staticmethod
    def _parse_datetime(raw: Any) -> datetime:
        if isinstance(raw, datetime):
            return raw
        if isinstance(raw, str):
            return datetime.fromisoformat(raw)
        raise TypeError(f"Unsupported datetime value: {type(raw)!r}")


class PostgresSuggestionStore(_PostgresBase):
    """Persist suggestions in PostgreSQL; content and metadata live in JSONB."""

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS suggestions (
                    suggestion_id UUID PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    content_json JSONB NOT NULL,
                    original_message TEXT NOT NULL,
                    related_suggestion_id TEXT,
                    metadata_json JSONB NOT NULL DEFAULT '{}'::jsonb,
                    seq BIGSERIAL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_suggestions_session_created
                ON suggestions(session_id, created_at DESC)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_suggestions_user_id
                ON suggestions(user_id)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_suggestions_status
                ON suggestions(status)
                """)
            conn.commit()

    def create_suggestion(
        self,
        *,
        user_id: str,
        session_id: str,
        type: str,
        content: SuggestionContent,
        original_message: str,
        related_suggestion_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion:
        suggestion_id = uuid.uuid4()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO suggestions (
                    suggestion_id,
                    user_id,
                    session_id,
                    type,
                    status,
                    content_json,
                    original_message,
                    related_suggestion_id,
                    metadata_json,
                    created_at,
                    updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    suggestion_id,
                    user_id,
                    session_id,
                    type,
                    "pending",
                    self._json_wrapper(content.model_dump(mode="json")),
                    original_message,
                    related_suggestion_id,
                    self._json_wrapper(metadata or {}),
                    now,
                    now,
                ),
            )
            conn.commit()
        created = self.get_suggestion(str(suggestion_id))
        if created is None:
            raise RuntimeError("Failed to load created suggestion")
        return created

    def get_suggestion(self, suggestion_id: str) -> Suggestion | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM suggestions WHERE suggestion_id::text = %s",
                (suggestion_id,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_suggestion(row)

    def list_by_user(self, user_id: str) -> list[Suggestion]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM suggestions
                WHERE user_id = %s
                ORDER BY created_at DESC, seq DESC
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_suggestion(row) for row in rows]

    def list_by_session(
        self,
        session_id: str,
        *,
        status: str | None = None,
        type: str | None = None,
    ) -> list[Suggestion]:
        clauses = ["session_id = %s"]
        params: list[Any] = [session_id]
        if status is not None:
            clauses.append("status = %s")
            params.append(status)
        if type is not None:
            clauses.append("type = %s")
            params.append(type)
        query = (
            "SELECT * FROM suggestions WHERE "
            + " AND ".join(clauses)
            + " ORDER BY created_at DESC, seq DESC"
        )
        with self._lock, self._connect() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_suggestion(row) for row in rows]

    def update_suggestion(
        self,
        suggestion_id: str,
        *,
        status: str | None = None,
        content: SuggestionContent | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Suggestion:
        current = self.get_suggestion(suggestion_id)
        if current is None:
            raise KeyError(f"Suggestion {suggestion_id} does not exist")

        next_status = status if status is not None else current.status
        next_content = content if content is not None else current.content
        next_metadata = metadata if metadata is not None else current.metadata
        updated_at = datetime.now(tz=UTC)

        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE suggestions
                SET status = %s,
                    content_json = %s,
                    metadata_json = %s,
                    updated_at = %s
                WHERE suggestion_id::text = %s
                """,
                (
                    next_status,
                    self._json_wrapper(next_content.model_dump(mode="json")),
                    self._json_wrapper(next_metadata),
                    updated_at,
                    suggestion_id,
                ),
            )
            conn.commit()

        refreshed = self.get_suggestion(suggestion_id)
        if refreshed is None:
            raise KeyError(f"Suggestion {suggestion_id} no longer exists")
        return refreshed

    def delete_pending_before(self, cutoff: datetime) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM suggestions WHERE status = 'pending' AND created_at < %s",
                (cutoff,),
            )
            deleted = cursor.rowcount
            conn.commit()
        return max(deleted, 0)

    @classmethod
    def _row_to_suggestion(cls, row: Any) -> Suggestion:
        return Suggestion(
            id=str(row["suggestion_id"]),
            user_id=row["user_id"],
            session_id=row["session_id"],
            type=row["type"],
            status=row["status"],
            content=cls._parse_json_object(row["content_json"]),
            original_message=row["original_message"],
            related_suggestion_id=row.get("related_suggestion_id"),
            metadata=cls._parse_json_object(row.get("metadata_json")),
            created_at=cls._parse_datetime(row["created_at"]),
            updated_at=cls._parse_datetime(row["updated_at"]),
        )


class PostgresBoardStore(_PostgresBase):
    """Board hierarchy tables; child rows cascade on parent delete."""

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS boards (
                    board_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    owner_id TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    column_ids JSONB NOT NULL DEFAULT '[]'::jsonb,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_columns (
                    column_id TEXT PRIMARY KEY,
                    board_id TEXT NOT NULL REFERENCES boards(board_id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    task_ids JSONB NOT NULL DEFAULT '[]'::jsonb
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_tasks (
                    task_id TEXT PRIMARY KEY,
                    column_id TEXT NOT NULL REFERENCES board_columns(column_id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'Todo',
                    position INTEGER NOT NULL DEFAULT 0,
                    subtask_ids JSONB NOT NULL DEFAULT '[]'::jsonb
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS board_subtasks (
                    subtask_id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES board_tasks(task_id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    completed BOOLEAN NOT NULL DEFAULT FALSE
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_board_columns_board_id
                ON board_columns(board_id)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_board_tasks_column_id
                ON board_tasks(column_id)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_board_subtasks_task_id
                ON board_subtasks(task_id)
                """)
            conn.commit()

    def insert_board(self, board: Board) -> Board:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO boards (board_id, name, owner_id, description, column_ids, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    board.id,
                    board.name,
                    board.owner_id,
                    board.description,
                    self._json_wrapper(board.columns),
                    board.created_at,
                ),
            )
            conn.commit()
        return board

    def insert_columns(self, columns: list[Column]) -> list[Column]:
        if not columns:
            return []
        with self._lock, self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.executemany(
                    """
                    INSERT INTO board_columns (column_id, board_id, name, position, task_ids)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    [
                        (c.id, c.board_id, c.name, c.position, self._json_wrapper(c.tasks))
                        for c in columns
                    ],
                )
            conn.commit()
        return columns

    def insert_tasks(self, tasks: list[Task]) -> list[Task]:
        if not tasks:
            return []
        with self._lock, self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.executemany(
                    """
                    INSERT INTO board_tasks (
                        task_id, column_id, title, description, status, position, subtask_ids
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    [
                        (
                            t.id,
                            t.column_id,
                            t.title,
                            t.description,
                            t.status,
                            t.position,
                            self._json_wrapper(t.subtasks),
                        )
                        for t in tasks
                    ],
                )
            conn.commit()
        return tasks

    def insert_subtasks(self, subtasks: list[Subtask]) -> list[Subtask]:
        if not subtasks:
            return []
        with self._lock, self._connect() as conn:
            with conn.cursor() as cursor:
                cursor.executemany(
                    """
                    INSERT INTO board_subtasks (subtask_id, task_id, title, description, completed)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    [(s.id, s.task_id, s.title, s.description, s.completed) for s in subtasks],
                )
            conn.commit()
        return subtasks

    def get_board(self, board_id: str) -> Board | None:
        row = self._fetch_one("SELECT * FROM boards WHERE board_id = %s", board_id)
        return self._row_to_board(row) if row else None

    def get_column(self, column_id: str) -> Column | None:
        row = self._fetch_one("SELECT * FROM board_columns WHERE column_id = %s", column_id)
        return self._row_to_column(row) if row else None

    def get_task(self, task_id: str) -> Task | None:
        row = self._fetch_one("SELECT * FROM board_tasks WHERE task_id = %s", task_id)
        return self._row_to_task(row) if row else None

    def list_columns(self, board_id: str) -> list[Column]:
        rows = self._fetch_all(
            "SELECT * FROM board_columns WHERE board_id = %s ORDER BY position",
            board_id,
        )
        return [self._row_to_column(row) for row in rows]

    def list_tasks(self, column_id: str) -> list[Task]:
        rows = self._fetch_all(
            "SELECT * FROM board_tasks WHERE column_id = %s ORDER BY position",
            column_id,
        )
        return [self._row_to_task(row) for row in rows]

    def list_subtasks(self, task_id: str) -> list[Subtask]:
        rows = self._fetch_all("SELECT * FROM board_subtasks WHERE task_id = %s", task_id)
        return [self._row_to_subtask(row) for row in rows]

    def update_board(self, board_id: str, fields: dict[str, Any]) -> Board:
        current = self.get_board(board_id)
        if current is None:
            raise KeyError(f"Board {board_id} does not exist")
        updated = Board.model_validate({**current.model_dump(), **_without_id(fields)})
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE boards
                SET name = %s, description = %s, column_ids = %s
                WHERE board_id = %s
                """,
                (updated.name, updated.description, self._json_wrapper(updated.columns), board_id),
            )
            conn.commit()
        return updated

    def update_column(self, column_id: str, fields: dict[str, Any]) -> Column:
        current = self.get_column(column_id)
        if current is None:
            raise KeyError(f"Column {column_id} does not exist")
        updated = Column.model_validate({**current.model_dump(), **_without_id(fields)})
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE board_columns
                SET name = %s, position = %s, task_ids = %s
                WHERE column_id = %s
                """,
                (updated.name, updated.position, self._json_wrapper(updated.tasks), column_id),
            )
            conn.commit()
        return updated

    def update_task(self, task_id: str, fields: dict[str, Any]) -> Task:
        current = self.get_task(task_id)
        if current is None:
            raise KeyError(f"Task {task_id} does not exist")
        updated = Task.model_validate({**current.model_dump(), **_without_id(fields)})
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                UPDATE board_tasks
                SET title = %s,
                    description = %s,
                    status = %s,
                    position = %s,
                    subtask_ids = %s
                WHERE task_id = %s
                """,
                (
                    updated.title,
                    updated.description,
                    updated.status,
                    updated.position,
                    self._json_wrapper(updated.subtasks),
                    task_id,
                ),
            )
            conn.commit()
        return updated

    def delete_board(self, board_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM boards WHERE board_id = %s", (board_id,))
            conn.commit()

    def get_populated_board(self, board_id: str) -> PopulatedBoard | None:
        board = self.get_board(board_id)
        if board is None:
            return None
        columns = {column.id: column for column in self.list_columns(board_id)}
        tasks: dict[str, Task] = {}
        subtasks: dict[str, Subtask] = {}
        for column_id in columns:
            for task in self.list_tasks(column_id):
                tasks[task.id] = task
                for subtask in self.list_subtasks(task.id):
                    subtasks[subtask.id] = subtask
        return populate_board(board, columns, tasks, subtasks)

    def _fetch_one(self, query: str, value: str) -> Any:
        with self._lock, self._connect() as conn:
            return conn.execute(query, (value,)).fetchone()

    def _fetch_all(self, query: str, value: str) -> list[Any]:
        with self._lock, self._connect() as conn:
            return conn.execute(query, (value,)).fetchall()

    @classmethod
    def _row_to_board(cls, row: Any) -> Board:
        return Board(
            id=row["board_id"],
            name=row["name"],
            owner_id=row["owner_id"],
            description=row["description"] or "",
            columns=cls._parse_id_list(row["column_ids"]),
            created_at=cls._parse_datetime(row["created_at"]),
        )

    @classmethod
    def _row_to_column(cls, row: Any) -> Column:
        return Column(
            id=row["column_id"],
            name=row["name"],
            board_id=row["board_id"],
            position=int(row["position"]),
            tasks=cls._parse_id_list(row["task_ids"]),
        )

    @classmethod
    def _row_to_task(cls, row: Any) -> Task:
        return Task(
            id=row["task_id"],
            title=row["title"],
            description=row["description"] or "",
            status=row["status"],
            column_id=row["column_id"],
            position=int(row["position"]),
            subtasks=cls._parse_id_list(row["subtask_ids"]),
        )

    @staticmethod
    def _row_to_subtask(row: Any) -> Subtask:
        return Subtask(
            id=row["subtask_id"],
            title=row["title"],
            description=row["description"] or "",
            completed=bool(row["completed"]),
            task_id=row["task_id"],
        )


def _without_id(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if key != "id"}
