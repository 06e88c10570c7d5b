from __future__ import annotations

import itertools

import pytest

from suggestion_engine.storage.entities import Board, Column, Task
from suggestion_engine.storage.memory import InMemoryBoardStore
from suggestion_engine.storage.models import BoardSuggestion, TaskBreakdownSuggestion
from suggestion_engine.suggestions.errors import MaterializationFailure
from suggestion_engine.suggestions.materializer import EntityMaterializer, ordered_by_position


def _board(columns: list[dict]) -> BoardSuggestion:
    return BoardSuggestion.model_validate({"boardName": "Roadmap", "columns": columns})


def _task(task_id: str, title: str, position=None, subtasks: int = 0) -> dict:
    return {
        "id": task_id,
        "title": title,
        "description": "",
        "position": position,
        "subtasks": [
            {"id": f"{task_id}-s{i}", "title": f"{title} step {i}"} for i in range(subtasks)
        ],
    }


def test_board_graph_counts_and_back_references() -> None:
    suggestion = _board(
        [
            {
                "name": "Backlog",
                "position": 0,
                "tasks": [_task("a", "A", 0, 2), _task("b", "B", 1)],
            },
            {"name": "Doing", "position": 1, "tasks": [_task("c", "C", 0, 3)]},
            {"name": "Done", "position": 2, "tasks": []},
        ]
    )

    graph = EntityMaterializer(InMemoryBoardStore()).build_board_graph(suggestion, "user-1")

    assert len(graph.columns) == 3
    assert len(graph.tasks) == 3
    assert len(graph.subtasks) == 5
    assert graph.board.owner_id == "user-1"
    assert graph.board.columns == [column.id for column in graph.columns]

    tasks_by_id = {task.id: task for task in graph.tasks}
    for column in graph.columns:
        assert column.board_id == graph.board.id
        assert [tasks_by_id[task_id].column_id for task_id in column.tasks] == [column.id] * len(
            column.tasks
        )
    for task in graph.tasks:
        owned = [subtask.id for subtask in graph.subtasks if subtask.task_id == task.id]
        assert task.subtasks == owned


def test_board_graph_orders_children_by_position() -> None:
    suggestion = _board(
        [
            {"name": "Second", "position": 5, "tasks": []},
            {
                "name": "First",
                "position": 1,
                "tasks": [_task("late", "Late", 9), _task("early", "Early", 2)],
            },
        ]
    )

    graph = EntityMaterializer(InMemoryBoardStore()).build_board_graph(suggestion, "u")

    assert [column.name for column in graph.columns] == ["First", "Second"]
    assert [column.position for column in graph.columns] == [0, 1]
    first = graph.columns[0]
    titles = [next(t.title for t in graph.tasks if t.id == task_id) for task_id in first.tasks]
    assert titles == ["Early", "Late"]


def test_ordered_by_position_defaults_missing_position_to_index() -> None:
    suggestion = _board(
        [
            {
                "name": "Only",
                "tasks": [_task("x", "X", None), _task("y", "Y", 0), _task("z", "Z", None)],
            }
        ]
    )

    ordered = ordered_by_position(suggestion.columns[0].tasks)

    # x and y share rank 0; array order breaks the tie.
    assert [task.title for task in ordered] == ["X", "Y", "Z"]


def test_board_graph_never_reuses_ephemeral_ids() -> None:
    suggestion = _board(
        [{"name": "Col", "position": 0, "tasks": [_task("1", "One", 0, 2), _task("2", "Two", 1)]}]
    )
    ephemeral = suggestion.ephemeral_ids()
    # The id factory first hands out exactly the ephemeral ids.
    counter = itertools.count()
    colliding = iter(["1", "1-s0", "2", "1-s1"])

    def id_factory() -> str:
        return next(colliding, None) or f"fresh-{next(counter)}"

    graph = EntityMaterializer(InMemoryBoardStore(), id_factory=id_factory).build_board_graph(
        suggestion, "u"
    )

    assigned = (
        [graph.board.id]
        + [column.id for column in graph.columns]
        + [task.id for task in graph.tasks]
        + [subtask.id for subtask in graph.subtasks]
    )
    assert not ephemeral.intersection(assigned)
    assert len(set(assigned)) == len(assigned)


def test_build_board_graph_performs_no_writes() -> None:
    store = InMemoryBoardStore()
    graph = EntityMaterializer(store).build_board_graph(
        _board([{"name": "Col", "tasks": [_task("t", "T", 0, 1)]}]), "u"
    )

    assert store.get_board(graph.board.id) is None


def test_materialize_board_persists_populated_graph(board_store: InMemoryBoardStore) -> None:
    suggestion = _board(
        [
            {"name": "To Do", "position": 0, "tasks": [_task("t", "Write spec", 0, 2)]},
            {"name": "Done", "position": 1, "tasks": []},
        ]
    )

    board = EntityMaterializer(board_store).materialize_board(suggestion, "user-1")

    assert board.name == "Roadmap"
    assert [column.name for column in board.columns] == ["To Do", "Done"]
    task = board.columns[0].tasks[0]
    assert task.title == "Write spec"
    assert task.status == "Todo"
    assert [subtask.title for subtask in task.subtasks] == [
        "Write spec step 0",
        "Write spec step 1",
    ]
    assert all(subtask.task_id == task.id for subtask in task.subtasks)


class RecordingBoardStore(InMemoryBoardStore):
    """Records write calls and checks parents exist before children are written."""

    def __init__(self, fail_on: str | None = None) -> None:
        super().__init__()
        self.calls: list[str] = []
        self.fail_on = fail_on

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name == self.fail_on:
            raise ConnectionError("database went away")

    def insert_board(self, board):
        assert board.columns == []
        self._record("insert_board")
        return super().insert_board(board)

    def insert_columns(self, columns):
        assert all(column.tasks == [] for column in columns)
        self._record("insert_columns")
        return super().insert_columns(columns)

    def insert_tasks(self, tasks):
        assert all(task.subtasks == [] for task in tasks)
        self._record("insert_tasks")
        return super().insert_tasks(tasks)

    def insert_subtasks(self, subtasks):
        self._record("insert_subtasks")
        return super().insert_subtasks(subtasks)

    def update_task(self, task_id, fields):
        for subtask_id in fields.get("subtasks", []):
            assert subtask_id in self._subtasks
        self._record("update_task")
        return super().update_task(task_id, fields)

    def update_column(self, column_id, fields):
        for task_id in fields.get("tasks", []):
            assert task_id in self._tasks
        self._record("update_column")
        return super().update_column(column_id, fields)

    def update_board(self, board_id, fields):
        for column_id in fields.get("columns", []):
            assert column_id in self._columns
        self._record("update_board")
        return super().update_board(board_id, fields)


def test_persist_writes_parents_before_children_and_lists_bottom_up() -> None:
    store = RecordingBoardStore()
    suggestion = _board([{"name": "Col", "position": 0, "tasks": [_task("t", "T", 0, 2)]}])

    EntityMaterializer(store).materialize_board(suggestion, "u")

    assert store.calls == [
        "insert_board",
        "insert_columns",
        "insert_tasks",
        "insert_subtasks",
        "update_task",
        "update_column",
        "update_board",
    ]


def test_persist_failure_raises_materialization_failure() -> None:
    store = RecordingBoardStore(fail_on="insert_tasks")
    suggestion = _board([{"name": "Col", "position": 0, "tasks": [_task("t", "T", 0, 1)]}])

    with pytest.raises(MaterializationFailure, match="database went away"):
        EntityMaterializer(store).materialize_board(suggestion, "u")


def test_build_task_update_keeps_only_changed_editable_fields() -> None:
    existing = Task(id="t-1", title="Old", description="Same", column_id="c-1", position=2)

    update = EntityMaterializer.build_task_update(
        existing,
        {
            "id": "other",
            "column_id": "c-2",
            "title": "New",
            "description": "Same",
            "status": None,
            "position": 3,
        },
    )

    assert update == {"title": "New", "position": 3}


def _seed_column(store: InMemoryBoardStore) -> Column:
    store.insert_board(Board(id="b-1", name="Board", owner_id="u", columns=["c-1"]))
    store.insert_columns([Column(id="c-1", name="Todo", board_id="b-1", tasks=["t-0"])])
    store.insert_tasks([Task(id="t-0", title="Existing", column_id="c-1", position=0)])
    return store.get_column("c-1")


def test_breakdown_into_column_appends_new_task(board_store: InMemoryBoardStore) -> None:
    _seed_column(board_store)
    breakdown = TaskBreakdownSuggestion.model_validate(
        {
            "taskTitle": "Ship release",
            "taskDescription": "v1",
            "subtasks": [{"id": "x", "title": "Tag"}, {"id": "y", "title": "Publish"}],
        }
    )
    materializer = EntityMaterializer(board_store)

    graph = materializer.build_breakdown_graph(breakdown, column_id="c-1")
    task = materializer.persist_breakdown_graph(graph)

    assert task.title == "Ship release"
    assert task.position == 1
    assert task.subtasks == [subtask.id for subtask in graph.subtasks]
    assert not {"x", "y"}.intersection(task.subtasks)
    assert board_store.get_column("c-1").tasks == ["t-0", task.id]


def test_breakdown_for_existing_task_appends_subtasks(board_store: InMemoryBoardStore) -> None:
    _seed_column(board_store)
    breakdown = TaskBreakdownSuggestion.model_validate(
        {"taskTitle": "Existing", "subtasks": [{"title": "Step"}]}
    )
    materializer = EntityMaterializer(board_store)

    graph = materializer.build_breakdown_graph(breakdown, task_id="t-0")
    task = materializer.persist_breakdown_graph(graph)

    assert graph.task is None
    assert task.id == "t-0"
    assert len(task.subtasks) == 1
    assert board_store.list_subtasks("t-0")[0].title == "Step"


def test_breakdown_requires_exactly_one_target() -> None:
    breakdown = TaskBreakdownSuggestion.model_validate({"taskTitle": "T", "subtasks": []})
    materializer = EntityMaterializer(InMemoryBoardStore())

    with pytest.raises(ValueError):
        materializer.build_breakdown_graph(breakdown)
    with pytest.raises(ValueError):
        materializer.build_breakdown_graph(breakdown, column_id="c", task_id="t")


def test_breakdown_into_missing_column_fails(board_store: InMemoryBoardStore) -> None:
    breakdown = TaskBreakdownSuggestion.model_validate(
        {"taskTitle": "T", "subtasks": [{"title": "s"}]}
    )
    materializer = EntityMaterializer(board_store)

    with pytest.raises(MaterializationFailure):
        materializer.persist_breakdown_graph(
            materializer.build_breakdown_graph(breakdown, column_id="missing")
        )


@pytest.mark.parametrize("raw", [{"boardName": "Empty"}, {"boardName": "Empty", "columns": []}])
def test_materialize_board_without_columns_adds_no_defaults(
    board_store: InMemoryBoardStore, raw: dict
) -> None:
    board = EntityMaterializer(board_store).materialize_board(
        BoardSuggestion.model_validate(raw), "user-1"
    )

    assert board.name == "Empty"
    assert board.columns == []
    assert board_store.list_columns(board.id) == []
    assert board_store.get_board(board.id).columns == []
