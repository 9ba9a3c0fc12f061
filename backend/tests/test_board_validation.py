# tests/test_board_validation.py — Structural validation and normalization
import copy

import pytest

from board_schema import BoardSpec
from board_validation import normalize, validate


def _raw_board():
    """Typical model output: loose types, gaps and references to missing columns."""
    return {
        "board": {"name": "Launch", "type": "KANBAN", "visibility": "team"},
        "columns": [
            {"name": "Done", "position": 5, "color": "green"},
            {"name": "To Do", "position": 0},
            {"name": "Doing", "position": "2"},
        ],
        "tasks": [
            {"title": "Write copy", "column": "Doing", "priority": "URGENT", "position": 3,
             "assignees": ["ann", "ann", "bob"], "tags": ["Content", "Content"]},
            {"title": "Ship it", "column": "Released", "estimatedHours": -2, "dueDate": "2024-05-01T09:00:00Z"},
            {"title": "Plan", "column": "To Do", "position": 7, "estimatedHours": "3.5"},
            {"title": "Review", "priority": "whenever", "dueDate": "next week"},
        ],
        "tags": [
            {"name": "Content", "color": "#abcdef"},
            {"name": "content"},
            {"name": "", "color": "#123456"},
        ],
        "checklists": [
            {"title": "Launch", "items": [{"text": "B", "position": 2}, {"text": "A", "position": 1}, {"text": ""}]},
        ],
    }


# ── validate ──────────────────────────────────────────────────────────────────

def test_validate_reports_errors_and_warnings():
    result = validate(_raw_board())
    assert not result.is_valid
    assert result.errors == ["Tag 3: name is required"]
    assert "Column 3: position should be a number" in result.warnings
    assert "Task 2: column 'Released' does not exist" in result.warnings
    assert "Task 4: column reference is missing" in result.warnings


def test_validate_does_not_mutate():
    board = _raw_board()
    snapshot = copy.deepcopy(board)
    validate(board)
    assert board == snapshot


@pytest.mark.parametrize("board,error", [
    ({"columns": [{"name": "A", "position": 0}]}, "Board name is required"),
    ({"board": {"name": "X"}, "columns": []}, "At least one column is required"),
    ({"board": {"name": "X"}, "columns": [{"position": 0}]}, "Column 1: name is required"),
    ({"board": {"name": "X"}, "columns": [{"name": "A", "position": 0}], "tasks": [{"column": "A"}]},
     "Task 1: title is required"),
    ("not a board", "Board data must be an object"),
])
def test_validate_errors(board, error):
    result = validate(board)
    assert not result.is_valid
    assert error in result.errors


def test_validate_reports_non_list_sections():
    board = {"board": {"name": "X"}, "columns": [{"name": "A", "position": 0}], "tasks": 5, "tags": "x"}
    result = validate(board)
    assert "Tasks must be a list" in result.errors
    assert "Tags must be a list" in result.errors

    normalized = normalize(board)
    assert normalized["tasks"] == []
    assert normalized["tags"] == []


def test_validate_bad_tag_color_is_a_warning():
    board = {"board": {"name": "X"}, "columns": [{"name": "A", "position": 0}], "tags": [{"name": "t", "color": "red"}]}
    result = validate(board)
    assert result.is_valid
    assert result.warnings == ["Tag 1: color should be a 6-digit hex value"]


# ── normalize ─────────────────────────────────────────────────────────────────

def test_normalize_orders_and_renumbers_columns():
    board = normalize(_raw_board())
    assert [(c["name"], c["position"]) for c in board["columns"]] == [("To Do", 0), ("Done", 1), ("Doing", 2)]
    assert [c["id"] for c in board["columns"]] == ["col_1", "col_2", "col_3"]


def test_normalize_rehomes_orphan_tasks_to_first_column():
    board = normalize(_raw_board())
    by_title = {t["title"]: t for t in board["tasks"]}
    assert by_title["Ship it"]["column"] == "To Do"
    assert by_title["Review"]["column"] == "To Do"
    assert by_title["Write copy"]["column"] == "Doing"


def test_normalize_task_positions_are_contiguous_per_column():
    board = normalize(_raw_board())
    by_column = {}
    for task in board["tasks"]:
        by_column.setdefault(task["column"], []).append(task["position"])
    assert by_column == {"To Do": [0, 1, 2], "Doing": [0]}
    # numbered tasks first, then unnumbered ones in input order
    assert [t["title"] for t in board["tasks"] if t["column"] == "To Do"] == ["Plan", "Ship it", "Review"]


def test_normalize_coerces_fields():
    board = normalize(_raw_board())
    info = board["board"]
    assert info["id"] == "board_1"
    assert info["type"] == "kanban"
    assert info["visibility"] == "private"
    assert info["settings"]["defaultTaskPriority"] == "medium"

    by_title = {t["title"]: t for t in board["tasks"]}
    assert by_title["Write copy"]["priority"] == "critical"
    assert by_title["Write copy"]["assignees"] == ["ann", "bob"]
    assert by_title["Write copy"]["tags"] == ["Content"]
    assert by_title["Review"]["priority"] == "medium"
    assert by_title["Review"]["dueDate"] is None
    assert by_title["Ship it"]["dueDate"] == "2024-05-01T09:00:00+00:00"
    assert by_title["Ship it"]["estimatedHours"] is None
    assert by_title["Plan"]["estimatedHours"] == 3.5

    done = board["columns"][1]
    assert done["color"] == "#6B7280"
    assert done["backgroundColor"] == "#F9FAFB"
    assert done["settings"]["wipLimit"] == {"enabled": False, "limit": None, "strictMode": False}


def test_normalize_tags_and_checklists():
    board = normalize(_raw_board())
    assert [(t["id"], t["name"], t["color"]) for t in board["tags"]] == [("tag_1", "Content", "#abcdef")]
    assert board["tags"][0]["scope"] == "board"
    assert board["tags"][0]["textColor"] == "#FFFFFF"
    assert board["tags"][0]["category"] == "custom"

    checklist = board["checklists"][0]
    assert checklist["id"] == "checklist_1"
    assert [(i["id"], i["text"], i["position"]) for i in checklist["items"]] == [
        ("checklist_1_item_1", "A", 0),
        ("checklist_1_item_2", "B", 1),
    ]


def test_normalize_is_idempotent():
    once = normalize(_raw_board())
    twice = normalize(copy.deepcopy(once))
    assert twice == once


def test_normalize_keeps_existing_ids_and_avoids_collisions():
    board = {
        "board": {"name": "X", "id": "b-9"},
        "columns": [{"name": "A", "position": 0, "id": "col_2"}, {"name": "B", "position": 1}],
        "tasks": [{"title": "t1", "column": "A", "id": "x"}, {"title": "t2", "column": "A", "id": "x"}],
    }
    normalize(board)
    assert board["board"]["id"] == "b-9"
    assert [c["id"] for c in board["columns"]] == ["col_2", "col_1"]
    assert [t["id"] for t in board["tasks"]] == ["x", "task_1"]


def test_normalize_duplicate_column_names_do_not_duplicate_tasks():
    board = {
        "board": {"name": "X"},
        "columns": [{"name": "A", "position": 0}, {"name": "A", "position": 1}],
        "tasks": [{"title": "t", "column": "A"}],
    }
    normalize(board)
    assert len(board["tasks"]) == 1


def test_normalized_board_satisfies_schema():
    spec = BoardSpec.model_validate(normalize(_raw_board()))
    assert spec.columns[0].background_color == "#F9FAFB"
    assert spec.tasks[0].column == "To Do"
    dumped = spec.model_dump(by_alias=True)
    assert "backgroundColor" in dumped["columns"][0]
    assert "estimatedHours" in dumped["tasks"][0]


def test_normalize_fills_missing_sections():
    board = normalize({"columns": [{"name": "Only"}]})
    assert board["board"]["name"] == "Generated Board"
    assert board["tasks"] == [] and board["tags"] == [] and board["checklists"] == []
