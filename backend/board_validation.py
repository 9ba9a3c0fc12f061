# board_validation.py - Structural validation and normalization of board dicts
#
# Both functions work on the camelCase dict shape produced by the decoder or
# the fallback synthesizer. validate() never mutates; normalize() mutates in
# place and is idempotent (normalize(normalize(b)) == normalize(b)).

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from board_schema import (
    DEFAULT_COLORS, BoardType, BoardVisibility, SortDirection, SortMethod,
    TagCategory, TaskPriority, default_board_settings, default_column_settings,
)

logger = logging.getLogger("boardforge.validation")

_HEX_COLOR = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)

PRIORITY_ALIASES = {
    "urgent": TaskPriority.CRITICAL.value,
    "highest": TaskPriority.CRITICAL.value,
    "normal": TaskPriority.MEDIUM.value,
    "lowest": TaskPriority.LOW.value,
}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ============================================================================
# HELPERS
# ============================================================================

def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _is_color(value: Any) -> bool:
    return isinstance(value, str) and bool(_HEX_COLOR.match(value))


def _color(value: Any, kind: str) -> str:
    return value if _is_color(value) else DEFAULT_COLORS[kind]


def _enum(value: Any, enum_cls, default):
    if isinstance(value, str):
        candidate = value.strip().lower()
        for member in enum_cls:
            if member.value == candidate:
                return member.value
    return default.value


def _priority(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in PRIORITY_ALIASES:
        return PRIORITY_ALIASES[value.strip().lower()]
    return _enum(value, TaskPriority, TaskPriority.MEDIUM)


def _position_key(item: Dict[str, Any], index: int):
    position = item.get("position")
    return (position if _is_number(position) else math.inf, index)


def _unique_strings(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    seen, result = set(), []
    for value in values:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not value.strip():
            continue
        value = value.strip()
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _due_date(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw).isoformat()
    except ValueError:
        return None


def _non_negative(value: Any, cast=float) -> Optional[float]:
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not _is_number(value) or value < 0:
        return None
    return cast(value)


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if _is_number(value) and value >= 0 else None


def _merge_defaults(value: Any, defaults: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(defaults)
    if isinstance(value, dict):
        for key, default in defaults.items():
            if key not in value:
                continue
            if isinstance(default, dict):
                merged[key] = _merge_defaults(value[key], default)
            elif isinstance(default, bool):
                merged[key] = value[key] if isinstance(value[key], bool) else default
            else:
                merged[key] = value[key]
    return merged


class _IdAllocator:
    """Hands out ``<prefix>_<n>`` ids that do not collide with existing ones."""

    def __init__(self, prefix: str, existing):
        self.prefix = prefix
        self.used = {i for i in existing if isinstance(i, str) and i}
        self.counter = 0

    def next(self) -> str:
        while True:
            self.counter += 1
            candidate = f"{self.prefix}_{self.counter}"
            if candidate not in self.used:
                self.used.add(candidate)
                return candidate

    def keep_or_allocate(self, value: Any, claimed: set) -> str:
        if isinstance(value, str) and value.strip() and value not in claimed:
            claimed.add(value)
            return value
        new_id = self.next()
        claimed.add(new_id)
        return new_id


def _dicts(value: Any) -> List[Dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _listed(board: Dict[str, Any], key: str, label: str, errors: List[str]) -> List[Any]:
    value = board.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        errors.append(f"{label} must be a list")
        return []
    return value


# ============================================================================
# VALIDATE
# ============================================================================

def validate(board: Any) -> ValidationResult:
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(board, dict):
        return ValidationResult(False, ["Board data must be an object"], [])

    info = board.get("board")
    if not isinstance(info, dict) or not _text(info.get("name")):
        errors.append("Board name is required")

    columns = board.get("columns")
    column_names = set()
    if not isinstance(columns, list) or not columns:
        errors.append("At least one column is required")
    else:
        for i, column in enumerate(columns):
            if not isinstance(column, dict) or not _text(column.get("name")):
                errors.append(f"Column {i + 1}: name is required")
                continue
            column_names.add(column["name"].strip())
            if not _is_number(column.get("position")):
                warnings.append(f"Column {i + 1}: position should be a number")

    for i, task in enumerate(_listed(board, "tasks", "Tasks", errors)):
        if not isinstance(task, dict) or not _text(task.get("title")):
            errors.append(f"Task {i + 1}: title is required")
            continue
        column = _text(task.get("column"))
        if not column:
            warnings.append(f"Task {i + 1}: column reference is missing")
        elif column_names and column not in column_names:
            warnings.append(f"Task {i + 1}: column '{column}' does not exist")

    for i, tag in enumerate(_listed(board, "tags", "Tags", errors)):
        if not isinstance(tag, dict) or not _text(tag.get("name")):
            errors.append(f"Tag {i + 1}: name is required")
            continue
        if "color" in tag and not _is_color(tag.get("color")):
            warnings.append(f"Tag {i + 1}: color should be a 6-digit hex value")

    return ValidationResult(not errors, errors, warnings)


# ============================================================================
# NORMALIZE
# ============================================================================

def _normalize_board_info(board: Dict[str, Any]) -> None:
    info = board.get("board")
    if not isinstance(info, dict):
        info = {}
        board["board"] = info
    info["id"] = _text(info.get("id")) or "board_1"
    info["name"] = _text(info.get("name")) or "Generated Board"
    info["description"] = info["description"] if isinstance(info.get("description"), str) else ""
    info["type"] = _enum(info.get("type"), BoardType, BoardType.KANBAN)
    info["visibility"] = _enum(info.get("visibility"), BoardVisibility, BoardVisibility.PRIVATE)
    settings = _merge_defaults(info.get("settings"), default_board_settings())
    settings["defaultTaskPriority"] = _priority(settings.get("defaultTaskPriority"))
    days = settings.get("archiveAfterDays")
    settings["archiveAfterDays"] = int(days) if _is_number(days) and days >= 0 else 30
    info["settings"] = settings


def _normalize_columns(board: Dict[str, Any]) -> List[Dict[str, Any]]:
    raw = _dicts(board.get("columns"))
    ordered = [c for _, c in sorted(enumerate(raw), key=lambda pair: _position_key(pair[1], pair[0]))]
    ids = _IdAllocator("col", (c.get("id") for c in ordered))
    claimed: set = set()
    for position, column in enumerate(ordered):
        column["id"] = ids.keep_or_allocate(column.get("id"), claimed)
        column["name"] = _text(column.get("name")) or f"Column {position + 1}"
        column["position"] = position
        column["color"] = _color(column.get("color"), "column")
        column["backgroundColor"] = _color(column.get("backgroundColor"), "column_background")
        column["limit"] = _optional_int(column.get("limit"))
        settings = _merge_defaults(column.get("settings"), default_column_settings())
        wip = settings["wipLimit"]
        wip["limit"] = _optional_int(wip.get("limit"))
        sorting = settings["sorting"]
        sorting["method"] = _enum(sorting.get("method"), SortMethod, SortMethod.MANUAL)
        sorting["direction"] = _enum(sorting.get("direction"), SortDirection, SortDirection.ASC)
        column["settings"] = settings
    board["columns"] = ordered
    return ordered


def _normalize_tasks(board: Dict[str, Any], columns: List[Dict[str, Any]]) -> None:
    raw = _dicts(board.get("tasks"))
    names = [c["name"] for c in columns]
    first = names[0] if names else None

    ids = _IdAllocator("task", (t.get("id") for t in raw))
    claimed: set = set()
    for task in raw:
        task["id"] = ids.keep_or_allocate(task.get("id"), claimed)
        task["title"] = _text(task.get("title")) or "Untitled Task"
        task["description"] = task["description"] if isinstance(task.get("description"), str) else ""
        task["priority"] = _priority(task.get("priority"))
        task["color"] = _color(task.get("color"), "task")
        task["assignees"] = _unique_strings(task.get("assignees"))
        task["tags"] = _unique_strings(task.get("tags"))
        task["dueDate"] = _due_date(task.get("dueDate"))
        task["estimatedHours"] = _non_negative(task.get("estimatedHours"))
        column = _text(task.get("column"))
        if column not in names:
            if first is not None:
                logger.debug("Re-homing task %s from %r to %r", task["id"], column, first)
            column = first
        task["column"] = column

    tasks: List[Dict[str, Any]] = []
    for name in dict.fromkeys(names):
        in_column = [(i, t) for i, t in enumerate(raw) if t["column"] == name]
        in_column.sort(key=lambda pair: _position_key(pair[1], pair[0]))
        for position, (_, task) in enumerate(in_column):
            task["position"] = position
            tasks.append(task)
    board["tasks"] = tasks


def _normalize_tags(board: Dict[str, Any]) -> None:
    raw = [t for t in _dicts(board.get("tags")) if _text(t.get("name"))]
    ids = _IdAllocator("tag", (t.get("id") for t in raw))
    claimed: set = set()
    seen_names: set = set()
    tags = []
    for tag in raw:
        name = _text(tag.get("name"))
        if name.lower() in seen_names:
            continue
        seen_names.add(name.lower())
        tag["id"] = ids.keep_or_allocate(tag.get("id"), claimed)
        tag["name"] = name
        tag["color"] = _color(tag.get("color"), "tag")
        tag["textColor"] = _color(tag.get("textColor"), "text")
        tag["category"] = _enum(tag.get("category"), TagCategory, TagCategory.CUSTOM)
        tag["description"] = tag["description"] if isinstance(tag.get("description"), str) else ""
        tag["scope"] = "board"
        tags.append(tag)
    board["tags"] = tags


def _normalize_checklists(board: Dict[str, Any]) -> None:
    raw = _dicts(board.get("checklists"))
    ids = _IdAllocator("checklist", (c.get("id") for c in raw))
    claimed: set = set()
    for n, checklist in enumerate(raw, start=1):
        checklist["id"] = ids.keep_or_allocate(checklist.get("id"), claimed)
        checklist["title"] = _text(checklist.get("title")) or f"Checklist {n}"
        items = [i for i in _dicts(checklist.get("items")) if _text(i.get("text"))]
        items = [item for _, item in sorted(enumerate(items), key=lambda pair: _position_key(pair[1], pair[0]))]
        item_ids = _IdAllocator(f"{checklist['id']}_item", (i.get("id") for i in items))
        item_claimed: set = set()
        for position, item in enumerate(items):
            item["id"] = item_ids.keep_or_allocate(item.get("id"), item_claimed)
            item["text"] = _text(item.get("text"))
            item["priority"] = _priority(item.get("priority"))
            item["position"] = position
            item["estimatedMinutes"] = _optional_int(item.get("estimatedMinutes"))
        checklist["items"] = items
    board["checklists"] = raw


def normalize(board: Dict[str, Any]) -> Dict[str, Any]:
    """Fill defaults, coerce enums and renumber positions, in place.

    Tasks whose column is missing or unknown move to the first column. Column
    and item order follows the incoming ``position`` values, with entries that
    have no numeric position kept after the numbered ones in input order.
    """
    _normalize_board_info(board)
    columns = _normalize_columns(board)
    _normalize_tasks(board, columns)
    _normalize_tags(board)
    _normalize_checklists(board)
    return board
