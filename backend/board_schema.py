# board_schema.py - Board data model, generation options and socket envelopes
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ============================================================================
# ENUMS & CONSTANTS
# ============================================================================

class BoardType(str, Enum):
    KANBAN = "kanban"
    LIST = "list"
    CALENDAR = "calendar"
    TIMELINE = "timeline"


class BoardVisibility(str, Enum):
    PRIVATE = "private"
    WORKSPACE = "workspace"
    PUBLIC = "public"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TagCategory(str, Enum):
    PRIORITY = "priority"
    STATUS = "status"
    TYPE = "type"
    DEPARTMENT = "department"
    CUSTOM = "custom"


class SortMethod(str, Enum):
    MANUAL = "manual"
    PRIORITY = "priority"
    DUE_DATE = "due_date"
    CREATED_DATE = "created_date"
    ALPHABETICAL = "alphabetical"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"

DEFAULT_COLORS = {
    "column": "#6B7280",
    "column_background": "#F9FAFB",
    "task": "#6B7280",
    "tag": "#6B7280",
    "text": "#FFFFFF",
}

MAX_PROMPT_LENGTH = 1000
PIPELINE_VERSION = "1.0.0"


def default_board_settings() -> Dict[str, Any]:
    return {
        "allowComments": True,
        "allowAttachments": True,
        "allowTimeTracking": False,
        "defaultTaskPriority": TaskPriority.MEDIUM.value,
        "autoArchive": False,
        "archiveAfterDays": 30,
    }


def default_column_settings() -> Dict[str, Any]:
    return {
        "wipLimit": {"enabled": False, "limit": None, "strictMode": False},
        "sorting": {"method": SortMethod.MANUAL.value, "direction": SortDirection.ASC.value, "autoSort": False},
    }


# ============================================================================
# BOARD SPEC
# ============================================================================

class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BoardSettings(CamelModel):
    allow_comments: bool = True
    allow_attachments: bool = True
    allow_time_tracking: bool = False
    default_task_priority: TaskPriority = TaskPriority.MEDIUM
    auto_archive: bool = False
    archive_after_days: int = Field(default=30, ge=0)


class BoardInfo(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    type: BoardType = BoardType.KANBAN
    visibility: BoardVisibility = BoardVisibility.PRIVATE
    settings: BoardSettings = Field(default_factory=BoardSettings)


class WipLimit(CamelModel):
    enabled: bool = False
    limit: Optional[int] = None
    strict_mode: bool = False


class ColumnSorting(CamelModel):
    method: SortMethod = SortMethod.MANUAL
    direction: SortDirection = SortDirection.ASC
    auto_sort: bool = False


class ColumnSettings(CamelModel):
    wip_limit: WipLimit = Field(default_factory=WipLimit)
    sorting: ColumnSorting = Field(default_factory=ColumnSorting)


class BoardColumn(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    position: int = Field(..., ge=0)
    color: str = Field(default=DEFAULT_COLORS["column"], pattern=COLOR_PATTERN)
    background_color: str = Field(default=DEFAULT_COLORS["column_background"], pattern=COLOR_PATTERN)
    limit: Optional[int] = None
    settings: ColumnSettings = Field(default_factory=ColumnSettings)


class BoardTask(CamelModel):
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    color: str = Field(default=DEFAULT_COLORS["task"], pattern=COLOR_PATTERN)
    assignees: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    position: int = Field(..., ge=0)
    column: str = Field(..., min_length=1)


class BoardTag(CamelModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    color: str = Field(default=DEFAULT_COLORS["tag"], pattern=COLOR_PATTERN)
    text_color: str = Field(default=DEFAULT_COLORS["text"], pattern=COLOR_PATTERN)
    category: TagCategory = TagCategory.CUSTOM
    description: str = ""
    scope: str = "board"


class ChecklistItem(CamelModel):
    id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    priority: TaskPriority = TaskPriority.MEDIUM
    position: int = Field(..., ge=0)
    estimated_minutes: Optional[int] = Field(default=None, ge=0)


class Checklist(CamelModel):
    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    items: List[ChecklistItem] = Field(default_factory=list)


class BoardSpec(CamelModel):
    """The validated, normalized output of a generation request."""
    board: BoardInfo
    columns: List[BoardColumn] = Field(..., min_length=1)
    tasks: List[BoardTask] = Field(default_factory=list)
    tags: List[BoardTag] = Field(default_factory=list)
    checklists: List[Checklist] = Field(default_factory=list)


# ============================================================================
# REQUEST / RESULT
# ============================================================================

class GenerationOptions(CamelModel):
    max_tokens: int = Field(default=2000, ge=64, le=8192)
    include_checklists: bool = True
    include_tags: bool = True
    moderate_content: bool = True


class GenerationMetadata(CamelModel):
    generated_at: datetime
    pipeline_version: str = PIPELINE_VERSION
    source: str  # ai | fallback
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0


class GenerationResult(CamelModel):
    success: bool
    data: BoardSpec
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    metadata: GenerationMetadata


class GenerateBoardRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=20000)
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class SocketEnvelope(BaseModel):
    """Payload of every success/error event on the AI socket."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def ok(cls, data: Any, message: str = "Success") -> "SocketEnvelope":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, message: str = "An error occurred") -> "SocketEnvelope":
        return cls(success=False, error=error, message=message)
