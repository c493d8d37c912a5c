"""Task queue models."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CamelModel(BaseModel):
    """Wire models use camelCase field names; Python code uses snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Attachment(CamelModel):
    """Binary attachment (base64) forwarded to the multimodal executor."""

    data: str = Field(..., min_length=1)
    mime_type: str = Field(default="image/png", min_length=1)
    description: Optional[str] = None

    @field_validator("mime_type", mode="before")
    @classmethod
    def mime_type_strip(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v


class TaskOptions(CamelModel):
    open_files: bool = False
    notify: bool = False


class TaskCreate(CamelModel):
    """Request body for submitting a task.

    ``prompt`` is optional at the schema level so a blank prompt can be reported
    as InvalidRequest (400) instead of a 422 validation error.
    """

    prompt: Optional[str] = None
    attachments: List[Attachment] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attachments", "images"),
    )
    context: Optional[Dict[str, Any]] = None
    options: Optional[TaskOptions] = None

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


class ExecutionResult(CamelModel):
    """Result contract shared by every action executor."""

    success: bool
    message: str
    output: Optional[Any] = None
    error: Optional[str] = None


class QueueState(CamelModel):
    position: int
    total: int
    current_task: Optional[str] = None
    is_processing: bool


class TaskAccepted(CamelModel):
    """202 response for POST /tasks."""

    success: bool = True
    id: str
    status: TaskStatus
    queue_position: int
    message: str
    queue: QueueState


class QueuedTaskItem(CamelModel):
    id: str
    position: int
    task: str


class QueueStatus(CamelModel):
    success: bool = True
    is_processing: bool
    current_task_id: Optional[str] = None
    queue_length: int
    queued_tasks: List[QueuedTaskItem]


class TaskSnapshot(CamelModel):
    """Task as returned by status polling."""

    id: str
    status: TaskStatus
    task: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    queue_position: int
    duration: Optional[int] = Field(default=None, description="Milliseconds from creation to completion")
    attachments: int = 0
    result: Optional[ExecutionResult] = None
    queue: Optional[QueueStatus] = None
