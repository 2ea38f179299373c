from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from models.media_models import MediaKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    RECOVERABLE = "recoverable"
    USER_INPUT = "user_input"
    VALIDATION = "validation"
    SYSTEM = "system"


class ToolError(BaseModel):
    severity: ErrorSeverity
    code: str
    message: str
    recovery_hint: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "error_code": self.code,
            "severity": self.severity.value,
            "recovery_hint": self.recovery_hint,
            "context": self.context,
        }


class MediaFile(BaseModel):
    id: str
    name: str
    kind: MediaKind
    path: str
    remote_path: str | None = None
    remote_url: str | None = None
    size: int = 0
    added_at: datetime = Field(default_factory=_utcnow)
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    thumbnail_path: str | None = None
    is_main_video: bool = False


class ToolInvocationRecord(BaseModel):
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    success: bool | None = None
    output_path: str | None = None
    output_url: str | None = None


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: f"msg_{uuid4().hex[:12]}")
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    tool_invocations: list[ToolInvocationRecord] = Field(default_factory=list)


class ProjectMetadata(BaseModel):
    id: str
    title: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    files: list[MediaFile] = Field(default_factory=list)
    main_video_id: str | None = None
    current_output: str | None = None
    current_playback_url: str | None = None
    chat_history: list[ChatMessage] = Field(default_factory=list)
    thumbnail_path: str | None = None


class ToolResult(BaseModel):
    success: bool
    message: str
    output_path: str | None = None
    output_url: str | None = None
    # Extracted audio is written beside the video and never becomes the current output.
    is_sibling: bool = False
    error: ToolError | None = None


class ProposedToolCall(BaseModel):
    id: str = Field(default_factory=lambda: f"call_{uuid4().hex[:12]}")
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class CompletionResult(BaseModel):
    text: str = ""
    tool_calls: list[ProposedToolCall] = Field(default_factory=list)


class EditTurnResult(BaseModel):
    project_id: str
    message: str
    tool_invocations: list[ToolInvocationRecord] = Field(default_factory=list)
    current_output: str | None = None
    playback_url: str | None = None
    output_changed: bool = False
    error: str | None = None
