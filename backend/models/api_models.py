from datetime import datetime

from pydantic import BaseModel, Field

from agent.video_agent.types import ChatMessage, MediaFile, ToolInvocationRecord


class ProjectCreateRequest(BaseModel):
    title: str = Field(default="Untitled project", min_length=1)


class ProjectUpdateRequest(BaseModel):
    title: str = Field(min_length=1)


class ProjectSummary(BaseModel):
    project_id: str
    title: str
    updated_at: datetime
    file_count: int
    thumbnail_path: str | None = None


class ProjectResponse(BaseModel):
    ok: bool
    project_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    files: list[MediaFile] = Field(default_factory=list)
    main_video_id: str | None = None
    current_output: str | None = None
    current_playback_url: str | None = None
    chat_history: list[ChatMessage] = Field(default_factory=list)


class ProjectListResponse(BaseModel):
    ok: bool
    projects: list[ProjectSummary]


class ProjectDeleteResponse(BaseModel):
    ok: bool


class FileUploadResponse(BaseModel):
    ok: bool
    file: MediaFile


class MainVideoRequest(BaseModel):
    file_id: str


class SandboxListingResponse(BaseModel):
    ok: bool
    input: list[str]
    output: list[str]
    text: str


class EditRequestBody(BaseModel):
    message: str = Field(min_length=1, description="Natural language edit request")


class EditResponse(BaseModel):
    ok: bool
    message: str
    tool_invocations: list[ToolInvocationRecord] = Field(default_factory=list)
    current_output: str | None = None
    playback_url: str | None = None
    output_changed: bool = False
    error: str | None = None


class AgentStatusResponse(BaseModel):
    state: str
    progress: int
    error: str | None = None
    model: str
    execution_mode: str


class SettingsResponse(BaseModel):
    theme: str
    notifications_enabled: bool


class SettingsUpdateRequest(BaseModel):
    theme: str | None = Field(default=None, pattern="^(light|dark)$")
    notifications_enabled: bool | None = None
