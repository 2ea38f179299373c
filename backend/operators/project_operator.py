import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, TypeVar
from uuid import uuid4

from sqlalchemy.orm import Session as DBSession

from agent.video_agent.types import ChatMessage, MediaFile, MessageRole, ProjectMetadata, ToolInvocationRecord
from database.models import ProjectRecord
from models.media_models import MediaInfo, MediaKind
from utils.backend_client import BackendClient
from utils.ffmpeg_exec import MediaRunner, generate_thumbnail
from utils.sandbox import delete_sandbox, ensure_sandbox, store_input_file, thumbnails_dir

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProjectNotFoundError(Exception):
    pass


class MediaFileNotFoundError(Exception):
    pass


class MediaFileInUseError(Exception):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}_{uuid4().hex[:7]}"


def _get_record(db: DBSession, project_id: str, for_update: bool = False) -> ProjectRecord | None:
    query = db.query(ProjectRecord).filter(ProjectRecord.project_id == project_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def _to_project(record: ProjectRecord) -> ProjectMetadata:
    return ProjectMetadata.model_validate(record.data)


def _write(record: ProjectRecord, project: ProjectMetadata) -> None:
    record.title = project.title
    record.data = project.model_dump(mode="json")
    record.updated_at = project.updated_at


def load_project(db: DBSession, project_id: str) -> ProjectMetadata | None:
    record = _get_record(db, project_id)
    return _to_project(record) if record else None


def get_project(db: DBSession, project_id: str) -> ProjectMetadata:
    project = load_project(db, project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


def save_project(db: DBSession, project: ProjectMetadata) -> ProjectMetadata:
    record = _get_record(db, project.id, for_update=True)
    if record is None:
        record = ProjectRecord(project_id=project.id, created_at=project.created_at)
        db.add(record)
    _write(record, project)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return project


def create_project(
    db: DBSession,
    title: str,
    backend: BackendClient | None = None,
    sandbox_root: str | Path | None = None,
) -> ProjectMetadata:
    now = _now()
    project = ProjectMetadata(id=_new_id("proj"), title=title, created_at=now, updated_at=now)
    ensure_sandbox(project.id, sandbox_root)
    if backend is not None:
        backend.ensure_project(project.id, title)
    save_project(db, project)
    logger.info("Created project %s", project.id)
    return project


def list_projects(db: DBSession) -> list[ProjectMetadata]:
    records = db.query(ProjectRecord).order_by(ProjectRecord.updated_at.desc()).all()
    return [_to_project(r) for r in records]


def delete_project(db: DBSession, project_id: str, sandbox_root: str | Path | None = None) -> bool:
    record = _get_record(db, project_id)
    if record is None:
        return False
    try:
        db.delete(record)
        db.commit()
    except Exception:
        db.rollback()
        raise
    delete_sandbox(project_id, sandbox_root)
    return True


def _mutate(db: DBSession, project_id: str, apply: Callable[[ProjectMetadata], T]) -> ProjectMetadata:
    """Load, change, bump ``updated_at`` and commit in one transaction."""
    record = _get_record(db, project_id, for_update=True)
    if record is None:
        db.rollback()
        raise ProjectNotFoundError(f"Project {project_id} not found")
    project = _to_project(record)
    try:
        apply(project)
    except Exception:
        db.rollback()
        raise
    project.updated_at = _now()
    _write(record, project)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return project


def _find_file(project: ProjectMetadata, file_id: str) -> MediaFile:
    for media_file in project.files:
        if media_file.id == file_id:
            return media_file
    raise MediaFileNotFoundError(f"File {file_id} not found in project {project.id}")


def best_reference(media_file: MediaFile) -> str:
    return media_file.remote_path or media_file.remote_url or media_file.path


def get_main_video(project: ProjectMetadata) -> MediaFile | None:
    if not project.main_video_id:
        return None
    return next((f for f in project.files if f.id == project.main_video_id), None)


def active_input_reference(project: ProjectMetadata) -> str | None:
    if project.current_output:
        return project.current_output
    main_video = get_main_video(project)
    return best_reference(main_video) if main_video else None


def add_file(db: DBSession, project_id: str, media_file: MediaFile) -> ProjectMetadata:
    def apply(project: ProjectMetadata) -> None:
        media_file.is_main_video = False
        project.files.append(media_file)

    return _mutate(db, project_id, apply)


def set_main_video(db: DBSession, project_id: str, file_id: str) -> ProjectMetadata:
    def apply(project: ProjectMetadata) -> None:
        target = _find_file(project, file_id)
        for media_file in project.files:
            media_file.is_main_video = media_file.id == file_id
        project.main_video_id = file_id
        project.current_output = best_reference(target)
        project.current_playback_url = target.remote_url or target.path
        if target.thumbnail_path:
            project.thumbnail_path = target.thumbnail_path

    return _mutate(db, project_id, apply)


def append_message(
    db: DBSession,
    project_id: str,
    role: MessageRole,
    content: str,
    tool_invocations: list[ToolInvocationRecord] | None = None,
) -> ChatMessage:
    message = ChatMessage(role=role, content=content, tool_invocations=tool_invocations or [])
    _mutate(db, project_id, lambda project: project.chat_history.append(message))
    return message


def set_current_output(
    db: DBSession,
    project_id: str,
    reference: str,
    playback_url: str | None = None,
) -> ProjectMetadata:
    if not reference:
        raise ValueError("Output reference must not be empty")

    def apply(project: ProjectMetadata) -> None:
        project.current_output = reference
        if playback_url:
            project.current_playback_url = playback_url

    return _mutate(db, project_id, apply)


def set_title(db: DBSession, project_id: str, title: str) -> ProjectMetadata:
    def apply(project: ProjectMetadata) -> None:
        project.title = title

    return _mutate(db, project_id, apply)


def remove_file(
    db: DBSession,
    project_id: str,
    file_id: str,
    sandbox_root: str | Path | None = None,
) -> ProjectMetadata:
    removed: list[MediaFile] = []

    def apply(project: ProjectMetadata) -> None:
        target = _find_file(project, file_id)
        if project.current_output and project.current_output in (
            target.path,
            target.remote_path,
            target.remote_url,
        ):
            raise MediaFileInUseError(f"File {file_id} backs the current output of project {project.id}")
        project.files = [f for f in project.files if f.id != file_id]
        if project.main_video_id == file_id:
            project.main_video_id = None
        removed.append(target)

    project = _mutate(db, project_id, apply)
    for media_file in removed:
        for path in (media_file.path, media_file.thumbnail_path):
            if path:
                Path(path).unlink(missing_ok=True)
    return project


def update_file_media_info(db: DBSession, project_id: str, file_id: str, info: MediaInfo) -> ProjectMetadata:
    def apply(project: ProjectMetadata) -> None:
        media_file = _find_file(project, file_id)
        media_file.duration = info.duration
        media_file.width = info.width
        media_file.height = info.height

    return _mutate(db, project_id, apply)


def import_media(
    db: DBSession,
    project_id: str,
    source: bytes | str | Path,
    filename: str,
    kind: MediaKind,
    backend: BackendClient | None = None,
    runner: MediaRunner | None = None,
    sandbox_root: str | Path | None = None,
) -> MediaFile:
    """Copy media into the sandbox, upload it when remote, and register it."""
    project = get_project(db, project_id)
    file_id = _new_id("file")
    stored = store_input_file(project_id, source, file_id, filename, sandbox_root)
    media_file = MediaFile(
        id=file_id,
        name=filename,
        kind=kind,
        path=str(stored),
        size=stored.stat().st_size,
    )

    if backend is not None:
        backend.ensure_project(project_id, project.title)
        upload = backend.upload_file(project_id, stored, filename, kind.value)
        media_file.remote_path = upload.remote_path
        media_file.remote_url = upload.remote_url

    if runner is not None and kind == MediaKind.VIDEO:
        info = runner.probe(str(stored))
        if info is not None:
            media_file.duration = info.duration
            media_file.width = info.width
            media_file.height = info.height
        thumbnail = thumbnails_dir(project_id, sandbox_root) / f"{file_id}.jpg"
        media_file.thumbnail_path = generate_thumbnail(runner, str(stored), str(thumbnail))

    add_file(db, project_id, media_file)
    logger.info("Imported %s into project %s as %s", filename, project_id, file_id)
    return media_file
