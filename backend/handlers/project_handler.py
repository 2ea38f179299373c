import logging
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from agent.video_agent.types import ProjectMetadata
from dependencies.project import require_project
from dependencies.services import AgentServices, get_db, get_services
from models.api_models import (
    FileUploadResponse,
    MainVideoRequest,
    ProjectCreateRequest,
    ProjectDeleteResponse,
    ProjectListResponse,
    ProjectResponse,
    ProjectSummary,
    ProjectUpdateRequest,
    SandboxListingResponse,
)
from models.media_models import MediaKind
from operators.project_operator import (
    MediaFileInUseError,
    MediaFileNotFoundError,
    create_project,
    delete_project,
    get_main_video,
    import_media,
    list_projects,
    remove_file,
    set_main_video,
    set_title,
)
from utils.backend_client import BackendError
from utils.sandbox import format_sandbox_listing, list_sandbox_files


router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


def _project_response(project: ProjectMetadata) -> ProjectResponse:
    return ProjectResponse(
        ok=True,
        project_id=project.id,
        title=project.title,
        created_at=project.created_at,
        updated_at=project.updated_at,
        files=project.files,
        main_video_id=project.main_video_id,
        current_output=project.current_output,
        current_playback_url=project.current_playback_url,
        chat_history=project.chat_history,
    )


def _title_from_filename(filename: str) -> str:
    return Path(filename).stem or filename


@router.post("", response_model=ProjectResponse)
async def project_create(
    request: ProjectCreateRequest,
    db: Session = Depends(get_db),
    services: AgentServices = Depends(get_services),
):
    try:
        project = await run_in_threadpool(
            create_project, db, request.title, services.backend, services.sandbox_root
        )
    except BackendError as exc:
        db.rollback()
        logger.warning("Remote backend rejected project creation: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    except Exception:
        db.rollback()
        logger.exception("Failed to create project")
        raise HTTPException(status_code=500, detail="Failed to create project")

    return _project_response(project)


@router.get("", response_model=ProjectListResponse)
async def project_list(db: Session = Depends(get_db)):
    try:
        projects = list_projects(db)
    except Exception:
        db.rollback()
        logger.exception("Failed to list projects")
        raise HTTPException(status_code=500, detail="Failed to list projects")

    return ProjectListResponse(
        ok=True,
        projects=[
            ProjectSummary(
                project_id=p.id,
                title=p.title,
                updated_at=p.updated_at,
                file_count=len(p.files),
                thumbnail_path=p.thumbnail_path,
            )
            for p in projects
        ],
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def project_get(project: ProjectMetadata = Depends(require_project)):
    return _project_response(project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def project_update(
    request: ProjectUpdateRequest,
    project: ProjectMetadata = Depends(require_project),
    db: Session = Depends(get_db),
):
    updated = set_title(db, project.id, request.title)
    return _project_response(updated)


@router.delete("/{project_id}", response_model=ProjectDeleteResponse)
async def project_delete(
    project: ProjectMetadata = Depends(require_project),
    db: Session = Depends(get_db),
    services: AgentServices = Depends(get_services),
):
    try:
        delete_project(db, project.id, services.sandbox_root)
    except Exception:
        logger.exception("Failed to delete project %s", project.id)
        raise HTTPException(status_code=500, detail="Failed to delete project")

    return ProjectDeleteResponse(ok=True)


@router.post("/{project_id}/files", response_model=FileUploadResponse)
async def project_upload_file(
    file: UploadFile = File(...),
    file_type: str = Form("video"),
    make_main: bool = Form(False),
    project: ProjectMetadata = Depends(require_project),
    db: Session = Depends(get_db),
    services: AgentServices = Depends(get_services),
):
    try:
        kind = MediaKind(file_type)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file_type: {file_type}. Must be one of: video, image, audio",
        )

    filename = file.filename or f"upload.{'mp4' if kind == MediaKind.VIDEO else 'bin'}"
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        media_file = await run_in_threadpool(
            import_media,
            db,
            project.id,
            content,
            filename,
            kind,
            services.backend,
            services.runner,
            services.sandbox_root,
        )
    except BackendError as exc:
        logger.warning("Upload to remote backend failed for project %s: %s", project.id, exc)
        raise HTTPException(status_code=502, detail=str(exc))

    # The first video becomes the main video unless the caller chose otherwise.
    if kind == MediaKind.VIDEO and (make_main or get_main_video(project) is None):
        set_main_video(db, project.id, media_file.id)
        set_title(db, project.id, _title_from_filename(filename))
        media_file.is_main_video = True

    return FileUploadResponse(ok=True, file=media_file)


@router.delete("/{project_id}/files/{file_id}", response_model=ProjectResponse)
async def project_remove_file(
    file_id: str,
    project: ProjectMetadata = Depends(require_project),
    db: Session = Depends(get_db),
    services: AgentServices = Depends(get_services),
):
    try:
        updated = remove_file(db, project.id, file_id, services.sandbox_root)
    except MediaFileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")
    except MediaFileInUseError:
        raise HTTPException(status_code=409, detail="File is the current output; set another main video first")

    return _project_response(updated)


@router.post("/{project_id}/main-video", response_model=ProjectResponse)
async def project_set_main_video(
    request: MainVideoRequest,
    project: ProjectMetadata = Depends(require_project),
    db: Session = Depends(get_db),
):
    try:
        set_main_video(db, project.id, request.file_id)
    except MediaFileNotFoundError:
        raise HTTPException(status_code=404, detail="File not found")

    target = next(f for f in project.files if f.id == request.file_id)
    updated = set_title(db, project.id, _title_from_filename(target.name))
    return _project_response(updated)


@router.get("/{project_id}/sandbox", response_model=SandboxListingResponse)
async def project_sandbox(
    project: ProjectMetadata = Depends(require_project),
    services: AgentServices = Depends(get_services),
):
    if services.backend is not None:
        try:
            listing = await run_in_threadpool(services.backend.list_files, project.id)
        except BackendError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
    else:
        listing = list_sandbox_files(project.id, services.sandbox_root)

    return SandboxListingResponse(
        ok=True,
        input=listing["input"],
        output=listing["output"],
        text=format_sandbox_listing(listing),
    )
