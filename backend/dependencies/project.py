from fastapi import Depends, HTTPException, Path
from sqlalchemy.orm import Session

from agent.video_agent.types import ProjectMetadata
from dependencies.services import get_db
from operators.project_operator import load_project


def require_project(
    project_id: str = Path(...),
    db: Session = Depends(get_db),
) -> ProjectMetadata:
    project = load_project(db, project_id)

    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    return project
