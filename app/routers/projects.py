"""Project listing endpoints (the minimal records purchases are made against)."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.project import Project
from app.schemas.project import ProjectCreate, ProjectRead
from app.security import Actor, get_actor
from app.utils.audit import log_audit
from app.utils.errors import error_response

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> Project:
    """List a project for sale; the caller becomes the seller."""

    project = Project(owner_id=actor.user_id, **payload.model_dump())
    db.add(project)
    db.flush()
    log_audit(
        db,
        actor=actor.label,
        action="CREATE_PROJECT",
        entity="Project",
        entity_id=project.id,
        data={"price": str(project.price), "currency": project.currency},
    )
    db.commit()
    db.refresh(project)
    return project


@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    project_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("PROJECT_NOT_FOUND", "Project not found."),
        )
    return project
