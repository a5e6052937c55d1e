"""
Router FastAPI per i Progetti
Progetto: Contractor Manager (Gestionale Cantieri)
"""

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.deps import CurrentUserId
from app.schemas.project import ProjectCreate, ProjectRead
from app.services.project_service import ProjectService

# Istanza del service
project_service = ProjectService()

# Router con prefix e tag
router = APIRouter(
    prefix="/projects",
    tags=["Progetti"],
)


@router.post(
    "",
    name="crea_progetto",
    summary="Crea progetto",
    description="Crea un progetto con il costo stimato iniziale.",
    response_model=ProjectRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_project(
    data: ProjectCreate,
    user_id: CurrentUserId,
    db: AsyncSession = Depends(get_db),
) -> ProjectRead:
    return await project_service.create(db=db, data=data, user_id=user_id)


@router.get(
    "/{project_id}",
    name="progetto_dettaglio",
    summary="Dettaglio progetto",
    description="Recupera un progetto con il costo stimato corrente.",
    response_model=ProjectRead,
    status_code=status.HTTP_200_OK,
)
async def get_project(
    user_id: CurrentUserId,
    project_id: str = Path(..., description="ID del progetto"),
    db: AsyncSession = Depends(get_db),
) -> ProjectRead:
    return await project_service.get_by_id(db=db, project_id=project_id, user_id=user_id)
