"""Departments API endpoints."""
from math import ceil
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from taskhub_core import departments, models, schemas
from taskhub_core.api.dependencies import get_current_user

from ...database import get_db

router = APIRouter(tags=["departments"])


@router.post("/", response_model=schemas.DepartmentResponse, status_code=201)
def create_department(
    department: schemas.DepartmentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new department.

    - **organization_id**: Parent organization UUID
    - **name**: Department name (unique within the organization)
    - **manager_id**: User who manages the department
    - **description**: Optional description
    """
    return departments.create_department(db, current_user, department)


@router.get("/", response_model=schemas.DepartmentListResponse)
def list_departments(
    organization_id: UUID = Query(..., description="Organization to list departments of"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    List the active departments of an organization.
    """
    skip = (page - 1) * page_size
    items, total = departments.list_departments(
        db, current_user, organization_id, skip=skip, limit=page_size,
    )
    return schemas.DepartmentListResponse(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=ceil(total / page_size) if total > 0 else 0,
    )


@router.get("/{department_id}", response_model=schemas.DepartmentResponse)
def get_department(
    department_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return departments.get_department(db, current_user, department_id)


@router.put("/{department_id}", response_model=schemas.DepartmentResponse)
def update_department(
    department_id: UUID,
    department_update: schemas.DepartmentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Update a department.

    - **name**: New name (optional)
    - **description**: New description (optional)
    - **manager_id**: New manager (optional)
    """
    return departments.update_department(db, current_user, department_id, department_update)


@router.delete("/{department_id}", response_model=schemas.DepartmentResponse)
def delete_department(
    department_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return departments.soft_delete_department(db, current_user, department_id)


@router.patch("/{department_id}/restore", response_model=schemas.DepartmentResponse)
def restore_department(
    department_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return departments.restore_department(db, current_user, department_id)
