# backend-server/app/api/v1/endpoints/organizations.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import models, session
from app.core import security
from app.schemas import work as work_schema

logger = logging.getLogger(__name__)

router = APIRouter()

# --- Organizations ---

@router.post("/organizations", response_model=work_schema.Organization, status_code=status.HTTP_201_CREATED)
def create_organization(
    org_in: work_schema.OrganizationCreate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    """ Creates an organization; the creator joins it as its admin. """
    if current_user.organization_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You already belong to an organization.")

    organization = models.Organization(name=org_in.name, description=org_in.description)
    db.add(organization)
    db.flush()
    current_user.organization_id = organization.id
    current_user.role = "admin"
    session.commit_or_400(db)
    db.refresh(organization)
    logger.info(f"Organization {organization.id} created by {current_user.email}")
    return organization

@router.put("/organizations/{organization_id}", response_model=work_schema.Organization)
def update_organization(
    organization_id: str,
    updates: work_schema.OrganizationUpdate,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    if organization_id != admin.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    organization = db.get(models.Organization, organization_id)
    if not organization:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    organization.name = updates.name
    organization.description = updates.description
    session.commit_or_400(db)
    db.refresh(organization)
    return organization

# --- Departments ---

@router.post("/departments", response_model=work_schema.Department, status_code=status.HTTP_201_CREATED)
def create_department(
    department_in: work_schema.DepartmentCreate,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    department = models.Department(name=department_in.name, organization_id=admin.organization_id)
    db.add(department)
    session.commit_or_400(db)
    db.refresh(department)
    return department

@router.put("/departments/{department_id}", response_model=work_schema.Department)
def rename_department(
    department_id: str,
    updates: work_schema.DepartmentUpdate,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    department = get_org_department(db, department_id, admin.organization_id)
    department.name = updates.name
    session.commit_or_400(db)
    db.refresh(department)
    return department

def get_org_department(db: Session, department_id: str, organization_id: str) -> models.Department:
    department = db.get(models.Department, department_id)
    if not department or department.organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Department not found")
    return department

# --- Work allotments ---

@router.post("/work-allotments", response_model=work_schema.WorkAllotment, status_code=status.HTTP_201_CREATED)
def create_work_allotment(
    allotment_in: work_schema.WorkAllotmentCreate,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Date order and a positive target are validated on the request body, before anything is written. """
    if allotment_in.department_id is not None:
        get_org_department(db, allotment_in.department_id, admin.organization_id)

    allotment = models.WorkAllotment(
        title=allotment_in.title,
        description=allotment_in.description,
        organization_id=admin.organization_id,
        department_id=allotment_in.department_id,
        target_hours=allotment_in.target_hours,
        start_date=allotment_in.start_date,
        end_date=allotment_in.end_date,
    )
    db.add(allotment)
    session.commit_or_400(db)
    db.refresh(allotment)
    return allotment
