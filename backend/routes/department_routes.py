from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import require_role
from backend.core.errors import DATABASE_UNAVAILABLE_MESSAGE, ConflictError, NotFoundError, UnavailableError
from backend.database import get_db
from backend.models.department import Department
from backend.models.faculty import Faculty
from backend.models.user import ROLE_ADMIN, User

router = APIRouter(tags=['departments'])


class DepartmentRequest(BaseModel):
    name: str
    description: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Please provide department name.')
        return normalized

    @field_validator('description')
    @classmethod
    def validate_description(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class DepartmentResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


def get_department_or_404(db: Session, department_id: int) -> Department:
    department = db.get(Department, department_id)
    if department is None:
        raise NotFoundError('Department not found')
    return department


def commit_department(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError('A department with this name already exists.') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise UnavailableError(DATABASE_UNAVAILABLE_MESSAGE) from exc


@router.get('', response_model=list[DepartmentResponse])
def list_departments(db: Session = Depends(get_db)):
    return db.query(Department).order_by(Department.name.asc()).all()


@router.get('/{department_id}', response_model=DepartmentResponse)
def get_department(department_id: int, db: Session = Depends(get_db)):
    return get_department_or_404(db, department_id)


@router.post('', response_model=DepartmentResponse, status_code=status.HTTP_201_CREATED)
def create_department(
    data: DepartmentRequest,
    current_user: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    department = Department(name=data.name, description=data.description)
    db.add(department)
    commit_department(db)
    db.refresh(department)
    return department


@router.put('/{department_id}', response_model=DepartmentResponse)
def update_department(
    department_id: int,
    data: DepartmentRequest,
    current_user: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    department = get_department_or_404(db, department_id)
    department.name = data.name
    department.description = data.description
    commit_department(db)
    db.refresh(department)
    return department


@router.delete('/{department_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_department(
    department_id: int,
    current_user: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    department = get_department_or_404(db, department_id)
    if db.query(Faculty).filter(Faculty.department_id == department.id).first():
        raise ConflictError('Department still has faculty members assigned.')

    db.delete(department)
    commit_department(db)
