"""Data access for users, companies, jobs, applications and projects.

Every read or write on an owned row goes through ``fetch_owned``,
``update_owned`` or ``soft_delete_owned``. The owner predicate is part of
the query that touches the row, so "missing" and "not yours" both come back
as NotFound and there is no gap between checking ownership and acting.
"""
from typing import Any, Optional

import structlog
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import interactions
import models
import schemas
from auth import Principal, Scope
from errors import AlreadyExists, Conflict, NotFound, ValidationFailed
from passwords import hash_password, verify_password
from tokens import utc_now

logger = structlog.get_logger(__name__)


# Column holding the owning user's id, per owned model
OWNER_COLUMNS = {
    models.User: models.User.id,
    models.Job: models.Job.posted_by,
    models.Project: models.Project.user_id,
    models.Comment: models.Comment.user_id,
}

RESOURCE_NAMES = {
    models.User: "User",
    models.Job: "Job",
    models.Project: "Project",
    models.Comment: "Comment",
}


# --- Ownership-scoped primitives ---
def fetch_owned(db: Session, model, resource_id: int, scope: Scope, lock: bool = False):
    """Load a live row by id under the caller's ownership scope."""
    query = db.query(model).filter(model.id == resource_id, model.deleted_at.is_(None))
    query = scope.apply(query, OWNER_COLUMNS[model])
    if lock:
        query = query.with_for_update()
    row = query.first()
    if row is None:
        logger.info(
            "Owned fetch missed",
            resource=RESOURCE_NAMES[model],
            resource_id=resource_id,
            user_id=scope.principal.id,
        )
        raise NotFound(RESOURCE_NAMES[model])
    return row


def update_owned(db: Session, model, resource_id: int, scope: Scope, changes: dict[str, Any]):
    """Apply a partial update to an owned row.

    ``changes`` is a presence map: only its keys are written, and an explicit
    empty value clears the column.
    """
    row = fetch_owned(db, model, resource_id, scope, lock=True)
    for field, value in changes.items():
        setattr(row, field, value)
    db.commit()
    db.refresh(row)
    logger.info(
        "Owned row updated",
        resource=RESOURCE_NAMES[model],
        resource_id=resource_id,
        fields=sorted(changes),
    )
    return row


def soft_delete_owned(db: Session, model, resource_id: int, scope: Scope) -> int:
    """Tombstone an owned row; returns the number of rows affected (0 or 1)."""
    stmt = update(model).where(model.id == resource_id, model.deleted_at.is_(None))
    owner_clause = scope.predicate(OWNER_COLUMNS[model])
    if owner_clause is not None:
        stmt = stmt.where(owner_clause)
    stmt = stmt.values(deleted_at=utc_now()).execution_options(synchronize_session=False)
    result = db.execute(stmt)
    db.commit()
    return result.rowcount


def delete_owned_or_404(db: Session, model, resource_id: int, scope: Scope) -> None:
    if soft_delete_owned(db, model, resource_id, scope) == 0:
        raise NotFound(RESOURCE_NAMES[model])
    logger.info(
        "Owned row soft-deleted",
        resource=RESOURCE_NAMES[model],
        resource_id=resource_id,
        user_id=scope.principal.id,
    )


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: int) -> Optional[models.User]:
    """Get a live user by their primary key ID."""
    return (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.deleted_at.is_(None))
        .first()
    )


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.email == email.lower(), models.User.deleted_at.is_(None))
        .first()
    )


def get_user_or_404(db: Session, user_id: int) -> models.User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFound("User")
    return user


def create_user(
    db: Session,
    user: schemas.RegisterRequest,
    role: Optional[models.Role] = None,
) -> models.User:
    email = user.email.lower()
    # emails stay reserved even after an account is soft-deleted
    if db.query(models.User.id).filter(models.User.email == email).first():
        raise AlreadyExists("Email already registered", field="email")

    db_user = models.User(
        name=user.name,
        email=email,
        password_hash=hash_password(user.password),
        role=role or user.role,
    )
    db.add(db_user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyExists("Email already registered", field="email")
    db.refresh(db_user)
    logger.info("User registered", user_id=db_user.id, role=db_user.role.value)
    return db_user


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def update_profile(db: Session, principal: Principal, changes: dict[str, Any]) -> models.User:
    return update_owned(db, models.User, principal.id, Scope.owned_by(principal), changes)


def set_user_role(db: Session, scope: Scope, user_id: int, role: models.Role) -> models.User:
    """Administrative role change; the only path that mutates a role."""
    if scope.principal.id == user_id:
        raise ValidationFailed("Admins cannot change their own role", field="role")
    user = update_owned(db, models.User, user_id, scope, {"role": role})
    logger.info(
        "Role changed",
        admin_id=scope.principal.id,
        user_id=user_id,
        role=role.value,
    )
    return user


def soft_delete_user(db: Session, scope: Scope, user_id: int) -> None:
    """Tombstone a user and everything they own, in one transaction."""
    if scope.principal.id == user_id:
        raise ValidationFailed("Admins cannot delete their own account")

    now = utc_now()
    stmt = (
        update(models.User)
        .where(models.User.id == user_id, models.User.deleted_at.is_(None))
        .values(deleted_at=now)
        .execution_options(synchronize_session=False)
    )
    owner_clause = scope.predicate(models.User.id)
    if owner_clause is not None:
        stmt = stmt.where(owner_clause)
    if db.execute(stmt).rowcount == 0:
        db.rollback()
        raise NotFound("User")

    for model, owner_column in (
        (models.Job, models.Job.posted_by),
        (models.Project, models.Project.user_id),
        (models.Comment, models.Comment.user_id),
    ):
        db.execute(
            update(model)
            .where(owner_column == user_id, model.deleted_at.is_(None))
            .values(deleted_at=now)
            .execution_options(synchronize_session=False)
        )
    interactions.drop_user_edges(db, user_id)
    db.commit()
    logger.info("User soft-deleted", admin_id=scope.principal.id, user_id=user_id)


def ensure_admin(db: Session, email: str, password: str) -> models.User:
    existing = db.query(models.User).filter(models.User.email == email.lower()).first()
    if existing:
        logger.info("Admin user already exists", email=existing.email)
        return existing
    admin = models.User(
        name="Admin User",
        email=email.lower(),
        password_hash=hash_password(password),
        role=models.Role.ADMIN,
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    logger.info("Admin user created", user_id=admin.id)
    return admin


def list_users(db: Session, role: Optional[models.Role] = None):
    query = db.query(models.User).filter(models.User.deleted_at.is_(None))
    if role is not None:
        query = query.filter(models.User.role == role)
    return query


# --- Company CRUD ---
def create_company_for(db: Session, principal: Principal, data: schemas.CompanyCreate) -> models.Company:
    """Create a company and link it to the caller, who must not have one yet."""
    company = models.Company(**data.model_dump())
    db.add(company)
    db.flush()

    # Conditional update keeps the link write-once even under concurrent requests
    linked = db.execute(
        update(models.User)
        .where(
            models.User.id == principal.id,
            models.User.company_id.is_(None),
            models.User.deleted_at.is_(None),
        )
        .values(company_id=company.id)
        .execution_options(synchronize_session=False)
    ).rowcount
    if linked == 0:
        db.rollback()
        raise Conflict("You already have a company profile")
    db.commit()
    db.refresh(company)
    logger.info("Company created", company_id=company.id, user_id=principal.id)
    return company


def _own_company_query(db: Session, principal: Principal):
    return (
        db.query(models.Company)
        .join(models.User, models.User.company_id == models.Company.id)
        .filter(models.User.id == principal.id, models.User.deleted_at.is_(None))
    )


def get_company_for(db: Session, principal: Principal) -> models.Company:
    company = _own_company_query(db, principal).first()
    if company is None:
        raise NotFound("Company")
    return company


def update_company_for(db: Session, principal: Principal, changes: dict[str, Any]) -> models.Company:
    company = _own_company_query(db, principal).with_for_update().first()
    if company is None:
        raise NotFound("Company")
    for field, value in changes.items():
        setattr(company, field, value)
    db.commit()
    db.refresh(company)
    return company


# --- Job CRUD ---
def create_job(db: Session, principal: Principal, job: schemas.JobCreate) -> models.Job:
    user = get_user_or_404(db, principal.id)
    if user.company_id is None:
        raise ValidationFailed("Please create a company profile first", field="company")

    db_job = models.Job(
        **job.model_dump(),
        company_id=user.company_id,
        posted_by=user.id,
        status=models.JobStatus.ACTIVE,
    )
    db.add(db_job)
    db.commit()
    db.refresh(db_job)
    logger.info("Job created", job_id=db_job.id, user_id=user.id)
    return db_job


def search_jobs(
    db: Session,
    search: Optional[str] = None,
    job_type: Optional[str] = None,
    location: Optional[str] = None,
    include_all_statuses: bool = False,
):
    query = db.query(models.Job).filter(models.Job.deleted_at.is_(None))
    if not include_all_statuses:
        query = query.filter(models.Job.status == models.JobStatus.ACTIVE)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(models.Job.title.ilike(pattern), models.Job.description.ilike(pattern))
        )
    if job_type:
        query = query.filter(models.Job.job_type == job_type)
    if location:
        query = query.filter(models.Job.location.ilike(f"%{location}%"))
    return query


def get_public_job(db: Session, job_id: int) -> models.Job:
    job = (
        db.query(models.Job)
        .filter(models.Job.id == job_id, models.Job.deleted_at.is_(None))
        .first()
    )
    if job is None:
        raise NotFound("Job")
    return job


def get_jobs_for_user(db: Session, scope: Scope) -> list[models.Job]:
    """Retrieves all live jobs posted by the scope's owner."""
    query = scope.apply(
        db.query(models.Job).filter(models.Job.deleted_at.is_(None)),
        models.Job.posted_by,
    )
    return query.order_by(models.Job.created_at.desc(), models.Job.id.desc()).all()


# --- Application CRUD ---
def apply_for_job(db: Session, principal: Principal, job_id: int, cover_letter: Optional[str]) -> models.Application:
    user = get_user_or_404(db, principal.id)
    if not user.resume_url:
        raise ValidationFailed("Please upload your resume first", field="resume_url")

    job = (
        db.query(models.Job)
        .filter(
            models.Job.id == job_id,
            models.Job.status == models.JobStatus.ACTIVE,
            models.Job.deleted_at.is_(None),
        )
        .first()
    )
    if job is None:
        raise NotFound("Job")

    existing = (
        db.query(models.Application.id)
        .filter(models.Application.job_id == job_id, models.Application.user_id == user.id)
        .first()
    )
    if existing:
        raise AlreadyExists("You have already applied for this job")

    application = models.Application(
        job_id=job.id,
        user_id=user.id,
        resume_url=user.resume_url,
        cover_letter=cover_letter,
        status=models.ApplicationStatus.PENDING,
    )
    db.add(application)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyExists("You have already applied for this job")
    db.refresh(application)
    logger.info("Application submitted", application_id=application.id, job_id=job.id)
    return application


def get_applications_for_user(db: Session, user_id: int) -> list[models.Application]:
    return (
        db.query(models.Application)
        .filter(models.Application.user_id == user_id)
        .order_by(models.Application.created_at.desc(), models.Application.id.desc())
        .all()
    )


def get_applications_for_job(db: Session, scope: Scope, job_id: int) -> list[models.Application]:
    job = fetch_owned(db, models.Job, job_id, scope)
    return (
        db.query(models.Application)
        .filter(models.Application.job_id == job.id)
        .order_by(models.Application.created_at.desc(), models.Application.id.desc())
        .all()
    )


def update_application_status(
    db: Session,
    scope: Scope,
    application_id: int,
    status: models.ApplicationStatus,
) -> models.Application:
    # ownership runs through the parent job, in the same query
    query = (
        db.query(models.Application)
        .join(models.Job, models.Application.job_id == models.Job.id)
        .filter(models.Application.id == application_id, models.Job.deleted_at.is_(None))
    )
    application = scope.apply(query, models.Job.posted_by).first()
    if application is None:
        raise NotFound("Application")
    application.status = status
    db.commit()
    db.refresh(application)
    logger.info(
        "Application status updated",
        application_id=application.id,
        status=status.value,
    )
    return application


def list_applications(db: Session):
    return db.query(models.Application)


# --- Portfolio CRUD ---
DEFAULT_CATEGORIES = [
    ("Graphic Design", "graphic-design", "palette"),
    ("Illustration", "illustration", "brush"),
    ("Photography", "photography", "camera"),
    ("UI/UX", "ui-ux", "layout"),
    ("Motion", "motion", "film"),
    ("3D Art", "3d-art", "cube"),
]


def seed_categories(db: Session) -> None:
    existing = {slug for (slug,) in db.query(models.Category.slug).all()}
    for name, slug, icon in DEFAULT_CATEGORIES:
        if slug not in existing:
            db.add(models.Category(name=name, slug=slug, icon=icon))
    db.commit()


def get_categories(db: Session) -> list[models.Category]:
    return db.query(models.Category).order_by(models.Category.name).all()


def _require_category(db: Session, category_id: int) -> models.Category:
    category = db.get(models.Category, category_id)
    if category is None:
        raise ValidationFailed("Unknown category", field="category_id")
    return category


def create_project(db: Session, principal: Principal, data: schemas.ProjectCreate) -> models.Project:
    get_user_or_404(db, principal.id)
    _require_category(db, data.category_id)
    project = models.Project(
        title=data.title,
        description=data.description,
        user_id=principal.id,
        category_id=data.category_id,
        tags=data.tags,
        cover_image=data.image_urls[0],  # first image is the cover
    )
    project.images = [
        models.ProjectImage(image_url=url, order=i) for i, url in enumerate(data.image_urls)
    ]
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("Project created", project_id=project.id, user_id=principal.id)
    return project


def update_project(db: Session, scope: Scope, project_id: int, changes: dict[str, Any]) -> models.Project:
    if "category_id" in changes:
        _require_category(db, changes["category_id"])
    return update_owned(db, models.Project, project_id, scope, changes)


def search_projects(db: Session, search: Optional[str] = None, category_slug: Optional[str] = None):
    query = db.query(models.Project).filter(models.Project.deleted_at.is_(None))
    if category_slug:
        # an unknown slug leaves the listing unfiltered
        category = db.query(models.Category).filter(models.Category.slug == category_slug).first()
        if category is not None:
            query = query.filter(models.Project.category_id == category.id)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Project.title.ilike(pattern),
                models.Project.description.ilike(pattern),
                models.Project.tags.ilike(pattern),
            )
        )
    return query


def get_live_project(db: Session, project_id: int) -> models.Project:
    project = (
        db.query(models.Project)
        .filter(models.Project.id == project_id, models.Project.deleted_at.is_(None))
        .first()
    )
    if project is None:
        raise NotFound("Project")
    return project


def get_projects_for_user(db: Session, scope: Scope) -> list[models.Project]:
    query = scope.apply(
        db.query(models.Project).filter(models.Project.deleted_at.is_(None)),
        models.Project.user_id,
    )
    return query.order_by(models.Project.created_at.desc(), models.Project.id.desc()).all()


def add_comment(db: Session, principal: Principal, project_id: int, content: str) -> models.Comment:
    get_user_or_404(db, principal.id)
    project = get_live_project(db, project_id)
    comment = models.Comment(user_id=principal.id, project_id=project.id, content=content)
    db.add(comment)
    db.commit()
    db.refresh(comment)
    return comment


def get_comments(db: Session, project_id: int) -> list[models.Comment]:
    get_live_project(db, project_id)
    return (
        db.query(models.Comment)
        .filter(models.Comment.project_id == project_id, models.Comment.deleted_at.is_(None))
        .order_by(models.Comment.created_at.desc(), models.Comment.id.desc())
        .all()
    )


# --- Admin ---
def get_stats(db: Session) -> schemas.StatsOut:
    def count(query) -> int:
        return query.scalar() or 0

    return schemas.StatsOut(
        total_users=count(db.query(func.count(models.User.id)).filter(models.User.deleted_at.is_(None))),
        total_jobs=count(db.query(func.count(models.Job.id)).filter(models.Job.deleted_at.is_(None))),
        active_jobs=count(
            db.query(func.count(models.Job.id)).filter(
                models.Job.deleted_at.is_(None),
                models.Job.status == models.JobStatus.ACTIVE,
            )
        ),
        total_applications=count(db.query(func.count(models.Application.id))),
        total_projects=count(
            db.query(func.count(models.Project.id)).filter(models.Project.deleted_at.is_(None))
        ),
        total_companies=count(db.query(func.count(models.Company.id))),
    )
