from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import interactions
import models
import schemas
from auth import Principal, RouteClass, Scope, require
from database import SessionLocal, create_db_and_tables, get_db
from errors import AppError, Internal, Unauthenticated, ValidationFailed
from observability import init_observability
from pagination import PageParams, page_params, paginate
from request_id_middleware import RequestIdMiddleware
from settings import get_settings
from tokens import TokenService, get_token_service


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    db = SessionLocal()
    try:
        crud.seed_categories(db)
        settings = get_settings()
        if settings.admin_email and settings.admin_password:
            crud.ensure_admin(db, settings.admin_email, settings.admin_password)
    finally:
        db.close()
    yield


app = FastAPI(
    title="JobConnect",
    description="Backend API for the JobConnect job board and creative portfolio",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# Role-class gates
public = require(RouteClass.PUBLIC)
authenticated = require(RouteClass.AUTHENTICATED)
organization_owner = require(RouteClass.ORGANIZATION_OWNER)
admin_only = require(RouteClass.ADMIN)


# --- Exception Handlers ---
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.http_status, content=exc.to_response(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    field = None
    if details and len(details[0]["loc"]) > 1:
        field = details[0]["loc"][-1]
    error = ValidationFailed("Request validation failed", field=field, details=details)
    return JSONResponse(status_code=error.http_status, content=error.to_response())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    # the driver message may contain table names or SQL, so it stays in the logs
    logger.error("Database error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(status_code=500, content=Internal().to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content=Internal().to_response())


def _page(result: dict, schema) -> dict:
    return {**result, "items": [schema.model_validate(item) for item in result["items"]]}


def _auth_response(user: models.User, tokens: TokenService) -> schemas.AuthResponse:
    return schemas.AuthResponse(
        token=tokens.issue(user.id, user.email, user.role),
        expires_in=int(tokens.ttl.total_seconds()),
        user=schemas.UserOut.model_validate(user),
    )


@app.get("/api/health", tags=["Meta"])
def health():
    return {"status": "ok"}


# --- Auth Endpoints ---
@app.post(
    "/api/auth/register",
    response_model=schemas.AuthResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Auth"],
)
def register_endpoint(
    user: schemas.RegisterRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    db_user = crud.create_user(db=db, user=user)
    return _auth_response(db_user, tokens)


@app.post("/api/auth/login", response_model=schemas.AuthResponse, tags=["Auth"])
def login_endpoint(
    credentials: schemas.LoginRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    user = crud.authenticate_user(db, credentials.email, credentials.password)
    if user is None:
        # same answer for unknown email and wrong password
        logger.info("Login failed")
        raise Unauthenticated("Invalid email or password")
    logger.info("Login succeeded", user_id=user.id)
    return _auth_response(user, tokens)


# --- Profile Endpoints ---
@app.get("/api/profile", response_model=schemas.UserOut, tags=["Profile"])
def get_profile_endpoint(
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.fetch_owned(db, models.User, principal.id, Scope.owned_by(principal))


@app.put("/api/profile", response_model=schemas.UserOut, tags=["Profile"])
def update_profile_endpoint(
    profile: schemas.ProfileUpdate,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.update_profile(db, principal, profile.model_dump(exclude_unset=True))


# --- Job Board Endpoints ---
@app.get("/api/jobs", response_model=schemas.Page[schemas.JobOut], tags=["Jobs"])
def list_jobs_endpoint(
    search: Optional[str] = None,
    job_type: Optional[str] = None,
    location: Optional[str] = None,
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    query = crud.search_jobs(db, search=search, job_type=job_type, location=location)
    result = paginate(query, params, models.Job.created_at.desc(), models.Job.id.desc())
    return _page(result, schemas.JobOut)


@app.get("/api/jobs/{job_id}", response_model=schemas.JobOut, tags=["Jobs"])
def get_job_endpoint(job_id: int, db: Session = Depends(get_db)):
    return crud.get_public_job(db, job_id)


@app.post(
    "/api/jobs/{job_id}/apply",
    response_model=schemas.ApplicationOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Jobs"],
)
def apply_endpoint(
    job_id: int,
    payload: Optional[schemas.ApplyRequest] = None,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    cover_letter = payload.cover_letter if payload else None
    return crud.apply_for_job(db, principal, job_id, cover_letter)


@app.get("/api/my_applications", response_model=List[schemas.ApplicationOut], tags=["Jobs"])
def my_applications_endpoint(
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.get_applications_for_user(db, principal.id)


# --- Employer Endpoints ---
@app.post(
    "/api/employer/company",
    response_model=schemas.CompanyOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Employer"],
)
def create_company_endpoint(
    company: schemas.CompanyCreate,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.create_company_for(db, principal, company)


@app.get("/api/employer/company", response_model=schemas.CompanyOut, tags=["Employer"])
def get_company_endpoint(
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.get_company_for(db, principal)


@app.put("/api/employer/company", response_model=schemas.CompanyOut, tags=["Employer"])
def update_company_endpoint(
    company: schemas.CompanyUpdate,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.update_company_for(db, principal, company.model_dump(exclude_unset=True))


@app.post(
    "/api/employer/jobs",
    response_model=schemas.JobOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Employer"],
)
def create_job_endpoint(
    job: schemas.JobCreate,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.create_job(db, principal, job)


@app.get("/api/employer/jobs", response_model=List[schemas.JobOut], tags=["Employer"])
def employer_jobs_endpoint(
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.get_jobs_for_user(db, Scope.owned_by(principal))


@app.put("/api/employer/jobs/{job_id}", response_model=schemas.JobOut, tags=["Employer"])
def update_job_endpoint(
    job_id: int,
    job: schemas.JobUpdate,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    changes = job.model_dump(exclude_unset=True)
    return crud.update_owned(db, models.Job, job_id, Scope.owned_by(principal), changes)


@app.delete("/api/employer/jobs/{job_id}", response_model=schemas.Message, tags=["Employer"])
def delete_job_endpoint(
    job_id: int,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    crud.delete_owned_or_404(db, models.Job, job_id, Scope.owned_by(principal))
    return schemas.Message(message="Job deleted")


@app.get(
    "/api/employer/jobs/{job_id}/applications",
    response_model=List[schemas.ApplicationOut],
    tags=["Employer"],
)
def job_applications_endpoint(
    job_id: int,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.get_applications_for_job(db, Scope.owned_by(principal), job_id)


@app.put(
    "/api/employer/applications/{application_id}/status",
    response_model=schemas.ApplicationOut,
    tags=["Employer"],
)
def update_application_status_endpoint(
    application_id: int,
    update: schemas.ApplicationStatusUpdate,
    principal: Principal = Depends(organization_owner),
    db: Session = Depends(get_db),
):
    return crud.update_application_status(
        db, Scope.owned_by(principal), application_id, update.status
    )


# --- Admin Endpoints ---
@app.get("/api/admin/users", response_model=schemas.Page[schemas.UserOut], tags=["Admin"])
def admin_users_endpoint(
    role: Optional[models.Role] = None,
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    result = paginate(
        crud.list_users(db, role=role), params, models.User.created_at.desc(), models.User.id.desc()
    )
    return _page(result, schemas.UserOut)


@app.delete("/api/admin/users/{user_id}", response_model=schemas.Message, tags=["Admin"])
def admin_delete_user_endpoint(
    user_id: int,
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    crud.soft_delete_user(db, Scope.admin(principal), user_id)
    return schemas.Message(message="User deleted")


@app.put("/api/admin/users/{user_id}/role", response_model=schemas.UserOut, tags=["Admin"])
def admin_set_role_endpoint(
    user_id: int,
    update: schemas.RoleUpdate,
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    return crud.set_user_role(db, Scope.admin(principal), user_id, update.role)


@app.get("/api/admin/jobs", response_model=schemas.Page[schemas.JobOut], tags=["Admin"])
def admin_jobs_endpoint(
    search: Optional[str] = None,
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    query = crud.search_jobs(db, search=search, include_all_statuses=True)
    result = paginate(query, params, models.Job.created_at.desc(), models.Job.id.desc())
    return _page(result, schemas.JobOut)


@app.put("/api/admin/jobs/{job_id}/status", response_model=schemas.JobOut, tags=["Admin"])
def admin_job_status_endpoint(
    job_id: int,
    update: schemas.JobStatusUpdate,
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    job = crud.update_owned(db, models.Job, job_id, Scope.admin(principal), {"status": update.status})
    logger.info("Job status set by admin", admin_id=principal.id, job_id=job_id, status=update.status.value)
    return job


@app.get(
    "/api/admin/applications",
    response_model=schemas.Page[schemas.ApplicationOut],
    tags=["Admin"],
)
def admin_applications_endpoint(
    params: PageParams = Depends(page_params),
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    result = paginate(
        crud.list_applications(db),
        params,
        models.Application.created_at.desc(),
        models.Application.id.desc(),
    )
    return _page(result, schemas.ApplicationOut)


@app.get("/api/admin/stats", response_model=schemas.StatsOut, tags=["Admin"])
def admin_stats_endpoint(
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    return crud.get_stats(db)


@app.post(
    "/api/admin/projects/{project_id}/recount", response_model=schemas.EdgeOut, tags=["Admin"]
)
def admin_recount_likes_endpoint(
    project_id: int,
    principal: Principal = Depends(admin_only),
    db: Session = Depends(get_db),
):
    count = interactions.recount(db, interactions.LIKE, project_id)
    return schemas.EdgeOut(result="recounted", count=count)


# --- Portfolio Endpoints ---
@app.get("/api/categories", response_model=List[schemas.CategoryOut], tags=["Portfolio"])
def categories_endpoint(db: Session = Depends(get_db)):
    return crud.get_categories(db)


@app.get("/api/projects", response_model=schemas.Page[schemas.ProjectOut], tags=["Portfolio"])
def list_projects_endpoint(
    search: Optional[str] = None,
    category: Optional[str] = Query(None, description="Category slug"),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db),
):
    query = crud.search_projects(db, search=search, category_slug=category)
    result = paginate(query, params, models.Project.created_at.desc(), models.Project.id.desc())
    return _page(result, schemas.ProjectOut)


@app.post(
    "/api/projects",
    response_model=schemas.ProjectOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Portfolio"],
)
def create_project_endpoint(
    project: schemas.ProjectCreate,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.create_project(db, principal, project)


@app.get("/api/my_projects", response_model=List[schemas.ProjectOut], tags=["Portfolio"])
def my_projects_endpoint(
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.get_projects_for_user(db, Scope.owned_by(principal))


@app.get("/api/projects/{project_id}", response_model=schemas.ProjectOut, tags=["Portfolio"])
def get_project_endpoint(
    project_id: int,
    principal: Optional[Principal] = Depends(public),
    db: Session = Depends(get_db),
):
    project = crud.get_live_project(db, project_id)
    interactions.record_view(db, project_id)
    out = schemas.ProjectOut.model_validate(project)
    if principal is not None:
        out.is_liked = interactions.has_edge(db, interactions.LIKE, principal.id, project_id)
    return out


@app.put("/api/projects/{project_id}", response_model=schemas.ProjectOut, tags=["Portfolio"])
def update_project_endpoint(
    project_id: int,
    project: schemas.ProjectUpdate,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    changes = project.model_dump(exclude_unset=True)
    return crud.update_project(db, Scope.for_principal(principal), project_id, changes)


@app.delete("/api/projects/{project_id}", response_model=schemas.Message, tags=["Portfolio"])
def delete_project_endpoint(
    project_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    crud.delete_owned_or_404(db, models.Project, project_id, Scope.for_principal(principal))
    return schemas.Message(message="Project deleted")


@app.post(
    "/api/projects/{project_id}/like",
    response_model=schemas.EdgeOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Portfolio"],
)
def like_project_endpoint(
    project_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    result = interactions.add_edge(db, interactions.LIKE, principal.id, project_id)
    count = interactions.counter_value(db, interactions.LIKE, project_id)
    return schemas.EdgeOut(result=result.value, count=count)


@app.delete("/api/projects/{project_id}/like", response_model=schemas.EdgeOut, tags=["Portfolio"])
def unlike_project_endpoint(
    project_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    result = interactions.remove_edge(db, interactions.LIKE, principal.id, project_id)
    count = interactions.counter_value(db, interactions.LIKE, project_id)
    return schemas.EdgeOut(result=result.value, count=count)


@app.get(
    "/api/projects/{project_id}/likes",
    response_model=List[schemas.LikeOut],
    tags=["Portfolio"],
)
def project_likes_endpoint(project_id: int, db: Session = Depends(get_db)):
    crud.get_live_project(db, project_id)
    return interactions.get_likes(db, project_id)


@app.get(
    "/api/projects/{project_id}/comments",
    response_model=List[schemas.CommentOut],
    tags=["Portfolio"],
)
def project_comments_endpoint(project_id: int, db: Session = Depends(get_db)):
    return crud.get_comments(db, project_id)


@app.post(
    "/api/projects/{project_id}/comments",
    response_model=schemas.CommentOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Portfolio"],
)
def add_comment_endpoint(
    project_id: int,
    comment: schemas.CommentCreate,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    return crud.add_comment(db, principal, project_id, comment.content)


@app.delete("/api/comments/{comment_id}", response_model=schemas.Message, tags=["Portfolio"])
def delete_comment_endpoint(
    comment_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    crud.delete_owned_or_404(db, models.Comment, comment_id, Scope.for_principal(principal))
    return schemas.Message(message="Comment deleted")


# --- Follow Endpoints ---
@app.post(
    "/api/users/{user_id}/follow",
    response_model=schemas.EdgeOut,
    status_code=status.HTTP_201_CREATED,
    tags=["Follows"],
)
def follow_endpoint(
    user_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    result = interactions.add_edge(db, interactions.FOLLOW, principal.id, user_id)
    count = interactions.counter_value(db, interactions.FOLLOW, user_id)
    return schemas.EdgeOut(result=result.value, count=count)


@app.delete("/api/users/{user_id}/follow", response_model=schemas.EdgeOut, tags=["Follows"])
def unfollow_endpoint(
    user_id: int,
    principal: Principal = Depends(authenticated),
    db: Session = Depends(get_db),
):
    result = interactions.remove_edge(db, interactions.FOLLOW, principal.id, user_id)
    count = interactions.counter_value(db, interactions.FOLLOW, user_id)
    return schemas.EdgeOut(result=result.value, count=count)


@app.get("/api/users/{user_id}/followers", response_model=List[schemas.UserSummary], tags=["Follows"])
def followers_endpoint(user_id: int, db: Session = Depends(get_db)):
    crud.get_user_or_404(db, user_id)
    return interactions.get_followers(db, user_id)


@app.get("/api/users/{user_id}/following", response_model=List[schemas.UserSummary], tags=["Follows"])
def following_endpoint(user_id: int, db: Session = Depends(get_db)):
    crud.get_user_or_404(db, user_id)
    return interactions.get_following(db, user_id)


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
