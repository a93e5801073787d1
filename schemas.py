"""Request and response models.

Update models are partial: every field is optional and handlers write only
``model_dump(exclude_unset=True)``, so an omitted field is left alone while
an explicit ``""`` (or ``null`` on nullable columns) clears it.
"""
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import ApplicationStatus, JobStatus, Role

T = TypeVar("T")


def _reject_null(v):
    if v is None:
        raise ValueError("field cannot be null")
    return v


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Pagination ---
class Page(BaseModel, Generic[T]):
    items: List[T]
    page: int
    limit: int
    totalPages: int
    totalCount: int


# --- Auth ---
class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    # bcrypt only looks at the first 72 bytes
    password: str = Field(min_length=6, max_length=72)
    role: Role = Role.JOB_SEEKER

    @field_validator("role")
    @classmethod
    def no_self_assigned_admin(cls, v: Role) -> Role:
        if v is Role.ADMIN:
            raise ValueError("admin role cannot be self-assigned")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# --- Companies ---
class CompanyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    logo_url: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    logo_url: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class CompanyOut(ORMModel):
    id: int
    name: str
    description: Optional[str] = None
    website: Optional[str] = None
    location: Optional[str] = None
    logo_url: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None


# --- Users ---
class UserSummary(ORMModel):
    id: int
    name: str
    avatar_url: Optional[str] = None


class UserOut(ORMModel):
    id: int
    name: str
    email: str
    role: Role
    bio: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = None
    skills: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    resume_url: Optional[str] = None
    for_hire: bool = False
    followers_count: int = 0
    following_count: int = 0
    company: Optional[CompanyOut] = None
    created_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserOut


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    bio: Optional[str] = None
    location: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    skills: Optional[str] = None
    website: Optional[str] = None
    avatar_url: Optional[str] = None
    resume_url: Optional[str] = None
    for_hire: Optional[bool] = None

    @field_validator("name", "for_hire", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class RoleUpdate(BaseModel):
    role: Role


# --- Jobs ---
class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    location: Optional[str] = None
    job_type: Optional[str] = None
    salary: Optional[str] = None
    experience: Optional[str] = None
    skills: Optional[str] = None


class JobUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    location: Optional[str] = None
    job_type: Optional[str] = None
    salary: Optional[str] = None
    experience: Optional[str] = None
    skills: Optional[str] = None
    status: Optional[JobStatus] = None

    @field_validator("title", "description", "status", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class JobStatusUpdate(BaseModel):
    status: JobStatus


class JobOut(ORMModel):
    id: int
    title: str
    description: str
    company: Optional[CompanyOut] = None
    location: Optional[str] = None
    job_type: Optional[str] = None
    salary: Optional[str] = None
    experience: Optional[str] = None
    skills: Optional[str] = None
    status: JobStatus
    posted_by: int
    created_at: Optional[datetime] = None


# --- Applications ---
class ApplyRequest(BaseModel):
    cover_letter: Optional[str] = None


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus


class ApplicationOut(ORMModel):
    id: int
    job: Optional[JobOut] = None
    user: Optional[UserSummary] = None
    resume_url: str
    cover_letter: Optional[str] = None
    status: ApplicationStatus
    created_at: Optional[datetime] = None


# --- Portfolio ---
class CategoryOut(ORMModel):
    id: int
    name: str
    slug: str
    icon: Optional[str] = None


class ProjectImageOut(ORMModel):
    id: int
    image_url: str
    order: int


class ProjectCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    category_id: int
    tags: Optional[str] = None
    image_urls: List[str] = Field(min_length=1)  # already uploaded


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[str] = None
    category_id: Optional[int] = None

    @field_validator("title", "description", "category_id", mode="before")
    @classmethod
    def not_null(cls, v):
        return _reject_null(v)


class ProjectOut(ORMModel):
    id: int
    title: str
    description: str
    cover_image: Optional[str] = None
    images: List[ProjectImageOut] = []
    owner: Optional[UserSummary] = None
    category: Optional[CategoryOut] = None
    tags: Optional[str] = None
    views: int = 0
    likes_count: int = 0
    is_liked: bool = False
    created_at: Optional[datetime] = None


class CommentCreate(BaseModel):
    content: str = Field(min_length=1)


class CommentOut(ORMModel):
    id: int
    user: Optional[UserSummary] = None
    content: str
    created_at: Optional[datetime] = None


class EdgeOut(BaseModel):
    result: str  # "created" | "removed"
    count: int  # counter on the target after the change


class LikeOut(ORMModel):
    id: int
    user: Optional[UserSummary] = None
    created_at: Optional[datetime] = None


# --- Misc ---
class Message(BaseModel):
    success: bool = True
    message: str


class StatsOut(BaseModel):
    total_users: int
    total_jobs: int
    active_jobs: int
    total_applications: int
    total_projects: int
    total_companies: int
