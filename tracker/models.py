"""
Domain types and request payloads for the progress tracker.

Request payloads enumerate the attributes each action accepts. Every field is
optional at parse time: required-field checks belong to the stores so that
authorization always runs before validation.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Role(str, Enum):
    GUEST = "guest"
    CONTRIBUTOR = "contributor"
    MANAGER = "manager"


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class User(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: Role = Role.GUEST


class Indicator(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    manager_id: Optional[int] = None
    created_at: str
    updated_at: str


class DueDate(BaseModel):
    id: int
    indicator_id: int
    due_date: str
    created_at: str


class ProgressReport(BaseModel):
    id: int
    indicator_id: int
    due_date_id: int
    title: str
    description: Optional[str] = None
    document_url: Optional[str] = None
    document_public: bool = False
    draft: bool = False
    last_modified_user_id: Optional[int] = None
    created_at: str
    updated_at: str


class _Payload(BaseModel):
    # Attributes outside the enumerated set are dropped, never assigned
    model_config = ConfigDict(extra="ignore")


class CreateProgressReportRequest(_Payload):
    indicator_id: Optional[int] = None
    due_date_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    document_url: Optional[str] = None
    document_public: Optional[bool] = None
    draft: Optional[bool] = None


class UpdateProgressReportRequest(_Payload):
    indicator_id: Optional[int] = None
    due_date_id: Optional[int] = None
    title: Optional[str] = None
    description: Optional[str] = None
    document_url: Optional[str] = None
    document_public: Optional[bool] = None
    draft: Optional[bool] = None


class IndicatorRequest(_Payload):
    title: Optional[str] = None
    description: Optional[str] = None
    manager_id: Optional[int] = None


class DueDateRequest(_Payload):
    indicator_id: Optional[int] = None
    due_date: Optional[str] = None
