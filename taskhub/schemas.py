from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from taskhub.models import TaskPriority, TaskStatus
from taskhub.utils import parse_due_date


class CamelModel(BaseModel):
    # Wire format is camelCase, python side keeps snake_case names
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True
    )


# -------------------------
# AUTH
# -------------------------
class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserPublic(CamelModel):
    id: str
    name: str
    email: str


# -------------------------
# TASKS
# -------------------------
class TaskCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    due_date: datetime
    priority: TaskPriority
    status: Optional[TaskStatus] = None
    assigned_to_id: Optional[str] = None

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due(cls, value):
        return parse_due_date(value)


class TaskUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1)
    due_date: Optional[datetime] = None
    priority: Optional[TaskPriority] = None
    status: Optional[TaskStatus] = None
    # explicit null unassigns
    assigned_to_id: Optional[str] = None

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due(cls, value):
        if value is None:
            return value
        return parse_due_date(value)

    @field_validator("title", "description", "due_date", "priority", "status")
    @classmethod
    def not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    def supplied(self) -> dict:
        """Only the fields the caller actually sent, keyed by column name."""
        return {name: getattr(self, name) for name in self.model_fields_set}


SortKey = Literal["createdAt", "dueDate", "priority", "status"]
SortOrder = Literal["asc", "desc"]


class TaskQuery(BaseModel):
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assigned_to_id: Optional[str] = None
    creator_id: Optional[str] = None
    sort_by: Optional[SortKey] = None
    order: Optional[SortOrder] = None

    @field_validator("*", mode="before")
    @classmethod
    def blank_is_absent(cls, value):
        # "All" options in the client send empty strings
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TaskOut(CamelModel):
    id: str
    title: str
    description: str
    due_date: datetime
    priority: TaskPriority
    status: TaskStatus
    creator_id: str
    assigned_to_id: Optional[str] = None
    creator: Optional[UserPublic] = None
    assignee: Optional[UserPublic] = None
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    message: str
