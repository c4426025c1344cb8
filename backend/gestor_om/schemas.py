from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    MANAGER = "manager"
    ADMIN = "admin"
    EXECUTOR = "executor"


class TaskStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    NOT_EXECUTED = "not_executed"


class Shift(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input and emits camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    id: str
    name: str
    username: str
    password_hash: str
    role: UserRole
    shift: Optional[Shift] = None


class Category(CamelModel):
    id: str
    name: str


class Task(CamelModel):
    id: str
    om_number: str
    description: str
    category_id: str
    work_center: Optional[str] = None
    date_min: str = ""
    date_max: str = ""
    status: TaskStatus = TaskStatus.PENDING
    date_executed: Optional[str] = None
    reason_not_executed: Optional[str] = None
    executed_by_shift: Optional[Shift] = None
    updated_by_user_name: Optional[str] = None
    additional_data: Dict[str, Any] = Field(default_factory=dict)

    def clear_execution(self) -> "Task":
        return self.model_copy(
            update={
                "status": TaskStatus.PENDING,
                "date_executed": None,
                "reason_not_executed": None,
                "executed_by_shift": None,
                "updated_by_user_name": None,
            }
        )


class AppState(CamelModel):
    users: List[User] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
    tasks: List[Task] = Field(default_factory=list)
    current_user: Optional[User] = None

    def persisted_payload(self) -> Dict[str, Any]:
        """Serializable form of the snapshot without the session user."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"current_user"},
        )


class UserResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    name: str
    username: str
    role: UserRole
    shift: Optional[Shift] = None


class LoginRequest(CamelModel):
    username: str
    password: str


class LoginResponse(CamelModel):
    token: str
    user: UserResponse


class UserCreateRequest(CamelModel):
    name: str
    username: str
    password: str
    role: UserRole = UserRole.EXECUTOR
    shift: Shift = Shift.A

    @field_validator("name", "username", "password")
    @classmethod
    def _require_text(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value


class CategoryCreateRequest(CamelModel):
    name: str


class TaskCreateRequest(CamelModel):
    om_number: str
    description: str
    category_id: str
    work_center: Optional[str] = None
    date_min: str = ""
    date_max: str = ""


class ExecuteRequest(CamelModel):
    shift: Shift


class NotExecutedRequest(CamelModel):
    shift: Shift
    reason: str


class ImportResponse(CamelModel):
    import_id: Optional[str] = None
    added: int
    duplicates: int
    warnings: List[str] = Field(default_factory=list)


class ImportConfirmRequest(CamelModel):
    replace: bool


class ImportConfirmResponse(CamelModel):
    replaced: int
    dropped: int


class ShiftPerformance(CamelModel):
    shift: Shift
    executed: int
    not_executed: int


class DashboardResponse(CamelModel):
    total: int
    executed: int
    not_executed: int
    pending: int
    execution_rate: str
    shifts: List[ShiftPerformance]


class AlertResponse(CamelModel):
    type: Literal["overdue", "urgent"]
    days_diff: int
    task: Task


TaskTab = Literal["pending", "completed"]
