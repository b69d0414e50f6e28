from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

from db.models import (
    ExecutionMode, InstructionType, TaskType, TriggerType, WorkOrderPriority, WorkOrderStatus,
)


class BaseSchema(BaseModel):
    class Config:
        from_attributes = True
        arbitrary_types_allowed = True
        use_enum_values = True


# --- Users ---
class LoginRequest(BaseSchema):
    """
    Schema for user login request.

    Attributes:
        email (str): User's email
        password (str): User's password
    """
    email: EmailStr
    password: str

class UserCreate(BaseSchema):
    username: str = Field(..., min_length=3, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    roles: List[str] = []

class UserResponse(BaseSchema):
    user_id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: Optional[str] = None
    activated: bool = True
    created_at: Optional[datetime] = None
    roles: List[str] = []
    permissions: List[str] = []

class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

class LoginResponse(BaseSchema):
    token: TokenResponse
    user: UserResponse

class RoleAssignment(BaseSchema):
    role_name: str


# --- Assets and runtime ---
class PlantCreate(BaseSchema):
    name: str

class AreaCreate(BaseSchema):
    plant_id: int
    name: str

class SectorCreate(BaseSchema):
    area_id: int
    name: str

class HierarchyResponse(BaseSchema):
    id: int
    name: str
    parent_id: Optional[int] = None

class AssetCreate(BaseSchema):
    tag: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    plant_id: Optional[int] = None
    area_id: Optional[int] = None
    sector_id: Optional[int] = None

class AssetResponse(BaseSchema):
    asset_id: int
    tag: str
    description: Optional[str] = None
    plant_id: Optional[int] = None
    area_id: Optional[int] = None
    sector_id: Optional[int] = None
    created_at: Optional[datetime] = None
    current_runtime_hours: Optional[float] = None

class RuntimeMeasurementCreate(BaseSchema):
    reported_hours: float
    measurement_datetime: Optional[datetime] = None
    source: str = "manual"
    notes: Optional[str] = None

class RuntimeMeasurementResponse(BaseSchema):
    measurement_id: int
    asset_id: int
    reported_hours: float
    measurement_datetime: datetime
    source: Optional[str] = None
    user_id: Optional[int] = None
    notes: Optional[str] = None

class RuntimeSummaryResponse(BaseSchema):
    asset_id: int
    current_runtime_hours: Optional[float] = None
    runtime_since: Optional[float] = None
    average_runtime_per_day: float


# --- Routines ---
class RoutineCreate(BaseSchema):
    asset_id: int
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger_runtime_hours: Optional[float] = None
    trigger_calendar_days: Optional[int] = None
    execution_mode: ExecutionMode = ExecutionMode.MANUAL.value
    advance_generation_hours: Optional[int] = None
    auto_approve_work_orders: bool = False
    priority_score: Optional[int] = None
    last_execution_runtime_hours: Optional[float] = None
    last_execution_completed_at: Optional[datetime] = None
    form_id: Optional[int] = None

class RoutineUpdate(BaseSchema):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    trigger_runtime_hours: Optional[float] = None
    trigger_calendar_days: Optional[int] = None
    execution_mode: Optional[ExecutionMode] = None
    advance_generation_hours: Optional[int] = None
    auto_approve_work_orders: Optional[bool] = None
    priority_score: Optional[int] = None
    active_form_version_id: Optional[int] = None
    is_active: Optional[bool] = None

class RoutineResponse(BaseSchema):
    routine_id: int
    asset_id: int
    name: str
    description: Optional[str] = None
    trigger_type: str
    trigger_runtime_hours: Optional[float] = None
    trigger_calendar_days: Optional[int] = None
    execution_mode: str
    advance_generation_hours: int
    auto_approve_work_orders: bool
    priority_score: Optional[int] = None
    last_execution_runtime_hours: Optional[float] = None
    last_execution_completed_at: Optional[datetime] = None
    last_execution_form_version_id: Optional[int] = None
    form_id: Optional[int] = None
    active_form_version_id: Optional[int] = None
    is_active: bool
    created_by: Optional[int] = None

class RoutineDueStatus(BaseSchema):
    routine_id: int
    current_runtime_hours: Optional[float] = None
    hours_until_due: Optional[float] = None
    is_due: bool
    should_generate_work_order: bool
    due_date: Optional[datetime] = None
    next_execution_date: Optional[datetime] = None
    progress_percentage: float
    open_work_order_id: Optional[int] = None


# --- Work orders ---
class WorkOrderCreate(BaseSchema):
    discipline: str = "maintenance"
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    work_order_category_id: int
    work_order_type_id: Optional[int] = None
    asset_id: Optional[int] = None
    priority: Optional[WorkOrderPriority] = None
    priority_score: Optional[int] = Field(None, ge=0, le=100)
    requested_due_date: Optional[datetime] = None

class WorkOrderTransitionRequest(BaseSchema):
    new_status: WorkOrderStatus
    reason: Optional[str] = None

class WorkOrderScheduleRequest(BaseSchema):
    scheduled_start_date: datetime

class WorkOrderReasonRequest(BaseSchema):
    reason: Optional[str] = None

class WorkOrderResumeRequest(BaseSchema):
    to_status: Optional[WorkOrderStatus] = None

class FollowUpRequest(BaseSchema):
    description: str = Field(..., min_length=1)

class WorkOrderSourceResponse(BaseSchema):
    kind: str
    routine_id: Optional[int] = None
    requested_by: Optional[int] = None
    work_order_id: Optional[int] = None

class WorkOrderResponse(BaseSchema):
    work_order_id: int
    wo_number: str
    discipline: str
    title: Optional[str] = None
    description: Optional[str] = None
    work_order_category_id: Optional[int] = None
    work_order_type_id: Optional[int] = None
    priority: Optional[str] = None
    priority_score: Optional[int] = None
    status: str
    asset_id: Optional[int] = None
    source: WorkOrderSourceResponse
    form_id: Optional[int] = None
    form_version_id: Optional[int] = None
    form_snapshot: Optional[Dict[str, Any]] = None
    requested_by: Optional[int] = None
    requested_at: Optional[datetime] = None
    requested_due_date: Optional[datetime] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    scheduled_start_date: Optional[datetime] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

class WorkOrderStatusLogResponse(BaseSchema):
    status_log_id: int
    previous_status: Optional[str] = None
    new_status: str
    changed_by: Optional[int] = None
    reason: Optional[str] = None
    changed_at: datetime


# --- Forms ---
class FormCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None

class InstructionCreate(BaseSchema):
    type: InstructionType = InstructionType.TEXT.value
    content: Optional[str] = None
    media_path: Optional[str] = None
    caption: Optional[str] = None

class InstructionResponse(BaseSchema):
    instruction_id: int
    type: str
    content: Optional[str] = None
    media_path: Optional[str] = None
    caption: Optional[str] = None
    position: int

class FormTaskCreate(BaseSchema):
    type: TaskType
    description: str = Field(..., max_length=500)
    is_required: bool = True
    configuration: Optional[Dict[str, Any]] = None

class FormTaskUpdate(BaseSchema):
    type: Optional[TaskType] = None
    description: Optional[str] = Field(None, max_length=500)
    is_required: Optional[bool] = None
    configuration: Optional[Dict[str, Any]] = None

class FormTaskResponse(BaseSchema):
    task_id: int
    form_version_id: Optional[int] = None
    type: str
    description: str
    is_required: bool
    position: int
    configuration: Optional[Dict[str, Any]] = None
    instructions: List[InstructionResponse] = []

class TaskReorderRequest(BaseSchema):
    task_ids: List[int]

class FormResponse(BaseSchema):
    form_id: int
    name: str
    description: Optional[str] = None
    is_active: bool
    current_version_id: Optional[int] = None
    created_at: Optional[datetime] = None

class FormVersionResponse(BaseSchema):
    form_version_id: int
    form_id: int
    version_number: int
    published_at: Optional[datetime] = None
    published_by: Optional[int] = None
    is_active: bool
    tasks: List[FormTaskResponse] = []


# --- Executions ---
class FormExecutionCreate(BaseSchema):
    form_version_id: Optional[int] = None
    form_id: Optional[int] = None
    work_order_id: Optional[int] = None

class TaskResponseCreate(BaseSchema):
    task_id: int
    response: Dict[str, Any]

class ResponseAttachmentResponse(BaseSchema):
    attachment_id: int
    file_path: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None

class TaskResponseResponse(BaseSchema):
    response_id: int
    execution_id: int
    task_id: int
    response: Optional[Dict[str, Any]] = None
    is_completed: bool
    is_out_of_range: bool
    responded_at: Optional[datetime] = None
    attachments: List[ResponseAttachmentResponse] = []

class FormExecutionResponse(BaseSchema):
    execution_id: int
    form_version_id: int
    work_order_id: Optional[int] = None
    user_id: Optional[int] = None
    status: str
    form_snapshot: Dict[str, Any]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    responses: List[TaskResponseResponse] = []
    progress_percentage: float = 0.0

class CompletionValidationResponse(BaseSchema):
    is_valid: bool
    missing_required_tasks: List[Dict[str, Any]] = []

class WorkOrderStartResponse(BaseSchema):
    work_order: WorkOrderResponse
    execution: Optional[FormExecutionResponse] = None


# --- Audit ---
class AuditLogResponse(BaseSchema):
    audit_id: int
    event_name: str
    subject_type: str
    subject_id: Optional[int] = None
    before_state: Optional[str] = None
    after_state: Optional[str] = None
    actor_id: Optional[int] = None
    event_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
