from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Float, JSON, BigInteger,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Union

from db.database import Base
from api.utils.util import utcnow

# SQLite only auto-increments INTEGER PRIMARY KEY columns
PrimaryKey = BigInteger().with_variant(Integer(), "sqlite")
JSONType = JSON().with_variant(JSONB(), "postgresql")


# --- Enums ---
class TriggerType(str, Enum):
    RUNTIME_HOURS = "runtime_hours"
    CALENDAR_DAYS = "calendar_days"

class ExecutionMode(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"

class Discipline(str, Enum):
    MAINTENANCE = "maintenance"
    QUALITY = "quality"

class WorkOrderStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    PLANNED = "planned"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CLOSED = "closed"
    CANCELLED = "cancelled"

class WorkOrderPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    EMERGENCY = "emergency"

class SourceType(str, Enum):
    ROUTINE = "routine"
    MANUAL = "manual"
    WORK_ORDER = "work_order"

class TaskType(str, Enum):
    QUESTION = "question"
    MULTIPLE_CHOICE = "multiple_choice"
    MULTIPLE_SELECT = "multiple_select"
    MEASUREMENT = "measurement"
    PHOTO = "photo"
    CODE_READER = "code_reader"
    FILE_UPLOAD = "file_upload"

class InstructionType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"

class ExecutionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses after which a work order no longer blocks generation for its routine
CLOSED_WORK_ORDER_STATUSES = (
    WorkOrderStatus.COMPLETED.value,
    WorkOrderStatus.VERIFIED.value,
    WorkOrderStatus.CLOSED.value,
    WorkOrderStatus.CANCELLED.value,
    WorkOrderStatus.REJECTED.value,
)


# --- Work order source ---
@dataclass(frozen=True)
class RoutineSource:
    routine_id: int
    kind: str = SourceType.ROUTINE.value

@dataclass(frozen=True)
class ManualSource:
    requested_by: int
    kind: str = SourceType.MANUAL.value

@dataclass(frozen=True)
class FollowUpSource:
    work_order_id: int
    kind: str = SourceType.WORK_ORDER.value

WorkOrderSource = Union[RoutineSource, ManualSource, FollowUpSource]


# --- Users and permissions ---
class User(Base):
    __tablename__ = "users"

    user_id = Column(PrimaryKey, primary_key=True)
    username = Column(String(100), unique=True, nullable=False)
    email = Column(String(150), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50))
    last_name = Column(String(50))
    activated = Column(Boolean, default=True)
    last_login = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    roles = relationship("UserRole", back_populates="user")
    tokens = relationship("Token", back_populates="user")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.username

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "activated": self.activated,
            "created_at": self.created_at,
        }

class Role(Base):
    __tablename__ = "roles"

    role_id = Column(PrimaryKey, primary_key=True)
    role_name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    user_roles = relationship("UserRole", back_populates="role")
    permissions = relationship("RolePermission", back_populates="role")

class UserRole(Base):
    __tablename__ = "user_roles"

    id = Column(PrimaryKey, primary_key=True)
    role_id = Column(BigInteger, ForeignKey("roles.role_id"))
    user_id = Column(BigInteger, ForeignKey("users.user_id"))
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="roles")
    role = relationship("Role", back_populates="user_roles")

class Permission(Base):
    __tablename__ = "permissions"

    permission_id = Column(PrimaryKey, primary_key=True)
    feature = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    role_permissions = relationship("RolePermission", back_populates="permission")

class RolePermission(Base):
    __tablename__ = "role_permissions"

    role_id = Column(BigInteger, ForeignKey("roles.role_id"), primary_key=True)
    permission_id = Column(BigInteger, ForeignKey("permissions.permission_id"), primary_key=True)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    role = relationship("Role", back_populates="permissions")
    permission = relationship("Permission", back_populates="role_permissions")

class Token(Base):
    __tablename__ = "auth_tokens"

    id = Column(PrimaryKey, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id", ondelete="CASCADE"))
    access_token = Column(Text, nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=True)
    revoked = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="tokens")

    def __repr__(self):
        return f"<AuthToken(user_id='{self.user_id}')>"


# --- Asset hierarchy ---
class Plant(Base):
    __tablename__ = "plants"

    plant_id = Column(PrimaryKey, primary_key=True)
    name = Column(String(150), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    areas = relationship("Area", back_populates="plant")

class Area(Base):
    __tablename__ = "areas"

    area_id = Column(PrimaryKey, primary_key=True)
    plant_id = Column(BigInteger, ForeignKey("plants.plant_id"), nullable=False)
    name = Column(String(150), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    plant = relationship("Plant", back_populates="areas")
    sectors = relationship("Sector", back_populates="area")

class Sector(Base):
    __tablename__ = "sectors"

    sector_id = Column(PrimaryKey, primary_key=True)
    area_id = Column(BigInteger, ForeignKey("areas.area_id"), nullable=False)
    name = Column(String(150), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    area = relationship("Area", back_populates="sectors")

class Asset(Base):
    __tablename__ = "assets"

    asset_id = Column(PrimaryKey, primary_key=True)
    tag = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    plant_id = Column(BigInteger, ForeignKey("plants.plant_id"))
    area_id = Column(BigInteger, ForeignKey("areas.area_id"))
    sector_id = Column(BigInteger, ForeignKey("sectors.sector_id"))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    active = Column(Boolean, default=True)

    plant = relationship("Plant")
    area = relationship("Area")
    sector = relationship("Sector")
    runtime_measurements = relationship(
        "AssetRuntimeMeasurement", back_populates="asset",
        order_by="AssetRuntimeMeasurement.measurement_datetime",
    )
    routines = relationship("Routine", back_populates="asset")

class AssetRuntimeMeasurement(Base):
    __tablename__ = "asset_runtime_measurements"

    measurement_id = Column(PrimaryKey, primary_key=True)
    asset_id = Column(BigInteger, ForeignKey("assets.asset_id"), nullable=False, index=True)
    reported_hours = Column(Float, nullable=False)
    measurement_datetime = Column(DateTime, nullable=False, default=utcnow, index=True)
    source = Column(String(50), default="manual")
    user_id = Column(BigInteger, ForeignKey("users.user_id"))
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    asset = relationship("Asset", back_populates="runtime_measurements")
    user = relationship("User")


# --- Routines ---
class Routine(Base):
    __tablename__ = "routines"

    routine_id = Column(PrimaryKey, primary_key=True)
    asset_id = Column(BigInteger, ForeignKey("assets.asset_id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    trigger_type = Column(String(20), nullable=False, default=TriggerType.RUNTIME_HOURS.value)
    trigger_runtime_hours = Column(Float)
    trigger_calendar_days = Column(Integer)
    execution_mode = Column(String(20), nullable=False, default=ExecutionMode.MANUAL.value)
    advance_generation_hours = Column(Integer, nullable=False, default=24)
    auto_approve_work_orders = Column(Boolean, default=False)
    priority_score = Column(Integer, default=50)
    last_execution_runtime_hours = Column(Float)
    last_execution_completed_at = Column(DateTime)
    last_execution_form_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id"))
    form_id = Column(BigInteger, ForeignKey("forms.form_id"))
    active_form_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id"))
    is_active = Column(Boolean, default=True)
    created_by = Column(BigInteger, ForeignKey("users.user_id"))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    asset = relationship("Asset", back_populates="routines")
    form = relationship("Form", back_populates="routines")
    active_form_version = relationship("FormVersion", foreign_keys=[active_form_version_id])
    last_execution_form_version = relationship("FormVersion", foreign_keys=[last_execution_form_version_id])
    creator = relationship("User", foreign_keys=[created_by])


# --- Work orders ---
class WorkOrderCategory(Base):
    __tablename__ = "work_order_categories"

    category_id = Column(PrimaryKey, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    discipline = Column(String(20), nullable=False)
    allowed_sources = Column(JSONType)
    active = Column(Boolean, default=True)

    types = relationship("WorkOrderType", back_populates="category")

    def allows_source(self, source_type: str) -> bool:
        if not self.allowed_sources:
            return True
        return source_type in self.allowed_sources

class WorkOrderType(Base):
    __tablename__ = "work_order_types"

    work_order_type_id = Column(PrimaryKey, primary_key=True)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(100), nullable=False)
    category_id = Column(BigInteger, ForeignKey("work_order_categories.category_id"), nullable=False)
    is_active = Column(Boolean, default=True)

    category = relationship("WorkOrderCategory", back_populates="types")

class WorkOrder(Base):
    __tablename__ = "work_orders"
    __table_args__ = (Index("ix_work_orders_source", "source_type", "source_id"),)

    work_order_id = Column(PrimaryKey, primary_key=True)
    wo_number = Column(String(100), unique=True, nullable=False)
    discipline = Column(String(20), nullable=False, default=Discipline.MAINTENANCE.value)
    title = Column(String(255))
    description = Column(Text)
    work_order_type_id = Column(BigInteger, ForeignKey("work_order_types.work_order_type_id"))
    work_order_category_id = Column(BigInteger, ForeignKey("work_order_categories.category_id"))
    priority = Column(String(20), default=WorkOrderPriority.NORMAL.value)
    priority_score = Column(Integer, default=50)
    status = Column(String(50), nullable=False, default=WorkOrderStatus.REQUESTED.value, index=True)
    asset_id = Column(BigInteger, ForeignKey("assets.asset_id"))
    source_type = Column(String(20), nullable=False, default=SourceType.MANUAL.value)
    source_id = Column(BigInteger)
    form_id = Column(BigInteger, ForeignKey("forms.form_id"))
    form_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id"))
    form_snapshot = Column(JSONType)
    requested_by = Column(BigInteger, ForeignKey("users.user_id"))
    requested_at = Column(DateTime, default=utcnow)
    requested_due_date = Column(DateTime)
    approved_by = Column(BigInteger, ForeignKey("users.user_id"))
    approved_at = Column(DateTime)
    planned_by = Column(BigInteger, ForeignKey("users.user_id"))
    planned_at = Column(DateTime)
    scheduled_start_date = Column(DateTime)
    actual_start_date = Column(DateTime)
    actual_end_date = Column(DateTime)
    completed_by = Column(BigInteger, ForeignKey("users.user_id"))
    verified_by = Column(BigInteger, ForeignKey("users.user_id"))
    verified_at = Column(DateTime)
    closed_by = Column(BigInteger, ForeignKey("users.user_id"))
    closed_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    active = Column(Boolean, default=True)

    asset = relationship("Asset")
    category = relationship("WorkOrderCategory")
    work_order_type = relationship("WorkOrderType")
    form_version = relationship("FormVersion")
    requester = relationship("User", foreign_keys=[requested_by])
    status_logs = relationship(
        "WorkOrderStatusLog", back_populates="work_order",
        order_by="WorkOrderStatusLog.status_log_id",
    )
    executions = relationship("FormExecution", back_populates="work_order")

    @property
    def source(self) -> WorkOrderSource:
        if self.source_type == SourceType.ROUTINE.value:
            return RoutineSource(routine_id=self.source_id)
        if self.source_type == SourceType.WORK_ORDER.value:
            return FollowUpSource(work_order_id=self.source_id)
        return ManualSource(requested_by=self.requested_by)

    @property
    def is_open(self) -> bool:
        return self.status not in CLOSED_WORK_ORDER_STATUSES

class WorkOrderStatusLog(Base):
    __tablename__ = "work_order_status_logs"

    status_log_id = Column(PrimaryKey, primary_key=True)
    work_order_id = Column(BigInteger, ForeignKey("work_orders.work_order_id"), nullable=False)
    previous_status = Column(String(50))
    new_status = Column(String(50))
    changed_by = Column(BigInteger, ForeignKey("users.user_id"))
    reason = Column(Text)
    changed_at = Column(DateTime, default=utcnow)

    work_order = relationship("WorkOrder", back_populates="status_logs")
    user = relationship("User")


# --- Forms ---
class Form(Base):
    __tablename__ = "forms"

    form_id = Column(PrimaryKey, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True)
    current_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id", use_alter=True))
    created_by = Column(BigInteger, ForeignKey("users.user_id"))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    current_version = relationship("FormVersion", foreign_keys=[current_version_id], post_update=True)
    versions = relationship(
        "FormVersion", foreign_keys="FormVersion.form_id", back_populates="form",
        order_by="FormVersion.version_number",
    )
    routines = relationship("Routine", back_populates="form")

class FormVersion(Base):
    __tablename__ = "form_versions"
    __table_args__ = (UniqueConstraint("form_id", "version_number", name="uq_form_version_number"),)

    form_version_id = Column(PrimaryKey, primary_key=True)
    form_id = Column(BigInteger, ForeignKey("forms.form_id"), nullable=False)
    version_number = Column(Integer, nullable=False)
    published_at = Column(DateTime, default=utcnow)
    published_by = Column(BigInteger, ForeignKey("users.user_id"))
    is_active = Column(Boolean, default=True)

    form = relationship("Form", foreign_keys=[form_id], back_populates="versions")
    tasks = relationship(
        "FormTask", back_populates="form_version",
        order_by="FormTask.position", cascade="all, delete-orphan",
    )
    executions = relationship("FormExecution", back_populates="form_version")

class FormTask(Base):
    __tablename__ = "form_tasks"

    task_id = Column(PrimaryKey, primary_key=True)
    form_id = Column(BigInteger, ForeignKey("forms.form_id"))
    form_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id"))
    type = Column(String(30), nullable=False)
    description = Column(String(500), nullable=False)
    is_required = Column(Boolean, default=True)
    position = Column(Integer, nullable=False)
    configuration = Column(JSONType)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    form_version = relationship("FormVersion", back_populates="tasks")
    instructions = relationship(
        "TaskInstruction", back_populates="task",
        order_by="TaskInstruction.position", cascade="all, delete-orphan",
    )

class TaskInstruction(Base):
    __tablename__ = "task_instructions"

    instruction_id = Column(PrimaryKey, primary_key=True)
    task_id = Column(BigInteger, ForeignKey("form_tasks.task_id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False, default=InstructionType.TEXT.value)
    content = Column(Text)
    media_path = Column(Text)
    caption = Column(String(255))
    position = Column(Integer, nullable=False)

    task = relationship("FormTask", back_populates="instructions")


# --- Form execution ---
class FormExecution(Base):
    __tablename__ = "form_executions"

    execution_id = Column(PrimaryKey, primary_key=True)
    form_version_id = Column(BigInteger, ForeignKey("form_versions.form_version_id"), nullable=False)
    work_order_id = Column(BigInteger, ForeignKey("work_orders.work_order_id"))
    user_id = Column(BigInteger, ForeignKey("users.user_id"))
    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    form_snapshot = Column(JSONType, nullable=False)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    form_version = relationship("FormVersion", back_populates="executions")
    work_order = relationship("WorkOrder", back_populates="executions")
    user = relationship("User")
    responses = relationship(
        "TaskResponse", back_populates="execution", cascade="all, delete-orphan",
    )

class TaskResponse(Base):
    __tablename__ = "task_responses"
    __table_args__ = (UniqueConstraint("execution_id", "task_id", name="uq_task_response_per_execution"),)

    response_id = Column(PrimaryKey, primary_key=True)
    execution_id = Column(BigInteger, ForeignKey("form_executions.execution_id", ondelete="CASCADE"), nullable=False)
    # id from the execution's snapshot, not a live foreign key
    task_id = Column(BigInteger, nullable=False)
    response = Column(JSONType)
    is_completed = Column(Boolean, default=False)
    is_out_of_range = Column(Boolean, default=False)
    user_id = Column(BigInteger, ForeignKey("users.user_id"))
    responded_at = Column(DateTime, default=utcnow)

    execution = relationship("FormExecution", back_populates="responses")
    attachments = relationship(
        "ResponseAttachment", back_populates="response", cascade="all, delete-orphan",
    )

class ResponseAttachment(Base):
    __tablename__ = "response_attachments"

    attachment_id = Column(PrimaryKey, primary_key=True)
    response_id = Column(BigInteger, ForeignKey("task_responses.response_id", ondelete="CASCADE"), nullable=False)
    file_path = Column(Text, nullable=False)
    file_name = Column(String(255))
    mime_type = Column(String(100))
    uploaded_at = Column(DateTime, default=utcnow)

    response = relationship("TaskResponse", back_populates="attachments")


# --- Audit ---
class AuditLog(Base):
    __tablename__ = "audit_logs"

    audit_id = Column(PrimaryKey, primary_key=True)
    event_name = Column(String(100), nullable=False, index=True)
    subject_type = Column(String(50), nullable=False)
    subject_id = Column(BigInteger)
    before_state = Column(String(50))
    after_state = Column(String(50))
    actor_id = Column(BigInteger, ForeignKey("users.user_id"))
    event_metadata = Column(JSONType)
    created_at = Column(DateTime, default=utcnow)

    actor = relationship("User")
