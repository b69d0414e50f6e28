import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import Form, FormTask, FormVersion, InstructionType, TaskInstruction, TaskType
from api.services.audit import record_event
from api.services.exceptions import NotFoundError, StateConflictError, ValidationError
from api.services.snapshots import FormSnapshot, TaskSnapshot
from api.utils.util import to_float, utcnow

logger = logging.getLogger(__name__)

CHOICE_TASK_TYPES = (TaskType.MULTIPLE_CHOICE.value, TaskType.MULTIPLE_SELECT.value)
MAX_DESCRIPTION_LENGTH = 500


def validate_task_definition(task_type: str, description: Optional[str], configuration: Optional[Dict[str, Any]]):
    if task_type not in [t.value for t in TaskType]:
        raise ValidationError(f"Invalid task type: {task_type}")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Task description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
    configuration = configuration or {}
    if task_type in CHOICE_TASK_TYPES:
        options = configuration.get("options")
        if not isinstance(options, list) or not options:
            raise ValidationError("Choice tasks need a non-empty list of options")
    if task_type == TaskType.MEASUREMENT.value:
        low = configuration.get("min")
        high = configuration.get("max")
        if low is not None and to_float(low) is None:
            raise ValidationError("Measurement min must be a number")
        if high is not None and to_float(high) is None:
            raise ValidationError("Measurement max must be a number")
        if low is not None and high is not None and to_float(low) > to_float(high):
            raise ValidationError("Measurement min cannot be greater than max")


def tasks_differ(a: TaskSnapshot, b: TaskSnapshot) -> bool:
    return (
        a.type != b.type
        or a.description != b.description
        or a.is_required != b.is_required
        or a.configuration != b.configuration
    )


def compare_task_lists(old: List[TaskSnapshot], new: List[TaskSnapshot]) -> Dict[str, List[Dict[str, Any]]]:
    """Added, removed and modified tasks, matched by position."""
    changes: Dict[str, List[Dict[str, Any]]] = {"added": [], "removed": [], "modified": []}
    old_by_position = {t.position: t for t in old}
    new_by_position = {t.position: t for t in new}

    for position, task in sorted(new_by_position.items()):
        previous = old_by_position.get(position)
        if previous is None:
            changes["added"].append({"position": position, "task": task.model_dump(mode="json")})
        elif tasks_differ(previous, task):
            changes["modified"].append({"position": position, "old": previous.model_dump(mode="json"), "new": task.model_dump(mode="json")})

    for position, task in sorted(old_by_position.items()):
        if position not in new_by_position:
            changes["removed"].append({"position": position, "task": task.model_dump(mode="json")})
    return changes


class FormService:
    def __init__(self, db: Session):
        self.db = db

    # --- forms ---
    def create_form(self, name: str, description: Optional[str], actor_id: int) -> Form:
        if not name or not name.strip():
            raise ValidationError("Form name is required")
        with atomic(self.db):
            form = Form(name=name.strip(), description=description, created_by=actor_id)
            self.db.add(form)
        self.db.refresh(form)
        return form

    def get_form(self, form_id: int) -> Form:
        form = repositories.get_form(self.db, form_id)
        if form is None:
            raise NotFoundError(f"Form {form_id} not found")
        return form

    def list_forms(self, active_only: bool = True) -> List[Form]:
        stmt = select(Form)
        if active_only:
            stmt = stmt.where(Form.is_active.is_(True))
        return list(self.db.execute(stmt.order_by(Form.form_id)).scalars().all())

    def draft_tasks(self, form_id: int) -> List[FormTask]:
        self.get_form(form_id)
        return repositories.draft_tasks(self.db, form_id)

    def has_draft_changes(self, form_id: int) -> bool:
        form = self.get_form(form_id)
        drafts = [TaskSnapshot.from_task(t) for t in repositories.draft_tasks(self.db, form_id)]
        if form.current_version is None:
            return bool(drafts)
        published = list(FormSnapshot.from_version(form.current_version).tasks)
        changes = compare_task_lists(published, drafts)
        return any(changes.values())

    # --- draft tasks ---
    def _get_draft_task(self, form_id: int, task_id: int) -> FormTask:
        task = self.db.get(FormTask, task_id)
        if task is None or task.form_id != form_id or task.form_version_id is not None:
            raise NotFoundError(f"Draft task {task_id} not found on form {form_id}")
        return task

    def add_task(self, form_id: int, data: Dict[str, Any]) -> FormTask:
        self.get_form(form_id)
        description = (data.get("description") or "").strip()
        if not description:
            raise ValidationError("Task description is required")
        validate_task_definition(data.get("type"), description, data.get("configuration"))
        drafts = repositories.draft_tasks(self.db, form_id)
        with atomic(self.db):
            task = FormTask(
                form_id=form_id,
                type=data["type"],
                description=description,
                is_required=data.get("is_required", True),
                position=max((t.position for t in drafts), default=0) + 1,
                configuration=data.get("configuration") or {},
            )
            self.db.add(task)
        self.db.refresh(task)
        return task

    def update_task(self, form_id: int, task_id: int, data: Dict[str, Any]) -> FormTask:
        task = self._get_draft_task(form_id, task_id)
        task_type = data.get("type") or task.type
        description = data.get("description")
        if description is not None:
            description = description.strip()
            if not description:
                raise ValidationError("Task description is required")
        configuration = data["configuration"] if data.get("configuration") is not None else task.configuration
        validate_task_definition(task_type, description, configuration)
        with atomic(self.db):
            task.type = task_type
            if description is not None:
                task.description = description
            if data.get("is_required") is not None:
                task.is_required = data["is_required"]
            task.configuration = configuration or {}
        self.db.refresh(task)
        return task

    def delete_task(self, form_id: int, task_id: int) -> None:
        task = self._get_draft_task(form_id, task_id)
        with atomic(self.db):
            self.db.delete(task)
            self.db.flush()
            for position, remaining in enumerate(repositories.draft_tasks(self.db, form_id), start=1):
                remaining.position = position

    def reorder_tasks(self, form_id: int, task_ids: List[int]) -> List[FormTask]:
        drafts = {t.task_id: t for t in self.draft_tasks(form_id)}
        unknown = [tid for tid in task_ids if tid not in drafts]
        if unknown:
            raise ValidationError(f"Tasks {unknown} are not draft tasks of form {form_id}")
        if len(set(task_ids)) != len(task_ids) or len(task_ids) != len(drafts):
            raise ValidationError("Reorder must list every draft task exactly once")
        with atomic(self.db):
            for position, task_id in enumerate(task_ids, start=1):
                drafts[task_id].position = position
        return repositories.draft_tasks(self.db, form_id)

    # --- instructions ---
    def add_instruction(self, form_id: int, task_id: int, data: Dict[str, Any]) -> TaskInstruction:
        task = self._get_draft_task(form_id, task_id)
        instruction_type = data.get("type") or InstructionType.TEXT.value
        if instruction_type not in [t.value for t in InstructionType]:
            raise ValidationError(f"Invalid instruction type: {instruction_type}")
        if instruction_type == InstructionType.TEXT.value and not data.get("content"):
            raise ValidationError("Text instructions need content")
        if instruction_type != InstructionType.TEXT.value and not data.get("media_path"):
            raise ValidationError("Media instructions need a media_path")
        with atomic(self.db):
            instruction = TaskInstruction(
                task_id=task.task_id,
                type=instruction_type,
                content=data.get("content"),
                media_path=data.get("media_path"),
                caption=data.get("caption"),
                position=max((i.position for i in task.instructions), default=0) + 1,
            )
            self.db.add(instruction)
        self.db.refresh(instruction)
        return instruction

    def delete_instruction(self, form_id: int, task_id: int, instruction_id: int) -> None:
        task = self._get_draft_task(form_id, task_id)
        instruction = self.db.get(TaskInstruction, instruction_id)
        if instruction is None or instruction.task_id != task.task_id:
            raise NotFoundError(f"Instruction {instruction_id} not found on task {task_id}")
        with atomic(self.db):
            task.instructions.remove(instruction)
            for position, remaining in enumerate(task.instructions, start=1):
                remaining.position = position

    # --- versions ---
    def publish(self, form_id: int, actor_id: int) -> FormVersion:
        """Freeze the draft tasks into a new version and make it current."""
        form = self.get_form(form_id)
        drafts = repositories.draft_tasks(self.db, form_id)
        if not drafts:
            raise StateConflictError("Cannot publish a form without tasks")
        if any(not (t.description or "").strip() for t in drafts):
            raise ValidationError("All tasks must have a description")

        previous_version_id = form.current_version_id
        with atomic(self.db):
            version = FormVersion(
                form_id=form.form_id,
                version_number=repositories.max_version_number(self.db, form_id) + 1,
                published_at=utcnow(),
                published_by=actor_id,
                is_active=True,
            )
            self.db.add(version)
            self.db.flush()
            for draft in drafts:
                copy = FormTask(
                    form_id=form.form_id,
                    form_version_id=version.form_version_id,
                    type=draft.type,
                    description=draft.description,
                    is_required=draft.is_required,
                    position=draft.position,
                    configuration=dict(draft.configuration or {}),
                )
                copy.instructions = [
                    TaskInstruction(
                        type=i.type,
                        content=i.content,
                        media_path=i.media_path,
                        caption=i.caption,
                        position=i.position,
                    )
                    for i in draft.instructions
                ]
                self.db.add(copy)
            form.current_version_id = version.form_version_id
            for routine in repositories.routines_for_form(self.db, form_id):
                routine.active_form_version_id = version.form_version_id
            record_event(
                self.db, "form.published", "form", form.form_id,
                before_state=None if previous_version_id is None else str(previous_version_id),
                after_state=str(version.form_version_id),
                actor_id=actor_id,
                metadata={"version_number": version.version_number, "task_count": len(drafts)},
            )
        self.db.refresh(version)
        logger.info(f"Published form {form.form_id} version {version.version_number} ({len(drafts)} tasks)")
        return version

    def get_version(self, form_id: int, version_id: int) -> FormVersion:
        version = self.db.get(FormVersion, version_id)
        if version is None or version.form_id != form_id:
            raise NotFoundError(f"Version {version_id} not found on form {form_id}")
        return version

    def list_versions(self, form_id: int) -> List[FormVersion]:
        return list(self.get_form(form_id).versions)

    def deactivate(self, form_id: int, version_id: int, actor_id: int) -> FormVersion:
        form = self.get_form(form_id)
        version = self.get_version(form_id, version_id)
        if form.current_version_id == version.form_version_id:
            raise StateConflictError("Cannot deactivate the current version")
        if repositories.count_executions_for_version(self.db, version_id):
            raise StateConflictError("Cannot deactivate a version with existing executions")
        with atomic(self.db):
            version.is_active = False
            record_event(
                self.db, "form_version.deactivated", "form_version", version.form_version_id,
                before_state="active", after_state="inactive", actor_id=actor_id,
                metadata={"form_id": form_id, "version_number": version.version_number},
            )
        self.db.refresh(version)
        logger.info(f"Deactivated form {form_id} version {version.version_number}")
        return version

    def compare_versions(self, form_id: int, version_id_1: int, version_id_2: int) -> Dict[str, Any]:
        v1 = FormSnapshot.from_version(self.get_version(form_id, version_id_1))
        v2 = FormSnapshot.from_version(self.get_version(form_id, version_id_2))

        def summary(s: FormSnapshot) -> Dict[str, Any]:
            return {
                "form_version_id": s.form_version_id,
                "version_number": s.version_number,
                "published_at": s.published_at,
                "task_count": len(s.tasks),
            }

        return {
            "version1": summary(v1),
            "version2": summary(v2),
            "changes": compare_task_lists(list(v1.tasks), list(v2.tasks)),
        }
