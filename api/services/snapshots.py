from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, field_validator

from db.models import FormVersion, FormTask, TaskResponse


class FrozenSnapshot(BaseModel):
    class Config:
        frozen = True


class InstructionSnapshot(FrozenSnapshot):
    type: str
    content: Optional[str] = None
    media_path: Optional[str] = None
    caption: Optional[str] = None
    position: int = 0


class TaskSnapshot(FrozenSnapshot):
    task_id: int
    type: str
    description: str = ""
    is_required: bool = True
    position: int = 0
    configuration: Dict[str, Any] = {}
    instructions: Tuple[InstructionSnapshot, ...] = ()

    @classmethod
    def from_task(cls, task: FormTask) -> "TaskSnapshot":
        return cls(
            task_id=task.task_id,
            type=task.type,
            description=task.description,
            is_required=bool(task.is_required),
            position=task.position,
            configuration=task.configuration or {},
            instructions=[
                InstructionSnapshot(
                    type=i.type, content=i.content, media_path=i.media_path, caption=i.caption, position=i.position,
                )
                for i in task.instructions
            ],
        )


class FormSnapshot(FrozenSnapshot):
    """Immutable copy of a published form version's task list.

    Work orders and executions keep this copy; later publishes never change it.
    Stored with model_dump(mode="json") and read back with model_validate.
    """

    form_id: int
    form_version_id: int
    version_number: int
    form_name: str = ""
    published_at: Optional[str] = None
    tasks: Tuple[TaskSnapshot, ...] = ()

    @field_validator("tasks")
    @classmethod
    def order_by_position(cls, tasks):
        return tuple(sorted(tasks, key=lambda t: t.position))

    @classmethod
    def from_version(cls, version: FormVersion) -> "FormSnapshot":
        published_at = version.published_at
        return cls(
            form_id=version.form_id,
            form_version_id=version.form_version_id,
            version_number=version.version_number,
            form_name=version.form.name if version.form else "",
            published_at=published_at.isoformat() if isinstance(published_at, datetime) else None,
            tasks=[TaskSnapshot.from_task(t) for t in version.tasks],
        )

    def task(self, task_id: int) -> Optional[TaskSnapshot]:
        for t in self.tasks:
            if t.task_id == task_id:
                return t
        return None

    @property
    def required_tasks(self) -> List[TaskSnapshot]:
        return [t for t in self.tasks if t.is_required]


def missing_required_tasks(snapshot: FormSnapshot, responses: Iterable[TaskResponse]) -> List[TaskSnapshot]:
    """Required snapshot tasks with no completed response. Every completion path uses this."""
    completed = {r.task_id for r in responses if r.is_completed}
    return [t for t in snapshot.required_tasks if t.task_id not in completed]


def describe_missing(tasks: Iterable[TaskSnapshot]) -> List[Dict[str, Any]]:
    return [{"task_id": t.task_id, "description": t.description, "position": t.position} for t in tasks]
