import pytest

from api.services.audit import list_events
from api.services.exceptions import (
    IncompleteExecutionError, NotFoundError, StateConflictError, ValidationError,
)
from api.services.form_execution import FormExecutionService, validate_response
from api.services.snapshots import TaskSnapshot


@pytest.fixture()
def executions(db):
    return FormExecutionService(db)


@pytest.fixture()
def started(executions, published_form, admin):
    _, version = published_form
    execution = executions.create_execution(admin.user_id, form_version_id=version.form_version_id)
    return executions.start(execution.execution_id, admin.user_id)


def task_ids(execution, executions):
    """Ids of tasks A, B and C in the execution's snapshot."""
    return [t.task_id for t in executions.snapshot(execution).tasks]


class TestValidateResponse:
    def task(self, task_type, **configuration):
        return TaskSnapshot(task_id=1, type=task_type, description="t", is_required=True, position=1,
                            configuration=configuration)

    def test_question(self):
        assert validate_response(self.task("question"), {"text": " ok "}).payload == {"text": "ok"}
        assert validate_response(self.task("question"), {"text": ""}).is_completed is False

    def test_code_reader(self):
        assert validate_response(self.task("code_reader"), {"code": "ABC-123"}).is_completed

    def test_multiple_choice_must_be_an_option(self):
        task = self.task("multiple_choice", options=["ok", "worn"])
        assert validate_response(task, {"value": "worn"}).is_completed
        with pytest.raises(ValidationError):
            validate_response(task, {"value": "broken"})

    def test_multiple_select_must_be_a_subset(self):
        task = self.task("multiple_select", options=["a", "b", "c"])
        assert validate_response(task, {"values": ["a", "c", "a"]}).payload == {"values": ["a", "c"]}
        with pytest.raises(ValidationError):
            validate_response(task, {"values": ["a", "z"]})

    def test_measurement_out_of_range_is_flagged(self):
        task = self.task("measurement", min=3, max=5, unit="bar")
        result = validate_response(task, {"value": 6.0})
        assert result.is_completed
        assert result.is_out_of_range
        assert result.payload["value"] == 6.0
        assert result.payload["unit"] == "bar"
        assert "warning" in result.payload

    def test_measurement_in_range(self):
        result = validate_response(self.task("measurement", min=3, max=5), {"value": "4.2"})
        assert result.payload["value"] == 4.2
        assert not result.is_out_of_range

    def test_measurement_must_be_numeric(self):
        with pytest.raises(ValidationError):
            validate_response(self.task("measurement"), {"value": "high"})

    def test_attachments_need_paths(self):
        task = self.task("photo")
        result = validate_response(task, {"attachments": [{"file_path": "/uploads/1.jpg"}]})
        assert result.is_completed
        assert len(result.attachments) == 1
        with pytest.raises(ValidationError):
            validate_response(task, {"attachments": [{"file_name": "x.jpg"}]})


class TestExecutionLifecycle:
    def test_create_from_current_version(self, executions, published_form, admin):
        form, version = published_form
        execution = executions.create_execution(admin.user_id, form_id=form.form_id)
        assert execution.status == "pending"
        assert execution.form_version_id == version.form_version_id
        assert len(execution.form_snapshot["tasks"]) == 3

    def test_form_without_version(self, executions, forms, admin):
        form = forms.create_form("Empty", None, admin.user_id)
        with pytest.raises(StateConflictError):
            executions.create_execution(admin.user_id, form_id=form.form_id)

    def test_start_twice(self, executions, started, admin):
        with pytest.raises(StateConflictError):
            executions.start(started.execution_id, admin.user_id)

    def test_responses_need_a_started_execution(self, executions, published_form, admin):
        _, version = published_form
        execution = executions.create_execution(admin.user_id, form_version_id=version.form_version_id)
        a, _, _ = task_ids(execution, executions)
        with pytest.raises(StateConflictError):
            executions.record_response(execution.execution_id, a, {"text": "ok"}, admin.user_id)

    def test_unknown_task(self, executions, started, admin):
        with pytest.raises(ValidationError):
            executions.record_response(started.execution_id, 999999, {"text": "ok"}, admin.user_id)

    def test_response_is_upserted(self, executions, started, admin):
        a, _, _ = task_ids(started, executions)
        first = executions.record_response(started.execution_id, a, {"text": "first"}, admin.user_id)
        second = executions.record_response(started.execution_id, a, {"text": "second"}, admin.user_id)
        assert first.response_id == second.response_id
        assert second.response == {"text": "second"}
        assert len(executions.get_execution(started.execution_id).responses) == 1

    def test_complete_requires_every_required_task(self, executions, started, admin):
        a, _, c = task_ids(started, executions)
        executions.record_response(started.execution_id, a, {"text": "ok"}, admin.user_id)

        with pytest.raises(IncompleteExecutionError) as info:
            executions.complete(started.execution_id, admin.user_id)
        assert [t["task_id"] for t in info.value.missing_tasks] == [c]

        executions.record_response(started.execution_id, c, {"value": 4}, admin.user_id)
        execution = executions.complete(started.execution_id, admin.user_id)
        assert execution.status == "completed"
        assert execution.completed_at is not None

    def test_empty_answer_does_not_count(self, executions, started, admin):
        a, _, c = task_ids(started, executions)
        executions.record_response(started.execution_id, a, {"text": ""}, admin.user_id)
        executions.record_response(started.execution_id, c, {"value": 4}, admin.user_id)
        result = executions.validate_completion(started.execution_id)
        assert result["is_valid"] is False
        assert [t["task_id"] for t in result["missing_required_tasks"]] == [a]

    def test_auto_complete_when_every_task_answered(self, db, executions, started, admin):
        a, b, c = task_ids(started, executions)
        executions.record_response(started.execution_id, a, {"text": "ok"}, admin.user_id)
        executions.record_response(started.execution_id, b, {"text": "quiet"}, admin.user_id)
        assert executions.get_execution(started.execution_id).status == "in_progress"

        response = executions.record_response(started.execution_id, c, {"value": 6.0}, admin.user_id)

        assert response.is_out_of_range
        execution = executions.get_execution(started.execution_id)
        assert execution.status == "completed"
        assert executions.task_summary(execution) == {"total": 3, "completed": 3, "pending": 0, "with_issues": 1}
        events = list_events(db, event_name="form_execution.completed", subject_id=execution.execution_id)
        assert len(events) == 1

    def test_optional_task_unanswered_keeps_execution_open(self, executions, started, admin):
        a, _, c = task_ids(started, executions)
        executions.record_response(started.execution_id, a, {"text": "ok"}, admin.user_id)
        executions.record_response(started.execution_id, c, {"value": 4}, admin.user_id)
        execution = executions.get_execution(started.execution_id)
        assert execution.status == "in_progress"
        assert executions.progress_percentage(execution) == pytest.approx(66.67)

    def test_attachments_are_replaced(self, db, forms, executions, admin):
        form = forms.create_form("Photos", None, admin.user_id)
        forms.add_task(form.form_id, {"type": "photo", "description": "Nameplate"})
        forms.add_task(form.form_id, {"type": "question", "description": "Comment"})
        version = forms.publish(form.form_id, admin.user_id)
        execution = executions.create_execution(admin.user_id, form_version_id=version.form_version_id)
        executions.start(execution.execution_id, admin.user_id)
        photo = task_ids(execution, executions)[0]

        executions.record_response(
            execution.execution_id, photo,
            {"attachments": [{"file_path": "/a.jpg"}, {"file_path": "/b.jpg"}]}, admin.user_id,
        )
        response = executions.record_response(
            execution.execution_id, photo, {"attachments": [{"file_path": "/c.jpg"}]}, admin.user_id
        )
        assert [a.file_path for a in response.attachments] == ["/c.jpg"]

    def test_cancel(self, executions, started, admin):
        execution = executions.cancel(started.execution_id, admin.user_id, "Wrong asset")
        assert execution.status == "cancelled"
        with pytest.raises(StateConflictError):
            executions.cancel(started.execution_id, admin.user_id)

    def test_cannot_cancel_completed(self, executions, started, admin):
        a, b, c = task_ids(started, executions)
        for task_id, payload in ((a, {"text": "x"}), (b, {"text": "y"}), (c, {"value": 4})):
            executions.record_response(started.execution_id, task_id, payload, admin.user_id)
        with pytest.raises(StateConflictError):
            executions.cancel(started.execution_id, admin.user_id)

    def test_unknown_execution(self, executions):
        with pytest.raises(NotFoundError):
            executions.get_execution(424242)
