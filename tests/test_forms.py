import pydantic
import pytest

from db.models import FormVersion
from api.services.audit import list_events
from api.services.exceptions import NotFoundError, StateConflictError, ValidationError
from api.services.form_execution import FormExecutionService
from api.services.snapshots import FormSnapshot


@pytest.fixture()
def form(forms, admin):
    return forms.create_form("Valve check", None, admin.user_id)


class TestDraftTasks:
    def test_tasks_are_appended_in_order(self, forms, form):
        first = forms.add_task(form.form_id, {"type": "question", "description": "Leaks?"})
        second = forms.add_task(form.form_id, {"type": "photo", "description": "Photo of valve"})
        assert (first.position, second.position) == (1, 2)

    def test_description_is_required(self, forms, form):
        with pytest.raises(ValidationError):
            forms.add_task(form.form_id, {"type": "question", "description": "   "})

    def test_choice_tasks_need_options(self, forms, form):
        with pytest.raises(ValidationError):
            forms.add_task(form.form_id, {"type": "multiple_choice", "description": "State", "configuration": {}})

    def test_measurement_bounds_must_be_ordered(self, forms, form):
        with pytest.raises(ValidationError):
            forms.add_task(
                form.form_id,
                {"type": "measurement", "description": "Pressure", "configuration": {"min": 5, "max": 3}},
            )

    def test_unknown_task_type(self, forms, form):
        with pytest.raises(ValidationError):
            forms.add_task(form.form_id, {"type": "signature", "description": "Sign"})

    def test_delete_renumbers(self, forms, form):
        a = forms.add_task(form.form_id, {"type": "question", "description": "A"})
        forms.add_task(form.form_id, {"type": "question", "description": "B"})
        forms.add_task(form.form_id, {"type": "question", "description": "C"})
        forms.delete_task(form.form_id, a.task_id)
        assert [(t.description, t.position) for t in forms.draft_tasks(form.form_id)] == [("B", 1), ("C", 2)]

    def test_reorder(self, forms, form):
        a = forms.add_task(form.form_id, {"type": "question", "description": "A"})
        b = forms.add_task(form.form_id, {"type": "question", "description": "B"})
        reordered = forms.reorder_tasks(form.form_id, [b.task_id, a.task_id])
        assert [t.description for t in reordered] == ["B", "A"]

    def test_reorder_must_list_every_task(self, forms, form):
        a = forms.add_task(form.form_id, {"type": "question", "description": "A"})
        forms.add_task(form.form_id, {"type": "question", "description": "B"})
        with pytest.raises(ValidationError):
            forms.reorder_tasks(form.form_id, [a.task_id])

    def test_instructions(self, forms, form):
        task = forms.add_task(form.form_id, {"type": "question", "description": "A"})
        text = forms.add_instruction(form.form_id, task.task_id, {"type": "text", "content": "Close valve first"})
        forms.add_instruction(form.form_id, task.task_id, {"type": "image", "media_path": "/media/valve.png"})
        with pytest.raises(ValidationError):
            forms.add_instruction(form.form_id, task.task_id, {"type": "video"})
        forms.delete_instruction(form.form_id, task.task_id, text.instruction_id)
        assert [(i.type, i.position) for i in forms.draft_tasks(form.form_id)[0].instructions] == [("image", 1)]


class TestPublish:
    def test_publish_without_tasks_creates_no_version(self, db, forms, form, admin):
        with pytest.raises(StateConflictError):
            forms.publish(form.form_id, admin.user_id)
        assert db.query(FormVersion).filter(FormVersion.form_id == form.form_id).count() == 0

    def test_publish_with_empty_description_creates_no_version(self, db, forms, form, admin):
        task = forms.add_task(form.form_id, {"type": "question", "description": "A"})
        task.description = ""
        db.commit()
        with pytest.raises(ValidationError):
            forms.publish(form.form_id, admin.user_id)
        assert db.query(FormVersion).filter(FormVersion.form_id == form.form_id).count() == 0

    def test_versions_are_numbered_and_current(self, forms, form, admin):
        forms.add_task(form.form_id, {"type": "question", "description": "A"})
        v1 = forms.publish(form.form_id, admin.user_id)
        forms.add_task(form.form_id, {"type": "question", "description": "B"})
        v2 = forms.publish(form.form_id, admin.user_id)
        assert (v1.version_number, v2.version_number) == (1, 2)
        assert forms.get_form(form.form_id).current_version_id == v2.form_version_id
        assert [t.description for t in v2.tasks] == ["A", "B"]
        assert [t.description for t in v1.tasks] == ["A"]

    def test_publish_repoints_routines(self, db, forms, make_routine, admin):
        routine = make_routine()
        forms.add_task(routine.form_id, {"type": "question", "description": "A"})
        version = forms.publish(routine.form_id, admin.user_id)
        db.refresh(routine)
        assert routine.active_form_version_id == version.form_version_id

    def test_publish_is_audited(self, db, published_form):
        form, version = published_form
        events = list_events(db, event_name="form.published", subject_id=form.form_id)
        assert events[0].after_state == str(version.form_version_id)

    def test_draft_changes(self, forms, published_form):
        form, _ = published_form
        assert not forms.has_draft_changes(form.form_id)
        forms.add_task(form.form_id, {"type": "question", "description": "D"})
        assert forms.has_draft_changes(form.form_id)


class TestSnapshots:
    def test_snapshot_survives_later_publish(self, db, forms, published_form, admin):
        form, version = published_form
        executions = FormExecutionService(db)
        execution = executions.create_execution(admin.user_id, form_version_id=version.form_version_id)
        before = FormSnapshot.model_validate(execution.form_snapshot)

        draft = forms.draft_tasks(form.form_id)[0]
        forms.update_task(form.form_id, draft.task_id, {"description": "A: check seal and gland"})
        forms.publish(form.form_id, admin.user_id)

        db.refresh(execution)
        after = FormSnapshot.model_validate(execution.form_snapshot)
        assert after == before
        assert after.tasks[0].description == "A: check seal"

    def test_stored_snapshot_restores_order(self, published_form):
        _, version = published_form
        snapshot = FormSnapshot.from_version(version)
        data = snapshot.model_dump(mode="json")
        data["tasks"].reverse()
        assert FormSnapshot.model_validate(data).tasks == snapshot.tasks
        assert [t.task_id for t in snapshot.required_tasks] == [snapshot.tasks[0].task_id, snapshot.tasks[2].task_id]

    def test_snapshot_is_frozen(self, published_form):
        snapshot = FormSnapshot.from_version(published_form[1])
        with pytest.raises(pydantic.ValidationError):
            snapshot.tasks[0].description = "changed"


class TestVersionManagement:
    def test_cannot_deactivate_current_version(self, forms, published_form, admin):
        form, version = published_form
        with pytest.raises(StateConflictError):
            forms.deactivate(form.form_id, version.form_version_id, admin.user_id)

    def test_cannot_deactivate_version_with_executions(self, db, forms, published_form, admin):
        form, v1 = published_form
        FormExecutionService(db).create_execution(admin.user_id, form_version_id=v1.form_version_id)
        forms.publish(form.form_id, admin.user_id)
        with pytest.raises(StateConflictError):
            forms.deactivate(form.form_id, v1.form_version_id, admin.user_id)

    def test_deactivated_version_cannot_start_executions(self, db, forms, published_form, admin):
        form, v1 = published_form
        forms.publish(form.form_id, admin.user_id)
        version = forms.deactivate(form.form_id, v1.form_version_id, admin.user_id)
        assert version.is_active is False
        with pytest.raises(StateConflictError):
            FormExecutionService(db).create_execution(admin.user_id, form_version_id=v1.form_version_id)

    def test_compare_versions(self, forms, published_form, admin):
        form, v1 = published_form
        drafts = forms.draft_tasks(form.form_id)
        forms.update_task(form.form_id, drafts[1].task_id, {"is_required": True})
        forms.delete_task(form.form_id, drafts[2].task_id)
        v2 = forms.publish(form.form_id, admin.user_id)

        result = forms.compare_versions(form.form_id, v1.form_version_id, v2.form_version_id)
        changes = result["changes"]
        assert result["version1"]["task_count"] == 3
        assert result["version2"]["task_count"] == 2
        assert [c["position"] for c in changes["modified"]] == [2]
        assert [c["position"] for c in changes["removed"]] == [3]
        assert changes["added"] == []

    def test_version_of_another_form(self, forms, published_form, admin):
        _, version = published_form
        other = forms.create_form("Other", None, admin.user_id)
        with pytest.raises(NotFoundError):
            forms.get_version(other.form_id, version.form_version_id)
