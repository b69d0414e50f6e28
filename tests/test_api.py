"""HTTP-level tests through the FastAPI app with the database dependency overridden."""

from datetime import timedelta

from db import repositories
from db.models import Token


def _create_asset(client, tag="CMP-001"):
    plant = client.post("/api/v1/plants", json={"name": f"Plant for {tag}"}).json()
    resp = client.post("/api/v1/assets", json={"tag": tag, "plant_id": plant["id"]})
    assert resp.status_code == 201
    return resp.json()


def _publish_form(client):
    form = client.post("/api/v1/forms", json={"name": "Compressor check"}).json()
    client.post(
        f"/api/v1/forms/{form['form_id']}/tasks",
        json={"type": "question", "description": "Oil level ok?"},
    )
    client.post(
        f"/api/v1/forms/{form['form_id']}/tasks",
        json={
            "type": "measurement",
            "description": "Outlet pressure",
            "configuration": {"min": 3, "max": 5, "unit": "bar"},
        },
    )
    resp = client.post(f"/api/v1/forms/{form['form_id']}/publish")
    assert resp.status_code == 201
    return form, resp.json()


class TestHealth:
    def test_ping(self, client):
        resp = client.get("/ping")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "ping": "pong"}


class TestRoutineToCompletion:
    def test_due_routine_runs_through_to_completed_execution(self, client):
        asset = _create_asset(client)
        form, version = _publish_form(client)
        routine = client.post(
            "/api/v1/routines",
            json={
                "asset_id": asset["asset_id"],
                "name": "Compressor service",
                "trigger_type": "runtime_hours",
                "trigger_runtime_hours": 100,
                "advance_generation_hours": 10,
                "last_execution_runtime_hours": 80,
                "execution_mode": "automatic",
                "auto_approve_work_orders": True,
                "form_id": form["form_id"],
            },
        ).json()
        assert routine["active_form_version_id"] == version["form_version_id"]

        resp = client.post(f"/api/v1/assets/{asset['asset_id']}/runtime", json={"reported_hours": 190})
        assert resp.status_code == 201

        status = client.get(f"/api/v1/routines/{routine['routine_id']}/status").json()
        assert status["hours_until_due"] == 0
        assert status["should_generate_work_order"] is True

        generated = client.post("/api/v1/routines/generate-due").json()
        assert len(generated) == 1
        work_order = generated[0]
        assert work_order["status"] == "approved"
        assert work_order["source"] == {
            "kind": "routine", "routine_id": routine["routine_id"], "requested_by": None, "work_order_id": None,
        }
        assert work_order["form_snapshot"]["form_version_id"] == version["form_version_id"]
        assert client.post("/api/v1/routines/generate-due").json() == []

        started = client.post(f"/api/v1/work-orders/{work_order['work_order_id']}/start").json()
        assert started["work_order"]["status"] == "in_progress"
        execution = started["execution"]
        assert execution["status"] == "in_progress"
        question, measurement = [t["task_id"] for t in execution["form_snapshot"]["tasks"]]

        resp = client.post(f"/api/v1/form-executions/{execution['execution_id']}/complete")
        assert resp.status_code == 409
        assert len(resp.json()["detail"]["missing_required_tasks"]) == 2

        client.post(
            f"/api/v1/form-executions/{execution['execution_id']}/responses",
            json={"task_id": question, "response": {"text": "yes"}},
        )
        resp = client.post(
            f"/api/v1/form-executions/{execution['execution_id']}/responses",
            json={"task_id": measurement, "response": {"value": 6.0}},
        )
        assert resp.status_code == 200
        assert resp.json()["is_out_of_range"] is True

        execution = client.get(f"/api/v1/form-executions/{execution['execution_id']}").json()
        assert execution["status"] == "completed"
        assert execution["progress_percentage"] == 100.0

        work_order = client.get(f"/api/v1/work-orders/{work_order['work_order_id']}").json()
        assert work_order["status"] == "completed"

        routine = client.get(f"/api/v1/routines/{routine['routine_id']}").json()
        assert routine["last_execution_runtime_hours"] == 190
        assert routine["last_execution_form_version_id"] == version["form_version_id"]
        assert routine["last_execution_completed_at"] is not None


class TestWorkOrderEndpoints:
    def _manual_order(self, client, db):
        asset = _create_asset(client, tag="FAN-001")
        corrective = repositories.category_by_code(db, "corrective")
        resp = client.post(
            "/api/v1/work-orders",
            json={"title": "Vibration", "work_order_category_id": corrective.category_id, "asset_id": asset["asset_id"]},
        )
        assert resp.status_code == 201
        return resp.json()

    def test_illegal_transition_is_a_conflict(self, client, db):
        work_order = self._manual_order(client, db)
        wo_id = work_order["work_order_id"]
        assert client.post(f"/api/v1/work-orders/{wo_id}/approve").json()["status"] == "approved"

        resp = client.post(f"/api/v1/work-orders/{wo_id}/transition", json={"new_status": "closed"})
        assert resp.status_code == 409
        assert client.get(f"/api/v1/work-orders/{wo_id}").json()["status"] == "approved"

        history = client.get(f"/api/v1/work-orders/{wo_id}/history").json()
        assert [h["new_status"] for h in history] == ["requested", "approved"]

    def test_reject_needs_reason(self, client, db):
        work_order = self._manual_order(client, db)
        resp = client.post(f"/api/v1/work-orders/{work_order['work_order_id']}/reject", json={"reason": ""})
        assert resp.status_code == 422

    def test_status_summary(self, client, db):
        self._manual_order(client, db)
        summary = client.get("/api/v1/work-orders/status-summary").json()
        assert summary["requested"] == 1
        assert summary["total"] == 1

    def test_completion_with_unanswered_form_is_a_conflict(self, client):
        asset = _create_asset(client, tag="PMP-009")
        form, _ = _publish_form(client)
        routine = client.post(
            "/api/v1/routines",
            json={
                "asset_id": asset["asset_id"],
                "name": "Pump check",
                "trigger_type": "runtime_hours",
                "trigger_runtime_hours": 100,
                "execution_mode": "automatic",
                "auto_approve_work_orders": True,
                "form_id": form["form_id"],
            },
        ).json()
        work_order = client.post("/api/v1/routines/generate-due").json()[0]
        wo_id = work_order["work_order_id"]
        execution = client.post(f"/api/v1/work-orders/{wo_id}/start").json()["execution"]

        resp = client.post(f"/api/v1/work-orders/{wo_id}/transition", json={"new_status": "completed"})
        assert resp.status_code == 409
        assert len(resp.json()["detail"]["missing_required_tasks"]) == 2
        assert client.post(f"/api/v1/work-orders/{wo_id}/complete").status_code == 409

        assert client.get(f"/api/v1/work-orders/{wo_id}").json()["status"] == "in_progress"
        assert client.get(f"/api/v1/form-executions/{execution['execution_id']}").json()["status"] == "in_progress"
        assert client.get(f"/api/v1/routines/{routine['routine_id']}").json()["last_execution_completed_at"] is None

    def test_unknown_work_order(self, client):
        assert client.get("/api/v1/work-orders/424242").status_code == 404

    def test_category_mismatch_is_unprocessable(self, client, db):
        asset = _create_asset(client, tag="GEN-001")
        calibration = repositories.category_by_code(db, "calibration")
        resp = client.post(
            "/api/v1/work-orders",
            json={"title": "Calibrate", "work_order_category_id": calibration.category_id, "asset_id": asset["asset_id"]},
        )
        assert resp.status_code == 422


class TestFormEndpoints:
    def test_publish_without_tasks_is_a_conflict(self, client):
        form = client.post("/api/v1/forms", json={"name": "Empty"}).json()
        assert client.post(f"/api/v1/forms/{form['form_id']}/publish").status_code == 409
        assert client.get(f"/api/v1/forms/{form['form_id']}/versions").json() == []

    def test_compare_versions(self, client):
        form, v1 = _publish_form(client)
        client.post(
            f"/api/v1/forms/{form['form_id']}/tasks",
            json={"type": "photo", "description": "Nameplate photo", "is_required": False},
        )
        assert client.get(f"/api/v1/forms/{form['form_id']}/draft-changes").json() == {"has_draft_changes": True}
        v2 = client.post(f"/api/v1/forms/{form['form_id']}/publish").json()
        resp = client.get(
            f"/api/v1/forms/{form['form_id']}/versions/compare",
            params={"v1": v1["form_version_id"], "v2": v2["form_version_id"]},
        )
        assert resp.status_code == 200
        assert [c["position"] for c in resp.json()["changes"]["added"]] == [3]


class TestRuntimeEndpoints:
    def test_negative_runtime_is_rejected(self, client):
        asset = _create_asset(client)
        resp = client.post(f"/api/v1/assets/{asset['asset_id']}/runtime", json={"reported_hours": -5})
        assert resp.status_code == 422
        assert client.get(f"/api/v1/assets/{asset['asset_id']}").json()["current_runtime_hours"] is None

    def test_summary(self, client):
        asset = _create_asset(client)
        client.post(f"/api/v1/assets/{asset['asset_id']}/runtime", json={"reported_hours": 12.5})
        summary = client.get(f"/api/v1/assets/{asset['asset_id']}/runtime/summary").json()
        assert summary["current_runtime_hours"] == 12.5


class TestRoles:
    def test_technician_cannot_run_generation(self, tech_client):
        assert tech_client.post("/api/v1/routines/generate-due").status_code == 403

    def test_technician_cannot_publish(self, tech_client):
        form = tech_client.post("/api/v1/forms", json={"name": "Draft"}).json()
        assert tech_client.post(f"/api/v1/forms/{form['form_id']}/publish").status_code == 403

    def test_admin_creates_users(self, client):
        resp = client.post(
            "/api/v1/admin/users",
            json={"username": "planner1", "email": "planner1@example.com", "password": "planner-pass", "roles": ["planner"]},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["roles"] == ["planner"]
        assert "routines.manage" in body["permissions"]

    def test_audit_log_listing(self, client):
        _create_asset(client)
        client.post("/api/v1/forms", json={"name": "Audited"})
        assert client.get("/api/v1/admin/audit-logs").status_code == 200


class TestAuthentication:
    def test_login_me_logout(self, anon_client, admin):
        resp = anon_client.post("/api/v1/login", json={"email": "admin@example.com", "password": "admin-password"})
        assert resp.status_code == 200
        token = resp.json()["token"]["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        me = anon_client.get("/api/v1/users/me", headers=headers)
        assert me.status_code == 200
        assert me.json()["roles"] == ["admin"]
        assert me.json()["full_name"] == "admin"

        assert anon_client.post("/api/v1/logout", headers=headers).status_code == 200
        assert anon_client.get("/api/v1/users/me", headers=headers).status_code == 401

    def test_wrong_password(self, anon_client, admin):
        resp = anon_client.post("/api/v1/login", json={"email": "admin@example.com", "password": "nope"})
        assert resp.status_code == 401

    def test_expired_token_is_rejected(self, anon_client, admin, db):
        resp = anon_client.post("/api/v1/login", json={"email": "admin@example.com", "password": "admin-password"})
        token = resp.json()["token"]["access_token"]
        stored = db.query(Token).filter(Token.access_token == token).one()
        stored.expires_at = stored.created_at - timedelta(minutes=1)
        db.commit()
        assert anon_client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401
