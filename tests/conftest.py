"""Shared fixtures: an in-memory database seeded with the work order catalog and roles."""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.database import Base, get_db
from db.models import Asset, Plant
from db.seed import seed_all
from api.services.forms import FormService
from api.services.routines import RoutineService
from api.services.runtime import RuntimeService
from api.services.users import create_user
from auth.auth import get_current_user
from main import app


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    seed_all(session)
    yield session
    session.close()


@pytest.fixture()
def admin(db):
    return create_user(db, "admin", "admin@example.com", "admin-password", roles=["admin"])


@pytest.fixture()
def technician(db):
    return create_user(db, "tech", "tech@example.com", "tech-password", roles=["technician"])


@pytest.fixture()
def asset(db):
    plant = Plant(name="North plant")
    db.add(plant)
    db.flush()
    pump = Asset(tag="PUMP-001", description="Cooling water pump", plant_id=plant.plant_id)
    db.add(pump)
    db.commit()
    db.refresh(pump)
    return pump


@pytest.fixture()
def runtime(db):
    return RuntimeService(db)


@pytest.fixture()
def routines(db):
    return RoutineService(db)


@pytest.fixture()
def forms(db):
    return FormService(db)


@pytest.fixture()
def published_form(forms, admin):
    """Form with required A, optional B, required C (measurement 3..5), published as version 1."""
    form = forms.create_form("Pump inspection", "Monthly pump checks", admin.user_id)
    forms.add_task(form.form_id, {"type": "question", "description": "A: check seal", "is_required": True})
    forms.add_task(form.form_id, {"type": "question", "description": "B: notes", "is_required": False})
    forms.add_task(
        form.form_id,
        {
            "type": "measurement",
            "description": "C: discharge pressure",
            "is_required": True,
            "configuration": {"min": 3, "max": 5, "unit": "bar"},
        },
    )
    version = forms.publish(form.form_id, admin.user_id)
    return form, version


@pytest.fixture()
def make_routine(db, routines, admin, asset):
    def factory(**overrides):
        data = {
            "asset_id": asset.asset_id,
            "name": "Pump service",
            "trigger_type": "runtime_hours",
            "trigger_runtime_hours": 500,
            "execution_mode": "automatic",
        }
        data.update(overrides)
        return routines.create_routine(data, admin.user_id)
    return factory


@pytest.fixture()
def now():
    return datetime(2026, 3, 15, 12, 0, 0)


def _override_db(db):
    def override():
        yield db
    return override


@pytest.fixture()
def client(db, admin):
    app.dependency_overrides[get_db] = _override_db(db)
    app.dependency_overrides[get_current_user] = lambda: admin
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def tech_client(db, technician):
    app.dependency_overrides[get_db] = _override_db(db)
    app.dependency_overrides[get_current_user] = lambda: technician
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def anon_client(db):
    app.dependency_overrides[get_db] = _override_db(db)
    yield TestClient(app)
    app.dependency_overrides.clear()
