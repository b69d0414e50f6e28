import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.database import atomic
from db.models import (
    Discipline, Permission, Role, RolePermission, SourceType, WorkOrderCategory, WorkOrderType,
)

logger = logging.getLogger(__name__)

WORK_ORDER_CATALOG = [
    # code, name, discipline, allowed sources, types
    ("preventive", "Preventive", Discipline.MAINTENANCE, [SourceType.ROUTINE, SourceType.MANUAL],
     [("preventive_routine", "Preventive routine")]),
    ("corrective", "Corrective", Discipline.MAINTENANCE, [SourceType.MANUAL, SourceType.WORK_ORDER],
     [("corrective_repair", "Corrective repair"), ("breakdown", "Breakdown")]),
    ("inspection", "Inspection", Discipline.MAINTENANCE, None,
     [("visual_inspection", "Visual inspection")]),
    ("calibration", "Calibration", Discipline.QUALITY, [SourceType.MANUAL],
     [("instrument_calibration", "Instrument calibration")]),
    ("quality_control", "Quality control", Discipline.QUALITY, [SourceType.MANUAL, SourceType.WORK_ORDER],
     [("quality_check", "Quality check")]),
]

PERMISSIONS = {
    "work-orders.approve": "Approve work orders and enable auto-approval on routines",
    "work-orders.create": "Request work orders",
    "routines.manage": "Create and edit maintenance routines",
    "forms.publish": "Publish and deactivate form versions",
    "runtime.record": "Record asset runtime measurements",
}

ROLES = {
    "admin": list(PERMISSIONS),
    "supervisor": ["work-orders.approve", "work-orders.create", "routines.manage", "forms.publish", "runtime.record"],
    "planner": ["work-orders.create", "routines.manage", "runtime.record"],
    "technician": ["runtime.record"],
}


def seed_work_order_catalog(db: Session) -> None:
    with atomic(db):
        for code, name, discipline, sources, types in WORK_ORDER_CATALOG:
            category = db.execute(select(WorkOrderCategory).where(WorkOrderCategory.code == code)).scalar_one_or_none()
            if category is None:
                category = WorkOrderCategory(
                    code=code,
                    name=name,
                    discipline=discipline.value,
                    allowed_sources=[s.value for s in sources] if sources else None,
                )
                db.add(category)
                db.flush()
            for type_code, type_name in types:
                exists = db.execute(select(WorkOrderType).where(WorkOrderType.code == type_code)).scalar_one_or_none()
                if exists is None:
                    db.add(WorkOrderType(code=type_code, name=type_name, category_id=category.category_id))
    logger.info("Work order catalog seeded")


def seed_roles_and_permissions(db: Session) -> None:
    with atomic(db):
        permissions = {}
        for feature, description in PERMISSIONS.items():
            permission = db.execute(select(Permission).where(Permission.feature == feature)).scalar_one_or_none()
            if permission is None:
                permission = Permission(feature=feature, description=description)
                db.add(permission)
                db.flush()
            permissions[feature] = permission

        for role_name, features in ROLES.items():
            role = db.execute(select(Role).where(Role.role_name == role_name)).scalar_one_or_none()
            if role is None:
                role = Role(role_name=role_name, description=f"{role_name.title()} role")
                db.add(role)
                db.flush()
            granted = {rp.permission_id for rp in role.permissions}
            for feature in features:
                if permissions[feature].permission_id not in granted:
                    db.add(RolePermission(role_id=role.role_id, permission_id=permissions[feature].permission_id))
    logger.info("Roles and permissions seeded")


def seed_all(db: Session) -> None:
    seed_work_order_catalog(db)
    seed_roles_and_permissions(db)
