import uuid

import pytest
from pydantic import ValidationError as SchemaValidationError

from kehub.auth.security import verify_password
from kehub.models.models import (
    ActivityLog,
    ElectricianDetail,
    Issue,
    Notification,
    Task,
    TaskCompletion,
    TaskRating,
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    TASK_IN_PROGRESS,
    USER_ACTIVE,
    USER_INACTIVE,
)
from kehub.schemas.tasks import TaskComplete
from kehub.schemas.users import UserCreate, UserUpdate, is_sri_lankan_phone, is_valid_full_name
from kehub.services import task_service, user_service
from kehub.services.errors import (
    LastAdminProtected,
    NotFound,
    ReferentialConflict,
    SelfDeleteForbidden,
    ValidationError,
)


def _create_payload(**overrides) -> UserCreate:
    data = {
        "username": "sunil",
        "email": "Sunil@Example.com",
        "password": "secret1",
        "full_name": "Sunil Fernando",
        "phone": "077-123 4567",
        "role": ROLE_ELECTRICIAN,
        "employee_code": "EL010",
        "skills": "Solar",
    }
    data.update(overrides)
    return UserCreate(**data)


class TestDeleteUser:
    def test_cannot_delete_self(self, session, admin, make_user):
        make_user(ROLE_ADMIN)
        with pytest.raises(SelfDeleteForbidden):
            user_service.delete_user(session, admin.id, admin)

    def test_cannot_delete_sole_active_admin(self, session, admin, make_user):
        actor = make_user(ROLE_ADMIN, status=USER_INACTIVE)

        with pytest.raises(LastAdminProtected):
            user_service.delete_user(session, admin.id, actor)

        assert session.query(User).filter_by(id=admin.id).count() == 1

    def test_can_delete_admin_when_another_is_active(self, session, admin, make_user):
        other = make_user(ROLE_ADMIN)
        user_service.delete_user(session, other.id, admin)
        assert session.query(User).filter_by(id=other.id).count() == 0

    def test_inactive_admin_can_be_deleted_beside_sole_active_admin(self, session, admin, make_user):
        retired = make_user(ROLE_ADMIN, status=USER_INACTIVE)

        user_service.delete_user(session, retired.id, admin)

        assert session.query(User).filter_by(id=retired.id).count() == 0

    def test_missing_user(self, session, admin):
        with pytest.raises(NotFound):
            user_service.delete_user(session, uuid.uuid4(), admin)

    def test_electrician_cascade_preserves_tasks(self, session, admin, manager, electrician, new_task):
        task = new_task(manager, electrician)
        task_service.complete_task(session, task.id, electrician, TaskComplete(completion_notes="ok"))
        task_service.add_task_rating(session, task.id, 4, None, manager)
        electrician_id, task_id = electrician.id, task.id

        user_service.delete_user(session, electrician_id, admin)

        assert session.query(User).filter_by(id=electrician_id).count() == 0
        assert session.query(ElectricianDetail).filter_by(electrician_id=electrician_id).count() == 0
        assert session.query(Notification).filter_by(user_id=electrician_id).count() == 0
        assert session.query(ActivityLog).filter_by(user_id=electrician_id).count() == 0
        assert session.query(TaskCompletion).filter_by(task_id=task_id).count() == 0
        assert session.query(TaskRating).filter_by(task_id=task_id).count() == 0
        remaining = session.query(Task).filter_by(id=task_id).one()
        assert remaining.assigned_to is None

        log = session.query(ActivityLog).filter_by(user_id=admin.id, action="Delete User").one()
        assert "Eric Electrician" in log.description

    def test_created_tasks_move_to_remaining_admin(self, session, admin, manager, new_task):
        task = new_task(manager)
        manager_id, task_id = manager.id, task.id

        user_service.delete_user(session, manager_id, admin)

        assert session.query(Task).filter_by(id=task_id).one().created_by == admin.id

    def test_reported_issue_blocks_delete(self, session, admin, manager, electrician, new_task):
        task = new_task(manager, electrician)
        session.add(Issue(task_id=task.id, reported_by=electrician.id, issue_type="Access", description="Gate locked"))
        session.commit()

        with pytest.raises(ReferentialConflict) as exc:
            user_service.delete_user(session, electrician.id, admin)

        assert "associated records" in exc.value.message
        assert session.query(User).filter_by(id=electrician.id).count() == 1
        assert session.query(Task).filter_by(id=task.id).one().assigned_to == electrician.id


class TestCreateAndUpdateUser:
    def test_create_electrician_with_detail(self, session, admin):
        user = user_service.create_user(session, admin, _create_payload())

        assert user.email == "sunil@example.com"
        assert user.phone == "0771234567"
        assert verify_password("secret1", user.password_hash)
        detail = session.query(ElectricianDetail).filter_by(electrician_id=user.id).one()
        assert detail.skills == "Solar"
        assert detail.rating == 0.0

    def test_duplicate_email_rejected(self, session, admin):
        user_service.create_user(session, admin, _create_payload())
        with pytest.raises(ValidationError):
            user_service.create_user(session, admin, _create_payload(username="other", employee_code=None))

    def test_update_creates_missing_detail(self, session, admin, electrician):
        payload = UserUpdate(full_name="Eric E.", phone="+94 77 123 4567", status=USER_ACTIVE, skills="HV")

        user_service.update_user(session, electrician.id, admin, payload)

        session.refresh(electrician)
        assert electrician.full_name == "Eric E."
        assert electrician.phone == "+94771234567"
        detail = session.query(ElectricianDetail).filter_by(electrician_id=electrician.id).one()
        assert detail.skills == "HV"

    def test_cannot_deactivate_last_admin(self, session, admin):
        with pytest.raises(LastAdminProtected):
            user_service.toggle_user_status(session, admin.id, admin)

    def test_toggle_status(self, session, admin, electrician):
        assert user_service.toggle_user_status(session, electrician.id, admin) == USER_INACTIVE
        assert user_service.toggle_user_status(session, electrician.id, admin) == USER_ACTIVE

    def test_reset_password(self, session, admin, electrician):
        with pytest.raises(ValidationError):
            user_service.reset_password(session, electrician.id, admin, "123")

        user_service.reset_password(session, electrician.id, admin, "newpass1")
        session.refresh(electrician)
        assert verify_password("newpass1", electrician.password_hash)


class TestValidation:
    @pytest.mark.parametrize("phone", ["0771234567", "771234567", "+94771234567", "077 123-4567"])
    def test_valid_phones(self, phone):
        assert is_sri_lankan_phone(phone)

    @pytest.mark.parametrize("phone", ["0112345678", "07712345", "+1 555 123 4567", ""])
    def test_invalid_phones(self, phone):
        assert not is_sri_lankan_phone(phone)

    @pytest.mark.parametrize("name,ok", [("Ann", True), ("A", False), ("12345", False), ("R2D2 99999", False)])
    def test_full_name(self, name, ok):
        assert is_valid_full_name(name) is ok

    def test_schema_rejects_bad_role(self):
        with pytest.raises(SchemaValidationError):
            _create_payload(role="Owner")


def test_list_electricians_orders_by_rating(session, make_user, manager, new_task):
    low = make_user(ROLE_ELECTRICIAN, full_name="Low Rated")
    high = make_user(ROLE_ELECTRICIAN, full_name="High Rated")
    make_user(ROLE_ELECTRICIAN, status=USER_INACTIVE)
    busy = new_task(manager, high)
    task_service.update_task_status(session, busy.id, TASK_IN_PROGRESS, high)
    task_service.add_task_rating(session, busy.id, 5, None, manager)
    rated_low = new_task(manager, low, title="Other")
    task_service.add_task_rating(session, rated_low.id, 2, None, manager)

    rows = user_service.list_electricians(session)

    assert [r["full_name"] for r in rows] == ["High Rated", "Low Rated"]
    assert rows[0]["current_tasks"] == 1
    assert rows[1]["current_tasks"] == 0


def test_list_users_filters(session, admin, manager, electrician):
    managers = user_service.list_users(session, role=ROLE_MANAGER)
    assert [u.id for u in managers] == [manager.id]


def test_seed_users_is_idempotent(database, session):
    from scripts.seed_users import DEFAULT_PASSWORD, seed

    seed(database)
    seed(database)

    users = session.query(User).order_by(User.email).all()
    assert [u.role for u in users] == [ROLE_ADMIN, ROLE_ELECTRICIAN, ROLE_MANAGER]
    assert all(verify_password(DEFAULT_PASSWORD, u.password_hash) for u in users)
    assert session.query(ElectricianDetail).count() == 1
