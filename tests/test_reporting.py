import pytest

from kehub.models.models import (
    Notification,
    Report,
    ROLE_ELECTRICIAN,
    TASK_IN_PROGRESS,
    USER_INACTIVE,
)
from kehub.schemas.tasks import TaskComplete
from kehub.services import audit, notifications, reporting, task_service
from kehub.services.errors import Forbidden, ValidationError


@pytest.mark.parametrize("count,avg,label", [
    (0, None, "No Tasks"),
    (2, None, "No Ratings"),
    (1, 4.5, "Excellent"),
    (1, 4.2, "Very Good"),
    (1, 3.5, "Good"),
    (1, 3.0, "Satisfactory"),
    (1, 2.9, "Needs Improvement"),
])
def test_performance_label(count, avg, label):
    assert reporting.performance_label(count, avg) == label


class TestDashboardStats:
    def test_admin_sees_system_totals(self, session, admin, manager, electrician, make_user, new_task):
        make_user(ROLE_ELECTRICIAN, status=USER_INACTIVE)
        new_task(manager)

        stats = reporting.dashboard_stats(session, admin)

        assert stats["totalUsers"] == 4
        assert stats["activeUsers"] == 3
        assert stats["inactiveUsers"] == 1
        assert stats["totalElectricians"] == 2
        assert stats["totalTasks"] == 1
        assert stats["pendingTasks"] == 1

    def test_manager_counts_own_tasks(self, session, manager, electrician, new_task):
        new_task(manager)
        new_task(manager, electrician, title="Assigned job")

        stats = reporting.dashboard_stats(session, manager)

        assert stats["totalTasks"] == 2
        assert stats["pendingTasks"] == 1
        assert stats["assignedTasks"] == 1
        assert stats["availableElectricians"] == 1
        assert stats["todayTasks"] == 2

    def test_electrician_counts_assigned_tasks(self, session, manager, electrician, new_task):
        task = new_task(manager, electrician)
        new_task(manager, electrician, title="Second")
        task_service.complete_task(session, task.id, electrician, TaskComplete())

        stats = reporting.dashboard_stats(session, electrician)

        assert stats["totalTasks"] == 2
        assert stats["completedTasks"] == 1
        assert stats["assignedTasks"] == 1
        assert stats["todayTasks"] == 2
        assert stats["todayCompleted"] == 1


class TestGenerateReport:
    def test_user_performance(self, session, manager, electrician, make_user, new_task):
        idle = make_user(ROLE_ELECTRICIAN, full_name="Idle Ian")
        task = new_task(manager, electrician)
        task_service.update_task_status(session, task.id, TASK_IN_PROGRESS, electrician)
        task_service.complete_task(session, task.id, electrician, TaskComplete())
        task_service.add_task_rating(session, task.id, 5, None, manager)
        new_task(manager, electrician, title="Open job")

        data = reporting.generate_report(session, manager, "user_performance")

        rows = {r["full_name"]: r for r in data["performance"]}
        assert rows["Eric Electrician"]["total_tasks"] == 2
        assert rows["Eric Electrician"]["completed_tasks"] == 1
        assert rows["Eric Electrician"]["avg_rating"] == 5.0
        assert rows["Eric Electrician"]["performance_rating"] == "Excellent"
        assert rows["Eric Electrician"]["avg_completion_time"] is not None
        assert rows[idle.full_name]["performance_rating"] == "No Tasks"
        assert data["summary"] == {
            "total_electricians": 2,
            "total_tasks_assigned": 2,
            "total_completed": 1,
            "overall_avg_rating": 5.0,
            "best_performer": "Eric Electrician",
        }

    def test_report_request_is_recorded(self, session, admin):
        reporting.generate_report(session, admin, "user_performance")

        row = session.query(Report).one()
        assert row.report_type == "user_performance"
        assert row.generated_by == admin.id

    def test_electrician_forbidden(self, session, electrician):
        with pytest.raises(Forbidden):
            reporting.generate_report(session, electrician, "user_performance")

    def test_unknown_report_type(self, session, manager):
        with pytest.raises(ValidationError):
            reporting.generate_report(session, manager, "revenue")


class TestFeeds:
    def test_admin_feed_includes_everyone(self, session, admin, manager, electrician, new_task):
        task = new_task(manager, electrician)
        task_service.update_task_status(session, task.id, TASK_IN_PROGRESS, electrician)

        admin_feed = audit.recent_activities(session, admin)
        electrician_feed = audit.recent_activities(session, electrician)

        assert {a["user_name"] for a in admin_feed} == {manager.full_name, electrician.full_name}
        assert [a["action"] for a in electrician_feed] == ["Task Status Update"]
        assert "user_name" not in electrician_feed[0]

    def test_mark_read_touches_only_owner_rows(self, session, manager, electrician, new_task):
        new_task(manager, electrician)
        note = session.query(Notification).filter_by(user_id=electrician.id).one()

        assert notifications.mark_notification_read(session, manager, note.id) is False
        session.refresh(note)
        assert note.is_read is False

        assert notifications.mark_notification_read(session, electrician, note.id) is True
        session.refresh(note)
        assert note.is_read is True

    def test_list_notifications_limit(self, session, manager, new_task):
        for i in range(12):
            new_task(manager, title=f"Job {i}")

        assert len(notifications.list_notifications(session, manager)) == 10
