import uuid
from datetime import date, timedelta

import pytest

from kehub.models.models import (
    Issue,
    Notification,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    ISSUE_IN_PROGRESS,
    ISSUE_RESOLVED,
    USER_INACTIVE,
)
from kehub.schemas.issues import IssueCreate, IssueFilters
from kehub.services import issue_service
from kehub.services.errors import (
    Forbidden,
    InvalidStatus,
    InvalidTask,
    NotFound,
    TerminalStateConflict,
    TransactionFailure,
    ValidationError,
)


def _issue_payload(task, **overrides) -> IssueCreate:
    data = {
        "task_id": task.id,
        "issue_type": "Material shortage",
        "description": "Need an extra 10m of cable",
    }
    data.update(overrides)
    return IssueCreate(**data)


def _issue_notifications(session, user):
    return (
        session.query(Notification)
        .filter(Notification.user_id == user.id, Notification.type == "issue")
        .all()
    )


@pytest.fixture
def reported_issue(session, manager, electrician, new_task):
    task = new_task(manager, electrician)
    return issue_service.create_issue(session, electrician, _issue_payload(task))


class TestCreateIssue:
    def test_rejects_task_not_assigned_to_reporter(self, session, make_user, manager, electrician, new_task):
        task = new_task(manager, make_user(ROLE_ELECTRICIAN))

        with pytest.raises(InvalidTask):
            issue_service.create_issue(session, electrician, _issue_payload(task))

        assert session.query(Issue).count() == 0

    def test_rejects_unassigned_task(self, session, manager, electrician, new_task):
        task = new_task(manager)
        with pytest.raises(InvalidTask):
            issue_service.create_issue(session, electrician, _issue_payload(task))

    def test_only_electricians_report(self, session, manager, electrician, new_task):
        task = new_task(manager, electrician)
        with pytest.raises(Forbidden):
            issue_service.create_issue(session, manager, _issue_payload(task))

    def test_priority_defaults_to_normal(self, reported_issue):
        assert reported_issue.priority == "normal"
        assert reported_issue.status == "open"

    def test_unknown_priority(self, session, manager, electrician, new_task):
        task = new_task(manager, electrician)
        with pytest.raises(ValidationError):
            issue_service.create_issue(session, electrician, _issue_payload(task, priority="critical"))

    def test_notifies_creator_and_other_managers_once(self, session, make_user, manager, electrician, new_task):
        other = make_user(ROLE_MANAGER)
        inactive = make_user(ROLE_MANAGER, status=USER_INACTIVE)
        task = new_task(manager, electrician)

        issue_service.create_issue(session, electrician, _issue_payload(task, priority="urgent"))

        assert len(_issue_notifications(session, manager)) == 1
        assert len(_issue_notifications(session, other)) == 1
        assert _issue_notifications(session, inactive) == []
        assert _issue_notifications(session, electrician) == []

    def test_admin_creator_is_notified_with_managers(self, session, admin, manager, electrician, new_task):
        task = new_task(admin, electrician)

        issue_service.create_issue(session, electrician, _issue_payload(task))

        assert len(_issue_notifications(session, admin)) == 1
        assert len(_issue_notifications(session, manager)) == 1


class TestUpdateIssueStatus:
    def test_resolution_appends_notes_and_notifies_reporter(self, session, manager, electrician, reported_issue):
        issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_RESOLVED, "Cable delivered")

        session.refresh(reported_issue)
        assert reported_issue.status == ISSUE_RESOLVED
        assert reported_issue.resolved_by == manager.id
        assert reported_issue.resolved_at is not None
        assert reported_issue.description == "Need an extra 10m of cable\n\nRESOLUTION: Cable delivered"
        titles = [n.title for n in _issue_notifications(session, electrician)]
        assert titles == ["Issue Resolved"]

    def test_in_progress_keeps_description(self, session, manager, reported_issue):
        issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_IN_PROGRESS, "ignored")

        session.refresh(reported_issue)
        assert reported_issue.status == ISSUE_IN_PROGRESS
        assert reported_issue.resolved_at is None
        assert reported_issue.description == "Need an extra 10m of cable"

    def test_resolved_is_terminal(self, session, manager, reported_issue):
        issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_RESOLVED)
        with pytest.raises(TerminalStateConflict):
            issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_IN_PROGRESS)

    def test_electrician_cannot_update(self, session, electrician, reported_issue):
        with pytest.raises(Forbidden):
            issue_service.update_issue_status(session, reported_issue.id, electrician, ISSUE_RESOLVED)

    def test_unknown_status(self, session, manager, reported_issue):
        with pytest.raises(InvalidStatus):
            issue_service.update_issue_status(session, reported_issue.id, manager, "closed")

    def test_missing_issue(self, session, manager):
        with pytest.raises(NotFound):
            issue_service.update_issue_status(session, uuid.uuid4(), manager, ISSUE_RESOLVED)

    def test_failed_activity_log_rolls_back_resolution(
        self, session, manager, electrician, reported_issue, monkeypatch, failing_write
    ):
        monkeypatch.setattr(issue_service, "log_activity", failing_write)

        with pytest.raises(TransactionFailure):
            issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_RESOLVED, "Cable delivered")

        session.refresh(reported_issue)
        assert reported_issue.status != ISSUE_RESOLVED
        assert reported_issue.resolved_by is None
        assert reported_issue.description == "Need an extra 10m of cable"
        assert _issue_notifications(session, electrician) == []


class TestReadIssues:
    def test_reporter_and_managers_can_view(self, session, manager, electrician, reported_issue):
        assert issue_service.get_issue(session, reported_issue.id, electrician).id == reported_issue.id
        assert issue_service.get_issue(session, reported_issue.id, manager).id == reported_issue.id

    def test_other_electrician_forbidden(self, session, make_user, reported_issue):
        with pytest.raises(Forbidden):
            issue_service.get_issue(session, reported_issue.id, make_user(ROLE_ELECTRICIAN))

    def test_missing_issue(self, session, manager):
        with pytest.raises(NotFound):
            issue_service.get_issue(session, uuid.uuid4(), manager)

    def test_list_filters(self, session, manager, electrician, new_task, reported_issue):
        task = new_task(manager, electrician, title="Second job")
        urgent = issue_service.create_issue(session, electrician, _issue_payload(task, priority="emergency"))

        by_priority = issue_service.list_issues(session, manager, IssueFilters(priority="emergency"))
        assert [i.id for i in by_priority] == [urgent.id]

        later = date.today() + timedelta(days=2)
        assert issue_service.list_issues(session, manager, IssueFilters(start_date=later)) == []
        assert len(issue_service.list_issues(session, manager)) == 2

    def test_list_requires_manager(self, session, electrician):
        with pytest.raises(Forbidden):
            issue_service.list_issues(session, electrician)

    def test_stats(self, session, manager, electrician, new_task, reported_issue):
        task = new_task(manager, electrician, title="Second job")
        issue_service.create_issue(session, electrician, _issue_payload(task, priority="urgent"))
        issue_service.update_issue_status(session, reported_issue.id, manager, ISSUE_RESOLVED)

        stats = issue_service.issue_stats(session, manager)

        assert stats == {"total": 2, "open": 1, "in_progress": 0, "resolved": 1, "urgent_unresolved": 1}
