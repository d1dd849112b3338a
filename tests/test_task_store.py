"""Unit tests for tasks/store.py -- TaskStore.

Covers:
- list_tasks() applies the principal's scope in SQL
- filters, search, sorting and paging
- update_task() keeps completed_at in step with status
- delete_task() removes comments with the task
- get_stats() counts over the scope, overdue / due-soon windows
- categories: seeding, task counts, soft delete
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.access import scope
from auth.models import Principal, Role
from core.db import to_iso
from tasks.models import Category, TaskComment, TaskFilter, TaskItem, TaskPriority, TaskStatus
from tasks.store import DEFAULT_CATEGORIES
from tests.conftest import make_user


@pytest.fixture
def people(stores):
    return {
        "alice": make_user(stores.users, "alice@example.com", name="Alice"),
        "bob": make_user(stores.users, "bob@example.com", name="Bob"),
        "carol": make_user(stores.users, "carol@example.com", Role.MANAGER, name="Carol"),
    }


def _principal(user) -> Principal:
    return Principal(user_id=user.id, role=user.role, jti="t")


def _add(store, title, created_by, **kwargs) -> int:
    return store.create_task(TaskItem(title=title, created_by=created_by, **kwargs))


class TestListing:
    def test_user_scope_is_applied_in_sql(self, stores, people) -> None:
        alice, bob = people["alice"], people["bob"]
        _add(stores.tasks, "mine", alice.id)
        _add(stores.tasks, "assigned to me", bob.id, assigned_to=alice.id)
        _add(stores.tasks, "not mine", bob.id)

        titles = {t.title for t in stores.tasks.list_tasks(scope(_principal(alice)))}
        assert titles == {"mine", "assigned to me"}
        assert len(stores.tasks.list_tasks(scope(_principal(people["carol"])))) == 3

    def test_display_names_are_joined(self, stores, people) -> None:
        task_id = _add(stores.tasks, "joined", people["alice"].id, assigned_to=people["bob"].id)
        task = stores.tasks.get_task(task_id)
        assert task.created_by_name == "Alice"
        assert task.assigned_to_name == "Bob"
        assert task.status == TaskStatus.PENDING

    def test_filters_and_search(self, stores, people) -> None:
        uid = people["alice"].id
        _add(stores.tasks, "Fix login bug", uid, priority=TaskPriority.HIGH)
        _add(stores.tasks, "Write docs", uid, description="About the LOGIN page")
        _add(stores.tasks, "Plan sprint", uid, priority=TaskPriority.HIGH)
        everyone = scope(_principal(people["carol"]))

        found = stores.tasks.list_tasks(everyone, TaskFilter(search="login"))
        assert {t.title for t in found} == {"Fix login bug", "Write docs"}
        high = stores.tasks.list_tasks(everyone, TaskFilter(priority=TaskPriority.HIGH))
        assert {t.title for t in high} == {"Fix login bug", "Plan sprint"}

    def test_sort_and_page(self, stores, people) -> None:
        uid = people["alice"].id
        for title in ["c", "a", "e", "b", "d"]:
            _add(stores.tasks, title, uid)
        everyone = scope(_principal(people["carol"]))

        page1 = stores.tasks.list_tasks(everyone, TaskFilter(sort_by="title", descending=False, page_size=2))
        page3 = stores.tasks.list_tasks(everyone, TaskFilter(sort_by="title", descending=False, page=3, page_size=2))
        assert [t.title for t in page1] == ["a", "b"]
        assert [t.title for t in page3] == ["e"]

    def test_unknown_sort_field_falls_back_to_created_at(self, stores, people) -> None:
        _add(stores.tasks, "x", people["alice"].id)
        assert len(stores.tasks.list_tasks(scope(_principal(people["carol"])), TaskFilter(sort_by="nope"))) == 1


class TestMutations:
    def test_completed_at_follows_status(self, stores, people) -> None:
        task_id = _add(stores.tasks, "t", people["alice"].id)
        task = stores.tasks.get_task(task_id)

        stores.tasks.update_task(task, status=TaskStatus.COMPLETED)
        done = stores.tasks.get_task(task_id)
        assert done.completed_at is not None and done.updated_at is not None

        stores.tasks.update_task(done, status=TaskStatus.IN_PROGRESS)
        reopened = stores.tasks.get_task(task_id)
        assert reopened.status == TaskStatus.IN_PROGRESS
        assert reopened.completed_at is None

    def test_update_rejects_unknown_fields(self, stores, people) -> None:
        task = stores.tasks.get_task(_add(stores.tasks, "t", people["alice"].id))
        with pytest.raises(ValueError):
            stores.tasks.update_task(task, created_by=people["bob"].id)

    def test_complete_task(self, stores, people) -> None:
        task_id = _add(stores.tasks, "t", people["alice"].id)
        assert stores.tasks.complete_task(task_id)
        task = stores.tasks.get_task(task_id)
        assert task.status == TaskStatus.COMPLETED and task.completed_at

    def test_delete_removes_comments(self, stores, people) -> None:
        uid = people["alice"].id
        task_id = _add(stores.tasks, "t", uid)
        comment_id = stores.tasks.add_comment(TaskComment(task_id=task_id, user_id=uid, content="note"))
        assert stores.tasks.list_comments(task_id)[0].user_name == "Alice"

        assert stores.tasks.delete_task(task_id)
        assert stores.tasks.get_task(task_id) is None
        assert stores.tasks.get_comment(comment_id) is None
        assert stores.tasks.delete_task(task_id) is False


class TestStats:
    def test_stats_respect_scope_and_windows(self, stores, people) -> None:
        alice, bob = people["alice"], people["bob"]
        now = datetime.now(timezone.utc)
        _add(stores.tasks, "overdue", alice.id, due_date=to_iso(now - timedelta(days=1)))
        _add(stores.tasks, "soon", alice.id, due_date=to_iso(now + timedelta(days=1)), priority=TaskPriority.CRITICAL)
        _add(stores.tasks, "later", alice.id, due_date=to_iso(now + timedelta(days=10)))
        done = _add(stores.tasks, "done", alice.id, priority=TaskPriority.HIGH)
        stores.tasks.complete_task(done)
        _add(stores.tasks, "bob's", bob.id)

        stats = stores.tasks.get_stats(scope(_principal(alice)))
        assert stats["total_tasks"] == 4
        assert stats["completed_tasks"] == 1
        assert stats["pending_tasks"] == 3
        assert stats["overdue_tasks"] == 1
        assert stats["due_soon_tasks"] == 2
        assert stats["high_priority_tasks"] == 0
        assert stats["critical_priority_tasks"] == 1
        assert stats["completion_rate"] == pytest.approx(25.0)

        assert stores.tasks.get_stats(scope(_principal(people["carol"])))["total_tasks"] == 5

    def test_empty_stats(self, stores, people) -> None:
        stats = stores.tasks.get_stats(scope(_principal(people["bob"])))
        assert stats["total_tasks"] == 0
        assert stats["completion_rate"] == 0.0


class TestCategories:
    def test_seed_only_once(self, stores) -> None:
        assert stores.tasks.seed_default_categories() == len(DEFAULT_CATEGORIES)
        assert stores.tasks.seed_default_categories() == 0
        assert len(stores.tasks.list_categories()) == len(DEFAULT_CATEGORIES)

    def test_task_count_and_soft_delete(self, stores, people) -> None:
        cat_id = stores.tasks.create_category(Category(name="Ops", color="#123456"))
        _add(stores.tasks, "t1", people["alice"].id, category_id=cat_id)
        _add(stores.tasks, "t2", people["alice"].id, category_id=cat_id)

        [ops] = [c for c in stores.tasks.list_categories() if c.name == "Ops"]
        assert ops.task_count == 2

        assert stores.tasks.deactivate_category(cat_id)
        assert all(c.id != cat_id for c in stores.tasks.list_categories())
        assert stores.tasks.get_category(cat_id).is_active is False
        # Tasks keep their category reference.
        task = stores.tasks.list_tasks(scope(_principal(people["carol"])), TaskFilter(category_id=cat_id))[0]
        assert task.category_name == "Ops"
