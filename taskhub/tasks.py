import logging
from sqlalchemy import asc, case, desc
from sqlalchemy.orm import Session, joinedload

from taskhub.errors import ForbiddenError, NotFoundError, ValidationError
from taskhub.models import Task, TaskPriority, TaskStatus, User
from taskhub.notifications import NotificationHub
from taskhub.schemas import TaskCreate, TaskOut, TaskQuery, TaskUpdate

logger = logging.getLogger(__name__)


def _rank(column, enum_cls):
    # enums sort by declaration order, not alphabetically
    return case(
        {member.value: position for position, member in enumerate(enum_cls)},
        value=column
    )


SORT_COLUMNS = {
    "createdAt": Task.created_at,
    "dueDate": Task.due_date,
    "priority": _rank(Task.priority, TaskPriority),
    "status": _rank(Task.status, TaskStatus),
}

FILTER_COLUMNS = {
    "status": Task.status,
    "priority": Task.priority,
    "assigned_to_id": Task.assigned_to_id,
    "creator_id": Task.creator_id,
}


# -------------------------
# STORE
# -------------------------
class TaskStore:
    """Persistence for tasks; every read expands creator and assignee."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return self.db.query(Task).options(
            joinedload(Task.creator),
            joinedload(Task.assignee)
        )

    def find_by_id(self, task_id: str) -> Task | None:
        return self._query().filter(Task.id == task_id).first()

    def find_all(self, filters: dict, sort_key: str, descending: bool) -> list[Task]:
        query = self._query()
        for field, value in filters.items():
            query = query.filter(FILTER_COLUMNS[field] == value)

        direction = desc if descending else asc
        return query.order_by(direction(SORT_COLUMNS[sort_key]), Task.id).all()

    def create(self, **fields) -> str:
        task = Task(**fields)
        self.db.add(task)
        self.db.commit()
        return task.id

    def update(self, task: Task, fields: dict):
        for name, value in fields.items():
            setattr(task, name, value)
        self.db.commit()

    def delete(self, task: Task):
        self.db.delete(task)
        self.db.commit()


# -------------------------
# SERVICE
# -------------------------
class TaskService:

    def __init__(self, db: Session, hub: NotificationHub):
        self.db = db
        self.store = TaskStore(db)
        self.hub = hub

    def _expanded(self, task_id: str) -> TaskOut:
        task = self.store.find_by_id(task_id)
        if not task:
            raise NotFoundError("Task not found")
        return TaskOut.model_validate(task)

    def _check_assignee(self, user_id: str | None):
        if user_id is not None and self.db.get(User, user_id) is None:
            raise ValidationError("Assignee not found")

    def create_task(self, data: TaskCreate, creator_id: str) -> TaskOut:
        self._check_assignee(data.assigned_to_id)

        task_id = self.store.create(
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            priority=data.priority,
            status=data.status or TaskStatus.TODO,
            creator_id=creator_id,
            assigned_to_id=data.assigned_to_id
        )
        created = self._expanded(task_id)
        logger.info("Task %s created by %s", task_id, creator_id)

        if data.assigned_to_id:
            self.hub.emit_assignee_change(task_id, None, data.assigned_to_id, created)

        return created

    def get_tasks(self, user_id: str, query: TaskQuery) -> list[TaskOut]:
        # Any authenticated user may list any tasks; user_id is not a filter.
        filters = {
            field: getattr(query, field)
            for field in FILTER_COLUMNS
            if getattr(query, field) is not None
        }

        if query.sort_by:
            sort_key, descending = query.sort_by, query.order == "desc"
        else:
            sort_key, descending = "createdAt", True

        tasks = self.store.find_all(filters, sort_key, descending)
        return [TaskOut.model_validate(t) for t in tasks]

    def get_task(self, task_id: str) -> TaskOut:
        return self._expanded(task_id)

    def update_task(self, task_id: str, data: TaskUpdate, user_id: str) -> TaskOut:
        task = self.store.find_by_id(task_id)
        if not task:
            raise NotFoundError("Task not found")

        old_status = task.status
        old_priority = task.priority
        old_assignee_id = task.assigned_to_id

        changes = data.supplied()
        if "assigned_to_id" in changes:
            self._check_assignee(changes["assigned_to_id"])

        self.store.update(task, changes)
        updated = self._expanded(task_id)
        logger.info("Task %s updated by %s: %s", task_id, user_id, sorted(changes))

        if "status" in changes and changes["status"] != old_status:
            self.hub.emit_status_change(task_id, old_status, changes["status"], updated)

        if "priority" in changes and changes["priority"] != old_priority:
            self.hub.emit_priority_change(task_id, old_priority, changes["priority"], updated)

        if "assigned_to_id" in changes and changes["assigned_to_id"] != old_assignee_id:
            self.hub.emit_assignee_change(task_id, old_assignee_id, changes["assigned_to_id"], updated)

        return updated

    def delete_task(self, task_id: str, user_id: str):
        task = self.store.find_by_id(task_id)
        if not task:
            raise NotFoundError("Task not found")
        if task.creator_id != user_id:
            raise ForbiddenError("Only the creator can delete this task")

        self.store.delete(task)
        logger.info("Task %s deleted by %s", task_id, user_id)
