"""Task persistence backends."""

from casedesk.store.base import TASK_FILTERS, TaskStore
from casedesk.store.memory import InMemoryTaskStore
from casedesk.store.sql import SqlTaskStore

STORE_BACKENDS = {
    "sql": SqlTaskStore,
    "memory": InMemoryTaskStore,
}

__all__ = ["TASK_FILTERS", "TaskStore", "InMemoryTaskStore", "SqlTaskStore", "STORE_BACKENDS"]
