"""
Per-task mutation locks.

A fixed pool of ``threading.Lock`` stripes; a task id always maps to the same
stripe, so two mutations of one task never overlap while mutations of
different tasks mostly proceed in parallel.  Holding a stripe covers the
whole read → validate → write → append → commit sequence.

Usage:
    locks = TaskLocks(stripes=64)
    with locks.hold(task_id):
        ...
"""

import threading
from contextlib import contextmanager

DEFAULT_STRIPES = 64


class TaskLocks:

    def __init__(self, stripes: int = DEFAULT_STRIPES):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._stripes = [threading.Lock() for _ in range(stripes)]

    def stripe_for(self, task_id: int) -> threading.Lock:
        return self._stripes[hash(task_id) % len(self._stripes)]

    @contextmanager
    def hold(self, task_id: int):
        lock = self.stripe_for(task_id)
        with lock:
            yield
