"""
Task Code Generator

Generates the human-readable task code:

    TSK-{YEAR}-{SEQ}   (e.g. TSK-2026-001, TSK-2026-042, TSK-2026-1234)

SEQ is the task id zero-padded to 3 digits; it widens past 999 rather than
wrapping.  The id comes from the store's atomic allocator, so codes are
unique without any count-based lookup.  A code is generated once, at
creation, and persisted; it is never recomputed.
"""

import re

from casedesk.models.task import TASK_CODE_PREFIX

TASK_CODE_PATTERN = re.compile(rf"^{TASK_CODE_PREFIX}-(\d{{4}})-(\d{{3,}})$")


def generate_task_code(task_id: int, year: int) -> str:
    """Generate the code for task *task_id* created in *year*."""
    if task_id is None or task_id < 1:
        raise ValueError(f"Task id must be a positive integer, got {task_id!r}")
    return f"{TASK_CODE_PREFIX}-{year:04d}-{task_id:03d}"


def parse_task_code(code: str) -> tuple[int, int] | None:
    """Return ``(year, sequence)`` for a well-formed code, else None."""
    match = TASK_CODE_PATTERN.match(code or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))
