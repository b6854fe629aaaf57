"""
See the module-level docstring for implementation details
"""

from .items import import_item_task, reschedule_item_task, run_item_task
from .runs import (
    discover_items_task,
    finalize_import_run_task,
    start_import_run,
)

__all__ = [
    "discover_items_task",
    "finalize_import_run_task",
    "import_item_task",
    "reschedule_item_task",
    "run_item_task",
    "start_import_run",
]
